"""Engine configuration management with validation and secrets lookup.

Configuration is a YAML file validated by Pydantic models. Secrets (API
tokens for the lookup services) never live in the file: the file names a
secret key, and ``SecretsManager`` resolves it from the environment or the
OS keyring.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Dict, List, Optional

import keyring
import yaml
from croniter import croniter
from keyring.errors import KeyringError, PasswordDeleteError
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

from .models import JobConfig, JobKind
from .retry_policy import RetryPolicy

logger = logging.getLogger(__name__)

DEFAULT_WORKSPACE = Path.home() / ".cardvault"


class StoreConfig(BaseModel):
    """Database locations.

    Attributes:
        database_path: SQLite card store
        checkpoint_path: SQLite checkpoint store
    """

    model_config = ConfigDict(extra="forbid")

    database_path: Path = Field(
        default=DEFAULT_WORKSPACE / "cardvault.db",
        description="SQLite card store path",
    )
    checkpoint_path: Path = Field(
        default=DEFAULT_WORKSPACE / "checkpoints.db",
        description="SQLite checkpoint store path",
    )

    @field_validator("database_path", "checkpoint_path")
    @classmethod
    def expand_path(cls, v: Path) -> Path:
        return Path(v).expanduser()


class SchedulerConfig(BaseModel):
    """Admission and lifecycle settings.

    Attributes:
        max_concurrent_jobs: Jobs running at once across all kinds (1-16)
        max_queued_jobs: Starts allowed to wait for a slot (0-100)
        enabled_kinds: Job kinds this engine accepts
        auto_resume_interrupted: Restart lineages interrupted by a crash
    """

    model_config = ConfigDict(extra="forbid")

    max_concurrent_jobs: int = Field(default=2, ge=1, le=16)
    max_queued_jobs: int = Field(default=8, ge=0, le=100)
    enabled_kinds: List[JobKind] = Field(default_factory=lambda: list(JobKind))
    auto_resume_interrupted: bool = False


class RateLimitConfig(BaseModel):
    """Pacing for one external lookup service.

    Attributes:
        min_interval_ms: Minimum spacing between calls
        max_calls_per_window: Rolling quota (None disables it)
        window_seconds: Length of the rolling quota window
        backoff_base_seconds: First backoff after a throttling signal
        backoff_max_seconds: Backoff cap
    """

    model_config = ConfigDict(extra="forbid")

    min_interval_ms: int = Field(default=1000, ge=0)
    max_calls_per_window: Optional[int] = Field(default=None, ge=1)
    window_seconds: float = Field(default=3600.0, gt=0)
    backoff_base_seconds: float = Field(default=5.0, ge=0)
    backoff_max_seconds: float = Field(default=300.0, ge=0)

    @model_validator(mode="after")
    def _check_backoff(self) -> "RateLimitConfig":
        if self.backoff_max_seconds < self.backoff_base_seconds:
            raise ValueError("backoff_max_seconds must be >= backoff_base_seconds")
        return self


def _default_rate_limits() -> Dict[JobKind, RateLimitConfig]:
    return {
        JobKind.IMAGE_ENRICHMENT: RateLimitConfig(
            min_interval_ms=1000, max_calls_per_window=5000, window_seconds=86400
        ),
        JobKind.PRICE_ENRICHMENT: RateLimitConfig(
            min_interval_ms=3000, max_calls_per_window=30, window_seconds=3600
        ),
    }


class CacheConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    default_ttl_seconds: float = Field(default=300.0, ge=0)
    sweep_interval_seconds: float = Field(default=60.0, ge=0, description="0 disables the sweep")


class LookupEndpointConfig(BaseModel):
    """One external lookup service.

    Attributes:
        base_url: Service root URL
        secret_key: Name of the secret holding the API token
        timeout_seconds: Request timeout
    """

    model_config = ConfigDict(extra="forbid")

    base_url: str
    secret_key: str
    timeout_seconds: float = Field(default=30.0, gt=0, le=300)


class LookupsConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    price: LookupEndpointConfig = Field(
        default_factory=lambda: LookupEndpointConfig(
            base_url="https://www.pricecharting.com",
            secret_key="pricecharting_api_token",
        )
    )
    image: LookupEndpointConfig = Field(
        default_factory=lambda: LookupEndpointConfig(
            base_url="https://api.ebay.com/buy/browse/v1",
            secret_key="ebay_access_token",
        )
    )


class ScheduleConfig(BaseModel):
    """A cron-triggered job start."""

    model_config = ConfigDict(extra="forbid")

    kind: JobKind
    cron: str
    enabled: bool = True
    job: Optional[JobConfig] = None
    input_path: Optional[Path] = None
    source_name: Optional[str] = None

    @field_validator("cron")
    @classmethod
    def validate_cron(cls, v: str) -> str:
        if not croniter.is_valid(v):
            raise ValueError(f"invalid cron expression: {v}")
        return v

    @field_validator("input_path")
    @classmethod
    def expand_path(cls, v: Optional[Path]) -> Optional[Path]:
        return v.expanduser() if v is not None else None

    @model_validator(mode="after")
    def validate_input(self) -> "ScheduleConfig":
        if self.kind is JobKind.INGESTION:
            if self.input_path is None:
                raise ValueError("ingestion schedules require an input_path")
        elif self.input_path is not None or self.source_name is not None:
            raise ValueError(f"{self.kind.value} schedules do not take an input_path or source_name")
        return self


class TelemetryConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    enabled: bool = True
    output_dir: Optional[Path] = Field(default=None, description="Defaults to <workspace>/telemetry")


class AuditConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    enabled: bool = True
    output_dir: Optional[Path] = Field(default=None, description="Defaults to <workspace>/audit")


class EngineConfig(BaseModel):
    """Top-level job engine configuration.

    Attributes:
        version: Configuration schema version
        workspace_path: Directory for markers, telemetry and audit logs
        log_level: Root log level used by the CLI
        store: Database locations
        scheduler: Admission settings
        job_defaults: Default per-job limits
        store_retry: Retry policy for store calls
        rate_limits: Pacing per enrichment kind
        cache: Cache TTL and sweep
        lookups: External lookup services
        schedules: Cron-triggered starts
        telemetry: Telemetry output
        audit: Audit log output
    """

    model_config = ConfigDict(validate_assignment=True, extra="forbid")

    version: int = Field(default=1, description="Configuration schema version")
    workspace_path: Path = Field(default=DEFAULT_WORKSPACE)
    log_level: str = Field(default="WARNING")
    store: StoreConfig = Field(default_factory=StoreConfig)
    scheduler: SchedulerConfig = Field(default_factory=SchedulerConfig)
    job_defaults: JobConfig = Field(default_factory=JobConfig)
    store_retry: RetryPolicy = Field(default_factory=RetryPolicy)
    rate_limits: Dict[JobKind, RateLimitConfig] = Field(default_factory=_default_rate_limits)
    cache: CacheConfig = Field(default_factory=CacheConfig)
    lookups: LookupsConfig = Field(default_factory=LookupsConfig)
    schedules: List[ScheduleConfig] = Field(default_factory=list)
    telemetry: TelemetryConfig = Field(default_factory=TelemetryConfig)
    audit: AuditConfig = Field(default_factory=AuditConfig)

    @field_validator("workspace_path")
    @classmethod
    def expand_workspace(cls, v: Path) -> Path:
        return Path(v).expanduser()

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        level = v.upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"unknown log level: {v}")
        return level

    @property
    def telemetry_dir(self) -> Path:
        return Path(self.telemetry.output_dir or self.workspace_path / "telemetry").expanduser()

    @property
    def audit_dir(self) -> Path:
        return Path(self.audit.output_dir or self.workspace_path / "audit").expanduser()


class ConfigurationError(Exception):
    """Raised when configuration is invalid or cannot be loaded."""

    pass


def _format_errors(exc: ValidationError) -> List[str]:
    return [
        f"{'.'.join(str(loc) for loc in err['loc']) or '<root>'}: {err['msg']}"
        for err in exc.errors()
    ]


class ConfigurationManager:
    """Loads, validates and saves the engine configuration file."""

    def __init__(self, config_path: Optional[Path] = None) -> None:
        self._config_path = Path(config_path or DEFAULT_WORKSPACE / "config.yaml").expanduser()
        self._config: Optional[EngineConfig] = None

    @property
    def config_path(self) -> Path:
        return self._config_path

    def load(self) -> EngineConfig:
        """Load and validate configuration, falling back to defaults.

        Raises:
            ConfigurationError: If the file exists but is invalid
        """
        if not self._config_path.exists():
            logger.debug("No configuration file, using defaults", extra={"config_path": str(self._config_path)})
            self._config = EngineConfig()
            return self._config

        data = self._read(self._config_path)
        try:
            self._config = EngineConfig(**data)
        except ValidationError as exc:
            raise ConfigurationError(
                f"Invalid configuration: {'; '.join(_format_errors(exc))}"
            ) from exc
        logger.info("Configuration loaded", extra={"config_path": str(self._config_path)})
        return self._config

    def save(self, config: EngineConfig) -> None:
        self._config_path.parent.mkdir(parents=True, exist_ok=True)
        data = config.model_dump(mode="json")
        with open(self._config_path, "w", encoding="utf-8") as f:
            yaml.safe_dump(data, f, default_flow_style=False, sort_keys=False)
        self._config = config
        logger.info("Configuration saved", extra={"config_path": str(self._config_path)})

    def validate(self, config_path: Optional[Path] = None) -> List[str]:
        """Validate a configuration file without keeping it.

        Returns:
            List of validation errors (empty if valid)
        """
        path = Path(config_path or self._config_path)
        if not path.exists():
            return [f"Configuration file not found: {path}"]
        try:
            EngineConfig(**self._read(path))
        except ConfigurationError as exc:
            return [str(exc)]
        except ValidationError as exc:
            return _format_errors(exc)
        return []

    @staticmethod
    def _read(path: Path) -> dict:
        try:
            with open(path, encoding="utf-8") as f:
                data = yaml.safe_load(f)
        except (OSError, yaml.YAMLError) as exc:
            raise ConfigurationError(f"Failed to read configuration {path}: {exc}") from exc
        if data is None:
            return {}
        if not isinstance(data, dict):
            raise ConfigurationError(f"Configuration {path} must be a mapping")
        return data


class SecretsManager:
    """Resolves secrets from the environment first, then the OS keyring.

    Environment variables are named ``CARDVAULT_<KEY>`` in upper case.
    """

    def __init__(self, keyring_service: str = "cardvault") -> None:
        self._keyring_service = keyring_service

    def get_secret(self, key: str) -> Optional[str]:
        env_value = os.getenv(f"CARDVAULT_{key.upper()}")
        if env_value:
            return env_value
        try:
            return keyring.get_password(self._keyring_service, key)
        except KeyringError as exc:
            logger.debug("Keyring lookup failed", extra={"secret_key": key, "error": str(exc)})
            return None

    def set_secret(self, key: str, value: str) -> None:
        try:
            keyring.set_password(self._keyring_service, key, value)
        except KeyringError as exc:
            raise ConfigurationError(f"Failed to store secret in keyring: {exc}") from exc

    def delete_secret(self, key: str) -> None:
        try:
            keyring.delete_password(self._keyring_service, key)
        except PasswordDeleteError:
            logger.debug("Secret not present in keyring", extra={"secret_key": key})


__all__ = [
    "StoreConfig",
    "SchedulerConfig",
    "RateLimitConfig",
    "CacheConfig",
    "LookupEndpointConfig",
    "LookupsConfig",
    "ScheduleConfig",
    "TelemetryConfig",
    "AuditConfig",
    "EngineConfig",
    "ConfigurationManager",
    "SecretsManager",
    "ConfigurationError",
]
