"""Tamper-evident audit log for job lifecycle events."""

from __future__ import annotations

import hashlib
import json
import logging
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Dict, Iterable, Optional

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AuditEvent:
    """Represents a structured audit event."""

    job_id: str
    source: str
    action: str
    status: str
    timestamp: datetime
    metadata: Dict[str, object] = field(default_factory=dict)

    def to_payload(self) -> Dict[str, object]:
        payload: Dict[str, object] = {
            "job_id": self.job_id,
            "source": self.source,
            "action": self.action,
            "status": self.status,
            "timestamp": self.timestamp.isoformat(),
        }
        if self.metadata:
            payload["metadata"] = self.metadata
        return payload


def _compute_chain_hash(payload: Dict[str, object]) -> str:
    body = {key: value for key, value in payload.items() if key != "chain_hash"}
    encoded = json.dumps(body, sort_keys=True, separators=(",", ":"), default=str)
    return hashlib.sha256(encoded.encode("utf-8")).hexdigest()


@dataclass
class AuditLogger:
    """Writes an append-only JSON-lines log where each line hashes its predecessor.

    Attributes:
        output_dir: Directory for the log and its manifest
        filename: Name of the log file
        manifest_name: Name of the manifest holding the last chain hash
    """

    output_dir: Path
    filename: str = "audit.log"
    manifest_name: str = "audit_manifest.json"

    def __post_init__(self) -> None:
        self.output_dir = Path(self.output_dir)
        self.output_dir.mkdir(parents=True, exist_ok=True)
        self._path = self.output_dir / self.filename
        self._manifest_path = self.output_dir / self.manifest_name
        if not self._manifest_path.exists():
            self._save_manifest({"last_hash": None})

    @property
    def path(self) -> Path:
        return self._path

    def record(self, event: AuditEvent) -> None:
        payload = event.to_payload()
        manifest = self._load_manifest()
        payload["chain_prev"] = manifest.get("last_hash")
        payload["chain_hash"] = _compute_chain_hash(payload)
        with self._path.open("a", encoding="utf-8") as fp:
            fp.write(json.dumps(payload, separators=(",", ":"), default=str) + "\n")
        manifest["last_hash"] = payload["chain_hash"]
        self._save_manifest(manifest)

    def record_job_event(
        self,
        *,
        job_id: str,
        action: str,
        status: str,
        metadata: Optional[Dict[str, object]] = None,
    ) -> None:
        self.record(
            AuditEvent(
                job_id=job_id,
                source="job_scheduler",
                action=action,
                status=status,
                timestamp=datetime.utcnow(),
                metadata=metadata or {},
            )
        )

    def iter_events(self) -> Iterable[Dict[str, object]]:
        if not self._path.exists():
            return
        with self._path.open(encoding="utf-8") as fp:
            for line in fp:
                line = line.strip()
                if line:
                    yield json.loads(line)

    def verify(self) -> bool:
        """Return True when every line's hash chain is intact."""
        previous_hash = None
        for entry in self.iter_events():
            if entry.get("chain_prev") != previous_hash:
                return False
            if entry.get("chain_hash") != _compute_chain_hash(entry):
                return False
            previous_hash = entry.get("chain_hash")
        return True

    def _load_manifest(self) -> Dict[str, object]:
        try:
            return json.loads(self._manifest_path.read_text())
        except (OSError, json.JSONDecodeError) as exc:
            logger.warning("Audit manifest unreadable, starting new chain", extra={"error": str(exc)})
            return {"last_hash": None}

    def _save_manifest(self, manifest: Dict[str, object]) -> None:
        self._manifest_path.write_text(json.dumps(manifest, indent=2))
