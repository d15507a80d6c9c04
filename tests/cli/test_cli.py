"""End-to-end tests for the cardvault command line."""

from __future__ import annotations

from pathlib import Path

import pytest
import yaml
from typer.testing import CliRunner

from cardvault.cli import cli
from cardvault.orchestrator.config import ConfigurationManager, EngineConfig

from tests.fakes import write_csv

runner = CliRunner()


@pytest.fixture
def config_path(tmp_path: Path) -> Path:
    workspace = tmp_path / "ws"
    config = EngineConfig(
        workspace_path=workspace,
        store={
            "database_path": workspace / "cardvault.db",
            "checkpoint_path": workspace / "checkpoints.db",
        },
        scheduler={"enabled_kinds": ["ingestion"]},
        job_defaults={"batch_size": 2, "item_delay_ms": 0, "batch_delay_ms": 0},
    )
    path = tmp_path / "config.yaml"
    ConfigurationManager(path).save(config)
    return path


def invoke(*args: str):
    return runner.invoke(cli, list(args))


class TestConfigCommands:
    def test_init_writes_defaults(self, tmp_path: Path):
        path = tmp_path / "config.yaml"

        result = invoke("config", "init", "--config", str(path), "--workspace", str(tmp_path / "ws"))

        assert result.exit_code == 0, result.output
        data = yaml.safe_load(path.read_text())
        assert data["store"]["database_path"] == str(tmp_path / "ws" / "cardvault.db")
        assert data["scheduler"]["max_concurrent_jobs"] == 2

    def test_init_refuses_to_overwrite(self, config_path: Path):
        assert invoke("config", "init", "--config", str(config_path)).exit_code == 1
        assert invoke("config", "init", "--config", str(config_path), "--force").exit_code == 0

    def test_validate(self, config_path: Path, tmp_path: Path):
        assert invoke("config", "validate", "--config", str(config_path)).exit_code == 0

        broken = tmp_path / "broken.yaml"
        broken.write_text(yaml.safe_dump({"scheduler": {"max_queued_jobs": -1}}))
        result = invoke("config", "validate", "--config", str(broken))

        assert result.exit_code == 1
        assert "max_queued_jobs" in result.output

    def test_show(self, config_path: Path):
        result = invoke("config", "show", "--config", str(config_path))

        assert result.exit_code == 0
        assert "max_concurrent_jobs" in result.output

    def test_invalid_config_exits_with_usage_code(self, tmp_path: Path):
        broken = tmp_path / "broken.yaml"
        broken.write_text(yaml.safe_dump({"log_level": "loud"}))

        assert invoke("store", "stats", "--config", str(broken)).exit_code == 2


class TestStoreCommands:
    def test_add_set_and_stats(self, config_path: Path):
        assert invoke("store", "init", "--config", str(config_path)).exit_code == 0

        result = invoke("store", "add-set", "Base Set", "--year", "1999", "--config", str(config_path))
        assert result.exit_code == 0
        assert "with id 1" in result.output

        stats = invoke("store", "stats", "--config", str(config_path))
        assert stats.exit_code == 0
        assert "Sets" in stats.output


class TestJobCommands:
    def test_ingestion_run_and_checkpoints(self, config_path: Path, tmp_path: Path):
        invoke("store", "add-set", "Base Set", "--config", str(config_path))
        csv_path = write_csv(
            tmp_path / "cards.csv",
            [
                ("base set", "001", "Alakazam"),
                ("Base Set", "002", "Blastoise"),
                ("Gym Heroes", "003", "Blaine's Arcanine"),
            ],
        )

        result = invoke("jobs", "run", "ingestion", "--input", str(csv_path), "--config", str(config_path))

        assert result.exit_code == 0, result.output
        assert "completed" in result.output
        assert "Gym Heroes" in result.output

        listing = invoke("jobs", "checkpoints", "--format", "json", "--config", str(config_path))
        assert listing.exit_code == 0
        assert "ingestion:cards" in listing.output
        assert '"cursor": 3' in listing.output

        telemetry = invoke("jobs", "telemetry", "--config", str(config_path))
        assert "Runs: 1" in telemetry.output

        assert invoke("jobs", "reset", "ingestion:cards", "--config", str(config_path)).exit_code == 0
        assert invoke("jobs", "reset", "ingestion:cards", "--config", str(config_path)).exit_code == 1

    def test_disabled_kind_is_not_started(self, config_path: Path):
        result = invoke("jobs", "run", "price_enrichment", "--config", str(config_path))

        assert result.exit_code == 1
        assert "Job not started" in result.output

    def test_ingestion_requires_input(self, config_path: Path):
        result = invoke("jobs", "run", "ingestion", "--config", str(config_path))

        assert result.exit_code == 2
        assert "input_path" in result.output

    def test_empty_checkpoint_listing(self, config_path: Path):
        result = invoke("jobs", "checkpoints", "--config", str(config_path))

        assert result.exit_code == 0
        assert "No checkpoints stored." in result.output
