"""Tests for the maintenance CLI: config, bootstrap, queue, keys and reconcile commands."""

from __future__ import annotations

import json
import logging

import pytest
import yaml
from typer.testing import CliRunner

from ExtRegistry.Maintenance.cli import app
from ExtRegistry.Maintenance.logging_config import ROOT_LOGGER_NAME
from ExtRegistry.Maintenance.orchestrator.models import JobState
from ExtRegistry.Maintenance.orchestrator.queue import WorkQueue

runner = CliRunner()


@pytest.fixture(autouse=True)
def _reset_logging():
    yield
    logger = logging.getLogger(ROOT_LOGGER_NAME)
    for handler in list(logger.handlers):
        if getattr(handler, "_extreg_managed", False):
            logger.removeHandler(handler)
            handler.close()


@pytest.fixture
def state_dir(tmp_path):
    return tmp_path / "state"


@pytest.fixture
def config_path(tmp_path, state_dir):
    path = tmp_path / "maintenance.yaml"
    path.write_text(
        yaml.safe_dump(
            {
                "registry_version": "1.2.0",
                "orchestrator": {
                    "max_workers": 1,
                    "retry_backoff_seconds": 0,
                    "jitter_seconds": 0,
                    "poll_interval_seconds": 0.05,
                },
                "storage": {
                    "catalog_path": str(state_dir / "catalog.sqlite"),
                    "queue_path": str(state_dir / "jobs.sqlite"),
                    "local_root": str(state_dir / "artifacts"),
                },
                "logging": {"level": "WARNING"},
            }
        ),
        encoding="utf-8",
    )
    return str(path)


class TestConfigCommands:
    def test_show(self, config_path):
        result = runner.invoke(app, ["config", "show", "-c", config_path])
        assert result.exit_code == 0
        data = json.loads(result.stdout)
        assert data["registry_version"] == "1.2.0"
        assert data["orchestrator"]["max_workers"] == 1

    def test_show_reads_config_envvar(self, config_path, monkeypatch):
        monkeypatch.setenv("MAINTENANCE_CONFIG", config_path)
        result = runner.invoke(app, ["config", "show"])
        assert result.exit_code == 0
        assert json.loads(result.stdout)["registry_version"] == "1.2.0"

    def test_show_missing_file(self, tmp_path):
        result = runner.invoke(app, ["config", "show", "-c", str(tmp_path / "absent.yaml")])
        assert result.exit_code == 1
        assert "not found" in result.stdout

    def test_schema(self):
        result = runner.invoke(app, ["config", "schema"])
        assert result.exit_code == 0
        assert "orchestrator" in json.loads(result.stdout)["properties"]


class TestBootstrapAndQueue:
    def test_bootstrap_then_stats(self, config_path):
        first = runner.invoke(app, ["bootstrap", "-c", config_path])
        second = runner.invoke(app, ["bootstrap", "-c", config_path])
        assert first.exit_code == 0
        assert second.exit_code == 0
        assert "Startup triggers scheduled (1 jobs)" in first.stdout

        result = runner.invoke(app, ["queue", "stats", "-c", config_path, "--format", "json"])

        assert result.exit_code == 0
        data = json.loads(result.stdout)
        assert data["jobs"]["queued"] == 1
        assert [r["name"] for r in data["recurring"]] == [
            "AdminStatisticsDaily",
            "VSCodeIdDailyUpdate",
        ]

    def test_stats_table(self, config_path):
        runner.invoke(app, ["bootstrap", "-c", config_path])
        result = runner.invoke(app, ["queue", "stats", "-c", config_path])
        assert result.exit_code == 0
        assert "Recurring jobs" in result.stdout

    def test_retry_failed(self, config_path, state_dir):
        queue = WorkQueue(str(state_dir / "jobs.sqlite"))
        queue.enqueue("job-1", "remove_file", {"name": "x"}, max_retries=0)
        queue.fail_and_retry("job-1", 0, "TransientIOError: store timed out")
        queue.close_connection()

        dry = runner.invoke(app, ["queue", "retry-failed", "-c", config_path, "--dry-run"])
        assert dry.exit_code == 0
        assert "job-1" in dry.stdout
        assert "Dry run complete" in dry.stdout

        result = runner.invoke(app, ["queue", "retry-failed", "-c", config_path])
        assert result.exit_code == 0
        assert "Retried 1 jobs" in result.stdout

        queue = WorkQueue(str(state_dir / "jobs.sqlite"))
        assert queue.get("job-1")["state"] == JobState.QUEUED.value
        queue.close_connection()

    def test_retry_failed_nothing_to_do(self, config_path):
        result = runner.invoke(app, ["queue", "retry-failed", "-c", config_path])
        assert result.exit_code == 0
        assert "No failed jobs" in result.stdout

    def test_run_drain(self, config_path):
        result = runner.invoke(app, ["run", "-c", config_path, "--drain", "--timeout", "30"])
        assert result.exit_code == 0
        assert "Maintenance ready" in result.stdout


class TestKeysAndReconcile:
    def test_keys_create_then_purge(self, config_path):
        created = runner.invoke(app, ["keys", "create", "-c", config_path])
        assert created.exit_code == 0
        assert "active key: none" not in created.stdout

        purged = runner.invoke(app, ["keys", "purge", "-c", config_path])
        assert purged.exit_code == 0
        assert "active key: none" in purged.stdout

    def test_reconcile_needs_both_names(self, config_path):
        result = runner.invoke(app, ["reconcile", "acme", "-c", config_path])
        assert result.exit_code == 1

    def test_reconcile_all_without_gallery(self, config_path):
        result = runner.invoke(app, ["reconcile", "-c", config_path])
        assert result.exit_code == 0
        assert "Public id changes (0)" in result.stdout

    def test_reconcile_unknown_extension(self, config_path):
        result = runner.invoke(app, ["reconcile", "acme", "widget", "-c", config_path])
        assert result.exit_code == 1
        assert "Error" in result.stdout
