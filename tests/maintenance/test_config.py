"""Tests for maintenance configuration loading.

Tests verify:
- Defaults and strict validation
- File < environment < CLI precedence
- Schema export and the config hash
- Logging setup
"""

from __future__ import annotations

import json
import logging

import pytest
import yaml
from pydantic import ValidationError

from ExtRegistry.Maintenance.config import (
    KEYPAIR_MODE_DELETE,
    IntegrityConfig,
    LoggingConfig,
    MaintenanceConfig,
    export_config_schema,
    load_config,
)
from ExtRegistry.Maintenance.logging_config import (
    ROOT_LOGGER_NAME,
    JSONFormatter,
    mask_sensitive_data,
    setup_logging,
)


@pytest.fixture
def config_file(tmp_path):
    path = tmp_path / "maintenance.yaml"
    path.write_text(
        yaml.safe_dump(
            {
                "registry_version": "1.2.0",
                "orchestrator": {"max_workers": 2, "max_retries": 5},
                "identity": {"builtin_namespaces": ["vscode", "ms-python"]},
            }
        ),
        encoding="utf-8",
    )
    return path


class TestModels:
    def test_defaults(self):
        config = MaintenanceConfig()
        assert config.migrations.page_size == 25_000
        assert config.migrations.max_rearms == 3
        assert config.orchestrator.max_retries == 3
        assert config.integrity.key_pair_mode == ""
        assert config.integrity.enabled is False
        assert config.identity.builtin_namespaces == ["vscode"]
        assert config.storage.default_storage_type == "local"

    def test_unknown_field_rejected(self):
        with pytest.raises(ValidationError):
            MaintenanceConfig.model_validate({"orchestrator": {"workers": 3}})

    def test_invalid_key_pair_mode(self):
        with pytest.raises(ValidationError, match="Supported values are"):
            IntegrityConfig(key_pair_mode="rotate")

    def test_delete_mode_is_not_enabled(self):
        assert IntegrityConfig(key_pair_mode=KEYPAIR_MODE_DELETE).enabled is False
        assert IntegrityConfig(key_pair_mode="renew").enabled is True

    def test_invalid_sweep_cron(self):
        with pytest.raises(ValidationError):
            MaintenanceConfig.model_validate({"migrations": {"sweep_cron": "every day"}})

    def test_log_level_normalized(self):
        assert LoggingConfig(level="debug").level == "DEBUG"
        with pytest.raises(ValidationError):
            LoggingConfig(level="chatty")


class TestLoadConfig:
    def test_file_values(self, config_file):
        config = load_config(str(config_file))
        assert config.registry_version == "1.2.0"
        assert config.orchestrator.max_workers == 2
        assert config.identity.builtin_namespaces == ["vscode", "ms-python"]

    def test_json_file(self, tmp_path):
        path = tmp_path / "maintenance.json"
        path.write_text(json.dumps({"mirror_enabled": True}), encoding="utf-8")
        assert load_config(str(path)).mirror_enabled is True

    def test_env_overrides_file(self, config_file, monkeypatch):
        monkeypatch.setenv("EXTREG_ORCHESTRATOR__MAX_WORKERS", "8")
        monkeypatch.setenv("EXTREG_REGISTRY_VERSION", "2.0")
        monkeypatch.setenv("EXTREG_IDENTITY__BUILTIN_NAMESPACES", '["vscode"]')

        config = load_config(str(config_file))

        assert config.orchestrator.max_workers == 8
        assert config.orchestrator.max_retries == 5
        assert config.registry_version == "2.0"
        assert config.identity.builtin_namespaces == ["vscode"]

    def test_cli_overrides_env(self, config_file, monkeypatch):
        monkeypatch.setenv("EXTREG_ORCHESTRATOR__MAX_WORKERS", "8")

        config = load_config(
            str(config_file), cli_overrides={"orchestrator": {"max_workers": 16}}
        )

        assert config.orchestrator.max_workers == 16
        assert config.orchestrator.max_retries == 5

    def test_invalid_env_value(self, monkeypatch):
        monkeypatch.setenv("EXTREG_INTEGRITY__KEY_PAIR_MODE", "rotate")
        with pytest.raises(ValueError):
            load_config()

    def test_missing_file(self, tmp_path):
        with pytest.raises(ValueError, match="not found"):
            load_config(str(tmp_path / "absent.yaml"))

    def test_unsupported_suffix(self, tmp_path):
        path = tmp_path / "maintenance.toml"
        path.write_text("registry_version = '1'", encoding="utf-8")
        with pytest.raises(ValueError, match="Unsupported file format"):
            load_config(str(path))

    def test_invalid_yaml(self, tmp_path):
        path = tmp_path / "maintenance.yaml"
        path.write_text("orchestrator: [unclosed", encoding="utf-8")
        with pytest.raises(ValueError, match="Invalid YAML"):
            load_config(str(path))


def test_schema_lists_sections():
    schema = export_config_schema()
    assert {"migrations", "orchestrator", "integrity", "identity", "storage"} <= set(
        schema["properties"]
    )


def test_config_hash_is_stable():
    first = MaintenanceConfig(registry_version="1.0.0")
    second = MaintenanceConfig.model_validate({"registry_version": "1.0.0"})
    assert first.config_hash() == second.config_hash()
    assert first.config_hash() != MaintenanceConfig(registry_version="1.0.1").config_hash()


class TestLogging:
    def test_mask_sensitive_data(self):
        masked = mask_sensitive_data({"Private_Key": "pem", "job_id": "j"})
        assert masked == {"Private_Key": "***masked***", "job_id": "j"}

    def test_json_formatter(self):
        record = logging.LogRecord("x", logging.ERROR, __file__, 1, "job %s failed", ("j1",), None)
        record.extra_fields = {"kind": "remove_file", "token": "abc"}

        payload = json.loads(JSONFormatter().format(record))

        assert payload["message"] == "job j1 failed"
        assert payload["kind"] == "remove_file"
        assert payload["token"] == "***masked***"

    def test_setup_is_repeatable(self, tmp_path):
        config = LoggingConfig(level="DEBUG", log_dir=str(tmp_path / "logs"))

        setup_logging(config)
        logger = setup_logging(config)

        managed = [h for h in logger.handlers if getattr(h, "_extreg_managed", False)]
        assert logger.name == ROOT_LOGGER_NAME
        assert logger.level == logging.DEBUG
        assert len(managed) == 2
        logging.getLogger(f"{ROOT_LOGGER_NAME}.test").info("written")
        assert list((tmp_path / "logs").glob("maintenance-*.jsonl"))

        for handler in managed:
            logger.removeHandler(handler)
            handler.close()
