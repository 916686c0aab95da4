"""Tests for auditflow configuration."""

import pytest
import yaml

from auditflow.core.config import AuditFlowConfig, config_path, load_config


class TestAuditFlowConfig:
    """Tests for AuditFlowConfig."""

    def test_defaults(self):
        config = AuditFlowConfig()
        assert config.queue.drain_interval_seconds == 5.0
        assert config.queue.processing_timeout_seconds == 30.0
        assert config.queue.max_retries == 5
        assert config.detection.failed_login_threshold == 5
        assert config.detection.privileged_roles == ["super-admin"]
        assert config.detection.alert_min_severity == "high"
        assert config.statistics.retention_days == 400
        assert config.alerts.recent_limit == 1000

    def test_from_dict_partial(self):
        config = AuditFlowConfig.from_dict(
            {"queue": {"max_retries": 2}, "detection": {"alert_min_severity": "medium"}}
        )
        assert config.queue.max_retries == 2
        assert config.queue.drain_interval_seconds == 5.0
        assert config.detection.alert_min_severity == "medium"

    def test_invalid_severity(self):
        with pytest.raises(ValueError):
            AuditFlowConfig.from_dict({"detection": {"alert_min_severity": "severe"}})

    def test_save_and_load(self, tmp_path):
        path = config_path(tmp_path)
        config = AuditFlowConfig()
        config.statistics.persist_snapshots = True
        config.detection.privileged_roles = ["super-admin", "auditor"]
        config.save(path)

        data = yaml.safe_load(path.read_text())
        assert data["auditflow"]["statistics"]["persist_snapshots"] is True

        loaded = AuditFlowConfig.from_file(path)
        assert loaded.statistics.persist_snapshots is True
        assert loaded.detection.privileged_roles == ["super-admin", "auditor"]

    def test_missing_file_gives_defaults(self, tmp_path):
        assert AuditFlowConfig.from_file(tmp_path / "none.yaml") == AuditFlowConfig()

    def test_env_overrides(self, monkeypatch):
        monkeypatch.setenv("AUDITFLOW_DRAIN_INTERVAL", "0.5")
        monkeypatch.setenv("AUDITFLOW_PROCESSING_TIMEOUT", "3")
        monkeypatch.setenv("AUDITFLOW_MAX_RETRIES", "1")
        monkeypatch.setenv("AUDITFLOW_ALERT_MIN_SEVERITY", "MEDIUM")

        config = AuditFlowConfig.from_env()
        assert config.queue.drain_interval_seconds == 0.5
        assert config.queue.processing_timeout_seconds == 3.0
        assert config.queue.max_retries == 1
        assert config.detection.alert_min_severity == "medium"

    def test_env_invalid_severity(self, monkeypatch):
        monkeypatch.setenv("AUDITFLOW_ALERT_MIN_SEVERITY", "panic")
        with pytest.raises(ValueError):
            AuditFlowConfig.from_env()

    def test_load_config(self, tmp_path, monkeypatch):
        monkeypatch.delenv("AUDITFLOW_MAX_RETRIES", raising=False)
        AuditFlowConfig.from_dict({"queue": {"max_retries": 9}}).save(config_path(tmp_path))
        assert load_config(tmp_path).queue.max_retries == 9
