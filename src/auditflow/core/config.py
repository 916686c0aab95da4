"""
auditflow configuration management.
"""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

SEVERITY_NAMES = ("low", "medium", "high", "critical")


@dataclass
class QueueConfig:
    """Ingestion queue and processor configuration."""

    drain_interval_seconds: float = 5.0
    processing_timeout_seconds: float = 30.0

    # Retry policy for failed events
    max_retries: int = 5
    backoff_base_seconds: float = 1.0
    backoff_max_seconds: float = 300.0


@dataclass
class DetectionConfig:
    """Threat detector configuration."""

    failed_login_threshold: int = 5
    failed_login_window_minutes: int = 15
    unusual_access_threshold: int = 50  # Strictly more than this triggers
    unusual_access_window_minutes: int = 60
    privileged_roles: list[str] = field(default_factory=lambda: ["super-admin"])

    # Findings below this severity stay on the event's security context only
    alert_min_severity: str = "high"


@dataclass
class StatisticsConfig:
    """Statistics aggregator configuration."""

    retention_days: int = 400  # 0 keeps buckets forever
    persist_snapshots: bool = False


@dataclass
class AlertConfig:
    """Alert manager configuration."""

    recent_limit: int = 1000


@dataclass
class AuditFlowConfig:
    """
    Complete auditflow configuration.

    Loaded from .auditflow/config.yaml or environment variables.
    """

    version: str = "1"

    queue: QueueConfig = field(default_factory=QueueConfig)
    detection: DetectionConfig = field(default_factory=DetectionConfig)
    statistics: StatisticsConfig = field(default_factory=StatisticsConfig)
    alerts: AlertConfig = field(default_factory=AlertConfig)

    def __post_init__(self) -> None:
        if self.detection.alert_min_severity not in SEVERITY_NAMES:
            raise ValueError(
                f"Invalid alert_min_severity: {self.detection.alert_min_severity}"
            )

    @classmethod
    def from_file(cls, path: Path) -> "AuditFlowConfig":
        """Load configuration from YAML file."""
        if not path.exists():
            return cls()

        with open(path) as f:
            data = yaml.safe_load(f) or {}

        return cls.from_dict(data.get("auditflow", data))

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "AuditFlowConfig":
        """Create config from dictionary."""
        queue = QueueConfig()
        detection = DetectionConfig()
        statistics = StatisticsConfig()
        alerts = AlertConfig()

        if "queue" in data:
            q = data["queue"]
            queue = QueueConfig(
                drain_interval_seconds=float(q.get("drain_interval_seconds", 5.0)),
                processing_timeout_seconds=float(q.get("processing_timeout_seconds", 30.0)),
                max_retries=int(q.get("max_retries", 5)),
                backoff_base_seconds=float(q.get("backoff_base_seconds", 1.0)),
                backoff_max_seconds=float(q.get("backoff_max_seconds", 300.0)),
            )

        if "detection" in data:
            d = data["detection"]
            detection = DetectionConfig(
                failed_login_threshold=int(d.get("failed_login_threshold", 5)),
                failed_login_window_minutes=int(d.get("failed_login_window_minutes", 15)),
                unusual_access_threshold=int(d.get("unusual_access_threshold", 50)),
                unusual_access_window_minutes=int(d.get("unusual_access_window_minutes", 60)),
                privileged_roles=list(d.get("privileged_roles", ["super-admin"])),
                alert_min_severity=d.get("alert_min_severity", "high"),
            )

        if "statistics" in data:
            s = data["statistics"]
            statistics = StatisticsConfig(
                retention_days=int(s.get("retention_days", 400)),
                persist_snapshots=bool(s.get("persist_snapshots", False)),
            )

        if "alerts" in data:
            alerts = AlertConfig(recent_limit=int(data["alerts"].get("recent_limit", 1000)))

        return cls(
            version=str(data.get("version", "1")),
            queue=queue,
            detection=detection,
            statistics=statistics,
            alerts=alerts,
        )

    @classmethod
    def from_env(cls, base: "AuditFlowConfig | None" = None) -> "AuditFlowConfig":
        """Apply AUDITFLOW_* environment overrides on top of a config."""
        config = base or cls()

        if "AUDITFLOW_DRAIN_INTERVAL" in os.environ:
            config.queue.drain_interval_seconds = float(os.environ["AUDITFLOW_DRAIN_INTERVAL"])
        if "AUDITFLOW_PROCESSING_TIMEOUT" in os.environ:
            config.queue.processing_timeout_seconds = float(
                os.environ["AUDITFLOW_PROCESSING_TIMEOUT"]
            )
        if "AUDITFLOW_MAX_RETRIES" in os.environ:
            config.queue.max_retries = int(os.environ["AUDITFLOW_MAX_RETRIES"])
        if "AUDITFLOW_ALERT_MIN_SEVERITY" in os.environ:
            severity = os.environ["AUDITFLOW_ALERT_MIN_SEVERITY"].lower()
            if severity not in SEVERITY_NAMES:
                raise ValueError(f"Invalid AUDITFLOW_ALERT_MIN_SEVERITY: {severity}")
            config.detection.alert_min_severity = severity

        return config

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "auditflow": {
                "version": self.version,
                "queue": {
                    "drain_interval_seconds": self.queue.drain_interval_seconds,
                    "processing_timeout_seconds": self.queue.processing_timeout_seconds,
                    "max_retries": self.queue.max_retries,
                    "backoff_base_seconds": self.queue.backoff_base_seconds,
                    "backoff_max_seconds": self.queue.backoff_max_seconds,
                },
                "detection": {
                    "failed_login_threshold": self.detection.failed_login_threshold,
                    "failed_login_window_minutes": self.detection.failed_login_window_minutes,
                    "unusual_access_threshold": self.detection.unusual_access_threshold,
                    "unusual_access_window_minutes": self.detection.unusual_access_window_minutes,
                    "privileged_roles": list(self.detection.privileged_roles),
                    "alert_min_severity": self.detection.alert_min_severity,
                },
                "statistics": {
                    "retention_days": self.statistics.retention_days,
                    "persist_snapshots": self.statistics.persist_snapshots,
                },
                "alerts": {
                    "recent_limit": self.alerts.recent_limit,
                },
            }
        }

    def save(self, path: Path) -> None:
        """Save configuration to YAML file."""
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w") as f:
            yaml.dump(self.to_dict(), f, default_flow_style=False, sort_keys=False)


def config_path(project_path: Path | None = None) -> Path:
    """Location of the project config file."""
    return (project_path or Path.cwd()) / ".auditflow" / "config.yaml"


def load_config(project_path: Path | None = None) -> AuditFlowConfig:
    """
    Load auditflow configuration.

    Reads .auditflow/config.yaml in the project directory, falls back to
    defaults if not found, then applies environment overrides.
    """
    return AuditFlowConfig.from_env(AuditFlowConfig.from_file(config_path(project_path)))
