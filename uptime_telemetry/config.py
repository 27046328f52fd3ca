"""
Uptime Telemetry - Configuration.

============================================================
CONFIGURABLE AGGREGATION
============================================================

All aggregation parameters are configurable:
- Status thresholds
- Uptime windows
- Time-series granularity
- Raw check retention

Configuration can be loaded from:
- Default values
- Environment variables (a local .env file is honoured)
- YAML config file

============================================================
"""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional
import logging

import yaml
from dotenv import load_dotenv

from .exceptions import ConfigurationError


logger = logging.getLogger(__name__)


# =============================================================
# STATUS THRESHOLDS
# =============================================================


@dataclass
class StatusThresholds:
    """
    Uptime thresholds for endpoint status.

    - OPERATIONAL: uptime >= operational_threshold
    - DEGRADED:    degraded_threshold <= uptime < operational_threshold
    - OUTAGE:      uptime < degraded_threshold
    """
    operational_threshold: float = 99.0
    degraded_threshold: float = 95.0

    def __post_init__(self) -> None:
        """Validate thresholds."""
        if not 0 <= self.degraded_threshold <= 100:
            raise ConfigurationError(
                "degraded_threshold must be 0-100",
                config_key="degraded_threshold",
                actual_value=str(self.degraded_threshold),
            )
        if not 0 <= self.operational_threshold <= 100:
            raise ConfigurationError(
                "operational_threshold must be 0-100",
                config_key="operational_threshold",
                actual_value=str(self.operational_threshold),
            )
        if self.degraded_threshold >= self.operational_threshold:
            raise ConfigurationError(
                "degraded_threshold must be < operational_threshold",
                config_key="degraded_threshold",
                expected_value=f"< {self.operational_threshold}",
                actual_value=str(self.degraded_threshold),
            )

    def to_dict(self) -> Dict[str, float]:
        """Convert to dictionary."""
        return {
            "operational_threshold": self.operational_threshold,
            "degraded_threshold": self.degraded_threshold,
        }


# =============================================================
# WINDOW SETTINGS
# =============================================================


@dataclass
class WindowSettings:
    """Look-back windows and retention for aggregation."""
    short_window_days: int = 30
    long_window_days: int = 90

    # Ranges up to this many hours are bucketed hourly, beyond that daily
    hourly_max_hours: int = 24

    # Raw checks older than this are dropped when the window advances
    retention_days: int = 90

    # Decimal places applied at the render boundary only
    display_precision: int = 1

    def __post_init__(self) -> None:
        """Validate windows."""
        if self.short_window_days <= 0 or self.long_window_days <= 0:
            raise ConfigurationError("uptime windows must be positive")
        if self.short_window_days > self.long_window_days:
            raise ConfigurationError(
                "short_window_days must not exceed long_window_days",
                config_key="short_window_days",
                expected_value=f"<= {self.long_window_days}",
                actual_value=str(self.short_window_days),
            )
        if self.retention_days < self.long_window_days:
            raise ConfigurationError(
                "retention_days must cover the longest uptime window",
                config_key="retention_days",
                expected_value=f">= {self.long_window_days}",
                actual_value=str(self.retention_days),
            )
        if self.hourly_max_hours <= 0:
            raise ConfigurationError("hourly_max_hours must be positive")

    def to_dict(self) -> Dict[str, int]:
        """Convert to dictionary."""
        return {
            "short_window_days": self.short_window_days,
            "long_window_days": self.long_window_days,
            "hourly_max_hours": self.hourly_max_hours,
            "retention_days": self.retention_days,
            "display_precision": self.display_precision,
        }


# =============================================================
# MAIN CONFIGURATION
# =============================================================


@dataclass
class TelemetryConfig:
    """
    Main configuration for the telemetry engine.

    Combines all sub-configurations.
    """
    thresholds: StatusThresholds = field(default_factory=StatusThresholds)
    windows: WindowSettings = field(default_factory=WindowSettings)

    # Default look-back for the dashboard series (hours)
    default_range_hours: int = 24

    # API
    api_host: str = "0.0.0.0"
    api_port: int = 8080

    @classmethod
    def from_env(cls) -> "TelemetryConfig":
        """
        Load configuration from environment variables.

        Environment variables:
        - TELEMETRY_OPERATIONAL_THRESHOLD
        - TELEMETRY_DEGRADED_THRESHOLD
        - TELEMETRY_SHORT_WINDOW_DAYS
        - TELEMETRY_LONG_WINDOW_DAYS
        - TELEMETRY_HOURLY_MAX_HOURS
        - TELEMETRY_RETENTION_DAYS
        - TELEMETRY_DEFAULT_RANGE_HOURS
        - TELEMETRY_API_HOST
        - TELEMETRY_API_PORT
        """
        load_dotenv()

        thresholds = StatusThresholds(
            operational_threshold=float(os.getenv("TELEMETRY_OPERATIONAL_THRESHOLD", "99.0")),
            degraded_threshold=float(os.getenv("TELEMETRY_DEGRADED_THRESHOLD", "95.0")),
        )
        windows = WindowSettings(
            short_window_days=int(os.getenv("TELEMETRY_SHORT_WINDOW_DAYS", "30")),
            long_window_days=int(os.getenv("TELEMETRY_LONG_WINDOW_DAYS", "90")),
            hourly_max_hours=int(os.getenv("TELEMETRY_HOURLY_MAX_HOURS", "24")),
            retention_days=int(os.getenv("TELEMETRY_RETENTION_DAYS", "90")),
        )

        return cls(
            thresholds=thresholds,
            windows=windows,
            default_range_hours=int(os.getenv("TELEMETRY_DEFAULT_RANGE_HOURS", "24")),
            api_host=os.getenv("TELEMETRY_API_HOST", "0.0.0.0"),
            api_port=int(os.getenv("TELEMETRY_API_PORT", "8080")),
        )

    @classmethod
    def from_yaml(cls, path: Path) -> "TelemetryConfig":
        """
        Load configuration from YAML file.

        Raises ConfigurationError for out-of-range values.
        """
        with open(path, "r") as f:
            data: Dict[str, Any] = yaml.safe_load(f) or {}

        config = cls()

        if "thresholds" in data:
            t = data["thresholds"]
            config.thresholds = StatusThresholds(
                operational_threshold=t.get("operational", 99.0),
                degraded_threshold=t.get("degraded", 95.0),
            )

        if "windows" in data:
            w = data["windows"]
            config.windows = WindowSettings(
                short_window_days=w.get("short_days", 30),
                long_window_days=w.get("long_days", 90),
                hourly_max_hours=w.get("hourly_max_hours", 24),
                retention_days=w.get("retention_days", 90),
                display_precision=w.get("display_precision", 1),
            )

        if "default_range_hours" in data:
            config.default_range_hours = data["default_range_hours"]
        if "api" in data:
            config.api_host = data["api"].get("host", config.api_host)
            config.api_port = data["api"].get("port", config.api_port)

        logger.info(f"Loaded telemetry config from {path}")
        return config

    def to_dict(self) -> Dict:
        """Convert to dictionary."""
        return {
            "thresholds": self.thresholds.to_dict(),
            "windows": self.windows.to_dict(),
            "default_range_hours": self.default_range_hours,
            "api_host": self.api_host,
            "api_port": self.api_port,
        }


# =============================================================
# GLOBAL CONFIG SINGLETON
# =============================================================


_default_config: Optional[TelemetryConfig] = None


def get_config() -> TelemetryConfig:
    """Get the global telemetry configuration."""
    global _default_config
    if _default_config is None:
        _default_config = TelemetryConfig.from_env()
    return _default_config


def set_config(config: Optional[TelemetryConfig]) -> None:
    """Set (or with None, reset) the global telemetry configuration."""
    global _default_config
    _default_config = config
