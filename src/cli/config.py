"""CLI configuration.

Settings are resolved in order: built-in defaults, YAML config file,
environment variables, then command-line options (applied by the CLI).
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any, Optional

import yaml

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = Path.home() / ".reaper" / "config.yaml"
DEFAULT_STORAGE_PATH = Path.home() / ".reaper"


@dataclass
class Config:
    """Reaper configuration.

    Attributes:
        aws_profile: AWS profile name (None uses the default credential chain)
        region: Default AWS region
        log_level: Log level name
        storage_path: Directory holding reports/ and audit-logs/
        max_attempts: Delete attempts per resource before it is marked failed
        base_delay: Initial backoff delay in seconds
        max_delay: Backoff cap in seconds
        max_workers: Worker pool size inside one resource-type group
        poll_interval: Seconds between existence checks for slow-deleting types
        poll_attempts: Existence checks before a resource is declared orphaned
    """

    aws_profile: Optional[str] = None
    region: str = "us-east-1"
    log_level: str = "INFO"
    storage_path: Optional[str] = None
    max_attempts: int = 5
    base_delay: float = 1.0
    max_delay: float = 30.0
    max_workers: int = 4
    poll_interval: float = 5.0
    poll_attempts: int = 12

    @classmethod
    def load(cls, path: Optional[str] = None) -> "Config":
        """Load configuration from file and environment.

        Args:
            path: Config file path (default: $REAPER_CONFIG or ~/.reaper/config.yaml)

        Returns:
            Resolved Config

        Raises:
            ValueError: If the config file is not a YAML mapping
        """
        config = cls()

        config_path = Path(path or os.environ.get("REAPER_CONFIG") or DEFAULT_CONFIG_PATH).expanduser()
        if config_path.is_file():
            with open(config_path, "r", encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}
            if not isinstance(data, dict):
                raise ValueError(f"Config file {config_path} must contain a mapping")
            config._apply(data, source=str(config_path))

        config._apply_env()
        return config

    def _apply(self, data: dict[str, Any], source: str) -> None:
        known = {f.name: f for f in fields(self)}
        for key, value in data.items():
            if key not in known:
                logger.warning(f"Ignoring unknown config key '{key}' in {source}")
                continue
            if value is None:
                setattr(self, key, None)
                continue
            current = getattr(self, key)
            if isinstance(current, bool) or current is None:
                setattr(self, key, value)
            elif isinstance(current, int):
                setattr(self, key, int(value))
            elif isinstance(current, float):
                setattr(self, key, float(value))
            else:
                setattr(self, key, str(value))

    def _apply_env(self) -> None:
        if os.environ.get("AWS_PROFILE"):
            self.aws_profile = os.environ["AWS_PROFILE"]
        if os.environ.get("AWS_DEFAULT_REGION"):
            self.region = os.environ["AWS_DEFAULT_REGION"]
        if os.environ.get("REAPER_STORAGE_PATH"):
            self.storage_path = os.environ["REAPER_STORAGE_PATH"]
        if os.environ.get("REAPER_LOG_LEVEL"):
            self.log_level = os.environ["REAPER_LOG_LEVEL"]

    @property
    def storage_dir(self) -> Path:
        """Resolved storage directory."""
        return Path(self.storage_path).expanduser() if self.storage_path else DEFAULT_STORAGE_PATH

    @property
    def reports_dir(self) -> Path:
        return self.storage_dir / "reports"

    @property
    def audit_dir(self) -> Path:
        return self.storage_dir / "audit-logs"
