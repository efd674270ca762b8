# taskboard: configuration
# Override via config.yaml, environment variables or CLI args.

import os
import logging
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Optional

import yaml

logger = logging.getLogger(__name__)

CONFIG_PATH = Path("config.yaml")
BACKENDS = ("local", "remote")

# Environment variable → config field
ENV_OVERRIDES = {
    "TASKBOARD_BACKEND": "backend",
    "TASKBOARD_DB": "db_path",
    "TASKBOARD_REMOTE_URL": "remote_url",
    "TASKBOARD_API_SECRET": "api_key",
}


class ConfigError(Exception):
    """Raised when configuration is invalid or incomplete."""
    pass


@dataclass
class BoardConfig:
    """Runtime configuration for one board session."""

    # Persistence variant: "local" snapshot or "remote" row service
    backend: str = "local"

    # Local snapshot store
    db_path: str = "~/.local/share/taskboard/board.db"
    storage_key: str = "kanban-data"

    # Remote row service
    remote_url: Optional[str] = None
    api_key: str = ""
    table: str = "tasks"
    schema: str = "public"
    request_timeout: float = 10.0

    def resolve(self) -> "BoardConfig":
        """Expand ~ in paths and check the backend name."""
        self.backend = str(self.backend).strip().lower()
        if self.backend not in BACKENDS:
            raise ConfigError(
                f"Unknown backend '{self.backend}'. Available: {', '.join(BACKENDS)}"
            )
        self.db_path = str(Path(self.db_path).expanduser())
        try:
            self.request_timeout = float(self.request_timeout)
        except (TypeError, ValueError):
            raise ConfigError(f"request_timeout must be a number, got: {self.request_timeout!r}")
        return self

    @classmethod
    def load(cls, path: Optional[str] = None) -> "BoardConfig":
        """Load config from YAML, apply environment overrides, fall back to defaults."""
        cfg_path = Path(path) if path else CONFIG_PATH
        known = {f.name for f in fields(cls)}
        data = {}
        if cfg_path.exists():
            try:
                with open(cfg_path, "r") as f:
                    data = yaml.safe_load(f) or {}
                if not isinstance(data, dict):
                    raise ValueError("top level must be a mapping")
            except Exception as e:
                logger.warning(f"Ignoring unreadable config {cfg_path}: {e}")
                data = {}
        elif path:
            logger.warning(f"Config file {cfg_path} not found, using defaults")

        values = {k: v for k, v in data.items() if k in known}
        for env_name, field_name in ENV_OVERRIDES.items():
            env = os.environ.get(env_name)
            if env:
                values[field_name] = env

        return cls(**values).resolve()
