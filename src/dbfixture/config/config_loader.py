"""
Configuration loader for dbfixture.
"""

import copy
import logging
import os
from pathlib import Path
from typing import Any, Dict, Optional

try:
    import yaml
except ImportError:
    yaml = None


logger = logging.getLogger(__name__)


DEFAULT_CONFIG: Dict[str, Any] = {
    "backend": "sqlite",
    "output_dir": "fixtures",
    "diff": {
        "truncate_disjoint": False,
    },
    "replay": {
        "strict": True,
        "max_workers": 4,
    },
    "sqlite": {
        "base_dir": ".dbfixture/databases",
        "pragmas": {},
        "max_databases": 16,
    },
    "sqlserver": {
        "host": "localhost",
        "port": 1433,
        "database": "master",
        "username": "sa",
        "driver": "ODBC Driver 18 for SQL Server",
        "schema": "dbo",
        "isolation_level": "SNAPSHOT",
        "max_databases": 8,
    },
}


def _merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    """Recursively merge ``override`` into a copy of ``base``."""
    merged = copy.deepcopy(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _merge(merged[key], value)
        else:
            merged[key] = value
    return merged


class FixtureConfig:
    """
    Configuration for capture, diff and replay.

    Loads a YAML file layered over the built-in defaults, then applies
    environment variable overrides.
    """

    def __init__(self, config_path: Optional[Path] = None):
        """
        Initialize configuration.

        Args:
            config_path: Path to YAML config file (optional)
        """
        self.config_path = Path(config_path) if config_path else None
        loaded = self._load_config() if self.config_path else {}
        self.config = _merge(DEFAULT_CONFIG, loaded)
        self._apply_env_overrides()

    def _load_config(self) -> Dict[str, Any]:
        """Load configuration from YAML file."""
        if yaml is None:
            raise ImportError(
                "pyyaml is required for config loading. "
                "Install with: pip install pyyaml"
            )

        if not self.config_path.exists():
            raise FileNotFoundError(f"Config file not found: {self.config_path}")

        logger.info(f"Loading config from: {self.config_path}")

        with open(self.config_path, "r", encoding="utf-8") as f:
            config = yaml.safe_load(f)

        return config or {}

    def _apply_env_overrides(self) -> None:
        """Apply environment variable overrides to loaded config."""
        backend = os.environ.get("DBFIXTURE_BACKEND")
        if backend:
            self.config["backend"] = backend.lower()

        output_dir = os.environ.get("DBFIXTURE_OUTPUT_DIR")
        if output_dir:
            self.config["output_dir"] = output_dir

        sqlserver = self.config.setdefault("sqlserver", {})
        host = os.environ.get("DBFIXTURE_SQLSERVER_HOST")
        if host:
            sqlserver["host"] = host
        port = os.environ.get("DBFIXTURE_SQLSERVER_PORT")
        if port:
            sqlserver["port"] = int(port)
        password = (
            os.environ.get("DBFIXTURE_SQLSERVER_PASSWORD")
            or os.environ.get("MSSQL_SA_PASSWORD")
        )
        if password:
            sqlserver["password"] = password

    @property
    def backend(self) -> str:
        return self.config.get("backend", "sqlite")

    @property
    def output_dir(self) -> Path:
        return Path(self.config.get("output_dir", "fixtures"))

    def get_diff_config(self) -> Dict[str, Any]:
        """Get diff engine configuration."""
        return self.config.get("diff", {})

    def get_replay_config(self) -> Dict[str, Any]:
        """Get replay configuration."""
        return self.config.get("replay", {})

    def get_backend_config(self, backend: Optional[str] = None) -> Dict[str, Any]:
        """Get the section for a backend (default: the configured one)."""
        return self.config.get(backend or self.backend, {})

    def get(self, key: str, default: Any = None) -> Any:
        """Get a configuration value by dotted key."""
        keys = key.split(".")
        value = self.config

        for k in keys:
            if isinstance(value, dict):
                value = value.get(k)
            else:
                return default

        return value if value is not None else default
