"""
pingsched Configuration — loads and merges config from multiple sources.

Precedence (highest to lowest):
1. Explicit overrides (passed in code)
2. Environment variables (PINGSCHED_*, plus DATABASE_URL / ALLOWED_ORIGINS)
3. Project config (./pingsched.toml)
4. User config (~/.pingsched/config.toml)
5. Defaults (hardcoded)

Environment variable mapping:
    DATABASE_URL / PINGSCHED_DATABASE_URL → database.url
    PINGSCHED_QUEUE_CONCURRENCY → queue.concurrency
    PINGSCHED_QUEUE_ATTEMPTS → queue.attempts
    PINGSCHED_HTTP_TIMEOUT → http.timeout
    PORT / PINGSCHED_SERVER_PORT → server.port
    ALLOWED_ORIGINS → server.allowed_origins
"""

from __future__ import annotations

import os
import re
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field

from pingsched.core.errors import ConfigError

# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Config Sub-Models
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


class DatabaseConfig(BaseModel):
    """Job store location."""

    url: str = "sqlite:///~/.pingsched/jobs.db"


class QueueConfig(BaseModel):
    """Execution queue and worker behaviour."""

    concurrency: int = Field(default=5, ge=1)
    attempts: int = Field(default=3, ge=1)
    backoff_seconds: float = Field(default=1.0, ge=0)
    max_failed: int = Field(default=500, ge=0)  # failed entries kept for inspection


class HttpConfig(BaseModel):
    """Outbound HTTP action settings."""

    timeout: float = 30.0
    user_agent: str = "PingPay-Scheduler/1.0"


class ServerConfig(BaseModel):
    """HTTP API server settings."""

    host: str = "0.0.0.0"
    port: int = 3000
    allowed_origins: str = "*"  # comma-separated list, or "*"

    @property
    def cors_origins(self) -> list[str]:
        origins = [o.strip() for o in self.allowed_origins.split(",") if o.strip()]
        return origins or ["*"]


class LoggingConfig(BaseModel):
    """Log output settings."""

    dir: str = "~/.pingsched/logs"
    level: str = "INFO"
    log_events: bool = True


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Main Config
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


class PingschedConfig(BaseModel):
    """Root configuration for pingsched."""

    database: DatabaseConfig = Field(default_factory=DatabaseConfig)
    queue: QueueConfig = Field(default_factory=QueueConfig)
    http: HttpConfig = Field(default_factory=HttpConfig)
    server: ServerConfig = Field(default_factory=ServerConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @staticmethod
    def load(
        overrides: dict[str, Any] | None = None,
        project_path: Path | None = None,
        user_path: Path | None = None,
    ) -> PingschedConfig:
        """
        Load configuration from all sources and merge.

        Precedence: overrides > env vars > project toml > user toml > defaults
        """
        merged: dict[str, Any] = {}

        # Layer 1: User config (~/.pingsched/config.toml)
        user_config_path = user_path or get_home() / "config.toml"
        if user_config_path.exists():
            _deep_merge(merged, _load_toml(user_config_path))

        # Layer 2: Project config (./pingsched.toml)
        project_config_path = project_path or Path.cwd() / "pingsched.toml"
        if project_config_path.exists():
            _deep_merge(merged, _load_toml(project_config_path))

        # Layer 3: Environment variables
        _deep_merge(merged, _load_from_env())

        # Layer 4: Explicit overrides
        if overrides:
            _deep_merge(merged, overrides)

        _substitute_env_vars(merged)

        try:
            return PingschedConfig(**merged)
        except Exception as e:
            raise ConfigError(f"Invalid configuration: {e}") from e

    def get_log_dir(self) -> Path:
        return Path(self.logging.dir).expanduser()


def get_home() -> Path:
    """The pingsched home directory (~/.pingsched)."""
    return Path.home() / ".pingsched"


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Internal Helpers
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


def _load_toml(path: Path) -> dict[str, Any]:
    """Load a TOML file."""
    try:
        import tomllib
    except ImportError:
        import tomli as tomllib  # type: ignore[no-redef]

    try:
        with open(path, "rb") as f:
            return tomllib.load(f)
    except Exception as e:
        raise ConfigError(f"Failed to load config from {path}: {e}") from e


def _load_from_env() -> dict[str, Any]:
    """Load configuration from environment variables."""
    result: dict[str, Any] = {}

    # Later entries win, so the PINGSCHED_* names override the bare ones.
    env_mapping = [
        ("DATABASE_URL", ("database", "url")),
        ("PORT", ("server", "port")),
        ("ALLOWED_ORIGINS", ("server", "allowed_origins")),
        ("PINGSCHED_DATABASE_URL", ("database", "url")),
        ("PINGSCHED_QUEUE_CONCURRENCY", ("queue", "concurrency")),
        ("PINGSCHED_QUEUE_ATTEMPTS", ("queue", "attempts")),
        ("PINGSCHED_QUEUE_BACKOFF_SECONDS", ("queue", "backoff_seconds")),
        ("PINGSCHED_QUEUE_MAX_FAILED", ("queue", "max_failed")),
        ("PINGSCHED_HTTP_TIMEOUT", ("http", "timeout")),
        ("PINGSCHED_HTTP_USER_AGENT", ("http", "user_agent")),
        ("PINGSCHED_SERVER_HOST", ("server", "host")),
        ("PINGSCHED_SERVER_PORT", ("server", "port")),
        ("PINGSCHED_LOG_DIR", ("logging", "dir")),
        ("PINGSCHED_LOG_LEVEL", ("logging", "level")),
    ]

    string_keys = {("database", "url"), ("server", "allowed_origins"),
                   ("http", "user_agent"), ("logging", "dir"), ("logging", "level")}

    for env_var, (section, key) in env_mapping:
        value = os.environ.get(env_var)
        if value is None:
            continue
        result.setdefault(section, {})
        if (section, key) in string_keys:
            result[section][key] = value
        else:
            result[section][key] = _convert_value(value)

    return result


def _convert_value(value: str) -> Any:
    """Convert string value to appropriate type."""
    if value.lower() in ("true", "yes"):
        return True
    if value.lower() in ("false", "no"):
        return False
    try:
        return int(value)
    except ValueError:
        pass
    try:
        return float(value)
    except ValueError:
        pass
    return value


def _deep_merge(base: dict, override: dict) -> None:
    """Deep merge override into base (mutates base)."""
    for key, value in override.items():
        if key in base and isinstance(base[key], dict) and isinstance(value, dict):
            _deep_merge(base[key], value)
        else:
            base[key] = value


def _substitute_env_vars(data: dict) -> None:
    """Recursively substitute ${ENV_VAR} patterns in string values."""
    pattern = re.compile(r"\$\{([^}]+)\}")

    for key, value in data.items():
        if isinstance(value, dict):
            _substitute_env_vars(value)
        elif isinstance(value, str):
            for var_name in pattern.findall(value):
                value = value.replace(f"${{{var_name}}}", os.environ.get(var_name, ""))
            data[key] = value
