"""Configuration loading.

The session configuration lives in a small ``KEY=VALUE`` file (``~/.pgrok/config``
by default) written by the setup script. Runtime tunables can be overridden with
environment variables using the ``PGROK_`` prefix, e.g. ``PGROK_CONNECT_TIMEOUT=20``.
"""

from __future__ import annotations

import os
import re
from pathlib import Path

from dotenv import dotenv_values
from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from pgrok.core.exceptions import ConfigError, InvalidPortError, InvalidSubdomainError

DEFAULT_CONFIG_PATH = Path("~/.pgrok/config")
DEFAULT_USER = "pgrok"

SUBDOMAIN_PATTERN = re.compile(r"^[a-z0-9]([a-z0-9-]{0,61}[a-z0-9])?$")


class ClientConfig(BaseModel):
    """Relay connection settings, immutable for the lifetime of a session."""

    model_config = ConfigDict(frozen=True)

    host: str = Field(min_length=1, description="Relay host name or address.")
    domain: str = Field(min_length=1, description="Public base domain.")
    user: str = Field(default=DEFAULT_USER, description="SSH user on the relay host.")
    ssh_key: Path | None = Field(default=None, description="Private key passed to ssh -i.")

    @field_validator("host", "domain")
    @classmethod
    def _strip(cls, value: str) -> str:
        return value.strip()


class SessionSettings(BaseSettings):
    """Runtime tunables for the control channel, proxy and dashboard."""

    model_config = SettingsConfigDict(
        env_prefix="PGROK_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    ssh_binary: str = Field(default="ssh", description="ssh executable.")
    keepalive_interval: int = Field(
        default=30,
        description="ServerAliveInterval passed to ssh (seconds).",
    )
    keepalive_count_max: int = Field(
        default=3,
        description="ServerAliveCountMax passed to ssh.",
    )
    connect_timeout: int = Field(
        default=10,
        description="ConnectTimeout passed to ssh (seconds).",
    )
    ssh_log_level: str = Field(default="ERROR", description="LogLevel passed to ssh.")
    remote_command: str = Field(
        default="/usr/local/bin/pgrok-tunnel",
        description="Relay-side tunnel controller.",
    )
    unbuffered_env: str = Field(
        default="PYTHONUNBUFFERED",
        description="Environment flag set to 1 for the remote command.",
    )
    proxy_host: str = Field(default="127.0.0.1", description="Local proxy bind address.")
    proxy_port_offset: int = Field(
        default=10000,
        description="Preferred proxy port is the local port plus this offset.",
    )
    target_host: str = Field(default="localhost", description="Host of the exposed service.")
    upstream_connect_timeout: float = Field(
        default=5.0,
        description="Connect timeout towards the exposed service (seconds).",
    )
    upstream_read_timeout: float | None = Field(
        default=None,
        description="Read timeout towards the exposed service. None for indefinite.",
    )
    stats_interval: float = Field(
        default=1.0,
        description="Interval between periodic statistics snapshots (seconds).",
    )
    request_log_size: int = Field(
        default=500,
        description="Number of HTTP requests retained for display.",
    )
    log_buffer_size: int = Field(
        default=2000,
        description="Number of diagnostic log lines retained in memory.",
    )
    terminate_timeout: float = Field(
        default=5.0,
        description="Grace period before the control channel is killed (seconds).",
    )
    metrics_port: int | None = Field(
        default=None,
        description="Expose Prometheus metrics on 127.0.0.1 at this port.",
    )


def default_config_path() -> Path:
    """Config file location, honouring ``PGROK_CONFIG``."""
    override = os.environ.get("PGROK_CONFIG")
    return Path(override).expanduser() if override else DEFAULT_CONFIG_PATH.expanduser()


def _resolve_key_path(raw: str | None) -> Path | None:
    if not raw:
        return None
    path = Path(raw).expanduser()
    return path if path.is_file() else None


def load_config(path: str | Path | None = None) -> ClientConfig:
    """Load and validate the client configuration file.

    Args:
        path: Config file to read. Defaults to :func:`default_config_path`.

    Returns:
        Validated client configuration.

    Raises:
        ConfigError: If the file is missing or a required key is not set.
    """
    config_path = Path(path).expanduser() if path else default_config_path()
    if not config_path.is_file():
        raise ConfigError(f"Config not found at {config_path}. Run setup.sh client first.")

    try:
        values = dotenv_values(config_path, encoding="utf-8", interpolate=False)
    except (OSError, UnicodeDecodeError) as e:
        raise ConfigError(f"Cannot read config {config_path}: {e}") from e

    host = (values.get("PGROK_HOST") or "").strip()
    if not host:
        raise ConfigError(f"PGROK_HOST not set in {config_path}")
    domain = (values.get("PGROK_DOMAIN") or "").strip()
    if not domain:
        raise ConfigError(f"PGROK_DOMAIN not set in {config_path}")

    return ClientConfig(
        host=host,
        domain=domain,
        user=(values.get("PGROK_USER") or "").strip() or DEFAULT_USER,
        ssh_key=_resolve_key_path((values.get("PGROK_SSH_KEY") or "").strip()),
    )


def validate_subdomain(subdomain: str) -> str:
    """Normalise and validate a subdomain label."""
    normalized = subdomain.lower()
    if not SUBDOMAIN_PATTERN.match(normalized):
        raise InvalidSubdomainError(normalized)
    return normalized


def validate_port(port: str | int) -> int:
    """Parse a TCP port in 1-65535."""
    try:
        value = int(str(port).strip(), 10)
    except ValueError:
        raise InvalidPortError(str(port)) from None
    if not 1 <= value <= 65535:
        raise InvalidPortError(str(port))
    return value


_settings: SessionSettings | None = None


def get_settings() -> SessionSettings:
    """Get the process-wide settings instance.

    The instance reads environment variables once and is cached. Call
    :func:`clear_settings` to force a reload (useful in tests).
    """
    global _settings
    if _settings is None:
        _settings = SessionSettings()
    return _settings


def clear_settings() -> None:
    """Drop the cached settings."""
    global _settings
    _settings = None
