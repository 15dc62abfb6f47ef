"""Core."""

from .checksum import compute_remote_port, posix_cksum
from .config import (
    ClientConfig,
    SessionSettings,
    clear_settings,
    get_settings,
    load_config,
    validate_port,
    validate_subdomain,
)
from .exceptions import (
    ConfigError,
    InvalidPortError,
    InvalidSubdomainError,
    PgrokError,
    TunnelProcessError,
    format_error_for_user,
)
from .lines import LineSplitter

__all__ = [
    # Checksum
    "posix_cksum",
    "compute_remote_port",
    # Config
    "ClientConfig",
    "SessionSettings",
    "get_settings",
    "clear_settings",
    "load_config",
    "validate_port",
    "validate_subdomain",
    # Errors
    "PgrokError",
    "ConfigError",
    "InvalidPortError",
    "InvalidSubdomainError",
    "TunnelProcessError",
    "format_error_for_user",
    # Streams
    "LineSplitter",
]
