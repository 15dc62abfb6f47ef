"""Error types surfaced to the user.

Every fatal error carries a stable ``code`` and a one-line ``message`` that the
CLI prints verbatim before exiting with a non-zero status.
"""

from __future__ import annotations


class PgrokError(Exception):
    """Base class for all pgrok errors."""

    code = "PGROK_ERROR"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ConfigError(PgrokError):
    """Configuration file is missing, unreadable or incomplete."""

    code = "CONFIG_ERROR"


class InvalidSubdomainError(PgrokError):
    """Subdomain does not match the allowed DNS label format."""

    code = "INVALID_SUBDOMAIN"

    def __init__(self, subdomain: str) -> None:
        super().__init__(
            f"Invalid subdomain '{subdomain}'. "
            "Must be lowercase alphanumeric and hyphens, 1-63 characters."
        )
        self.subdomain = subdomain


class InvalidPortError(PgrokError):
    """Local port is not an integer in 1-65535."""

    code = "INVALID_PORT"

    def __init__(self, port: str) -> None:
        super().__init__(f"Invalid port '{port}'. Must be 1-65535.")
        self.port = port


class TunnelProcessError(PgrokError):
    """The control-channel process could not be started."""

    code = "TUNNEL_PROCESS_ERROR"


def format_error_for_user(error: BaseException) -> str:
    """Render an arbitrary exception as a single human-readable line."""
    if isinstance(error, PgrokError):
        return error.message
    detail = str(error).strip().splitlines()
    if detail:
        return f"{type(error).__name__}: {detail[0]}"
    return type(error).__name__
