"""pgrok CLI - expose a local port at https://<subdomain>.<domain>."""

from __future__ import annotations

import asyncio
import signal
import sys

import click
import structlog
from rich.console import Console

from pgrok import __version__
from pgrok.core.config import (
    ClientConfig,
    get_settings,
    load_config,
    validate_port,
    validate_subdomain,
)
from pgrok.core.exceptions import PgrokError, format_error_for_user
from pgrok.observability.logging import LogBuffer, configure_logging

console = Console()
err_console = Console(stderr=True)

logger = structlog.get_logger()

_shutdown_requested = False


def _print_error(message: str) -> None:
    err_console.print(
        f"Error: {message}", style="red", markup=False, highlight=False, soft_wrap=True
    )


def _fail(message: str) -> None:
    _print_error(message)
    sys.exit(1)


@click.command(context_settings={"help_option_names": ["-h", "--help"]})
@click.argument("subdomain", required=False)
@click.argument("local_port", required=False)
@click.option(
    "--config",
    "-c",
    "config_file",
    type=click.Path(dir_okay=False),
    default=None,
    help="Config file (default: $PGROK_CONFIG or ~/.pgrok/config)",
)
@click.option(
    "--print-logs",
    is_flag=True,
    default=False,
    help="Dump buffered logs to a temp file and stdout on exit",
)
@click.option("--debug", is_flag=True, default=False, help="Debug logging (implies --print-logs)")
@click.version_option(__version__, "--version", "-v", message="pgrok v%(version)s")
@click.pass_context
def main(
    ctx: click.Context,
    subdomain: str | None,
    local_port: str | None,
    config_file: str | None,
    print_logs: bool,
    debug: bool,
) -> None:
    """Expose local ports to the internet.

    \b
    Examples:
      pgrok myapp 4000    https://myapp.yourdomain.com -> localhost:4000
      pgrok api 3000      https://api.yourdomain.com -> localhost:3000

    \b
    Configuration (~/.pgrok/config):
      PGROK_HOST=your-vps-ip-or-hostname
      PGROK_DOMAIN=yourdomain.com
      PGROK_USER=pgrok
      PGROK_SSH_KEY=~/.ssh/id_ed25519
    """
    if subdomain is None or local_port is None:
        click.echo(ctx.get_help())
        ctx.exit(1)

    try:
        subdomain = validate_subdomain(subdomain)
        port = validate_port(local_port)
        config = load_config(config_file)
    except PgrokError as e:
        _fail(e.message)

    exit_code = _run_session_with_signal_handling(
        config,
        subdomain,
        port,
        print_logs=print_logs or debug,
        log_level="debug" if debug else "info",
    )
    sys.exit(exit_code)


def _run_session_with_signal_handling(
    config: ClientConfig,
    subdomain: str,
    port: int,
    print_logs: bool,
    log_level: str,
) -> int:
    """Run the session until Ctrl+C or SIGTERM, then shut down cleanly."""
    global _shutdown_requested
    _shutdown_requested = False

    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)

    buffer = configure_logging(log_level, LogBuffer(get_settings().log_buffer_size))
    main_task = loop.create_task(run_session(config, subdomain, port))

    def signal_handler(sig: int, frame: object) -> None:
        """Handle Ctrl+C and SIGTERM."""
        global _shutdown_requested
        if _shutdown_requested:
            sys.exit(1)
        _shutdown_requested = True
        logger.info("Shutdown requested", signal=signal.Signals(sig).name)
        loop.call_soon_threadsafe(main_task.cancel)

    signal.signal(signal.SIGINT, signal_handler)
    if hasattr(signal, "SIGTERM"):
        signal.signal(signal.SIGTERM, signal_handler)

    exit_code = 0
    try:
        loop.run_until_complete(main_task)
    except asyncio.CancelledError:
        pass
    except KeyboardInterrupt:
        pass
    except Exception as e:
        _print_error(format_error_for_user(e))
        exit_code = 1
    finally:
        pending = asyncio.all_tasks(loop)
        for task in pending:
            task.cancel()
        if pending:
            loop.run_until_complete(asyncio.gather(*pending, return_exceptions=True))
        loop.close()

    if print_logs:
        dump_logs(buffer, subdomain)
    return exit_code


def dump_logs(buffer: LogBuffer, subdomain: str) -> None:
    """Write buffered log lines to a temp file and echo them to stdout."""
    for line in buffer.lines():
        click.echo(line)
    try:
        path = buffer.dump(subdomain)
    except OSError as e:
        err_console.print(f"Could not write log file: {e}", style="yellow", markup=False)
    else:
        console.print(
            f"Logs written to {path}", style="dim", markup=False, highlight=False, soft_wrap=True
        )


async def run_session(config: ClientConfig, subdomain: str, port: int) -> None:
    """Start the session and dashboard, and keep them running until cancelled."""
    from pgrok.client.session import TunnelSession
    from pgrok.dashboard import Dashboard

    session = TunnelSession(config, subdomain, port)
    dashboard = Dashboard(console)
    dashboard.attach(session)

    dashboard.start()
    try:
        await session.start()
        # A closed control channel is terminal; the dashboard keeps showing
        # the error until the user quits.
        await asyncio.Event().wait()
    finally:
        await session.stop()
        dashboard.stop()


if __name__ == "__main__":
    main()
