"""Command-line entry point: serve a stdio MCP server over HTTP.

Spawns the MCP server binary as a child process talking line-delimited
JSON-RPC on stdin/stdout, then serves ``POST /mcp`` and ``GET /health`` with
waitress until interrupted.  The child is terminated on every exit path.

Every option can also be set through an ``MCP_BRIDGE_*`` environment
variable (shown in ``--help``).

Usage::

    mcp-bridge --port 3000 --host 0.0.0.0
    mcp-bridge --mcp-binary ./target/release/mcp-server-wazuh --exchange-timeout 30
    mcp-bridge --mcp-binary python3 --mcp-arg server.py --log-format json

"""

from __future__ import annotations

import logging
import os
import signal
import sys
from enum import StrEnum
from types import FrameType
from typing import Annotated, NoReturn

import typer
import waitress

from mcp_bridge.bridge import Bridge
from mcp_bridge.errors import SpawnError, StartupError
from mcp_bridge.http import HEALTH_PATH, MCP_PATH, make_wsgi_app
from mcp_bridge.logging_utils import BridgeJsonFormatter
from mcp_bridge.process import StderrMode

DEFAULT_PORT = 3000
DEFAULT_HOST = "0.0.0.0"
DEFAULT_MCP_BINARY = "./target/release/mcp-server-wazuh"
DEFAULT_THREADS = 4

_logger = logging.getLogger("mcp_bridge.cli")

# ---------------------------------------------------------------------------
# Known loggers registry
# ---------------------------------------------------------------------------

_KNOWN_LOGGERS: tuple[tuple[str, str], ...] = (
    ("mcp_bridge", "Root logger for all bridge output"),
    ("mcp_bridge.cli", "Startup and shutdown"),
    ("mcp_bridge.bridge", "Child lifecycle, failures, and timeout restarts"),
    ("mcp_bridge.process", "Child spawn and termination"),
    ("mcp_bridge.gate", "Request gate shutdown"),
    ("mcp_bridge.http", "Falcon WSGI app"),
    ("mcp_bridge.access", "One structured record per HTTP request"),
    ("mcp_bridge.child.stderr", "Child stderr (with --stderr pipe)"),
    ("mcp_bridge.wire.request", "Lines written to the child (DEBUG)"),
    ("mcp_bridge.wire.response", "Lines read from the child (DEBUG)"),
    ("mcp_bridge.wire.transport", "Pipe-level events such as EOF (DEBUG)"),
    ("waitress", "HTTP server internals"),
)

_KNOWN_LOGGER_NAMES: frozenset[str] = frozenset(name for name, _ in _KNOWN_LOGGERS)


class LogFormat(StrEnum):
    """Log output format."""

    text = "text"
    json = "json"


class LogLevel(StrEnum):
    """Log level for the selected loggers."""

    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"


app = typer.Typer(
    name="mcp-bridge",
    help="HTTP wrapper for a stdio MCP server.",
    add_completion=False,
)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _configure_logging(level: LogLevel, fmt: LogFormat, targets: list[str] | None) -> logging.Handler:
    """Attach a stderr handler to the target loggers at the requested level."""
    handler = logging.StreamHandler(sys.stderr)
    if fmt == LogFormat.json:
        handler.setFormatter(BridgeJsonFormatter(static_fields={"bridge_pid": os.getpid()}))
    else:
        handler.setFormatter(logging.Formatter("%(asctime)s %(name)-26s %(levelname)-7s %(message)s"))

    numeric_level = logging.getLevelNamesMapping()[level.value]
    for name in targets or ["mcp_bridge"]:
        if name not in _KNOWN_LOGGER_NAMES and not name.startswith("mcp_bridge."):
            sys.stderr.write(f"Warning: unknown logger '{name}'\n")
            sys.stderr.flush()
        logger = logging.getLogger(name)
        logger.setLevel(numeric_level)
        logger.addHandler(handler)
    return handler


def _raise_system_exit(signum: int, frame: FrameType | None) -> NoReturn:
    """Turn SIGTERM into ``SystemExit`` so ``finally`` blocks run."""
    raise SystemExit(128 + signum)


# ---------------------------------------------------------------------------
# serve command
# ---------------------------------------------------------------------------


@app.command()
def serve(
    port: Annotated[
        int, typer.Option("--port", "-p", envvar="MCP_BRIDGE_PORT", min=0, max=65535, help="Port to listen on")
    ] = DEFAULT_PORT,
    host: Annotated[str, typer.Option("--host", envvar="MCP_BRIDGE_HOST", help="Host address to bind to")] = DEFAULT_HOST,
    mcp_binary: Annotated[
        str, typer.Option("--mcp-binary", envvar="MCP_BRIDGE_MCP_BINARY", help="Path to the MCP server binary")
    ] = DEFAULT_MCP_BINARY,
    mcp_args: Annotated[
        list[str] | None,
        typer.Option("--mcp-arg", help="Extra argument passed to the MCP server (repeatable)"),
    ] = None,
    exchange_timeout: Annotated[
        float | None,
        typer.Option(
            "--exchange-timeout",
            envvar="MCP_BRIDGE_EXCHANGE_TIMEOUT",
            help="Seconds to wait for each MCP response; unset waits forever",
        ),
    ] = None,
    restart_on_timeout: Annotated[
        bool,
        typer.Option(
            "--restart-on-timeout/--no-restart-on-timeout",
            envvar="MCP_BRIDGE_RESTART_ON_TIMEOUT",
            help="Replace the MCP server after a timed-out exchange",
        ),
    ] = True,
    stderr: Annotated[
        StderrMode, typer.Option("--stderr", envvar="MCP_BRIDGE_STDERR", help="Handling of the MCP server's stderr")
    ] = StderrMode.INHERIT,
    threads: Annotated[
        int, typer.Option("--threads", envvar="MCP_BRIDGE_THREADS", min=1, help="HTTP worker threads")
    ] = DEFAULT_THREADS,
    cors_origins: Annotated[
        list[str] | None,
        typer.Option("--cors-origin", help="Allowed CORS origin (repeatable, default: any)"),
    ] = None,
    log_level: Annotated[
        LogLevel, typer.Option("--log-level", envvar="MCP_BRIDGE_LOG_LEVEL", help="Log level")
    ] = LogLevel.INFO,
    log_format: Annotated[
        LogFormat, typer.Option("--log-format", envvar="MCP_BRIDGE_LOG_FORMAT", help="Log output format")
    ] = LogFormat.text,
    log_loggers: Annotated[
        list[str] | None,
        typer.Option("--log-logger", help="Logger to configure (repeatable, default: mcp_bridge)"),
    ] = None,
    debug: Annotated[bool, typer.Option("--debug", help="Shorthand for --log-level DEBUG")] = False,
) -> None:
    """Spawn the MCP server and expose it over HTTP."""
    if exchange_timeout is not None and exchange_timeout <= 0:
        raise typer.BadParameter("must be positive", param_hint="--exchange-timeout")
    handler = _configure_logging(LogLevel.DEBUG if debug else log_level, log_format, log_loggers)

    cmd = [mcp_binary, *(mcp_args or [])]
    _logger.info("Starting MCP HTTP bridge")
    _logger.info("Binding to %s:%d", host, port)
    try:
        bridge = Bridge.start(
            cmd,
            exchange_timeout=exchange_timeout,
            restart_on_timeout=restart_on_timeout,
            stderr=stderr,
        )
    except StartupError as exc:
        typer.echo(f"Error: {exc}", err=True)
        if isinstance(exc, SpawnError):
            typer.echo("Make sure the MCP server binary is built and executable.", err=True)
        raise typer.Exit(1) from None

    previous = signal.signal(signal.SIGTERM, _raise_system_exit)
    try:
        wsgi_app = make_wsgi_app(bridge, cors_origins=cors_origins or "*")
        _logger.info("HTTP server listening on http://%s:%d", host, port)
        _logger.info("MCP endpoint: POST http://%s:%d%s", host, port, MCP_PATH)
        _logger.info("Health check: GET http://%s:%d%s", host, port, HEALTH_PATH)
        waitress.serve(wsgi_app, host=host, port=port, threads=threads, _quiet=True)
    except OSError as exc:
        typer.echo(f"Error: cannot serve on {host}:{port}: {exc}", err=True)
        raise typer.Exit(1) from None
    finally:
        if previous is not None:
            signal.signal(signal.SIGTERM, previous)
        bridge.close()
        _logger.info("MCP HTTP bridge stopped")
        for name in log_loggers or ["mcp_bridge"]:
            logging.getLogger(name).removeHandler(handler)


def main() -> None:
    """Run the ``mcp-bridge`` command."""
    app(prog_name="mcp-bridge")
