# © Copyright 2025-2026, Query.Farm LLC - https://query.farm
# SPDX-License-Identifier: Apache-2.0

"""Tests for the mcp-bridge command-line entry point."""

from __future__ import annotations

import logging
import os
import re
import signal
import subprocess
import sys
import threading
from collections.abc import Iterator
from pathlib import Path
from typing import Any

import falcon.testing
import httpx
import pytest
import waitress
from typer.testing import CliRunner

from mcp_bridge import Bridge
from mcp_bridge.cli import _KNOWN_LOGGERS, DEFAULT_PORT, app
from tests.conftest import child_cmd, find_free_port, pid_exists, wait_for_http

runner = CliRunner()

_CHILD_ARGS = [f"--mcp-binary={sys.executable}", "--mcp-arg", child_cmd("echo")[1], "--mcp-arg", "echo"]


def _invoke(args: list[str], **kwargs: Any) -> Any:
    """Invoke the CLI app.

    Returns ``Any`` because typer has no type stubs for ``Result``.
    """
    return runner.invoke(app, args, **kwargs)


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def started(monkeypatch: pytest.MonkeyPatch) -> list[Bridge]:
    """Record every Bridge the CLI starts."""
    bridges: list[Bridge] = []

    class _TrackedBridge(Bridge):
        def __init__(self, *args: Any, **kwargs: Any) -> None:
            super().__init__(*args, **kwargs)
            bridges.append(self)

    monkeypatch.setattr("mcp_bridge.cli.Bridge", _TrackedBridge)
    return bridges


@pytest.fixture
def serve_calls(monkeypatch: pytest.MonkeyPatch) -> list[dict[str, Any]]:
    """Replace ``waitress.serve`` with a recorder that returns immediately."""
    calls: list[dict[str, Any]] = []

    def fake_serve(wsgi_app: Any, **kwargs: Any) -> None:
        calls.append({"app": wsgi_app, **kwargs})

    monkeypatch.setattr(waitress, "serve", fake_serve)
    return calls


@pytest.fixture(autouse=True)
def _restore_bridge_logger() -> Iterator[None]:
    """Undo the level change the CLI applies to the package logger."""
    logger = logging.getLogger("mcp_bridge")
    level = logger.level
    yield
    logger.setLevel(level)


# ---------------------------------------------------------------------------
# Options
# ---------------------------------------------------------------------------


class TestOptions:
    """Help text, defaults, and validation."""

    def test_help(self) -> None:
        result = _invoke(["--help"])
        assert result.exit_code == 0
        for option in ("--port", "--host", "--mcp-binary", "--exchange-timeout", "--log-format"):
            assert option in result.output

    def test_defaults_passed_to_waitress(self, serve_calls: list[dict[str, Any]], started: list[Bridge]) -> None:
        result = _invoke(_CHILD_ARGS)
        assert result.exit_code == 0, result.output
        assert len(serve_calls) == 1
        call = serve_calls[0]
        assert call["port"] == DEFAULT_PORT
        assert call["host"] == "0.0.0.0"
        assert call["threads"] == 4

    def test_port_and_host(self, serve_calls: list[dict[str, Any]], started: list[Bridge]) -> None:
        result = _invoke(["--port", "8123", "--host", "127.0.0.1", "--threads", "2", *_CHILD_ARGS])
        assert result.exit_code == 0, result.output
        assert serve_calls[0]["port"] == 8123
        assert serve_calls[0]["host"] == "127.0.0.1"
        assert serve_calls[0]["threads"] == 2

    def test_env_vars(self, serve_calls: list[dict[str, Any]], started: list[Bridge]) -> None:
        env = {"MCP_BRIDGE_PORT": "4567", "MCP_BRIDGE_HOST": "127.0.0.2", "MCP_BRIDGE_EXCHANGE_TIMEOUT": "2.5"}
        result = _invoke(_CHILD_ARGS, env=env)
        assert result.exit_code == 0, result.output
        assert serve_calls[0]["port"] == 4567
        assert serve_calls[0]["host"] == "127.0.0.2"
        assert started[0].exchange_timeout == 2.5

    @pytest.mark.parametrize("value", ["0", "-1"])
    def test_invalid_exchange_timeout(self, value: str, started: list[Bridge]) -> None:
        result = _invoke(["--exchange-timeout", value, *_CHILD_ARGS])
        assert result.exit_code == 2
        assert "must be positive" in result.output
        assert started == []

    def test_invalid_port(self) -> None:
        result = _invoke(["--port", "70000", *_CHILD_ARGS])
        assert result.exit_code == 2

    def test_known_loggers_are_bridge_or_server(self) -> None:
        for name, description in _KNOWN_LOGGERS:
            assert name == "mcp_bridge" or name.startswith("mcp_bridge.") or name == "waitress"
            assert description


# ---------------------------------------------------------------------------
# Startup and shutdown
# ---------------------------------------------------------------------------


class TestLifecycle:
    """The child is started before serving and terminated on every exit path."""

    def test_missing_binary(self, tmp_path: Path, serve_calls: list[dict[str, Any]]) -> None:
        result = _invoke(["--mcp-binary", str(tmp_path / "mcp-server-missing")])
        assert result.exit_code == 1
        assert "Error: Failed to spawn MCP server" in result.output
        assert "built and executable" in result.output
        assert serve_calls == []

    def test_app_forwards_to_child(self, monkeypatch: pytest.MonkeyPatch, started: list[Bridge]) -> None:
        replies: list[Any] = []

        def fake_serve(wsgi_app: Any, **kwargs: Any) -> None:
            client = falcon.testing.TestClient(wsgi_app)
            replies.append(client.simulate_post("/mcp", json={"id": 7}).json)
            replies.append(client.simulate_get("/health").text)

        monkeypatch.setattr(waitress, "serve", fake_serve)
        result = _invoke(_CHILD_ARGS)
        assert result.exit_code == 0, result.output
        assert replies == [{"id": 7}, "OK"]

    def test_child_terminated_after_serve_returns(
        self, serve_calls: list[dict[str, Any]], started: list[Bridge]
    ) -> None:
        result = _invoke(_CHILD_ARGS)
        assert result.exit_code == 0, result.output
        assert len(started) == 1
        assert started[0].closed
        assert not pid_exists(started[0].child.pid)

    def test_child_terminated_on_interrupt(self, monkeypatch: pytest.MonkeyPatch, started: list[Bridge]) -> None:
        def fake_serve(wsgi_app: Any, **kwargs: Any) -> None:
            raise KeyboardInterrupt

        monkeypatch.setattr(waitress, "serve", fake_serve)
        result = _invoke(_CHILD_ARGS)
        assert result.exit_code != 0
        assert started[0].closed
        assert not pid_exists(started[0].child.pid)

    @pytest.mark.skipif(threading.current_thread() is not threading.main_thread(), reason="signals need main thread")
    def test_child_terminated_on_sigterm(self, monkeypatch: pytest.MonkeyPatch, started: list[Bridge]) -> None:
        before = signal.getsignal(signal.SIGTERM)

        def fake_serve(wsgi_app: Any, **kwargs: Any) -> None:
            os.kill(os.getpid(), signal.SIGTERM)
            signal.pause()

        monkeypatch.setattr(waitress, "serve", fake_serve)
        result = _invoke(_CHILD_ARGS)
        assert result.exit_code == 128 + signal.SIGTERM
        assert started[0].closed
        assert not pid_exists(started[0].child.pid)
        assert signal.getsignal(signal.SIGTERM) == before

    def test_bind_failure(self, monkeypatch: pytest.MonkeyPatch, started: list[Bridge]) -> None:
        def fake_serve(wsgi_app: Any, **kwargs: Any) -> None:
            raise OSError(98, "Address already in use")

        monkeypatch.setattr(waitress, "serve", fake_serve)
        result = _invoke(_CHILD_ARGS)
        assert result.exit_code == 1
        assert "cannot serve" in result.output
        assert started[0].closed

    def test_log_handler_removed(self, serve_calls: list[dict[str, Any]], started: list[Bridge]) -> None:
        logger = logging.getLogger("mcp_bridge")
        before = list(logger.handlers)
        result = _invoke(["--log-format", "json", *_CHILD_ARGS])
        assert result.exit_code == 0, result.output
        assert logger.handlers == before


# ---------------------------------------------------------------------------
# End to end
# ---------------------------------------------------------------------------


class TestEndToEnd:
    """Run the real command with waitress and stop it with SIGTERM."""

    def test_serve_and_sigterm(self) -> None:
        port = find_free_port()
        proc = subprocess.Popen(
            [
                sys.executable,
                "-m",
                "mcp_bridge",
                "--port",
                str(port),
                "--host",
                "127.0.0.1",
                *_CHILD_ARGS,
            ],
            stdout=subprocess.DEVNULL,
            stderr=subprocess.PIPE,
            cwd=str(Path(__file__).parent.parent),
        )
        stderr_lines: list[str] = []

        def drain() -> None:
            assert proc.stderr is not None
            for raw in proc.stderr:
                stderr_lines.append(raw.decode("utf-8", errors="replace"))

        drainer = threading.Thread(target=drain, daemon=True)
        drainer.start()
        try:
            wait_for_http(port)
            response = httpx.post(
                f"http://127.0.0.1:{port}/mcp",
                json={"jsonrpc": "2.0", "method": "ping", "id": 1},
                timeout=10.0,
            )
            assert response.status_code == 200
            assert response.json() == {"jsonrpc": "2.0", "method": "ping", "id": 1}

            bad = httpx.post(f"http://127.0.0.1:{port}/mcp", content=b"not json", timeout=10.0)
            assert bad.status_code == 400
            assert bad.json()["error"].startswith("Invalid JSON:")

            proc.send_signal(signal.SIGTERM)
            assert proc.wait(timeout=15) == 128 + signal.SIGTERM
        finally:
            if proc.poll() is None:
                proc.kill()
                proc.wait()
        drainer.join(timeout=5)

        output = "".join(stderr_lines)
        match = re.search(r"Spawned child process: pid=(\d+)", output)
        assert match is not None, output
        assert not pid_exists(int(match.group(1)))
        assert "MCP HTTP bridge stopped" in output
