"""Shared test fixtures for mcp-bridge tests."""

from __future__ import annotations

import os
import signal
import socket
import sys
import time
from collections.abc import Callable, Iterator
from pathlib import Path
from typing import Any

import falcon.testing
import httpx
import pytest

from mcp_bridge import Bridge, ChildProcess, make_test_client

_CHILD_FIXTURE = str(Path(__file__).parent / "child_fixture.py")

BridgeFactory = Callable[..., Bridge]
"""Type alias for the ``make_bridge`` fixture return type."""


def child_cmd(mode: str = "echo", *args: str) -> list[str]:
    """Return the command launching the fixture child in *mode*."""
    return [sys.executable, _CHILD_FIXTURE, mode, *args]


def pid_exists(pid: int) -> bool:
    """Whether a process with *pid* exists (zombies included)."""
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        return True
    return True


def kill_child(child: ChildProcess, timeout: float = 5.0) -> None:
    """SIGKILL the child behind the bridge's back and wait until it is reaped."""
    os.kill(child.pid, signal.SIGKILL)
    deadline = time.monotonic() + timeout
    while child.returncode is None:
        if time.monotonic() > deadline:
            raise TimeoutError(f"child pid={child.pid} did not die within {timeout}s")
        time.sleep(0.01)


def find_free_port() -> int:
    """Find a free TCP port on localhost."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.bind(("127.0.0.1", 0))
        return int(s.getsockname()[1])


def wait_for_http(port: int, timeout: float = 10.0) -> None:
    """Poll until the HTTP server answers its health check."""
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        try:
            _ = httpx.get(f"http://127.0.0.1:{port}/health", timeout=5.0)
            return
        except (httpx.ConnectError, httpx.ConnectTimeout):
            time.sleep(0.1)
    raise TimeoutError(f"HTTP server on port {port} did not start within {timeout}s")


@pytest.fixture
def make_bridge() -> Iterator[BridgeFactory]:
    """Return a factory starting bridges over the fixture child; all are closed on teardown."""
    bridges: list[Bridge] = []

    def factory(mode: str = "echo", *args: str, **kwargs: Any) -> Bridge:
        bridge = Bridge.start(child_cmd(mode, *args), **kwargs)
        bridges.append(bridge)
        return bridge

    yield factory
    for bridge in bridges:
        bridge.close()


@pytest.fixture
def bridge(make_bridge: BridgeFactory) -> Bridge:
    """A bridge over an echoing child."""
    return make_bridge("echo")


@pytest.fixture
def client(bridge: Bridge) -> falcon.testing.TestClient:
    """In-process Falcon test client for the echo bridge."""
    return make_test_client(bridge)
