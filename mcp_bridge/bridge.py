# © Copyright 2025-2026, Query.Farm LLC - https://query.farm
# SPDX-License-Identifier: Apache-2.0

"""Lifecycle owner for the bridged child process.

A :class:`Bridge` spawns exactly one :class:`~mcp_bridge.process.ChildProcess`,
guards it with a :class:`~mcp_bridge.gate.RequestGate`, and guarantees the
child is terminated when the bridge closes: explicitly, as a context manager,
or through the ``atexit`` hook registered at startup.

There is no supervised restart.  If the child exits, every later exchange
fails until the bridge itself is restarted.  The one exception is an exchange
deadline: a timed-out child has already been killed by the handle (its output
framing is no longer trustworthy), and with ``restart_on_timeout`` a fresh
child takes its place.
"""

from __future__ import annotations

import atexit
import logging
import os
import threading
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass
from types import TracebackType
from typing import Any

from mcp_bridge._wire import encode_line
from mcp_bridge.errors import CommunicationError, ExchangeTimeout, StartupError
from mcp_bridge.gate import RequestGate
from mcp_bridge.process import ChildProcess, StderrMode

__all__ = [
    "Bridge",
    "BridgeMetrics",
]

_logger = logging.getLogger("mcp_bridge.bridge")


@dataclass(frozen=True)
class BridgeMetrics:
    """Snapshot of bridge counters and child state.

    Attributes:
        exchanges: Exchanges attempted against the child.
        failures: Exchanges that raised a communication error
            (timeouts included).
        timeouts: Exchanges that hit the deadline.
        restarts: Children spawned to replace a timed-out one.
        pid: Process id of the current child.
        alive: Whether the current child is running.

    """

    exchanges: int
    failures: int
    timeouts: int
    restarts: int
    pid: int
    alive: bool


class Bridge:
    """Owns the single child process and serializes exchanges with it.

    Construct with :meth:`start`.

    Args:
        child: The already spawned child process.
        spawn: Zero-argument callable producing a replacement child.
        exchange_timeout: Seconds to wait for each response line, or
            ``None`` to wait indefinitely.
        restart_on_timeout: Replace the child after a timeout teardown.

    """

    def __init__(
        self,
        child: ChildProcess,
        *,
        spawn: Callable[[], ChildProcess] | None = None,
        exchange_timeout: float | None = None,
        restart_on_timeout: bool = True,
    ) -> None:
        """Initialize around an already spawned *child*."""
        if exchange_timeout is not None and exchange_timeout <= 0:
            raise ValueError(f"exchange_timeout must be positive, got {exchange_timeout}")
        self._gate: RequestGate[ChildProcess] = RequestGate(child)
        self._spawn = spawn
        self._exchange_timeout = exchange_timeout
        self._restart_on_timeout = restart_on_timeout and spawn is not None
        self._closed = False

        self._counter_lock = threading.Lock()
        self._exchanges = 0
        self._failures = 0
        self._timeouts = 0
        self._restarts = 0
        # Read without the gate for metrics; swapped under it.
        self._child = child

        atexit.register(self.close)

    @classmethod
    def start(
        cls,
        cmd: Sequence[str | os.PathLike[str]],
        *,
        exchange_timeout: float | None = None,
        restart_on_timeout: bool = True,
        stderr: StderrMode = StderrMode.INHERIT,
        stderr_logger: logging.Logger | None = None,
        env: Mapping[str, str] | None = None,
        cwd: str | os.PathLike[str] | None = None,
    ) -> Bridge:
        """Spawn the child process and return a bridge that owns it.

        Args:
            cmd: Child executable path followed by its arguments.
            exchange_timeout: Per-exchange deadline in seconds (``None``
                waits forever).
            restart_on_timeout: Spawn a replacement after a timeout.
            stderr: How to handle the child's stderr.
            stderr_logger: Logger for ``StderrMode.PIPE`` output.
            env: Environment for the child.
            cwd: Working directory for the child.

        Raises:
            SpawnError: The executable could not be launched.
            PipeUnavailable: The child's pipes could not be captured.

        """
        argv = list(cmd)

        def spawn() -> ChildProcess:
            return ChildProcess.spawn(argv, stderr=stderr, stderr_logger=stderr_logger, env=env, cwd=cwd)

        return cls(
            spawn(),
            spawn=spawn,
            exchange_timeout=exchange_timeout,
            restart_on_timeout=restart_on_timeout,
        )

    # -----------------------------------------------------------------------
    # Public API
    # -----------------------------------------------------------------------

    @property
    def child(self) -> ChildProcess:
        """The current child process handle (diagnostics only; do not exchange on it)."""
        return self._child

    @property
    def closed(self) -> bool:
        """Whether :meth:`close` has been called."""
        return self._closed

    @property
    def exchange_timeout(self) -> float | None:
        """Per-exchange deadline in seconds, or ``None``."""
        return self._exchange_timeout

    @property
    def metrics(self) -> BridgeMetrics:
        """Snapshot of bridge counters and child state."""
        child = self._child
        with self._counter_lock:
            return BridgeMetrics(
                exchanges=self._exchanges,
                failures=self._failures,
                timeouts=self._timeouts,
                restarts=self._restarts,
                pid=child.pid,
                alive=child.is_alive(),
            )

    def exchange(self, request: Any) -> Any:
        """Send *request* to the child and return its decoded response.

        The request is framed first, so a value that cannot be sent fails
        without waiting for the gate or touching the child.  Then blocks
        until the gate is free and performs one write and one read while
        holding it.

        Raises:
            FramingError: *request* cannot be serialized as one JSON line.
            BridgeClosedError: The bridge is shutting down.
            CommunicationError: Writing, reading, or decoding failed, or
                the exchange timed out.

        """
        line = encode_line(request)
        with self._gate.exclusive() as child:
            with self._counter_lock:
                self._exchanges += 1
            try:
                return child.exchange_line(line, timeout=self._exchange_timeout)
            except ExchangeTimeout:
                with self._counter_lock:
                    self._failures += 1
                    self._timeouts += 1
                if self._restart_on_timeout:
                    self._replace_child()
                raise
            except CommunicationError as exc:
                with self._counter_lock:
                    self._failures += 1
                _logger.warning(
                    "Exchange with child pid=%d failed: %s",
                    child.pid,
                    exc,
                    extra={"pid": child.pid, "error_type": type(exc).__name__},
                )
                raise

    def close(self) -> None:
        """Close the gate and terminate the child.

        Idempotent.
        """
        if self._closed:
            return
        self._closed = True
        atexit.unregister(self.close)
        child = self._gate.close()
        child.terminate()
        with self._counter_lock:
            _logger.info(
                "Bridge closed: %d exchanges, %d failures, %d restarts",
                self._exchanges,
                self._failures,
                self._restarts,
            )

    def __enter__(self) -> Bridge:
        """Enter context manager."""
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        """Close the bridge on context exit."""
        self.close()

    # -----------------------------------------------------------------------
    # Internal
    # -----------------------------------------------------------------------

    def _replace_child(self) -> None:
        """Spawn a replacement child.  Caller MUST hold the gate."""
        old = self._child
        if self._closed or self._spawn is None:
            return
        try:
            new = self._spawn()
        except StartupError as exc:
            _logger.error("Failed to restart child after timeout (old pid=%d): %s", old.pid, exc)
            return
        self._gate.replace(new)
        self._child = new
        with self._counter_lock:
            self._restarts += 1
        _logger.warning(
            "Restarted child after timeout: old pid=%d, new pid=%d",
            old.pid,
            new.pid,
            extra={"old_pid": old.pid, "pid": new.pid},
        )
