# © Copyright 2025-2026, Query.Farm LLC - https://query.farm
# SPDX-License-Identifier: Apache-2.0

"""Child process handle speaking line-delimited JSON over stdin/stdout.

:class:`ChildProcess` owns exactly one subprocess and its two pipes.  It
exposes a single synchronous :meth:`ChildProcess.exchange` (write one line,
read one line) and an idempotent :meth:`ChildProcess.terminate`.  Callers
are responsible for serializing exchanges; see :mod:`mcp_bridge.gate`.

A handle only exists once the process has been spawned, so there is no
"not started" state to guard against.  Termination is tied to the handle's
lifetime through ``weakref.finalize``: the child is killed and reaped when
``terminate()`` is called, when the handle is garbage collected, or at
interpreter exit, whichever happens first.
"""

from __future__ import annotations

import contextlib
import logging
import os
import selectors
import subprocess
import threading
import time
import weakref
from collections.abc import Mapping, Sequence
from enum import Enum
from types import TracebackType
from typing import IO, Any

from mcp_bridge._debug import fmt_line, wire_request_logger, wire_response_logger, wire_transport_logger
from mcp_bridge._wire import decode, encode_line
from mcp_bridge.errors import (
    DecodeError,
    ExchangeTimeout,
    FramingError,
    PipeUnavailable,
    ReadError,
    SpawnError,
    WriteError,
)

__all__ = [
    "ChildProcess",
    "ProcessState",
    "StderrMode",
]

_logger = logging.getLogger("mcp_bridge.process")

_READ_CHUNK = 64 * 1024


class StderrMode(Enum):
    """How to handle the child's stderr.

    Members:
        INHERIT: Child stderr goes to the bridge's stderr (default).
        PIPE: The bridge drains child stderr on a daemon thread and
            forwards each line to a ``logging.Logger``.
        DEVNULL: Child stderr discarded at OS level.
    """

    INHERIT = "inherit"
    PIPE = "pipe"
    DEVNULL = "devnull"


class ProcessState(Enum):
    """Lifecycle state of a :class:`ChildProcess`.  Transitions are one-way."""

    RUNNING = "running"
    TERMINATED = "terminated"


def _drain_stderr(pipe: IO[bytes], logger: logging.Logger) -> None:
    """Drain child stderr line-by-line. Runs in the bridge as a daemon thread."""
    try:
        for raw_line in pipe:
            line = raw_line.decode("utf-8", errors="replace").rstrip()
            if line:
                logger.info(line)
    except (OSError, ValueError):
        pass
    except Exception:
        _logger.debug("Unexpected error in stderr drain", exc_info=True)
    with contextlib.suppress(OSError, ValueError):
        pipe.close()


# ---------------------------------------------------------------------------
# _LineChannel
# ---------------------------------------------------------------------------


def _release_channel(selector: selectors.BaseSelector, wake_r: int, wake_w: int) -> None:
    selector.close()
    for fd in (wake_r, wake_w):
        with contextlib.suppress(OSError):
            os.close(fd)


class _LineChannel:
    """Newline-framed I/O over the raw descriptors of the child's pipes.

    Both descriptors are switched to non-blocking mode and every wait goes
    through one selector, so a single deadline bounds the write and the read
    of an exchange alike.  The selector also watches a private wake pipe:
    :meth:`close` marks the channel closed and wakes a waiter on another
    thread, which then fails instead of touching descriptors that are being
    torn down.  Bytes after the first newline stay buffered for the next
    :meth:`readline`.
    """

    __slots__ = (
        "__weakref__",
        "_buf",
        "_closed",
        "_eof",
        "_read_fd",
        "_selector",
        "_wake_r",
        "_wake_w",
        "_write_fd",
    )

    def __init__(self, read_fd: int, write_fd: int) -> None:
        os.set_blocking(read_fd, False)
        os.set_blocking(write_fd, False)
        self._read_fd = read_fd
        self._write_fd = write_fd
        self._buf = bytearray()
        self._eof = False
        self._closed = False
        self._wake_r, self._wake_w = os.pipe()
        os.set_blocking(self._wake_w, False)
        self._selector = selectors.DefaultSelector()
        self._selector.register(self._wake_r, selectors.EVENT_READ)
        weakref.finalize(self, _release_channel, self._selector, self._wake_r, self._wake_w)

    @property
    def closed(self) -> bool:
        """Whether :meth:`close` has been called."""
        return self._closed

    def write(self, data: bytes, deadline: float | None = None) -> None:
        """Write all of *data*, waiting for pipe space as needed.

        Raises:
            TimeoutError: *deadline* (a ``time.monotonic()`` value) passed
                before every byte was written.
            OSError: The pipe is broken.
            ValueError: The channel has been closed.

        """
        view = memoryview(data)
        while view:
            self._check_open()
            try:
                written = os.write(self._write_fd, view)
            except BlockingIOError:
                self._wait(self._write_fd, selectors.EVENT_WRITE, deadline)
                continue
            view = view[written:]

    def readline(self, deadline: float | None = None) -> bytes:
        """Return the next line including its trailing ``\\n``.

        At end of stream, returns whatever partial data remains (``b""`` if
        none), like ``io.BufferedReader.readline``.

        Raises:
            TimeoutError: *deadline* passed without a full line.
            OSError: The underlying read failed.
            ValueError: The channel has been closed.

        """
        scanned = 0
        while True:
            end = self._buf.find(b"\n", scanned)
            if end >= 0:
                line = bytes(self._buf[: end + 1])
                del self._buf[: end + 1]
                return line
            if self._eof:
                rest = bytes(self._buf)
                self._buf.clear()
                return rest
            scanned = len(self._buf)
            self._check_open()
            try:
                chunk = os.read(self._read_fd, _READ_CHUNK)
            except BlockingIOError:
                self._wait(self._read_fd, selectors.EVENT_READ, deadline)
                continue
            if chunk:
                self._buf += chunk
            else:
                self._eof = True
                if wire_transport_logger.isEnabledFor(logging.DEBUG):
                    wire_transport_logger.debug("EOF on fd=%d (%d bytes pending)", self._read_fd, len(self._buf))

    def close(self) -> None:
        """Mark the channel closed and wake any waiter.  Idempotent.

        The data descriptors belong to the ``Popen`` and are closed there.
        """
        if self._closed:
            return
        self._closed = True
        with contextlib.suppress(OSError):
            os.write(self._wake_w, b"\0")

    def _check_open(self) -> None:
        if self._closed:
            raise ValueError("pipes to the child have been closed")

    def _wait(self, fd: int, events: int, deadline: float | None) -> None:
        remaining = None
        if deadline is not None:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                raise TimeoutError
        self._selector.register(fd, events)
        try:
            ready = self._selector.select(remaining)
        finally:
            self._selector.unregister(fd)
        if not ready:
            raise TimeoutError


def _kill_and_reap(
    proc: subprocess.Popen[bytes],
    channel: _LineChannel | None,
    stderr_thread: threading.Thread | None,
) -> None:
    """Wake any waiter, SIGKILL *proc*, wait for it, and close its pipes.

    Registered with ``weakref.finalize`` so it must not reference the
    owning :class:`ChildProcess`.
    """
    if channel is not None:
        channel.close()
    with contextlib.suppress(OSError):
        proc.kill()
    proc.wait()
    for pipe in (proc.stdin, proc.stdout):
        if pipe is not None:
            with contextlib.suppress(OSError, ValueError):
                pipe.close()
    if stderr_thread is not None:
        stderr_thread.join(timeout=5)


# ---------------------------------------------------------------------------
# ChildProcess
# ---------------------------------------------------------------------------


class ChildProcess:
    """One running child process and its stdin/stdout pipes.

    Both pipes are driven through a :class:`_LineChannel`, which frames the
    child's stdout into lines and applies the optional per-exchange
    deadline to the write and the read.

    Not thread-safe: concurrent :meth:`exchange` calls would interleave
    bytes on the pipes.  Wrap the handle in a
    :class:`~mcp_bridge.gate.RequestGate`.
    """

    __slots__ = ("__weakref__", "_channel", "_cmd", "_finalizer", "_proc", "_state")

    def __init__(self, proc: subprocess.Popen[bytes], *, stderr_thread: threading.Thread | None = None) -> None:
        """Adopt an already spawned process.  Prefer :meth:`spawn`.

        Raises:
            PipeUnavailable: If *proc* was not started with both stdin and
                stdout pipes.  The process is killed and reaped first.

        """
        if proc.stdin is None or proc.stdout is None:
            missing = "stdin" if proc.stdin is None else "stdout"
            _kill_and_reap(proc, None, stderr_thread)
            raise PipeUnavailable(f"Failed to open {missing} of child pid={proc.pid}")
        self._proc = proc
        self._cmd = [str(a) for a in proc.args] if isinstance(proc.args, (list, tuple)) else [str(proc.args)]
        self._channel = _LineChannel(proc.stdout.fileno(), proc.stdin.fileno())
        self._state = ProcessState.RUNNING
        self._finalizer = weakref.finalize(self, _kill_and_reap, proc, self._channel, stderr_thread)
        if wire_transport_logger.isEnabledFor(logging.DEBUG):
            wire_transport_logger.debug(
                "ChildProcess adopted: pid=%d, stdin_fd=%d, stdout_fd=%d",
                proc.pid,
                proc.stdin.fileno(),
                proc.stdout.fileno(),
            )

    @classmethod
    def spawn(
        cls,
        cmd: Sequence[str | os.PathLike[str]],
        *,
        stderr: StderrMode = StderrMode.INHERIT,
        stderr_logger: logging.Logger | None = None,
        env: Mapping[str, str] | None = None,
        cwd: str | os.PathLike[str] | None = None,
    ) -> ChildProcess:
        """Launch *cmd* with stdin/stdout piped to the bridge.

        Args:
            cmd: Executable path followed by its arguments.
            stderr: How to handle the child's stderr stream.
            stderr_logger: Logger for ``StderrMode.PIPE`` output.
                Defaults to ``logging.getLogger("mcp_bridge.child.stderr")``.
            env: Environment for the child (defaults to the bridge's).
            cwd: Working directory for the child.

        Raises:
            SpawnError: The executable could not be launched.
            PipeUnavailable: A pipe could not be captured after spawn.

        """
        argv = [os.fspath(a) for a in cmd]
        if not argv:
            raise ValueError("cmd must name an executable")

        if stderr == StderrMode.DEVNULL:
            stderr_arg: int | None = subprocess.DEVNULL
        elif stderr == StderrMode.PIPE:
            stderr_arg = subprocess.PIPE
        else:
            stderr_arg = None

        try:
            proc = subprocess.Popen(
                argv,
                stdin=subprocess.PIPE,
                stdout=subprocess.PIPE,
                stderr=stderr_arg,
                env=dict(env) if env is not None else None,
                cwd=cwd,
            )
        except OSError as exc:
            _logger.error("Failed to spawn child process: cmd=%s: %s", argv, exc)
            raise SpawnError(argv, exc) from exc

        stderr_thread: threading.Thread | None = None
        if stderr == StderrMode.PIPE and proc.stderr is not None:
            if stderr_logger is None:
                stderr_logger = logging.getLogger("mcp_bridge.child.stderr")
            stderr_thread = threading.Thread(
                target=_drain_stderr,
                args=(proc.stderr, stderr_logger),
                daemon=True,
                name=f"mcp_bridge.stderr.{proc.pid}",
            )
            stderr_thread.start()

        handle = cls(proc, stderr_thread=stderr_thread)
        _logger.info(
            "Spawned child process: pid=%d, cmd=%s",
            proc.pid,
            argv,
            extra={"pid": proc.pid, "cmd": argv},
        )
        return handle

    # -----------------------------------------------------------------------
    # Introspection
    # -----------------------------------------------------------------------

    @property
    def pid(self) -> int:
        """OS process identifier of the child."""
        return self._proc.pid

    @property
    def cmd(self) -> list[str]:
        """The command the child was started with."""
        return list(self._cmd)

    @property
    def state(self) -> ProcessState:
        """Current lifecycle state."""
        return self._state

    @property
    def returncode(self) -> int | None:
        """Exit status if the child has exited, else ``None``."""
        return self._proc.poll()

    def is_alive(self) -> bool:
        """Whether the handle is running and the OS process has not exited."""
        return self._state is ProcessState.RUNNING and self._proc.poll() is None

    # -----------------------------------------------------------------------
    # Exchange
    # -----------------------------------------------------------------------

    def exchange(self, request: Any, *, timeout: float | None = None) -> Any:
        """Write *request* as one line and return the next decoded line.

        Exactly one write followed by one read.  With *timeout* set, the
        write and the read share one deadline; missing it terminates the
        child, because a late response would otherwise be paired with the
        next request.

        Raises:
            FramingError: *request* cannot be serialized as a single line.
            WriteError: stdin is closed or broken, or the handle was
                terminated.
            ReadError: stdout failed or ended before a full line.
            DecodeError: The response line is not valid JSON.
            ExchangeTimeout: The exchange did not complete within *timeout*
                seconds.

        """
        return self.exchange_line(encode_line(request), timeout=timeout)

    def exchange_line(self, line: bytes, *, timeout: float | None = None) -> Any:
        """Like :meth:`exchange` for a line already framed by ``encode_line``."""
        if line.find(b"\n") != len(line) - 1:
            raise FramingError("request must be exactly one newline-terminated line")
        if self._state is not ProcessState.RUNNING:
            raise WriteError(f"child pid={self.pid} has been terminated")

        deadline = None if timeout is None else time.monotonic() + timeout
        if wire_request_logger.isEnabledFor(logging.DEBUG):
            wire_request_logger.debug("Sending to child pid=%d: %s", self.pid, fmt_line(line))
        try:
            self._channel.write(line, deadline)
        except TimeoutError:
            raise self._timed_out(timeout, "writing") from None
        except (OSError, ValueError) as exc:
            raise WriteError(f"failed writing to child pid={self.pid}: {exc}") from exc

        try:
            raw = self._channel.readline(deadline)
        except TimeoutError:
            raise self._timed_out(timeout, "reading") from None
        except (OSError, ValueError) as exc:
            raise ReadError(f"failed reading from child pid={self.pid}: {exc}") from exc

        if wire_response_logger.isEnabledFor(logging.DEBUG):
            wire_response_logger.debug("Received from child pid=%d: %s", self.pid, fmt_line(raw))
        if not raw.endswith(b"\n"):
            status = self._proc.poll()
            detail = "stdout closed" if status is None else f"exited with status {status}"
            if raw:
                detail += f" after a partial line of {len(raw)} bytes"
            raise ReadError(f"end of output from child pid={self.pid} ({detail})")

        try:
            return decode(raw)
        except ValueError as exc:
            raise DecodeError(f"invalid JSON from child pid={self.pid}: {exc}") from exc

    def _timed_out(self, timeout: float | None, phase: str) -> ExchangeTimeout:
        assert timeout is not None
        _logger.warning(
            "Exchange exceeded %gs while %s, terminating child: pid=%d",
            timeout,
            phase,
            self.pid,
            extra={"pid": self.pid, "timeout": timeout},
        )
        self.terminate()
        return ExchangeTimeout(timeout, self.pid)

    # -----------------------------------------------------------------------
    # Termination
    # -----------------------------------------------------------------------

    def terminate(self) -> None:
        """Kill the child, reap it, and close the pipes.  Idempotent."""
        if self._state is ProcessState.TERMINATED:
            return
        self._state = ProcessState.TERMINATED
        _logger.info("Terminating child process: pid=%d", self.pid, extra={"pid": self.pid})
        self._finalizer()
        _logger.debug("Child process reaped: pid=%d, exit_code=%s", self.pid, self._proc.returncode)

    def __enter__(self) -> ChildProcess:
        """Enter context manager."""
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        """Terminate the child on context exit."""
        self.terminate()

    def __repr__(self) -> str:
        """Return a short description with pid and state."""
        return f"ChildProcess(pid={self.pid}, state={self._state.value})"
