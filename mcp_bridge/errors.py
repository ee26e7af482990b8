# © Copyright 2025-2026, Query.Farm LLC - https://query.farm
# SPDX-License-Identifier: Apache-2.0

"""Exception hierarchy for the bridge.

Startup errors (:class:`SpawnError`, :class:`PipeUnavailable`) abort the
bridge before it serves anything.  Communication errors are raised per
exchange and are rendered as JSON error bodies by the HTTP layer; they never
tear down the server.
"""

from __future__ import annotations

from collections.abc import Sequence

__all__ = [
    "BridgeClosedError",
    "BridgeError",
    "CommunicationError",
    "DecodeError",
    "ExchangeTimeout",
    "FramingError",
    "PipeUnavailable",
    "ReadError",
    "SpawnError",
    "StartupError",
    "WriteError",
]


class BridgeError(Exception):
    """Base class for all bridge errors."""


# ---------------------------------------------------------------------------
# Startup
# ---------------------------------------------------------------------------


class StartupError(BridgeError):
    """The child process could not be brought up."""


class SpawnError(StartupError):
    """The child executable could not be launched.

    Attributes:
        cmd: The command that failed to spawn.

    """

    def __init__(self, cmd: Sequence[str], cause: BaseException) -> None:
        self.cmd = list(cmd)
        super().__init__(f"Failed to spawn MCP server {self.cmd[0]!r}: {cause}")


class PipeUnavailable(StartupError):
    """The child's stdin or stdout could not be captured after spawn."""


# ---------------------------------------------------------------------------
# Per-exchange
# ---------------------------------------------------------------------------


class CommunicationError(BridgeError):
    """Failure talking to an already running child."""


class WriteError(CommunicationError):
    """The child's stdin is closed or broken."""


class ReadError(CommunicationError):
    """The child's stdout closed before a full line was produced."""


class DecodeError(CommunicationError):
    """The child produced a line that is not valid JSON."""


class FramingError(CommunicationError):
    """A request cannot be framed as exactly one line."""


class ExchangeTimeout(CommunicationError):
    """No response line arrived before the exchange deadline.

    The child that timed out has already been terminated by the time this
    is raised.
    """

    def __init__(self, timeout: float, pid: int) -> None:
        self.timeout = timeout
        self.pid = pid
        super().__init__(f"no response from child pid={pid} within {timeout:g}s")


class BridgeClosedError(BridgeError):
    """An exchange was attempted after the bridge began shutting down."""
