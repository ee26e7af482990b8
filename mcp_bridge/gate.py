# © Copyright 2025-2026, Query.Farm LLC - https://query.farm
# SPDX-License-Identifier: Apache-2.0

"""Serialized access to a single shared resource.

:class:`RequestGate` wraps one resource (the child process handle) behind a
``threading.Lock`` so that at most one caller uses it at a time.  Waiters are
admitted in whatever order the lock grants them; the only guarantee is that
two holders never overlap.
"""

from __future__ import annotations

import contextlib
import logging
import threading
from collections.abc import Callable, Iterator

from mcp_bridge.errors import BridgeClosedError

__all__ = ["RequestGate"]

_logger = logging.getLogger("mcp_bridge.gate")


class RequestGate[T]:
    """Mutual-exclusion gate around one resource.

    Args:
        resource: The object handed to each holder of the gate.

    """

    __slots__ = ("_closed", "_lock", "_resource")

    def __init__(self, resource: T) -> None:
        """Initialize the gate around *resource*."""
        self._resource = resource
        self._lock = threading.Lock()
        self._closed = False

    @property
    def closed(self) -> bool:
        """Whether :meth:`close` has been called."""
        return self._closed

    @contextlib.contextmanager
    def exclusive(self) -> Iterator[T]:
        """Block until no other caller holds the gate, then yield the resource.

        The gate is released when the ``with`` block exits, including when
        it raises.

        Raises:
            BridgeClosedError: If the gate is closed before or while waiting.

        """
        with self._lock:
            if self._closed:
                raise BridgeClosedError("bridge is shutting down")
            yield self._resource

    def with_exclusive_access[R](self, fn: Callable[[T], R]) -> R:
        """Run ``fn(resource)`` while holding the gate and return its result."""
        with self.exclusive() as resource:
            return fn(resource)

    def replace(self, resource: T) -> None:
        """Swap in a new resource.  Only legal while holding the gate."""
        if not self._lock.locked():
            raise RuntimeError("RequestGate.replace() requires holding the gate")
        self._resource = resource

    def close(self, timeout: float = 5.0) -> T:
        """Close the gate and return the resource for teardown.

        Waits up to *timeout* seconds for the current holder to finish.  If
        the holder is stuck (e.g. blocked on an unresponsive child), the gate
        is closed anyway so the caller can tear the resource down, which
        unblocks the holder.  Idempotent.
        """
        acquired = self._lock.acquire(timeout=timeout)
        try:
            if not acquired and not self._closed:
                _logger.warning("Closing gate while an exchange is still in flight")
            self._closed = True
            return self._resource
        finally:
            if acquired:
                self._lock.release()
