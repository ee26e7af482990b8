"""Debug logging infrastructure for wire diagnostics.

Provides logger instances under the ``mcp_bridge.wire.*`` hierarchy and a
formatting helper for raw protocol lines.  Enabling
``logging.getLogger("mcp_bridge.wire").setLevel(logging.DEBUG)`` shows every
line exchanged with the child.

The formatting helper returns ``str`` and never logs directly; call it inside
an ``isEnabledFor`` guard so disabled debug logging costs nothing.
"""

from __future__ import annotations

import logging

# ---------------------------------------------------------------------------
# Logger hierarchy: mcp_bridge.wire.*
# ---------------------------------------------------------------------------

wire_request_logger = logging.getLogger("mcp_bridge.wire.request")
"""Lines written to the child's stdin."""

wire_response_logger = logging.getLogger("mcp_bridge.wire.response")
"""Lines read from the child's stdout."""

wire_transport_logger = logging.getLogger("mcp_bridge.wire.transport")
"""Pipe and process lifecycle (fds, reads, EOF)."""

# ---------------------------------------------------------------------------
# Formatting helpers
# ---------------------------------------------------------------------------

_MAX_LINE_LEN = 200
"""Maximum length of a line rendered by fmt_line."""


def fmt_line(line: bytes | str) -> str:
    """Format a protocol line for logging.

    Returns:
        The decoded line without its trailing newline, truncated to
        ``_MAX_LINE_LEN`` characters with a ``...`` marker and the full
        length, e.g. ``'{"jsonrpc": ...' (4096 bytes)``.

    """
    text = line.decode("utf-8", errors="replace") if isinstance(line, bytes) else line
    text = text.rstrip("\r\n")
    if len(text) > _MAX_LINE_LEN:
        return f"{text[:_MAX_LINE_LEN]!r}... ({len(line)} bytes)"
    return repr(text)
