# © Copyright 2025-2026, Query.Farm LLC - https://query.farm
# SPDX-License-Identifier: Apache-2.0

"""Line framing for the child protocol.

Each message is one JSON value serialized compactly as UTF-8 and terminated
by a single ``\\n``.  JSON string escaping guarantees that a compact
serialization never contains a raw newline; :func:`encode_line` still checks,
because a line with an embedded newline would desynchronize every exchange
that follows it.
"""

from __future__ import annotations

import json
from typing import Any

from mcp_bridge.errors import FramingError

_NEWLINE = b"\n"


def _reject_constant(name: str) -> Any:
    """Refuse the non-standard ``NaN`` / ``Infinity`` literals."""
    raise ValueError(f"Invalid JSON constant {name!r}")


def decode(data: bytes | str) -> Any:
    """Parse *data* as a single strict JSON value.

    ``bytes`` must be UTF-8 without a byte order mark; ``json.loads`` alone
    would also guess UTF-16 and UTF-32.

    Raises:
        ValueError: On malformed JSON, bytes that are not UTF-8, a BOM, or
            ``NaN`` / ``Infinity`` literals.  ``json.JSONDecodeError`` and
            ``UnicodeDecodeError`` are both ``ValueError`` subclasses.

    """
    text = data.decode("utf-8") if isinstance(data, bytes) else data
    return json.loads(text, parse_constant=_reject_constant)


def encode_line(value: Any) -> bytes:
    """Serialize *value* as one newline-terminated UTF-8 line.

    Raises:
        FramingError: If *value* is not JSON-serializable or its
            serialization would contain a raw newline.

    """
    try:
        text = json.dumps(value, ensure_ascii=False, allow_nan=False, separators=(",", ":"))
        data = text.encode("utf-8")
    except (TypeError, ValueError) as exc:
        # UnicodeEncodeError (lone surrogates) is a ValueError too
        raise FramingError(f"request cannot be serialized as JSON: {exc}") from exc
    if _NEWLINE in data:
        raise FramingError("serialized request contains a raw newline")
    return data + _NEWLINE
