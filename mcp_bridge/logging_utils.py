# © Copyright 2025-2026, Query.Farm LLC - https://query.farm
# SPDX-License-Identifier: Apache-2.0

"""Single-line JSON log records for ``mcp-bridge --log-format json``.

Bridge log calls attach their structured context through ``extra=``: the
child ``pid``, the access log's ``http_status`` and ``duration_ms``, the
``error_type`` of a failed exchange.  :class:`BridgeJsonFormatter` turns
each record into one JSON object carrying those fields next to the
timestamp, level, logger name and message, so a log shipper can index them
without parsing message text.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Iterator, Mapping

__all__ = ["BridgeJsonFormatter"]

# Attributes present on every LogRecord; anything else arrived through ``extra``.
_BUILTIN_ATTRS: frozenset[str] = frozenset(vars(logging.makeLogRecord({}))) | {"message", "asctime"}

_CORE_KEYS: frozenset[str] = frozenset({"timestamp", "level", "logger", "message", "exception", "stack_info"})


def _extras(record: logging.LogRecord) -> Iterator[tuple[str, object]]:
    for key, value in vars(record).items():
        if key not in _BUILTIN_ATTRS and key not in _CORE_KEYS:
            yield key, value


class BridgeJsonFormatter(logging.Formatter):
    """Render log records as compact JSON objects.

    Key precedence, lowest first: *static_fields*, then the record's
    ``extra`` fields, then the core keys (``timestamp``, ``level``,
    ``logger``, ``message``, ``exception``, ``stack_info``), which nothing
    can shadow.  Values ``json`` cannot encode are written with ``str``.

    Args:
        static_fields: Fields stamped on every record, such as the CLI's
            ``bridge_pid``.

    """

    def __init__(self, static_fields: Mapping[str, object] | None = None) -> None:
        """Initialize with optional fields added to every record."""
        super().__init__()
        self._static_fields = {k: v for k, v in (static_fields or {}).items() if k not in _CORE_KEYS}

    def format(self, record: logging.LogRecord) -> str:
        """Return *record* as one line of JSON."""
        payload: dict[str, object] = dict(self._static_fields)
        payload.update(_extras(record))
        payload["timestamp"] = self.formatTime(record)
        payload["level"] = record.levelname
        payload["logger"] = record.name
        payload["message"] = record.message = record.getMessage()
        if record.exc_info and record.exc_info[1] is not None:
            payload["exception"] = self.formatException(record.exc_info)
        if record.stack_info:
            payload["stack_info"] = self.formatStack(record.stack_info)
        return json.dumps(payload, default=str, ensure_ascii=False)
