# © Copyright 2025-2026, Query.Farm LLC - https://query.farm
# SPDX-License-Identifier: Apache-2.0

"""HTTP bridge for line-delimited JSON (MCP stdio) subprocess servers."""

import logging

from mcp_bridge.bridge import Bridge, BridgeMetrics
from mcp_bridge.errors import (
    BridgeClosedError,
    BridgeError,
    CommunicationError,
    DecodeError,
    ExchangeTimeout,
    FramingError,
    PipeUnavailable,
    ReadError,
    SpawnError,
    StartupError,
    WriteError,
)
from mcp_bridge.gate import RequestGate
from mcp_bridge.http import make_test_client, make_wsgi_app
from mcp_bridge.process import ChildProcess, ProcessState, StderrMode

__all__ = [
    # Core
    "Bridge",
    "BridgeMetrics",
    "ChildProcess",
    "ProcessState",
    "RequestGate",
    "StderrMode",
    # HTTP
    "make_test_client",
    "make_wsgi_app",
    # Errors
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

# Attach NullHandler to the package logger so library users don't get
# "No handler found" warnings.
logging.getLogger("mcp_bridge").addHandler(logging.NullHandler())
