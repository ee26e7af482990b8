# © Copyright 2025-2026, Query.Farm LLC - https://query.farm
# SPDX-License-Identifier: Apache-2.0

"""In-process test client for the HTTP layer.

Wraps ``falcon.testing.TestClient`` so tests exercise the real WSGI app
without binding a socket.
"""

from __future__ import annotations

from collections.abc import Iterable

import falcon.testing

from mcp_bridge.bridge import Bridge

from ._common import HEALTH_PATH, MCP_PATH
from ._server import make_wsgi_app


def make_test_client(
    bridge: Bridge,
    *,
    cors_origins: str | Iterable[str] | None = "*",
    mcp_path: str = MCP_PATH,
    health_path: str = HEALTH_PATH,
    default_headers: dict[str, str] | None = None,
) -> falcon.testing.TestClient:
    """Create a ``falcon.testing.TestClient`` for *bridge*.

    Args:
        bridge: The bridge to serve.
        cors_origins: See ``make_wsgi_app``.
        mcp_path: See ``make_wsgi_app``.
        health_path: See ``make_wsgi_app``.
        default_headers: Headers merged into every simulated request.

    Returns:
        A test client whose ``simulate_*`` methods call the app directly.

    """
    app = make_wsgi_app(bridge, cors_origins=cors_origins, mcp_path=mcp_path, health_path=health_path)
    return falcon.testing.TestClient(app, headers=default_headers)
