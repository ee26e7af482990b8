"""HTTP front end for the bridge using Falcon (WSGI).

Provides ``make_wsgi_app`` to expose a :class:`~mcp_bridge.bridge.Bridge`
over HTTP, served in production by ``waitress``.

HTTP Surface
------------
- ``GET /health``: ``200 OK`` (text), independent of the child's state.
- ``POST /mcp``: body is one JSON value, forwarded verbatim to the child.

  - ``200``: the child's JSON response.
  - ``400``: ``{"error": "Invalid JSON: ..."}``; nothing reaches the child.
  - ``500``: ``{"error": "MCP communication error: ..."}`` on write, read,
    or decode failures against the child.
  - ``503``: the bridge is shutting down.
  - ``504``: the exchange deadline expired (the child is replaced).
"""

from mcp_bridge.http._common import (
    COMMUNICATION_ERROR_PREFIX,
    HEALTH_BODY,
    HEALTH_PATH,
    INVALID_JSON_PREFIX,
    MCP_PATH,
    REQUEST_ID_HEADER,
)
from mcp_bridge.http._server import make_wsgi_app
from mcp_bridge.http._testing import make_test_client

__all__ = [
    "COMMUNICATION_ERROR_PREFIX",
    "HEALTH_BODY",
    "HEALTH_PATH",
    "INVALID_JSON_PREFIX",
    "MCP_PATH",
    "REQUEST_ID_HEADER",
    "make_test_client",
    "make_wsgi_app",
]
