"""HTTP server implementation using Falcon/WSGI.

Provides ``make_wsgi_app`` to expose a :class:`~mcp_bridge.bridge.Bridge` as
a Falcon WSGI application.  The bridge is injected into the resources; no
module-level state is involved.
"""

from __future__ import annotations

import json
import logging
import time
import uuid
from collections.abc import Iterable
from http import HTTPStatus
from typing import Any

import falcon

from mcp_bridge._wire import decode
from mcp_bridge.bridge import Bridge
from mcp_bridge.errors import BridgeError, FramingError

from ._common import (
    COMMUNICATION_ERROR_PREFIX,
    HEALTH_BODY,
    HEALTH_PATH,
    INVALID_JSON_PREFIX,
    MCP_PATH,
    REQUEST_ID_HEADER,
    _BridgeHttpError,
    _status_for,
)

_logger = logging.getLogger("mcp_bridge.http")
_access_logger = logging.getLogger("mcp_bridge.access")


def _set_error_response(resp: falcon.Response, message: str, *, status_code: HTTPStatus) -> None:
    """Set a Falcon response to a ``{"error": message}`` JSON body."""
    resp.content_type = falcon.MEDIA_JSON
    resp.text = json.dumps({"error": message})
    resp.status = str(status_code.value)


# ---------------------------------------------------------------------------
# Resources
# ---------------------------------------------------------------------------


class _HealthResource:
    """Health check: ``GET /health``.  Never touches the child."""

    def on_get(self, req: falcon.Request, resp: falcon.Response) -> None:
        """Return a fixed ``OK``."""
        resp.content_type = falcon.MEDIA_TEXT
        resp.text = HEALTH_BODY


class _McpResource:
    """Falcon resource forwarding one JSON value to the child: ``POST /mcp``."""

    def __init__(self, bridge: Bridge) -> None:
        self._bridge = bridge

    def on_post(self, req: falcon.Request, resp: falcon.Response) -> None:
        """Decode the body, exchange it with the child, return the reply."""
        try:
            body = req.bounded_stream.read()
            try:
                request = decode(body)
            except ValueError as exc:
                _logger.debug("Rejected request body: %s", exc)
                raise _BridgeHttpError(f"{INVALID_JSON_PREFIX}: {exc}", status_code=HTTPStatus.BAD_REQUEST) from exc

            try:
                response = self._bridge.exchange(request)
            except FramingError as exc:
                # Raised before the gate: the body decoded but cannot be forwarded.
                raise _BridgeHttpError(f"{INVALID_JSON_PREFIX}: {exc}", status_code=HTTPStatus.BAD_REQUEST) from exc
            except BridgeError as exc:
                raise _BridgeHttpError(
                    f"{COMMUNICATION_ERROR_PREFIX}: {exc}",
                    status_code=_status_for(exc),
                ) from exc
        except _BridgeHttpError as e:
            req.context.error_type = type(e.__cause__).__name__ if e.__cause__ is not None else ""
            _set_error_response(resp, e.message, status_code=e.status_code)
            return

        resp.content_type = falcon.MEDIA_JSON
        resp.text = json.dumps(response, ensure_ascii=False)


# ---------------------------------------------------------------------------
# Middleware
# ---------------------------------------------------------------------------


def _generate_request_id() -> str:
    """Generate a 16-char hex request ID for correlation."""
    return uuid.uuid4().hex[:16]


class _RequestIdMiddleware:
    """Falcon middleware that sets a per-request correlation ID.

    Reads ``X-Request-ID`` from the incoming request header or generates a
    new 16-char hex ID, stores it in ``req.context.request_id``, and echoes
    it back on the response.
    """

    def process_request(self, req: falcon.Request, resp: falcon.Response) -> None:
        """Set request ID from header or generate one."""
        req.context.request_id = req.get_header(REQUEST_ID_HEADER) or _generate_request_id()

    def process_response(
        self,
        req: falcon.Request,
        resp: falcon.Response,
        resource: object,
        req_succeeded: bool,
    ) -> None:
        """Echo request ID on the response header."""
        request_id = getattr(req.context, "request_id", None)
        if request_id is not None:
            resp.set_header(REQUEST_ID_HEADER, request_id)


class _AccessLogMiddleware:
    """Falcon middleware emitting one structured record per request."""

    def process_request(self, req: falcon.Request, resp: falcon.Response) -> None:
        """Record the request start time."""
        req.context.started_at = time.monotonic()

    def process_response(
        self,
        req: falcon.Request,
        resp: falcon.Response,
        resource: object,
        req_succeeded: bool,
    ) -> None:
        """Log method, path, status, and duration."""
        if not _access_logger.isEnabledFor(logging.INFO):
            return
        started_at = getattr(req.context, "started_at", None)
        duration_ms = (time.monotonic() - started_at) * 1000 if started_at is not None else 0.0
        status = resp.status
        status_code = int(str(status).split(" ", 1)[0]) if not isinstance(status, int) else status
        extra: dict[str, object] = {
            "http_method": req.method,
            "path": req.path,
            "http_status": status_code,
            "duration_ms": round(duration_ms, 2),
            "remote_addr": req.remote_addr or "",
            "request_id": getattr(req.context, "request_id", ""),
            "error_type": getattr(req.context, "error_type", ""),
        }
        _access_logger.info("%s %s %d", req.method, req.path, status_code, extra=extra)


def make_wsgi_app(
    bridge: Bridge,
    *,
    cors_origins: str | Iterable[str] | None = "*",
    mcp_path: str = MCP_PATH,
    health_path: str = HEALTH_PATH,
) -> falcon.App[falcon.Request, falcon.Response]:
    """Create a Falcon WSGI app that forwards requests to *bridge*.

    Args:
        bridge: The bridge owning the child process.  The app does not
            close it; the caller that started it is responsible.
        cors_origins: Allowed origins for CORS.  ``"*"`` (the default)
            allows all origins, matching a permissive bridge deployment;
            pass a single origin, an iterable of origins, or ``None`` to
            disable CORS headers.  Uses Falcon's built-in
            ``CORSMiddleware``, which also answers preflight requests.
        mcp_path: Route for the JSON forwarding endpoint.
        health_path: Route for the health check.

    Returns:
        A Falcon application with the forwarding and health routes.

    """
    middleware: list[Any] = [_RequestIdMiddleware(), _AccessLogMiddleware()]
    if cors_origins is not None:
        middleware.append(falcon.CORSMiddleware(allow_origins=cors_origins))

    app: falcon.App[falcon.Request, falcon.Response] = falcon.App(middleware=middleware)
    app.add_route(health_path, _HealthResource())
    app.add_route(mcp_path, _McpResource(bridge))

    _logger.info(
        "WSGI app created (mcp_path=%s, health_path=%s, cors=%s)",
        mcp_path,
        health_path,
        "disabled" if cors_origins is None else cors_origins,
        extra={"mcp_path": mcp_path, "health_path": health_path},
    )
    return app
