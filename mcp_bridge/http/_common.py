"""Shared constants, status mapping, and exception for the HTTP layer."""

from __future__ import annotations

from http import HTTPStatus

from mcp_bridge.errors import BridgeClosedError, ExchangeTimeout

MCP_PATH = "/mcp"
HEALTH_PATH = "/health"
HEALTH_BODY = "OK"
REQUEST_ID_HEADER = "X-Request-ID"

INVALID_JSON_PREFIX = "Invalid JSON"
COMMUNICATION_ERROR_PREFIX = "MCP communication error"


def _status_for(exc: BaseException) -> HTTPStatus:
    """Map a bridge error raised during an exchange to an HTTP status."""
    if isinstance(exc, ExchangeTimeout):
        return HTTPStatus.GATEWAY_TIMEOUT
    if isinstance(exc, BridgeClosedError):
        return HTTPStatus.SERVICE_UNAVAILABLE
    return HTTPStatus.INTERNAL_SERVER_ERROR


class _BridgeHttpError(Exception):
    """Internal exception for HTTP-layer errors with status codes."""

    __slots__ = ("message", "status_code")

    def __init__(self, message: str, *, status_code: HTTPStatus) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code
