"""Request ID middleware — unique ID per request/connection for tracing.

Learn: Plain ASGI middleware rather than BaseHTTPMiddleware, because
BaseHTTPMiddleware never sees WebSocket scopes and the long-lived /api/ws
connections are exactly where correlated logs matter most.

Every HTTP request and WebSocket handshake gets an ID, either from the
incoming X-Request-ID header or auto-generated. The ID is bound to
structlog's contextvars so it appears in all log entries for that
request/connection, and HTTP responses echo it back in X-Request-ID.
"""

import uuid

import structlog
from starlette.datastructures import Headers, MutableHeaders
from starlette.types import ASGIApp, Message, Receive, Scope, Send

HEADER = "X-Request-ID"


class RequestIdMiddleware:
    """Generate and propagate a unique request ID."""

    def __init__(self, app: ASGIApp):
        self.app = app

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] not in ("http", "websocket"):
            await self.app(scope, receive, send)
            return

        # Use existing request ID or generate a new one
        request_id = Headers(scope=scope).get(HEADER) or str(uuid.uuid4())
        scope.setdefault("state", {})["request_id"] = request_id

        # Bind to structlog for correlated logging
        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(request_id=request_id)

        async def send_with_request_id(message: Message) -> None:
            if message["type"] == "http.response.start":
                MutableHeaders(scope=message)[HEADER] = request_id
            await send(message)

        await self.app(scope, receive, send_with_request_id)
