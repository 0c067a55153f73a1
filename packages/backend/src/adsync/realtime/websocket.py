"""WebSocket endpoint — real-time event delivery to frontend clients.

Learn: Each client connects to /api/ws?user_id=...&request_id=...&token=JWT.
The handler:
1. Authenticates via JWT query param (required outside development)
2. Registers a bounded outbound queue with the connection registry, under
   the user and (optionally) the crawl/AI request it is watching
3. Forwards every queued event to the WebSocket as a text frame
4. Deregisters on disconnect, error, or shutdown

This is a long-lived connection — one per browser tab. A client that misses
events (disconnected, queue full) does not get them replayed; it reconnects
and re-reads state from the API.
"""

import asyncio
import json
import uuid

import structlog
from fastapi import APIRouter, WebSocket, WebSocketDisconnect
from starlette.websockets import WebSocketState

from adsync.config import settings
from adsync.realtime.registry import ConnectionRegistry

logger = structlog.get_logger()
router = APIRouter()

# Identity used when the client doesn't say who it is (nil UUID)
ANONYMOUS_USER_ID = str(uuid.UUID(int=0))

PONG = json.dumps({"type": "pong"})


def get_registry(websocket: WebSocket) -> ConnectionRegistry:
    return websocket.app.state.registry


@router.websocket("/api/ws")
async def events_websocket(websocket: WebSocket):
    """WebSocket endpoint for crawl progress and AI result events.

    Learn: Two concurrent tasks run:
    1. Queue writer — reads from the connection's queue, sends to WebSocket
    2. Client listener — reads from WebSocket (keepalive pings, logged text)

    When either side finishes, the other is cancelled and the connection is
    removed from the registry.

    Authentication: JWT token required as ?token= query param.
    In development mode, unauthenticated connections are allowed.
    """
    # ── Authentication ──────────────────────────────────────
    token = websocket.query_params.get("token")

    if not token and settings.environment != "development":
        await websocket.close(code=4001, reason="Authentication required")
        return

    requested_user_id = websocket.query_params.get("user_id")

    if token:
        from adsync.auth.jwt import TokenError, verify_token

        try:
            payload = verify_token(token)
        except TokenError:
            await websocket.close(code=4001, reason="Invalid or expired token")
            return

        # A token only vouches for its own subject
        subject = payload.get("sub")
        if requested_user_id and subject != requested_user_id:
            logger.warning(
                "adsync.ws.token_user_mismatch",
                token_sub=subject,
                user_id=requested_user_id,
            )
            if settings.environment != "development":
                await websocket.close(code=4001, reason="Token does not match user_id")
                return

    # ── Identity ────────────────────────────────────────────
    user_id = requested_user_id or ANONYMOUS_USER_ID
    request_id = websocket.query_params.get("request_id") or None
    connection_id = str(uuid.uuid4())

    # ── Connection accepted ─────────────────────────────────
    await websocket.accept()

    registry = get_registry(websocket)
    queue: asyncio.Queue = asyncio.Queue(maxsize=settings.ws_queue_size)
    registry.register(connection_id, user_id, queue)
    if request_id:
        registry.register_for_job(connection_id, request_id)

    log = logger.bind(connection_id=connection_id, user_id=user_id, request_id=request_id)
    log.info("adsync.ws.connected", connections=len(registry))

    async def queue_writer():
        """Forward queued events to the WebSocket client, in order."""
        try:
            while True:
                message = await queue.get()
                await websocket.send_text(message)
        except (WebSocketDisconnect, RuntimeError, OSError) as e:
            log.debug("adsync.ws.send_failed", error=str(e))

    async def client_listener():
        """Handle incoming frames. No command protocol — pings only."""
        try:
            while True:
                msg = await websocket.receive()
                if msg["type"] == "websocket.disconnect":
                    return
                text = msg.get("text")
                if text is None:
                    continue  # binary frames are ignored
                try:
                    data = json.loads(text)
                except json.JSONDecodeError:
                    data = None
                if isinstance(data, dict) and data.get("type") == "ping":
                    try:
                        queue.put_nowait(PONG)
                    except asyncio.QueueFull:
                        pass
                else:
                    log.debug("adsync.ws.client_text", size=len(text))
        except (WebSocketDisconnect, RuntimeError, OSError) as e:
            log.debug("adsync.ws.receive_failed", error=str(e))

    writer_task = asyncio.create_task(queue_writer())
    listener_task = asyncio.create_task(client_listener())

    try:
        # Wait for either to finish (usually client disconnect)
        done, pending = await asyncio.wait(
            [writer_task, listener_task],
            return_when=asyncio.FIRST_COMPLETED,
        )
        for task in pending:
            task.cancel()
        await asyncio.gather(*pending, return_exceptions=True)
    finally:
        writer_task.cancel()
        listener_task.cancel()
        registry.deregister(connection_id)
        if websocket.client_state == WebSocketState.CONNECTED:
            try:
                await websocket.close()
            except (RuntimeError, OSError):
                pass
        log.info("adsync.ws.disconnected", connections=len(registry))
