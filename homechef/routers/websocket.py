"""
WebSocket router for real-time order events.

Provides a WebSocket endpoint that:
1. Authenticates users via bearer token (query parameter or Authorization header)
2. Registers the connection with the hub under its user and role
3. Answers client pings and acknowledges subscribe_order; everything else is pushed by the hub
"""

import asyncio
import json
import logging
from uuid import UUID

from fastapi import APIRouter, Query, WebSocket, WebSocketDisconnect

from homechef.core.config import settings
from homechef.core.errors import Unauthenticated
from homechef.core.deps import principal_from_token
from homechef.core.websocket import CLOSE_GOING_AWAY, CLOSE_INTERNAL_ERROR, Connection, hub

router = APIRouter(tags=["WebSocket"])
logger = logging.getLogger(__name__)

CLOSE_UNAUTHENTICATED = 4001
CLOSE_FORBIDDEN = 4003


def _token_from(websocket: WebSocket, token: str | None) -> str | None:
    if token:
        return token
    scheme, _, value = websocket.headers.get("authorization", "").partition(" ")
    if scheme.lower() == "bearer" and value.strip():
        return value.strip()
    return None


def _handle_frame(conn: Connection, raw: str) -> None:
    try:
        frame = json.loads(raw)
    except ValueError:
        frame = None
    if not isinstance(frame, dict):
        hub.send(conn, {"type": "error", "event": "error", "data": {"message": "Frames must be JSON objects"}})
        return

    event = frame.get("event") or frame.get("type")
    if event == "ping":
        hub.send(conn, {"type": "pong", "event": "pong"})
    elif event == "subscribe_order":
        data = frame.get("data") or {}
        try:
            order_id = UUID(str(data.get("order_id")))
        except ValueError:
            hub.send(conn, {"type": "error", "event": "error", "data": {"message": "Invalid order_id"}})
            return
        hub.send(
            conn,
            {"type": "subscribed", "event": "subscribe_order", "data": {"order_id": str(order_id)}},
        )
    elif event == "pong":
        pass
    else:
        logger.debug("Ignoring WebSocket frame %r from %s", event, conn)


@router.websocket("/ws")
async def order_events(
    websocket: WebSocket,
    user_id: str | None = Query(None),
    role: str | None = Query(None),
    token: str | None = Query(None),
):
    """
    Real-time order events for the caller.

    Frames pushed by the server are {type, event, data, user_id?, timestamp}.
    Clients may send {"event": "ping"} and {"event": "subscribe_order",
    "data": {"order_id": ...}}. Any client frame refreshes the read deadline.
    """
    await websocket.accept()

    raw_token = _token_from(websocket, token)
    if not raw_token:
        await websocket.close(code=CLOSE_UNAUTHENTICATED, reason="Authentication required")
        return
    try:
        principal = principal_from_token(raw_token)
    except Unauthenticated as exc:
        await websocket.close(code=CLOSE_UNAUTHENTICATED, reason=exc.message)
        return

    if user_id is not None and user_id != str(principal.user_id):
        await websocket.close(code=CLOSE_FORBIDDEN, reason="user_id does not match token")
        return
    if role is not None and role != principal.role.value:
        await websocket.close(code=CLOSE_FORBIDDEN, reason="role does not match token")
        return

    if not hub.running:
        logger.error("WebSocket connection refused: hub not running")
        await websocket.close(code=CLOSE_INTERNAL_ERROR)
        return

    conn = await hub.register(websocket, principal.user_id, principal.role.value)
    close_code = None
    try:
        while True:
            try:
                raw = await asyncio.wait_for(
                    websocket.receive_text(), timeout=settings.WS_READ_TIMEOUT_SEC
                )
            except asyncio.TimeoutError:
                logger.info("WebSocket read deadline passed for %s", conn)
                close_code = CLOSE_GOING_AWAY
                break
            except WebSocketDisconnect:
                break
            _handle_frame(conn, raw)
    finally:
        await hub.unregister(conn, close_code)
