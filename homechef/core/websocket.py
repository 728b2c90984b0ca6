"""
WebSocket connection hub for real-time order events.

One coordinator task owns the connection registry. Register, unregister and
broadcast are commands on its queue, so the maps are never touched from two
places at once. Each connection has a bounded send buffer drained by its own
writer task; a connection whose buffer overflows is closed and dropped (the
message is not).
"""

from __future__ import annotations

import asyncio
import json
import logging
import uuid
from typing import Any, Iterable
from uuid import UUID

from fastapi import WebSocket

from homechef.core.clock import utcnow
from homechef.core.config import settings
from homechef.core.events import OrderEvent
from homechef.db.enums import Role

logger = logging.getLogger(__name__)

CLOSE_GOING_AWAY = 1001
CLOSE_POLICY_VIOLATION = 1008
CLOSE_INTERNAL_ERROR = 1011

_REGISTER = "register"
_UNREGISTER = "unregister"
_BROADCAST = "broadcast"
_DIRECT = "direct"
_FLUSH = "flush"
_CLOSE_ALL = "close_all"


class Connection:
    """A live socket plus its bounded outbound buffer."""

    def __init__(self, websocket: WebSocket, user_id: UUID, role: str, buffer_size: int):
        self.id = uuid.uuid4()
        self.websocket = websocket
        self.user_id = user_id
        self.role = role
        self.queue: asyncio.Queue[str] = asyncio.Queue(maxsize=buffer_size)
        self.writer: asyncio.Task | None = None
        self.closed = False
        self.close_code: int | None = None

    def __repr__(self) -> str:
        return f"<Connection {self.id} user={self.user_id} role={self.role}>"


class ConnectionHub:
    """Registry of live connections indexed by user and role, with fan-out."""

    def __init__(self, send_buffer: int | None = None, ping_interval: float | None = None):
        self._send_buffer = send_buffer or settings.WS_SEND_BUFFER
        self._ping_interval = ping_interval or settings.WS_PING_INTERVAL_SEC
        # Owned by the coordinator task.
        self._connections: dict[UUID, Connection] = {}
        self._by_user: dict[UUID, set[UUID]] = {}
        self._by_role: dict[str, set[UUID]] = {}
        self._commands: asyncio.Queue | None = None
        self._loop: asyncio.AbstractEventLoop | None = None
        self._coordinator: asyncio.Task | None = None
        self._heartbeat: asyncio.Task | None = None
        # Socket closes started from the coordinator; held until they finish.
        self._closing: set[asyncio.Task] = set()

    @property
    def running(self) -> bool:
        return self._coordinator is not None and not self._coordinator.done()

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    async def start(self, *, heartbeat: bool = True) -> None:
        if self.running:
            return
        self._loop = asyncio.get_running_loop()
        self._commands = asyncio.Queue()
        self._coordinator = asyncio.create_task(self._coordinate(), name="ws-hub")
        if heartbeat:
            self._heartbeat = asyncio.create_task(self._heartbeat_loop(), name="ws-heartbeat")

    async def stop(self, code: int = CLOSE_GOING_AWAY) -> None:
        """Close every connection with code and stop the coordinator."""
        if not self.running:
            return
        if self._heartbeat:
            self._heartbeat.cancel()
            await asyncio.gather(self._heartbeat, return_exceptions=True)
            self._heartbeat = None
        done = self._loop.create_future()
        self._commands.put_nowait((_CLOSE_ALL, code, done))
        await done
        self._coordinator.cancel()
        await asyncio.gather(self._coordinator, return_exceptions=True)
        self._coordinator = None
        self._commands = None

    def _submit(self, command: tuple) -> bool:
        """Queue a command from any thread."""
        commands = self._commands
        if not self.running or self._loop is None or commands is None:
            logger.debug("Hub not running; dropped %s command", command[0])
            return False
        try:
            running_loop = asyncio.get_running_loop()
        except RuntimeError:
            running_loop = None
        if running_loop is self._loop:
            commands.put_nowait(command)
        else:
            self._loop.call_soon_threadsafe(commands.put_nowait, command)
        return True

    # -------------------------------------------------------------------------
    # Registration (called on the hub loop)
    # -------------------------------------------------------------------------

    async def register(self, websocket: WebSocket, user_id: UUID, role: str) -> Connection:
        conn = Connection(websocket, user_id, role, self._send_buffer)
        done = self._loop.create_future()
        self._submit((_REGISTER, conn, done))
        await done
        return conn

    async def unregister(self, conn: Connection, code: int | None = None) -> None:
        done = self._loop.create_future()
        if not self._submit((_UNREGISTER, conn, code, done)):
            return
        await done

    async def flush(self) -> None:
        """Wait until every queued command ran and every buffer was written."""
        done = self._loop.create_future()
        if not self._submit((_FLUSH, done)):
            return
        await done
        await asyncio.gather(
            *(c.queue.join() for c in list(self._connections.values()) if not c.closed)
        )

    # -------------------------------------------------------------------------
    # Fan-out primitives (thread-safe)
    # -------------------------------------------------------------------------

    def broadcast_all(self, message: dict[str, Any]) -> bool:
        return self._submit((_BROADCAST, (), (), True, _encode(message)))

    def broadcast_to_user(self, user_id: UUID, message: dict[str, Any]) -> bool:
        framed = {**message, "user_id": str(user_id)}
        return self._submit((_BROADCAST, (user_id,), (), False, _encode(framed)))

    def broadcast_to_role(self, role: str | Role, message: dict[str, Any]) -> bool:
        role_value = role.value if isinstance(role, Role) else role
        return self._submit((_BROADCAST, (), (role_value,), False, _encode(message)))

    def send(self, conn: Connection, message: dict[str, Any]) -> bool:
        """Queue a frame for a single connection."""
        return self._submit((_DIRECT, conn, _encode(message)))

    def publish_order_event(self, event: OrderEvent) -> None:
        """
        Event-bus subscriber: the order's participants plus every admin.

        A connection matching both sets receives the frame once.
        """
        self._submit(
            (_BROADCAST, tuple(event.audience), (Role.ADMIN.value,), False, _encode(event.to_frame()))
        )

    # -------------------------------------------------------------------------
    # Introspection
    # -------------------------------------------------------------------------

    def connection_count(self) -> int:
        return len(self._connections)

    def user_connection_count(self, user_id: UUID) -> int:
        return len(self._by_user.get(user_id, ()))

    # -------------------------------------------------------------------------
    # Coordinator
    # -------------------------------------------------------------------------

    async def _coordinate(self) -> None:
        while True:
            command = await self._commands.get()
            op = command[0]
            try:
                if op == _REGISTER:
                    _, conn, done = command
                    self._add(conn)
                    done.set_result(conn)
                elif op == _UNREGISTER:
                    _, conn, code, done = command
                    self._remove(conn, code)
                    if done is not None and not done.done():
                        done.set_result(None)
                elif op == _BROADCAST:
                    _, user_ids, roles, everyone, text = command
                    for conn in self._targets(user_ids, roles, everyone):
                        self._offer(conn, text)
                elif op == _DIRECT:
                    _, conn, text = command
                    if conn.id in self._connections:
                        self._offer(conn, text)
                elif op == _FLUSH:
                    command[1].set_result(None)
                elif op == _CLOSE_ALL:
                    _, code, done = command
                    closers = [self._remove(c, code) for c in list(self._connections.values())]
                    await asyncio.gather(*(t for t in closers if t), return_exceptions=True)
                    done.set_result(None)
            except Exception:
                logger.exception("Hub command %s failed", op)

    def _add(self, conn: Connection) -> None:
        self._connections[conn.id] = conn
        self._by_user.setdefault(conn.user_id, set()).add(conn.id)
        self._by_role.setdefault(conn.role, set()).add(conn.id)
        conn.writer = asyncio.create_task(self._write(conn), name=f"ws-writer-{conn.id}")
        logger.info("WebSocket registered user=%s role=%s", conn.user_id, conn.role)

    def _remove(self, conn: Connection, code: int | None) -> asyncio.Task | None:
        """Drop conn from every index; close its socket when code is given."""
        if self._connections.pop(conn.id, None) is None:
            return None
        for index, key in ((self._by_user, conn.user_id), (self._by_role, conn.role)):
            members = index.get(key)
            if members is not None:
                members.discard(conn.id)
                if not members:
                    del index[key]
        conn.closed = True
        if conn.writer is not None and conn.writer is not asyncio.current_task():
            conn.writer.cancel()
        logger.info("WebSocket unregistered user=%s role=%s code=%s", conn.user_id, conn.role, code)
        if code is None:
            return None
        conn.close_code = code
        task = asyncio.create_task(self._close_socket(conn, code))
        self._closing.add(task)
        task.add_done_callback(self._closing.discard)
        return task

    def _targets(
        self, user_ids: Iterable[UUID], roles: Iterable[str], everyone: bool
    ) -> list[Connection]:
        if everyone:
            return list(self._connections.values())
        ids: set[UUID] = set()
        for user_id in user_ids:
            ids.update(self._by_user.get(user_id, ()))
        for role in roles:
            ids.update(self._by_role.get(role, ()))
        return [self._connections[i] for i in ids if i in self._connections]

    def _offer(self, conn: Connection, text: str) -> None:
        try:
            conn.queue.put_nowait(text)
        except asyncio.QueueFull:
            logger.warning("WebSocket send buffer full, dropping slow consumer %s", conn)
            self._remove(conn, CLOSE_POLICY_VIOLATION)

    async def _write(self, conn: Connection) -> None:
        while True:
            text = await conn.queue.get()
            try:
                await conn.websocket.send_text(text)
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                logger.info("WebSocket send failed for %s (%s)", conn, type(exc).__name__)
                self._submit((_UNREGISTER, conn, None, None))
                conn.queue.task_done()
                return
            conn.queue.task_done()

    async def _close_socket(self, conn: Connection, code: int) -> None:
        try:
            await conn.websocket.close(code=code)
        except Exception as exc:
            logger.debug("WebSocket close failed for %s (%s)", conn, type(exc).__name__)

    async def _heartbeat_loop(self) -> None:
        while True:
            await asyncio.sleep(self._ping_interval)
            self.broadcast_all({"type": "ping", "event": "ping", "timestamp": utcnow().isoformat()})


def _encode(message: dict[str, Any]) -> str:
    if "timestamp" not in message:
        message = {**message, "timestamp": utcnow().isoformat()}
    return json.dumps(message, default=str)


# Singleton instance
hub = ConnectionHub()
