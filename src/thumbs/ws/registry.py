"""WebSocket connection registry.

Maps each authenticated user to their single live session. A newer login
replaces (and closes) the older session and inherits its spectated arenas;
unregistering with a stale handle is a no-op, so a replaced connection's
disconnect cleanup cannot evict the session that replaced it.

Every accepted socket is tracked from ``accept`` until ``release``, whether
or not it ever authenticates, so the heartbeat sweep reaches all of them.

Every connection owns an outbox queue drained by a writer task. Sends are
synchronous enqueues, so a fan-out issued for message A before message B
lands A before B in every recipient's outbox.
"""

from __future__ import annotations

import asyncio
import json
import time
from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Any

import structlog
from fastapi import WebSocket

from thumbs.ws.messages import envelope

logger = structlog.get_logger()

SESSION_REPLACED_CODE = 4000
HEARTBEAT_TIMEOUT_CODE = 4002


@dataclass(eq=False)
class ClientConnection:
    """A single WebSocket client."""

    websocket: WebSocket
    conn_id: str
    user_id: int | None = None
    arenas: set[int] = field(default_factory=set)
    connected_at: float = field(default_factory=time.time)
    is_alive: bool = True
    closed: bool = False
    messages_sent: int = 0
    outbox: asyncio.Queue[str] = field(default_factory=asyncio.Queue, repr=False)
    _writer: asyncio.Task[None] | None = field(default=None, repr=False)

    @property
    def authenticated(self) -> bool:
        return self.user_id is not None

    def start(self) -> None:
        if self._writer is None:
            self._writer = asyncio.create_task(self._drain(), name=f"ws-writer-{self.conn_id}")

    def send(self, message: dict[str, Any]) -> bool:
        """Queue a message for delivery. Returns False once the connection is closed."""
        if self.closed:
            return False
        self.start()
        self.outbox.put_nowait(json.dumps(message, default=str))
        return True

    async def _drain(self) -> None:
        while True:
            payload = await self.outbox.get()
            try:
                if not self.closed:
                    await self.websocket.send_text(payload)
                    self.messages_sent += 1
            except Exception:
                # Peer is gone; the receive loop notices and runs cleanup.
                self.closed = True
                logger.debug("ws_send_failed", conn_id=self.conn_id, user_id=self.user_id)
            finally:
                self.outbox.task_done()

    async def flush(self) -> None:
        """Wait until everything queued so far has been written (or dropped)."""
        await self.outbox.join()

    async def close(self, code: int = 1000, reason: str = "") -> None:
        if self.closed and self._writer is None:
            return
        self.closed = True
        if self._writer is not None:
            self._writer.cancel()
            self._writer = None
        while not self.outbox.empty():
            self.outbox.get_nowait()
            self.outbox.task_done()
        try:
            await self.websocket.close(code=code, reason=reason)
        except Exception:
            logger.debug("ws_close_failed", conn_id=self.conn_id, user_id=self.user_id)


class ConnectionRegistry:
    """Tracks the live session of every authenticated user.

    Safe for asyncio via the single-threaded event loop: every mutation is
    synchronous, there is no await between reading and writing the map.
    """

    def __init__(self) -> None:
        self._sessions: dict[int, ClientConnection] = {}  # user_id -> connection
        self._open: dict[str, ClientConnection] = {}  # conn_id -> every accepted socket
        self._pending: set[asyncio.Task[None]] = set()

    @property
    def connection_count(self) -> int:
        return len(self._sessions)

    @property
    def open_count(self) -> int:
        return len(self._open)

    def accept(self, conn: ClientConnection) -> None:
        """Track a freshly accepted socket until :meth:`release`."""
        conn.start()
        self._open[conn.conn_id] = conn

    def release(self, conn: ClientConnection) -> None:
        self._open.pop(conn.conn_id, None)

    def register(self, user_id: int, conn: ClientConnection) -> ClientConnection | None:
        """Bind ``conn`` as the user's session. Returns the replaced session, if any."""
        conn.user_id = user_id
        self.accept(conn)
        previous = self._sessions.get(user_id)
        self._sessions[user_id] = conn
        if previous is None or previous is conn:
            logger.info("ws_registered", conn_id=conn.conn_id, user_id=user_id)
            return None

        # The replaced socket's cleanup skips arena teardown, so its arenas move here
        conn.arenas |= previous.arenas
        previous.arenas.clear()
        logger.info(
            "ws_session_replaced",
            user_id=user_id,
            old_conn_id=previous.conn_id,
            new_conn_id=conn.conn_id,
            arenas=sorted(conn.arenas),
        )
        self._spawn(previous.close(SESSION_REPLACED_CODE, "Session replaced"))
        return previous

    def unregister(self, user_id: int, conn: ClientConnection) -> bool:
        """Remove the user's session only if ``conn`` is still that session."""
        if self._sessions.get(user_id) is not conn:
            return False
        del self._sessions[user_id]
        logger.info("ws_unregistered", conn_id=conn.conn_id, user_id=user_id)
        return True

    def lookup(self, user_id: int) -> ClientConnection | None:
        return self._sessions.get(user_id)

    def is_online(self, user_id: int) -> bool:
        return user_id in self._sessions

    def connections(self) -> list[ClientConnection]:
        return list(self._sessions.values())

    def send_to_user(self, user_id: int, message: dict[str, Any]) -> bool:
        conn = self._sessions.get(user_id)
        if conn is None:
            return False
        return conn.send(message)

    def send_to_users(
        self,
        user_ids: Iterable[int],
        message: dict[str, Any],
        exclude_user_id: int | None = None,
    ) -> int:
        """Send to each distinct recipient once. Returns how many were queued."""
        sent = 0
        seen: set[int] = set()
        for user_id in user_ids:
            if user_id in seen or user_id == exclude_user_id:
                continue
            seen.add(user_id)
            if self.send_to_user(user_id, message):
                sent += 1
        return sent

    def broadcast_all(self, message: dict[str, Any], exclude_user_id: int | None = None) -> int:
        return self.send_to_users(list(self._sessions), message, exclude_user_id)

    def sweep(self) -> list[ClientConnection]:
        """One heartbeat pass over every open socket, authenticated or not.

        Sockets that sent nothing since the previous pass are closed; the
        rest are marked not-alive and probed with a ``ping``. Returns the
        connections that were closed.
        """
        dead: list[ClientConnection] = []
        for conn in list(self._open.values()):
            if conn.closed:
                continue
            if not conn.is_alive:
                dead.append(conn)
                continue
            conn.is_alive = False
            conn.send(envelope("ping"))

        for conn in dead:
            logger.info("ws_heartbeat_timeout", conn_id=conn.conn_id, user_id=conn.user_id)
            self._spawn(conn.close(HEARTBEAT_TIMEOUT_CODE, "Heartbeat timeout"))
        return dead

    async def flush(self) -> None:
        await asyncio.gather(*(conn.flush() for conn in list(self._open.values())))

    async def close_all(self) -> None:
        conns = list({**self._open, **{c.conn_id: c for c in self._sessions.values()}}.values())
        self._sessions.clear()
        self._open.clear()
        await asyncio.gather(*(conn.close(1001, "Server shutting down") for conn in conns))
        if self._pending:
            await asyncio.gather(*self._pending, return_exceptions=True)

    def get_stats(self) -> dict[str, Any]:
        return {
            "total_connections": len(self._sessions),
            "messages_sent": sum(c.messages_sent for c in self._sessions.values()),
        }

    def _spawn(self, coro: Any) -> None:
        task = asyncio.create_task(coro)
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
