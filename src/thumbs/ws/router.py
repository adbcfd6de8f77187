"""Realtime WebSocket endpoint and per-message dispatcher.

Protocol (see :mod:`thumbs.ws.messages` for payloads):
    1. Client connects to /ws and sends {"type": "auth", "token": "..."}
    2. Until authenticated only ``auth`` and ``ping`` are accepted
    3. Arena commands are routed to :mod:`thumbs.arenas.service`

Every inbound message is handled in its own try block; failures produce an
``error`` envelope to the sender and the connection stays open.
"""

from __future__ import annotations

import uuid

import structlog
from fastapi import APIRouter, WebSocket, WebSocketDisconnect
from sqlalchemy.ext.asyncio import AsyncSession

from thumbs.arenas import service as arenas
from thumbs.auth.jwt import user_id_from_token
from thumbs.database import get_session_factory
from thumbs.dependencies import get_broadcaster, get_registry
from thumbs.errors import AppError, AuthError, ForbiddenError, NotFoundError
from thumbs.users.service import require_user, set_user_status
from thumbs.ws.broadcaster import Broadcaster
from thumbs.ws.messages import (
    ArenaChatMessage,
    AuthMessage,
    InboundMessage,
    JoinArenaMessage,
    LeaveArenaMessage,
    PingMessage,
    PongMessage,
    UpdateScoreMessage,
    envelope,
    error_envelope,
    parse_inbound,
)
from thumbs.ws.registry import ClientConnection, ConnectionRegistry

logger = structlog.get_logger()

router = APIRouter()


@router.websocket("/ws")
async def websocket_endpoint(websocket: WebSocket) -> None:
    registry = get_registry(websocket)
    broadcaster = get_broadcaster(websocket)

    await websocket.accept()
    conn = ClientConnection(websocket=websocket, conn_id=str(uuid.uuid4()))
    registry.accept(conn)
    logger.info("ws_connected", conn_id=conn.conn_id)

    try:
        while True:
            raw = await websocket.receive_text()
            conn.is_alive = True
            await handle_message(conn, raw, registry, broadcaster)
    except WebSocketDisconnect:
        logger.info("ws_disconnected", conn_id=conn.conn_id, user_id=conn.user_id)
    except Exception:
        logger.exception("ws_error", conn_id=conn.conn_id, user_id=conn.user_id)
    finally:
        await cleanup_connection(conn, registry, broadcaster)


async def handle_message(
    conn: ClientConnection,
    raw: str,
    registry: ConnectionRegistry,
    broadcaster: Broadcaster,
) -> None:
    """Process one inbound frame. Never raises."""
    try:
        msg = parse_inbound(raw)

        if isinstance(msg, PingMessage):
            conn.send(envelope("pong"))
        elif isinstance(msg, PongMessage):
            pass
        elif isinstance(msg, AuthMessage):
            await authenticate(conn, msg.token, registry, broadcaster)
        elif not conn.authenticated:
            conn.send(error_envelope("Not authenticated", "NOT_AUTHENTICATED"))
        else:
            await dispatch_arena_command(conn, msg, broadcaster)
    except AppError as exc:
        conn.send(error_envelope(exc.message, exc.code))
    except Exception:
        logger.exception("ws_message_error", conn_id=conn.conn_id, user_id=conn.user_id)
        conn.send(error_envelope("Failed to process message"))


async def authenticate(
    conn: ClientConnection,
    token: str,
    registry: ConnectionRegistry,
    broadcaster: Broadcaster,
) -> None:
    try:
        user_id = user_id_from_token(token)
        async with get_session_factory()() as db:
            user = await require_user(db, user_id)
            if user.is_banned:
                raise ForbiddenError("Account is banned", "ACCOUNT_BANNED")
            await set_user_status(db, user_id, "online")
    except (AuthError, NotFoundError) as exc:
        conn.send(envelope("auth_error", error=exc.message))
        logger.info("ws_auth_failed", conn_id=conn.conn_id, reason=exc.code)
        return

    previous_user = conn.user_id
    if previous_user is not None and previous_user != user_id and registry.unregister(previous_user, conn):
        async with get_session_factory()() as db:
            await leave_spectated_arenas(db, broadcaster, conn, previous_user)
    registry.register(user_id, conn)
    conn.send(envelope("auth_success", userId=user_id))
    broadcaster.to_all("user_status", exclude_user_id=user_id, userId=user_id, status="online")


async def dispatch_arena_command(
    conn: ClientConnection,
    msg: InboundMessage,
    broadcaster: Broadcaster,
) -> None:
    user_id = conn.user_id
    if user_id is None:
        raise AuthError("Not authenticated", "NOT_AUTHENTICATED")
    try:
        async with get_session_factory()() as db:
            if isinstance(msg, JoinArenaMessage):
                await arenas.join_arena(db, broadcaster, msg.arena_id, user_id)
                conn.arenas.add(msg.arena_id)
            elif isinstance(msg, ArenaChatMessage):
                await arenas.post_chat(db, broadcaster, msg.arena_id, user_id, msg.message)
            elif isinstance(msg, UpdateScoreMessage):
                await arenas.update_score(
                    db, broadcaster, msg.arena_id, user_id, msg.player_id, msg.score, msg.moves,
                )
            elif isinstance(msg, LeaveArenaMessage):
                await arenas.leave_arena(db, broadcaster, msg.arena_id, user_id)
                conn.arenas.discard(msg.arena_id)
    except NotFoundError:
        # Arena operations on unknown arenas are dropped without a reply
        logger.debug("ws_arena_not_found", conn_id=conn.conn_id, message_type=msg.type)


async def leave_spectated_arenas(
    db: AsyncSession,
    broadcaster: Broadcaster,
    conn: ClientConnection,
    user_id: int,
) -> None:
    for arena_id in sorted(conn.arenas):
        try:
            await arenas.leave_arena(db, broadcaster, arena_id, user_id)
        except NotFoundError:
            continue
    conn.arenas.clear()


async def cleanup_connection(
    conn: ClientConnection,
    registry: ConnectionRegistry,
    broadcaster: Broadcaster,
) -> None:
    """Release a closed connection.

    Presence and spectator cleanup only run when this connection is still the
    user's current session; a session replaced by a newer login has already
    handed its arenas to its successor.
    """
    await conn.close()
    registry.release(conn)
    user_id = conn.user_id
    if user_id is None or not registry.unregister(user_id, conn):
        return

    try:
        async with get_session_factory()() as db:
            await set_user_status(db, user_id, "offline")
            await leave_spectated_arenas(db, broadcaster, conn, user_id)
    except Exception:
        logger.exception("ws_cleanup_failed", conn_id=conn.conn_id, user_id=user_id)

    broadcaster.to_all("user_status", exclude_user_id=user_id, userId=user_id, status="offline")
