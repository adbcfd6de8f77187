"""Realtime message schemas.

Inbound messages are a tagged union on ``type`` and are validated here,
before anything reaches arena logic. Outbound messages are plain dicts built
by :func:`envelope`, which stamps the server time (epoch milliseconds).

Client -> Server:
    {"type": "auth", "token": "..."}
    {"type": "join_arena", "arenaId": 1}
    {"type": "arena_chat", "arenaId": 1, "message": "gg"}
    {"type": "update_score", "arenaId": 1, "playerId": 7, "score": 40, "moves": 12}
    {"type": "leave_arena", "arenaId": 1}
    {"type": "ping"}

Server -> Client:
    auth_success, auth_error, arena_state, spectator_joined, spectator_left,
    arena_chat, score_update, arena_status, arena_completed, user_status,
    notification, ping, pong, error
"""

from __future__ import annotations

import json
import time
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter
from pydantic import ValidationError as PydanticValidationError

from thumbs.errors import ValidationError


class _Inbound(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class AuthMessage(_Inbound):
    type: Literal["auth"]
    token: str = Field(min_length=1)


class JoinArenaMessage(_Inbound):
    type: Literal["join_arena"]
    arena_id: int = Field(alias="arenaId")


class ArenaChatMessage(_Inbound):
    type: Literal["arena_chat"]
    arena_id: int = Field(alias="arenaId")
    message: str


class UpdateScoreMessage(_Inbound):
    type: Literal["update_score"]
    arena_id: int = Field(alias="arenaId")
    player_id: int = Field(alias="playerId")
    score: int = Field(ge=0)
    moves: int | None = Field(default=None, ge=0)


class LeaveArenaMessage(_Inbound):
    type: Literal["leave_arena"]
    arena_id: int = Field(alias="arenaId")


class PingMessage(_Inbound):
    type: Literal["ping"]


class PongMessage(_Inbound):
    type: Literal["pong"]


InboundMessage = Annotated[
    Union[
        AuthMessage,
        JoinArenaMessage,
        ArenaChatMessage,
        UpdateScoreMessage,
        LeaveArenaMessage,
        PingMessage,
        PongMessage,
    ],
    Field(discriminator="type"),
]

_inbound_adapter: TypeAdapter[InboundMessage] = TypeAdapter(InboundMessage)


def parse_inbound(raw: str | bytes) -> InboundMessage:
    """Decode and validate one inbound frame.

    Raises:
        ValidationError: ``INVALID_JSON`` or ``INVALID_MESSAGE``.
    """
    try:
        data = json.loads(raw)
    except (json.JSONDecodeError, UnicodeDecodeError):
        raise ValidationError("Invalid JSON", "INVALID_JSON") from None

    if not isinstance(data, dict) or "type" not in data:
        raise ValidationError("Message type is required", "INVALID_MESSAGE")

    try:
        return _inbound_adapter.validate_python(data)
    except PydanticValidationError as exc:
        first = exc.errors()[0]
        if first.get("type") == "union_tag_invalid":
            raise ValidationError(f"Unknown message type: {data['type']}", "UNKNOWN_TYPE") from None
        loc = ".".join(str(p) for p in first.get("loc", ()) if p != data["type"])
        raise ValidationError(f"Invalid {data['type']} message: {loc or first['msg']}", "INVALID_MESSAGE") from None


def server_timestamp() -> int:
    return int(time.time() * 1000)


def envelope(type_: str, **fields: Any) -> dict[str, Any]:
    """Build an outbound message; every envelope carries the server timestamp."""
    return {"type": type_, **fields, "timestamp": server_timestamp()}


def error_envelope(message: str, code: str | None = None) -> dict[str, Any]:
    if code is None:
        return envelope("error", error=message)
    return envelope("error", error=message, code=code)
