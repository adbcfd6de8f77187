"""Fan-out of realtime envelopes to arena audiences, single users and everyone.

The arena audience is read from persisted state (players, then spectators in
join order, deduplicated). Only recipients with a live session receive
anything; offline users are skipped silently.
"""

from __future__ import annotations

from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from thumbs.db.models import ArenaPlayer, ArenaSpectator
from thumbs.ws.messages import envelope
from thumbs.ws.registry import ConnectionRegistry


class Broadcaster:
    def __init__(self, registry: ConnectionRegistry) -> None:
        self.registry = registry

    async def arena_audience(self, db: AsyncSession, arena_id: int) -> list[int]:
        """Players by seat, then spectators in join order."""
        players = await db.execute(
            select(ArenaPlayer.user_id)
            .where(ArenaPlayer.arena_id == arena_id)
            .order_by(ArenaPlayer.id)
        )
        spectators = await db.execute(
            select(ArenaSpectator.user_id)
            .where(ArenaSpectator.arena_id == arena_id)
            .order_by(ArenaSpectator.joined_at, ArenaSpectator.id)
        )
        audience: list[int] = []
        for user_id in [*players.scalars(), *spectators.scalars()]:
            if user_id not in audience:
                audience.append(user_id)
        return audience

    def to_users(
        self,
        user_ids: list[int],
        type_: str,
        exclude_user_id: int | None = None,
        **fields: Any,
    ) -> int:
        return self.registry.send_to_users(user_ids, envelope(type_, **fields), exclude_user_id)

    def to_user(self, user_id: int, type_: str, **fields: Any) -> bool:
        return self.registry.send_to_user(user_id, envelope(type_, **fields))

    def to_all(self, type_: str, exclude_user_id: int | None = None, **fields: Any) -> int:
        return self.registry.broadcast_all(envelope(type_, **fields), exclude_user_id)
