"""Periodic liveness sweep over the connection registry."""

from __future__ import annotations

import asyncio

import structlog

from thumbs.ws.registry import ConnectionRegistry

logger = structlog.get_logger()


async def run_heartbeat(registry: ConnectionRegistry, interval: float) -> None:
    """Sweep the registry every ``interval`` seconds until cancelled."""
    logger.info("ws_heartbeat_started", interval=interval)
    try:
        while True:
            await asyncio.sleep(interval)
            dead = registry.sweep()
            if dead:
                logger.info("ws_heartbeat_swept", closed=len(dead), remaining=registry.open_count)
    except asyncio.CancelledError:
        logger.info("ws_heartbeat_stopped")
        raise
