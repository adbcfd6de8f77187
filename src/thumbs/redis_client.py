"""Optional Redis client backing the API rate limiter.

An empty ``THUMBS_REDIS_URL`` turns Redis off: :func:`get_redis` then
returns ``None`` and callers skip the Redis-backed behaviour.
"""

import redis.asyncio as redis
import structlog

logger = structlog.get_logger()

_client: redis.Redis | None = None


async def init_redis(url: str) -> None:
    global _client  # noqa: PLW0603
    if not url:
        logger.info("redis_disabled")
        return
    _client = redis.from_url(url, decode_responses=True, max_connections=20)  # type: ignore[no-untyped-call]
    logger.info("redis_configured", url=url.rsplit("@", 1)[-1])


async def close_redis() -> None:
    global _client  # noqa: PLW0603
    if _client is not None:
        await _client.aclose()
        _client = None


def get_redis() -> redis.Redis | None:
    return _client
