from fastapi import Request
from redis.asyncio import Redis

from app.config import Settings


def get_settings() -> Settings:
    return Settings()


async def get_redis(request: Request) -> Redis | None:
    """The heartbeat cache client, or ``None`` when Redis is not configured."""
    return getattr(request.app.state, "redis", None)
