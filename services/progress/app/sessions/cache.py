"""Redis cache helpers for watch-session liveness.

Key schema
----------
watch:session:{session_id}:heartbeat     Hash   TTL stale threshold   last heartbeat

The database row is authoritative; the cache lets dashboards ask "is
this player still alive" without touching Postgres. All functions are
best-effort: callers catch and log exceptions.
"""

from __future__ import annotations

import time
from uuid import UUID

from redis.asyncio import Redis


def _heartbeat_key(session_id: UUID) -> str:
    return f"watch:session:{session_id}:heartbeat"


async def store_heartbeat(
    session_id: UUID,
    user_id: UUID,
    lesson_id: UUID,
    ttl_secs: int,
    redis: Redis,
) -> None:
    key = _heartbeat_key(session_id)
    await redis.hset(key, mapping={
        "user_id": str(user_id),
        "lesson_id": str(lesson_id),
        "timestamp": str(int(time.time())),
    })
    await redis.expire(key, ttl_secs)


async def clear_heartbeat(session_id: UUID, redis: Redis) -> None:
    await redis.delete(_heartbeat_key(session_id))
