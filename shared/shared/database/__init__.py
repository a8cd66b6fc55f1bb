from shared.database.postgres import (
    Base,
    JSONType,
    dialect_insert,
    get_async_engine,
)
from shared.database.redis_client import get_redis_client

__all__ = [
    "Base",
    "JSONType",
    "dialect_insert",
    "get_async_engine",
    "get_redis_client",
]
