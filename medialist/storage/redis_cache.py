from __future__ import annotations

import hashlib
from typing import Optional

import redis.asyncio as aioredis
from redis import Redis

SESSION_PREFIX = "medialist:session"
USER_SESSIONS_PREFIX = "medialist:user_sessions"


def session_key(token: str) -> str:
    """Cache key for an access token; the token itself never becomes a key."""
    digest = hashlib.sha256(token.encode()).hexdigest()
    return f"{SESSION_PREFIX}:{digest}"


def user_sessions_key(user_id: str) -> str:
    return f"{USER_SESSIONS_PREFIX}:{user_id}"


class RedisCache:
    """Session cache mapping issued access tokens to user ids.

    Entries expire natively after the access-token lifetime. Each session
    key is also tracked in a per-user set so every session of a user can be
    dropped at once (password change, account deletion).
    """

    def __init__(self, redis_url: str, *, socket_timeout: float = 5.0):
        self.redis_url = redis_url
        self.client = aioredis.from_url(
            redis_url,
            decode_responses=True,
            socket_timeout=socket_timeout,
            socket_connect_timeout=socket_timeout,
        )

    def verify_connection(self) -> None:
        """Assert Redis connectivity before enabling dependent features."""
        # Short-lived sync client so the async pool is not bound to a throwaway loop
        sync_client = Redis.from_url(self.redis_url, decode_responses=True)
        try:
            sync_client.ping()
        finally:
            sync_client.close()

    async def put(self, token: str, user_id: str, ttl_seconds: int) -> None:
        key = session_key(token)
        index = user_sessions_key(user_id)
        pipe = self.client.pipeline()
        pipe.set(key, user_id, ex=ttl_seconds)
        pipe.sadd(index, key)
        pipe.expire(index, ttl_seconds)
        await pipe.execute()

    async def get(self, token: str) -> Optional[str]:
        return await self.client.get(session_key(token))

    async def delete(self, token: str) -> None:
        key = session_key(token)
        user_id = await self.client.get(key)
        pipe = self.client.pipeline()
        pipe.delete(key)
        if user_id:
            pipe.srem(user_sessions_key(user_id), key)
        await pipe.execute()

    async def revoke_user(self, user_id: str) -> int:
        """Drop every cached session of ``user_id``; returns how many were tracked."""
        index = user_sessions_key(user_id)
        keys = await self.client.smembers(index)
        pipe = self.client.pipeline()
        for key in keys:
            pipe.delete(key)
        pipe.delete(index)
        await pipe.execute()
        return len(keys)

    async def ping(self) -> bool:
        return bool(await self.client.ping())

    async def close(self) -> None:
        """Close Redis connection pool. Call when shutting down or resetting runtime."""
        await self.client.close()
        await self.client.connection_pool.disconnect()


class SyncRedisCache:
    """Synchronous Redis wrapper for use in tests.

    Uses a synchronous client internally to avoid event loop binding issues
    in pytest, but exposes the same awaitable methods as ``RedisCache``.
    """

    def __init__(self, redis_url: str, *, socket_timeout: float = 5.0):
        self.redis_url = redis_url
        self.client = Redis.from_url(
            redis_url,
            decode_responses=True,
            socket_timeout=socket_timeout,
            socket_connect_timeout=socket_timeout,
        )

    def verify_connection(self) -> None:
        self.client.ping()

    async def put(self, token: str, user_id: str, ttl_seconds: int) -> None:
        key = session_key(token)
        index = user_sessions_key(user_id)
        pipe = self.client.pipeline()
        pipe.set(key, user_id, ex=ttl_seconds)
        pipe.sadd(index, key)
        pipe.expire(index, ttl_seconds)
        pipe.execute()

    async def get(self, token: str) -> Optional[str]:
        return self.client.get(session_key(token))

    async def delete(self, token: str) -> None:
        key = session_key(token)
        user_id = self.client.get(key)
        pipe = self.client.pipeline()
        pipe.delete(key)
        if user_id:
            pipe.srem(user_sessions_key(user_id), key)
        pipe.execute()

    async def revoke_user(self, user_id: str) -> int:
        index = user_sessions_key(user_id)
        keys = self.client.smembers(index)
        pipe = self.client.pipeline()
        for key in keys:
            pipe.delete(key)
        pipe.delete(index)
        pipe.execute()
        return len(keys)

    async def ping(self) -> bool:
        return bool(self.client.ping())

    async def close(self) -> None:
        self.client.close()
