from __future__ import annotations

import asyncio
import threading
from typing import Optional
from urllib.parse import urlparse, urlunparse

from redis.exceptions import RedisError

from medialist.config import get_settings, reset_settings_cache
from medialist.logging import get_logger
from medialist.service.auth import AuthService
from medialist.service.credentials import CredentialStore
from medialist.service.lists import ListService
from medialist.service.ownership import OwnershipCoordinator
from medialist.service.tags import TagPropagation
from medialist.service.tokens import TokenService
from medialist.service.users import UserDirectory
from medialist.storage.memory import MemoryCache, MemoryStore
from medialist.storage.postgres import PostgresStore
from medialist.storage.redis_cache import RedisCache, SyncRedisCache

logger = get_logger(__name__)


def _mask_url_password(url: Optional[str]) -> Optional[str]:
    """Mask the password component of a URL for logging.

    Example: redis://:mypassword@localhost:6379 -> redis://:***@localhost:6379
    """
    if not url:
        return url
    try:
        parsed = urlparse(url)
    except ValueError:
        return "***url_parse_error***"
    if not parsed.password:
        return url
    netloc = parsed.hostname or ""
    if parsed.port:
        netloc = f"{netloc}:{parsed.port}"
    netloc = f"{parsed.username or ''}:***@{netloc}"
    return urlunparse(
        (parsed.scheme, netloc, parsed.path, parsed.params, parsed.query, parsed.fragment)
    )


class Runtime:
    """Builds the store, session cache and services once per process."""

    def __init__(self):
        self.settings = get_settings()
        logger.info(
            "runtime_init_started",
            use_memory_store=self.settings.use_memory_store,
            test_mode=self.settings.test_mode,
        )

        store_type = "memory" if self.settings.use_memory_store else "postgres"
        try:
            self.store = (
                MemoryStore()
                if self.settings.use_memory_store
                else PostgresStore(self.settings.database_url)
            )
        except Exception as exc:
            logger.error(
                "runtime_store_init_failed",
                store_type=store_type,
                error_type=type(exc).__name__,
                error=str(exc),
            )
            raise
        logger.info("runtime_store_initialized", store_type=store_type)

        self.cache = self._build_cache()

        timeout = self.settings.store_timeout_seconds
        self.tokens = TokenService(self.settings)
        self.credentials = CredentialStore()
        self.auth = AuthService(self.store, self.cache, self.tokens, self.settings)
        self.users = UserDirectory(
            self.store, self.credentials, self.auth, store_timeout=timeout
        )
        self.lists = ListService(self.store, store_timeout=timeout)
        self.ownership = OwnershipCoordinator(
            self.store, self.lists, self.users, self.auth, store_timeout=timeout
        )
        self.tags = TagPropagation(self.users, self.lists)

        logger.info(
            "runtime_initialized",
            store_type=store_type,
            cache_type=type(self.cache).__name__,
        )

    def _build_cache(self):
        redis_error: Exception | None = None
        socket_timeout = self.settings.cache_timeout_seconds
        if self.settings.redis_url:
            # Sync client in test mode to avoid binding to per-test event loops
            cache = (
                SyncRedisCache(self.settings.redis_url, socket_timeout=socket_timeout)
                if self.settings.test_mode
                else RedisCache(self.settings.redis_url, socket_timeout=socket_timeout)
            )
            try:
                cache.verify_connection()
                return cache
            except (RedisError, OSError) as exc:
                redis_error = exc

        if not self.settings.test_mode and not self.settings.allow_redis_fallback_dev:
            raise RuntimeError(
                "Redis is required for the session cache; start Redis or set "
                "TEST_MODE=true/ALLOW_REDIS_FALLBACK_DEV=true for the in-memory fallback."
            ) from redis_error

        fallback_mode = "TEST_MODE" if self.settings.test_mode else "ALLOW_REDIS_FALLBACK_DEV"
        logger.warning(
            "redis_disabled_fallback",
            redis_url=_mask_url_password(self.settings.redis_url),
            error=str(redis_error) if redis_error else "redis_url_missing",
            message=f"Running without Redis under {fallback_mode}; sessions are process-local.",
            mode=fallback_mode,
        )
        return MemoryCache()

    async def aclose(self) -> None:
        await self.cache.close()
        if isinstance(self.store, PostgresStore):
            await asyncio.to_thread(self.store.close)


runtime: Runtime | None = None
_runtime_lock = threading.Lock()


def get_runtime() -> Runtime:
    """Get or create the Runtime singleton (double-checked locking)."""
    global runtime
    if runtime is not None:
        return runtime
    with _runtime_lock:
        if runtime is None:
            runtime = Runtime()
        return runtime


def reset_runtime_for_tests() -> Runtime:
    """Reinitialize the runtime singleton for isolated test runs."""
    global runtime

    with _runtime_lock:
        if runtime is not None and isinstance(runtime.cache, SyncRedisCache):
            runtime.cache.client.close()

        reset_settings_cache()
        settings = get_settings()
        if not settings.test_mode:
            raise RuntimeError("runtime reset is only allowed in TEST_MODE")
        runtime = Runtime()
        return runtime
