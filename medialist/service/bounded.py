"""Timeout and availability policy for calls into the store and the session cache."""

from __future__ import annotations

import asyncio
from typing import Any, Awaitable, Callable, TypeVar

from psycopg import OperationalError
from psycopg_pool import PoolTimeout
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import TimeoutError as RedisTimeoutError

from medialist.logging import get_logger
from medialist.service.errors import ServiceUnavailableError, StoreTimeoutError

logger = get_logger(__name__)

T = TypeVar("T")


def _log_late_failure(label: str) -> Callable[["asyncio.Future[Any]"], None]:
    def _done(worker: "asyncio.Future[Any]") -> None:
        if worker.cancelled():
            return
        exc = worker.exception()
        if exc is not None:
            logger.warning("store_call_failed_after_timeout", operation=label, error=str(exc))

    return _done


async def call_store(
    label: str, func: Callable[..., T], *args: Any, timeout: float, **kwargs: Any
) -> T:
    """Run a blocking store method in a worker thread under ``timeout``.

    A timeout does not stop the thread. The raised ``StoreTimeoutError``
    carries the still running call as ``pending``.
    """
    worker = asyncio.ensure_future(asyncio.to_thread(func, *args, **kwargs))
    try:
        return await asyncio.wait_for(asyncio.shield(worker), timeout)
    except asyncio.TimeoutError as exc:
        logger.error("store_call_timeout", operation=label, timeout=timeout)
        worker.add_done_callback(_log_late_failure(label))
        raise StoreTimeoutError(
            "Document store did not respond, please retry",
            pending=worker,
            detail={"operation": label},
        ) from exc
    except (OperationalError, PoolTimeout) as exc:
        logger.error("store_unavailable", operation=label, error=str(exc))
        raise ServiceUnavailableError(
            "Document store unavailable, please retry", detail={"operation": label}
        ) from exc


async def call_cache(label: str, awaitable: Awaitable[T], *, timeout: float) -> T:
    """Await a session cache call under ``timeout``."""
    try:
        return await asyncio.wait_for(awaitable, timeout)
    except asyncio.TimeoutError as exc:
        logger.error("cache_call_timeout", operation=label, timeout=timeout)
        raise ServiceUnavailableError(
            "Session cache did not respond, please retry", detail={"operation": label}
        ) from exc
    except (RedisConnectionError, RedisTimeoutError) as exc:
        logger.error("cache_unavailable", operation=label, error=str(exc))
        raise ServiceUnavailableError(
            "Session cache unavailable, please retry", detail={"operation": label}
        ) from exc


class StoreBacked:
    """Mixin for services that reach the document store through ``call_store``."""

    store: Any
    store_timeout: float

    async def _store(self, method: str, *args: Any, **kwargs: Any) -> Any:
        return await call_store(
            method, getattr(self.store, method), *args, timeout=self.store_timeout, **kwargs
        )
