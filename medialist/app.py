from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, Dict, List

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from medialist.api.error_handling import register_exception_handlers
from medialist.api.routes import router
from medialist.config import Settings
from medialist.logging import (
    bind_request_context,
    clear_request_context,
    get_logger,
    set_correlation_id,
)

logger = get_logger(__name__)

_settings = Settings.from_env()

__version__ = "0.1.0"

HEALTH_CHECK_TIMEOUT_SECONDS = 3


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Build the runtime on startup and release its connections on shutdown."""
    from medialist.service.runtime import get_runtime

    get_runtime()
    yield
    try:
        await get_runtime().aclose()
        logger.info("runtime_cleanup_complete")
    except Exception as exc:
        logger.error("shutdown_failed", error=str(exc))


app = FastAPI(title="Medialist API", version=__version__, lifespan=lifespan)


def _allowed_origins() -> List[str]:
    if _settings.cors_allow_origins:
        return _settings.cors_allow_origins
    return [
        "http://localhost",
        "http://localhost:3000",
        "http://localhost:5173",
        "http://127.0.0.1:3000",
        "http://127.0.0.1:5173",
    ]


app.add_middleware(
    CORSMiddleware,
    allow_origins=_allowed_origins(),
    allow_credentials=False,
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization", "X-Request-ID"],
    expose_headers=["X-Request-ID"],
    max_age=3600,
)


@app.middleware("http")
async def add_correlation_id(request, call_next):
    """Tag every log line of a request with one id, echoed as ``X-Request-ID``.

    A client supplied ``X-Request-ID`` is reused; otherwise a new UUID is made.
    """
    clear_request_context()
    correlation_id = set_correlation_id(request.headers.get("X-Request-ID"))
    bind_request_context(method=request.method, path=request.url.path)
    response = await call_next(request)
    response.headers["X-Request-ID"] = correlation_id
    return response


@app.middleware("http")
async def add_security_headers(request, call_next):
    response = await call_next(request)
    response.headers.setdefault("X-Content-Type-Options", "nosniff")
    response.headers.setdefault("X-Frame-Options", "DENY")
    if request.url.path.startswith("/v1/"):
        response.headers.setdefault("Cache-Control", "no-store")
    return response


register_exception_handlers(app)
app.include_router(router)


@app.get("/healthz")
async def health():
    """Report whether the document store and the session cache answer."""
    from medialist.service.runtime import get_runtime

    runtime = get_runtime()

    async def _run_bounded(label: str, awaitable) -> bool:
        try:
            return bool(await asyncio.wait_for(awaitable, HEALTH_CHECK_TIMEOUT_SECONDS))
        except asyncio.TimeoutError:
            logger.error(
                "health_check_timeout", component=label, timeout=HEALTH_CHECK_TIMEOUT_SECONDS
            )
        except Exception as exc:
            logger.error("health_check_failed", component=label, error=str(exc))
        return False

    store_ok = await _run_bounded("store", asyncio.to_thread(runtime.store.ping))
    cache_ok = await _run_bounded("cache", runtime.cache.ping())
    checks: Dict[str, Dict[str, Any]] = {
        "store": {
            "status": "healthy" if store_ok else "unhealthy",
            "type": type(runtime.store).__name__,
        },
        "cache": {
            "status": "healthy" if cache_ok else "unhealthy",
            "type": type(runtime.cache).__name__,
        },
    }
    healthy = store_ok and cache_ok
    return JSONResponse(
        status_code=200 if healthy else 503,
        content={
            "status": "healthy" if healthy else "unhealthy",
            "checks": checks,
            "version": __version__,
            "timestamp": datetime.utcnow().isoformat(),
        },
    )


def create_app() -> FastAPI:
    return app
