from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Optional, Protocol

from medialist.config import ACCESS_TOKEN_TTL_SECONDS, Settings
from medialist.logging import get_logger
from medialist.service.bounded import StoreBacked, call_cache
from medialist.service.errors import (
    RefreshTokenMismatchError,
    SessionNotFoundError,
    TokenMissingError,
)
from medialist.service.tokens import TokenService
from medialist.storage.models import User

logger = get_logger(__name__)


class SessionCache(Protocol):
    async def put(self, token: str, user_id: str, ttl_seconds: int) -> None: ...

    async def get(self, token: str) -> Optional[str]: ...

    async def delete(self, token: str) -> None: ...

    async def revoke_user(self, user_id: str) -> int: ...


class SessionStore(Protocol):
    def get_user(self, user_id: str) -> Optional[User]: ...

    def set_refresh_token(self, user_id: str, refresh_token: Optional[str]) -> Optional[User]: ...


@dataclass
class AuthContext:
    user_id: str
    access_token: str


@dataclass
class TokenPair:
    access_token: str
    refresh_token: str


def extract_bearer(header: Optional[str]) -> Optional[str]:
    """Token from an ``Authorization`` value; a bare token is accepted as-is."""
    if not header:
        return None
    value = header.strip()
    if value.lower().startswith("bearer "):
        value = value[7:].strip()
    return value or None


class AuthService(StoreBacked):
    """Session lifecycle: issuing token pairs, guarding requests, refresh and logout."""

    def __init__(
        self,
        store: SessionStore,
        cache: SessionCache,
        tokens: TokenService,
        settings: Settings,
    ) -> None:
        self.store = store
        self.cache = cache
        self.tokens = tokens
        self.settings = settings
        self.store_timeout = settings.store_timeout_seconds
        self.logger = logger

    async def _cache(self, label: str, awaitable) -> Any:
        return await call_cache(label, awaitable, timeout=self.settings.cache_timeout_seconds)

    async def start_session(self, user_id: str) -> TokenPair:
        """Issue both tokens, register the access token, overwrite the refresh slot."""
        access_token = self.tokens.issue_access_token(user_id)
        refresh_token = self.tokens.issue_refresh_token(user_id)
        await self._cache(
            "session_put", self.cache.put(access_token, user_id, ACCESS_TOKEN_TTL_SECONDS)
        )
        await self._store("set_refresh_token", user_id, refresh_token)
        self.logger.info("session_started", user_id=user_id)
        return TokenPair(access_token=access_token, refresh_token=refresh_token)

    async def authorize(self, authorization: Optional[str]) -> AuthContext:
        """Resolve the caller behind an ``Authorization`` header or raise."""
        token = extract_bearer(authorization)
        if not token:
            raise TokenMissingError("Access denied, token missing.")
        payload = self.tokens.verify_access_token(token)
        user_id = await self._cache("session_get", self.cache.get(token))
        if not user_id or user_id != payload["sub"]:
            self.logger.info("session_not_found", subject=payload["sub"])
            raise SessionNotFoundError("Invalid token. User does not exist")
        return AuthContext(user_id=user_id, access_token=token)

    async def refresh(self, ctx: AuthContext, refresh_token: str) -> str:
        """Mint a new access token from the caller's current refresh token."""
        payload = self.tokens.verify_refresh_token(refresh_token)
        if payload["sub"] != ctx.user_id:
            raise RefreshTokenMismatchError("Invalid token. Login required")
        user = await self._store("get_user", ctx.user_id)
        if not user or user.refresh_token != refresh_token:
            self.logger.info("refresh_token_mismatch", user_id=ctx.user_id)
            raise RefreshTokenMismatchError("Invalid token. Login required")
        access_token = self.tokens.issue_access_token(user.id)
        await self._cache(
            "session_put", self.cache.put(access_token, user.id, ACCESS_TOKEN_TTL_SECONDS)
        )
        self.logger.info("access_token_refreshed", user_id=user.id)
        return access_token

    async def logout(self, ctx: AuthContext) -> None:
        await self._cache("session_delete", self.cache.delete(ctx.access_token))
        await self._store("set_refresh_token", ctx.user_id, None)
        self.logger.info("session_ended", user_id=ctx.user_id)

    async def revoke_all(self, user_id: str) -> int:
        """Drop every cached session and the refresh slot of ``user_id``."""
        revoked = await self._cache("session_revoke_user", self.cache.revoke_user(user_id))
        await self._store("set_refresh_token", user_id, None)
        self.logger.info("sessions_revoked", user_id=user_id, count=revoked)
        return revoked
