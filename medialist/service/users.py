from __future__ import annotations

import asyncio
from typing import Any, Dict, List, Optional, Protocol

from medialist.logging import get_logger
from medialist.service.auth import AuthService, TokenPair
from medialist.service.bounded import StoreBacked
from medialist.service.credentials import CredentialStore
from medialist.service.errors import (
    CreationError,
    DuplicateEmail,
    DuplicateUsername,
    IncorrectPassword,
    InvalidCredentials,
    InvalidType,
    ServerError,
    UserNotFound,
    ValidationError,
)
from medialist.storage.errors import DuplicateKey
from medialist.storage.models import User

logger = get_logger(__name__)

SEARCH_TYPES = ("name", "username")
TAG_OPS = ("find", "add", "remove")

# API field name -> stored attribute for sparse profile patches
_PROFILE_FIELDS = {
    "name": "name",
    "username": "username",
    "email": "email",
    "profileType": "profile_type",
}


class UserStore(Protocol):
    def create_user(
        self,
        name: str,
        username: str,
        email: str,
        password_hash: str,
        *,
        profile_type: str = "public",
        avatar: Optional[str] = None,
    ) -> User: ...

    def get_user(self, user_id: str) -> Optional[User]: ...

    def get_user_by_username(self, username: str) -> Optional[User]: ...

    def get_user_by_email(self, email: str) -> Optional[User]: ...

    def search_users_by_name(
        self, fragment: str, *, public_only: bool = True, limit: int = 50
    ) -> List[User]: ...

    def update_user(self, user_id: str, updates: Dict[str, Any]) -> Optional[User]: ...

    def set_password_hash(self, user_id: str, password_hash: str) -> Optional[User]: ...

    def delete_user(self, user_id: str) -> bool: ...

    def add_user_tag(self, user_id: str, tag: str) -> Optional[User]: ...

    def remove_user_tag(self, user_id: str, tag: str) -> Optional[User]: ...


def _duplicate_error(exc: DuplicateKey):
    if exc.field == "username":
        return DuplicateUsername("username already exists", detail={"field": "username"})
    return DuplicateEmail("email already exists", detail={"field": "email"})


class UserDirectory(StoreBacked):
    """Profile CRUD, credential checks and profile-level tags."""

    def __init__(
        self,
        store: UserStore,
        credentials: CredentialStore,
        auth: AuthService,
        *,
        store_timeout: float,
    ) -> None:
        self.store = store
        self.credentials = credentials
        self.auth = auth
        self.store_timeout = store_timeout
        self.logger = logger

    async def _require_user(self, user_id: str) -> User:
        user = await self._store("get_user", user_id)
        if not user:
            raise UserNotFound("User not found")
        return user

    async def _check_password(self, user: User, password: str) -> bool:
        return await asyncio.to_thread(
            self.credentials.verify_password, user.password_hash, password
        )

    async def create_user(
        self,
        *,
        name: str,
        username: str,
        email: str,
        password: str,
        profile_type: str = "public",
        avatar: Optional[str] = None,
    ) -> User:
        if await self._store("get_user_by_username", username):
            raise DuplicateUsername("username already exists", detail={"field": "username"})
        password_hash = await asyncio.to_thread(self.credentials.hash_password, password)
        try:
            user = await self._store(
                "create_user",
                name,
                username,
                email,
                password_hash,
                profile_type=profile_type,
                avatar=avatar,
            )
        except DuplicateKey as exc:
            raise _duplicate_error(exc) from exc
        if not user:
            raise CreationError("Unable to create user")
        self.logger.info("user_created", user_id=user.id)
        return user

    async def login_user(
        self,
        *,
        password: str,
        username: Optional[str] = None,
        email: Optional[str] = None,
    ) -> TokenPair:
        if bool(username) == bool(email):
            raise ValidationError("Provide exactly one of username or email")
        if username:
            user = await self._store("get_user_by_username", username)
        else:
            user = await self._store("get_user_by_email", email)
        if not user:
            raise UserNotFound("User not found")
        if not await self._check_password(user, password):
            self.logger.info("login_rejected", user_id=user.id)
            raise InvalidCredentials("Invalid password")
        return await self.auth.start_session(user.id)

    async def find_user(self, user_id: str) -> User:
        return await self._require_user(user_id)

    async def search_user(self, query: str, search_type: str) -> List[User]:
        if search_type == "name":
            return await self._store("search_users_by_name", query, public_only=True)
        if search_type == "username":
            # lookup is case-insensitive for login; search wants the exact spelling
            user = await self._store("get_user_by_username", query)
            return [user] if user and user.username == query else []
        raise InvalidType(
            f"type must be one of: {', '.join(SEARCH_TYPES)}", detail={"type": search_type}
        )

    async def authenticate_password(self, user_id: str, password: str) -> User:
        user = await self._require_user(user_id)
        if not await self._check_password(user, password):
            raise IncorrectPassword("Password is incorrect")
        return user

    async def purge(self, user_id: str) -> None:
        """Delete the user document; callers verify the password first."""
        if not await self._store("delete_user", user_id):
            raise ServerError("Unable to delete user")
        self.logger.info("user_deleted", user_id=user_id)

    async def delete_user(self, user_id: str, password: str) -> User:
        """Remove the account after re-verifying ``password``; returns the deleted profile."""
        user = await self.authenticate_password(user_id, password)
        await self.purge(user_id)
        await self.auth.revoke_all(user_id)
        return user

    async def update_user(self, user_id: str, updates: Dict[str, Any]) -> User:
        patch = {
            _PROFILE_FIELDS[key]: value
            for key, value in updates.items()
            if key in _PROFILE_FIELDS and value is not None
        }
        if not patch:
            raise ValidationError("No profile fields to update")
        try:
            user = await self._store("update_user", user_id, patch)
        except DuplicateKey as exc:
            raise _duplicate_error(exc) from exc
        if not user:
            raise UserNotFound("User not found")
        self.logger.info("user_updated", user_id=user_id, fields=sorted(patch))
        return user

    async def update_password(self, user_id: str, old_password: str, new_password: str) -> User:
        user = await self._require_user(user_id)
        if not await self._check_password(user, old_password):
            raise IncorrectPassword("Old password is incorrect")
        new_hash = await asyncio.to_thread(self.credentials.hash_password, new_password)
        updated = await self._store("set_password_hash", user_id, new_hash)
        if not updated:
            raise ServerError("Unable to update user")
        await self.auth.revoke_all(user_id)
        self.logger.info("password_rotated", user_id=user_id)
        return updated

    async def handle_tag(self, user_id: str, tag: str, op: str) -> List[str]:
        """Apply a profile tag operation and return the resulting (or matching) tags.

        ``add`` has set semantics. ``remove`` only touches the profile; pulling a
        tag from list items as well is ``TagPropagation.remove_user_tag``.
        """
        if op == "find":
            user = await self._require_user(user_id)
            needle = tag.casefold()
            return [existing for existing in user.tags if needle in existing.casefold()]
        if op == "add":
            user = await self._store("add_user_tag", user_id, tag)
        elif op == "remove":
            user = await self._store("remove_user_tag", user_id, tag)
        else:
            raise ValidationError(
                f"queryType must be one of: {', '.join(TAG_OPS)}", detail={"queryType": op}
            )
        if not user:
            raise UserNotFound("User not found")
        return list(user.tags)
