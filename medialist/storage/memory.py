from __future__ import annotations

import copy
import threading
import time
import uuid
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Set, Tuple

from medialist.logging import get_logger
from medialist.storage.common import (
    append_items,
    drop_items,
    normalize_key,
    patch_item,
    pull_item_tag,
)
from medialist.storage.errors import DuplicateKey
from medialist.storage.models import Item, MediaList, User

_USER_FIELDS = {"name", "username", "email", "profile_type", "avatar"}
_LIST_FIELDS = {"name", "privacy"}


class MemoryStore:
    """In-memory document store used for tests and local development.

    Every public method works on copies so callers never hold a live
    reference into the store; all reads and writes take ``_data_lock``.
    """

    def __init__(self) -> None:
        self.logger = get_logger(__name__)
        self.users: Dict[str, User] = {}
        self.lists: Dict[str, MediaList] = {}
        # RLock so helpers may re-acquire inside a locked section
        self._data_lock = threading.RLock()

    # -- users -------------------------------------------------------------

    def _find_user_by(self, attr: str, value: str) -> Optional[User]:
        key = normalize_key(value)
        return next(
            (u for u in self.users.values() if normalize_key(getattr(u, attr)) == key),
            None,
        )

    def _ensure_unique(self, user_id: Optional[str], username: Optional[str], email: Optional[str]) -> None:
        if username is not None:
            clash = self._find_user_by("username", username)
            if clash and clash.id != user_id:
                raise DuplicateKey("username", username)
        if email is not None:
            clash = self._find_user_by("email", email)
            if clash and clash.id != user_id:
                raise DuplicateKey("email", email)

    def create_user(
        self,
        name: str,
        username: str,
        email: str,
        password_hash: str,
        *,
        profile_type: str = "public",
        avatar: Optional[str] = None,
    ) -> User:
        with self._data_lock:
            self._ensure_unique(None, username, email)
            user = User(
                id=str(uuid.uuid4()),
                name=name,
                username=username,
                email=email,
                password_hash=password_hash,
                profile_type=profile_type,
                avatar=avatar,
            )
            self.users[user.id] = user
            self.logger.debug("memory_user_created", user_id=user.id)
            return copy.deepcopy(user)

    def get_user(self, user_id: str) -> Optional[User]:
        with self._data_lock:
            user = self.users.get(user_id)
            return copy.deepcopy(user) if user else None

    def get_user_by_username(self, username: str) -> Optional[User]:
        with self._data_lock:
            user = self._find_user_by("username", username)
            return copy.deepcopy(user) if user else None

    def get_user_by_email(self, email: str) -> Optional[User]:
        with self._data_lock:
            user = self._find_user_by("email", email)
            return copy.deepcopy(user) if user else None

    def search_users_by_name(
        self, fragment: str, *, public_only: bool = True, limit: int = 50
    ) -> List[User]:
        needle = fragment.casefold()
        with self._data_lock:
            matches = [
                u
                for u in self.users.values()
                if needle in u.name.casefold()
                and (not public_only or u.profile_type == "public")
            ]
            matches.sort(key=lambda u: u.created_at)
            return [copy.deepcopy(u) for u in matches[:limit]]

    def update_user(self, user_id: str, updates: Dict[str, Any]) -> Optional[User]:
        fields = {k: v for k, v in updates.items() if k in _USER_FIELDS and v is not None}
        with self._data_lock:
            user = self.users.get(user_id)
            if not user:
                return None
            self._ensure_unique(user_id, fields.get("username"), fields.get("email"))
            for key, value in fields.items():
                setattr(user, key, value)
            user.updated_at = datetime.utcnow()
            return copy.deepcopy(user)

    def set_password_hash(self, user_id: str, password_hash: str) -> Optional[User]:
        with self._data_lock:
            user = self.users.get(user_id)
            if not user:
                return None
            user.password_hash = password_hash
            user.updated_at = datetime.utcnow()
            return copy.deepcopy(user)

    def set_refresh_token(self, user_id: str, refresh_token: Optional[str]) -> Optional[User]:
        with self._data_lock:
            user = self.users.get(user_id)
            if not user:
                return None
            user.refresh_token = refresh_token
            return copy.deepcopy(user)

    def delete_user(self, user_id: str) -> bool:
        with self._data_lock:
            return self.users.pop(user_id, None) is not None

    def add_user_tag(self, user_id: str, tag: str) -> Optional[User]:
        with self._data_lock:
            user = self.users.get(user_id)
            if not user:
                return None
            if tag not in user.tags:
                user.tags.append(tag)
                user.updated_at = datetime.utcnow()
            return copy.deepcopy(user)

    def remove_user_tag(self, user_id: str, tag: str) -> Optional[User]:
        with self._data_lock:
            user = self.users.get(user_id)
            if not user:
                return None
            user.tags = [existing for existing in user.tags if existing != tag]
            user.updated_at = datetime.utcnow()
            return copy.deepcopy(user)

    def attach_list(self, user_id: str, list_id: str, list_type: str) -> Optional[User]:
        with self._data_lock:
            user = self.users.get(user_id)
            if not user:
                return None
            index = user.list_index(list_type)
            if list_id not in index:
                index.append(list_id)
                user.updated_at = datetime.utcnow()
            return copy.deepcopy(user)

    def detach_list(self, user_id: str, list_id: str, list_type: str) -> Optional[User]:
        with self._data_lock:
            user = self.users.get(user_id)
            if not user:
                return None
            index = user.list_index(list_type)
            if list_id in index:
                index.remove(list_id)
                user.updated_at = datetime.utcnow()
            return copy.deepcopy(user)

    # -- lists -------------------------------------------------------------

    def create_list(
        self,
        list_type: str,
        *,
        privacy: str = "public",
        name: Optional[str] = None,
        items: Optional[Iterable[Item]] = None,
        list_id: Optional[str] = None,
    ) -> MediaList:
        media_list = MediaList.new(list_type, privacy=privacy, name=name, list_id=list_id)
        append_items(media_list, items or [])
        with self._data_lock:
            self.lists[media_list.id] = media_list
            return copy.deepcopy(media_list)

    def get_list(self, list_id: str) -> Optional[MediaList]:
        with self._data_lock:
            media_list = self.lists.get(list_id)
            return copy.deepcopy(media_list) if media_list else None

    def delete_list(self, list_id: str) -> bool:
        with self._data_lock:
            return self.lists.pop(list_id, None) is not None

    def update_list(self, list_id: str, updates: Dict[str, Any]) -> Optional[MediaList]:
        fields = {k: v for k, v in updates.items() if k in _LIST_FIELDS and v is not None}
        with self._data_lock:
            media_list = self.lists.get(list_id)
            if not media_list:
                return None
            for key, value in fields.items():
                setattr(media_list, key, value)
            media_list.updated_at = datetime.utcnow()
            return copy.deepcopy(media_list)

    def add_items(self, list_id: str, items: Iterable[Item]) -> Optional[MediaList]:
        with self._data_lock:
            media_list = self.lists.get(list_id)
            if not media_list:
                return None
            append_items(media_list, copy.deepcopy(list(items)))
            media_list.updated_at = datetime.utcnow()
            return copy.deepcopy(media_list)

    def remove_items(self, list_id: str, media_ids: Iterable[str]) -> Optional[MediaList]:
        with self._data_lock:
            media_list = self.lists.get(list_id)
            if not media_list:
                return None
            if drop_items(media_list, media_ids):
                media_list.updated_at = datetime.utcnow()
            return copy.deepcopy(media_list)

    def update_item(
        self, list_id: str, media_id: str, updates: Dict[str, Any]
    ) -> Optional[MediaList]:
        with self._data_lock:
            media_list = self.lists.get(list_id)
            if not media_list:
                return None
            # patch a copy so a rejected patch leaves the stored list untouched
            working = copy.deepcopy(media_list)
            patch_item(working, media_id, updates)
            working.updated_at = datetime.utcnow()
            self.lists[list_id] = working
            return copy.deepcopy(working)

    def remove_tag_from_items(self, list_ids: Iterable[str], tag: str) -> int:
        modified = 0
        with self._data_lock:
            for list_id in set(list_ids):
                media_list = self.lists.get(list_id)
                if media_list and pull_item_tag(media_list, tag):
                    media_list.updated_at = datetime.utcnow()
                    modified += 1
        return modified

    def ping(self) -> bool:
        return True


class MemoryCache:
    """Process-local session cache with TTL expiry.

    Mirrors the ``RedisCache`` session interface for test and dev runs where
    Redis is unreachable.
    """

    def __init__(self) -> None:
        self._sessions: Dict[str, Tuple[str, float]] = {}
        self._user_sessions: Dict[str, Set[str]] = {}
        self._lock = threading.Lock()

    def verify_connection(self) -> None:
        return None

    def _live_user(self, token: str, now: float) -> Optional[str]:
        entry = self._sessions.get(token)
        if not entry:
            return None
        user_id, expires_at = entry
        if expires_at <= now:
            self._sessions.pop(token, None)
            self._user_sessions.get(user_id, set()).discard(token)
            return None
        return user_id

    async def put(self, token: str, user_id: str, ttl_seconds: int) -> None:
        now = time.monotonic()
        with self._lock:
            for known in list(self._user_sessions.get(user_id, ())):
                self._live_user(known, now)
            self._sessions[token] = (user_id, now + ttl_seconds)
            self._user_sessions.setdefault(user_id, set()).add(token)

    async def get(self, token: str) -> Optional[str]:
        with self._lock:
            return self._live_user(token, time.monotonic())

    async def delete(self, token: str) -> None:
        with self._lock:
            entry = self._sessions.pop(token, None)
            if entry:
                self._user_sessions.get(entry[0], set()).discard(token)

    async def revoke_user(self, user_id: str) -> int:
        with self._lock:
            tokens = self._user_sessions.pop(user_id, set())
            for token in tokens:
                self._sessions.pop(token, None)
            return len(tokens)

    async def ping(self) -> bool:
        return True

    async def close(self) -> None:
        return None
