"""Keeps each user's ownership index in step with the list documents it names.

Multi-step changes are not atomic. When a later step fails the earlier one
is undone (create) or reported as ``ConsistencyError`` (delete), and reads
that find a dangling reference remove it before answering not-found.
"""

from __future__ import annotations

import asyncio
import uuid
from typing import Any, Dict, List, Optional, Tuple

from medialist.logging import get_logger
from medialist.service.auth import AuthService
from medialist.service.bounded import StoreBacked
from medialist.service.errors import (
    ConsistencyError,
    ListNotFound,
    NotOwnedError,
    ServerError,
    StoreTimeoutError,
    UserNotFound,
)
from medialist.service.lists import ListService, ensure_list_type
from medialist.service.users import UserDirectory
from medialist.storage.models import LIST_TYPES, Item, MediaList, User

logger = get_logger(__name__)


class OwnershipCoordinator(StoreBacked):
    def __init__(
        self,
        store: Any,
        lists: ListService,
        users: UserDirectory,
        auth: AuthService,
        *,
        store_timeout: float,
    ) -> None:
        self.store = store
        self.lists = lists
        self.users = users
        self.auth = auth
        self.store_timeout = store_timeout
        self.logger = logger

    # -- ownership index -----------------------------------------------------

    async def add_list_to_user(self, user_id: str, list_id: str, list_type: str) -> User:
        ensure_list_type(list_type)
        user = await self._store("attach_list", user_id, list_id, list_type)
        if not user:
            raise UserNotFound("User not found")
        return user

    async def remove_list_from_user(self, user_id: str, list_id: str, list_type: str) -> User:
        ensure_list_type(list_type)
        user = await self._store("detach_list", user_id, list_id, list_type)
        if not user:
            raise UserNotFound("User not found")
        return user

    async def get_user_lists(
        self, user_id: str, list_type: Optional[str] = None
    ) -> Dict[str, List[str]]:
        user = await self.users.find_user(user_id)
        if list_type is not None:
            ensure_list_type(list_type)
            return {list_type: list(user.list_index(list_type))}
        return {kind: list(user.list_index(kind)) for kind in LIST_TYPES}

    async def _require_owned(
        self, user_id: str, list_id: str, list_type: str, *, message: str
    ) -> None:
        ensure_list_type(list_type)
        user = await self.users.find_user(user_id)
        if list_id not in user.list_index(list_type):
            raise NotOwnedError(message, detail={"listId": list_id, "type": list_type})

    async def _owned_type(self, user_id: str, list_id: str) -> str:
        user = await self.users.find_user(user_id)
        for kind in LIST_TYPES:
            if list_id in user.list_index(kind):
                return kind
        raise NotOwnedError("List does not exist in user lists", detail={"listId": list_id})

    async def _heal_and_raise(self, user_id: str, list_id: str, list_type: str) -> None:
        """Drop a reference whose list document is gone, then report not-found."""
        await self.remove_list_from_user(user_id, list_id, list_type)
        self.logger.warning(
            "stale_list_reference_removed", user_id=user_id, list_id=list_id, list_type=list_type
        )
        raise ListNotFound("List not found", detail={"listId": list_id})

    # -- protocols -----------------------------------------------------------

    async def create_list_for_user(
        self,
        user_id: str,
        list_type: str,
        *,
        privacy: str = "public",
        name: Optional[str] = None,
        items: Optional[List[Item]] = None,
    ) -> MediaList:
        """Create the list document, then attach it; undo the create if attaching fails.

        The list id is chosen up front so a create that times out can still
        be found and removed once the store finishes it.
        """
        list_id = str(uuid.uuid4())
        try:
            media_list = await self.lists.create_list(
                list_type, privacy=privacy, name=name, items=items, list_id=list_id
            )
        except StoreTimeoutError as exc:
            await self._discard_late_create(user_id, list_id, exc)
            raise
        try:
            await self.add_list_to_user(user_id, media_list.id, list_type)
        except Exception as exc:
            await self._compensate_create(user_id, media_list, exc)
            raise ServerError(
                "Unable to add list, please try again", detail={"listId": media_list.id}
            ) from exc
        self.logger.info("list_created", user_id=user_id, list_id=media_list.id, list_type=list_type)
        return media_list

    async def _discard_late_create(
        self, user_id: str, list_id: str, error: StoreTimeoutError
    ) -> None:
        try:
            await asyncio.shield(error.pending)
        except Exception as exc:
            self.logger.info("late_create_failed", user_id=user_id, list_id=list_id, error=str(exc))
            return
        try:
            removed = await self.lists.delete_list(list_id)
        except Exception as exc:
            self.logger.error(
                "ownership_inconsistent",
                step="late_create_cleanup",
                user_id=user_id,
                list_id=list_id,
                error=str(exc),
            )
            raise ConsistencyError(
                "List created after timeout and could not be removed",
                detail={"listId": list_id},
            ) from exc
        if removed:
            self.logger.warning("late_create_discarded", user_id=user_id, list_id=list_id)

    async def _compensate_create(self, user_id: str, media_list: MediaList, cause: Exception) -> None:
        try:
            removed = await self.lists.delete_list(media_list.id)
        except Exception as exc:
            self.logger.error(
                "ownership_inconsistent",
                step="create_compensation",
                user_id=user_id,
                list_id=media_list.id,
                error=str(exc),
            )
            raise ConsistencyError(
                "List created but could not be attached or removed",
                detail={"listId": media_list.id},
            ) from exc
        if not removed:
            self.logger.error(
                "ownership_inconsistent",
                step="create_compensation",
                user_id=user_id,
                list_id=media_list.id,
                error="list vanished before compensation",
            )
            raise ConsistencyError(
                "List created but could not be attached or removed",
                detail={"listId": media_list.id},
            ) from cause
        self.logger.warning(
            "list_create_compensated", user_id=user_id, list_id=media_list.id, error=str(cause)
        )

    async def get_owned_list(self, user_id: str, list_id: str, list_type: str) -> MediaList:
        await self._require_owned(
            user_id, list_id, list_type, message="List does not exist in user lists"
        )
        media_list = await self._store("get_list", list_id)
        if not media_list:
            await self._heal_and_raise(user_id, list_id, list_type)
        return media_list

    async def delete_owned_list(self, user_id: str, list_id: str, list_type: str) -> None:
        await self._require_owned(
            user_id,
            list_id,
            list_type,
            message=f"List does not exist in user {list_type} lists",
        )
        if not await self.lists.delete_list(list_id):
            await self._heal_and_raise(user_id, list_id, list_type)
        try:
            user = await self._store("detach_list", user_id, list_id, list_type)
        except Exception as exc:
            self._log_detach_failure(user_id, list_id, str(exc))
            raise ConsistencyError(
                "List removed from store but not from owner index",
                detail={"listId": list_id},
            ) from exc
        if not user:
            self._log_detach_failure(user_id, list_id, "owner missing")
            raise ConsistencyError(
                "List removed from store but not from owner index",
                detail={"listId": list_id},
            )
        self.logger.info("list_deleted", user_id=user_id, list_id=list_id, list_type=list_type)

    def _log_detach_failure(self, user_id: str, list_id: str, error: str) -> None:
        self.logger.error(
            "ownership_inconsistent",
            step="delete_detach",
            user_id=user_id,
            list_id=list_id,
            error=error,
        )

    async def update_owned_list(
        self, user_id: str, list_id: str, updates: Dict[str, Any]
    ) -> MediaList:
        list_type = await self._owned_type(user_id, list_id)
        try:
            return await self.lists.update_list_details(list_id, updates)
        except ListNotFound:
            await self._heal_and_raise(user_id, list_id, list_type)

    async def add_items(
        self, user_id: str, list_id: str, list_type: str, items: List[Item]
    ) -> MediaList:
        await self._require_owned(
            user_id, list_id, list_type, message="List does not exist in user lists"
        )
        try:
            return await self.lists.add_items(list_id, items)
        except ListNotFound:
            await self._heal_and_raise(user_id, list_id, list_type)

    async def remove_items(
        self, user_id: str, list_id: str, list_type: str, media_ids: List[str]
    ) -> MediaList:
        await self._require_owned(
            user_id, list_id, list_type, message="List does not exist in user lists"
        )
        try:
            return await self.lists.remove_items(list_id, media_ids)
        except ListNotFound:
            await self._heal_and_raise(user_id, list_id, list_type)

    async def update_item(
        self,
        user_id: str,
        list_id: str,
        list_type: str,
        media_id: str,
        updates: Dict[str, Any],
    ) -> MediaList:
        await self._require_owned(
            user_id, list_id, list_type, message="List does not exist in user lists"
        )
        try:
            return await self.lists.update_item(list_id, media_id, updates)
        except ListNotFound:
            await self._heal_and_raise(user_id, list_id, list_type)

    async def delete_account(self, user_id: str, password: str) -> Tuple[User, int]:
        """Verify the password, delete every owned list, then the user and its sessions.

        Lists go first so an interruption leaves only stale references,
        which reads clean up, rather than ownerless lists.
        """
        user = await self.users.authenticate_password(user_id, password)
        removed = 0
        for kind in LIST_TYPES:
            for list_id in user.list_index(kind):
                if await self.lists.delete_list(list_id):
                    removed += 1
        await self.users.purge(user_id)
        await self.auth.revoke_all(user_id)
        self.logger.info("account_deleted", user_id=user_id, lists_removed=removed)
        return user, removed
