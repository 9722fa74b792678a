from __future__ import annotations

from typing import Any, Dict, Iterable, List, Optional, Protocol

from medialist.logging import get_logger
from medialist.service.bounded import StoreBacked
from medialist.service.errors import (
    CreationError,
    FieldRestrictionError,
    InvalidListType,
    ListNotFound,
    NotFoundError,
    ValidationError,
)
from medialist.storage.common import provided_item_fields
from medialist.storage.errors import DuplicateItem, MissingItem, RestrictedItemField
from medialist.storage.models import LIST_TYPES, PRIVACY_VALUES, Item, MediaList

logger = get_logger(__name__)


class ListBackend(Protocol):
    def create_list(
        self,
        list_type: str,
        *,
        privacy: str = "public",
        name: Optional[str] = None,
        items: Optional[Iterable[Item]] = None,
        list_id: Optional[str] = None,
    ) -> MediaList: ...

    def get_list(self, list_id: str) -> Optional[MediaList]: ...

    def delete_list(self, list_id: str) -> bool: ...

    def update_list(self, list_id: str, updates: Dict[str, Any]) -> Optional[MediaList]: ...

    def add_items(self, list_id: str, items: Iterable[Item]) -> Optional[MediaList]: ...

    def remove_items(self, list_id: str, media_ids: Iterable[str]) -> Optional[MediaList]: ...

    def update_item(
        self, list_id: str, media_id: str, updates: Dict[str, Any]
    ) -> Optional[MediaList]: ...

    def remove_tag_from_items(self, list_ids: Iterable[str], tag: str) -> int: ...


def ensure_list_type(list_type: str) -> str:
    if list_type not in LIST_TYPES:
        raise InvalidListType(
            f"type must be one of: {', '.join(LIST_TYPES)}", detail={"type": list_type}
        )
    return list_type


def _ensure_privacy(privacy: str) -> str:
    if privacy not in PRIVACY_VALUES:
        raise ValidationError(
            f"privacy must be one of: {', '.join(PRIVACY_VALUES)}",
            detail={"privacy": privacy},
        )
    return privacy


class ListService(StoreBacked):
    """Typed operations over list documents and their embedded items."""

    def __init__(self, store: ListBackend, *, store_timeout: float) -> None:
        self.store = store
        self.store_timeout = store_timeout
        self.logger = logger

    async def create_list(
        self,
        list_type: str,
        *,
        privacy: str = "public",
        name: Optional[str] = None,
        items: Optional[List[Item]] = None,
        list_id: Optional[str] = None,
    ) -> MediaList:
        ensure_list_type(list_type)
        _ensure_privacy(privacy)
        try:
            media_list = await self._store(
                "create_list",
                list_type,
                privacy=privacy,
                name=name,
                items=items or [],
                list_id=list_id,
            )
        except DuplicateItem as exc:
            raise ValidationError(exc.message, detail=exc.detail) from exc
        if not media_list:
            raise CreationError("Unable to create list")
        return media_list

    async def get_list(self, list_id: str) -> MediaList:
        media_list = await self._store("get_list", list_id)
        if not media_list:
            raise ListNotFound("List not found", detail={"listId": list_id})
        return media_list

    async def delete_list(self, list_id: str) -> bool:
        """True when the document existed and is now gone."""
        return await self._store("delete_list", list_id)

    async def update_list_details(self, list_id: str, updates: Dict[str, Any]) -> MediaList:
        patch = {k: v for k, v in updates.items() if k in ("name", "privacy") and v is not None}
        if not patch:
            raise ValidationError("details not found")
        if "privacy" in patch:
            _ensure_privacy(patch["privacy"])
        media_list = await self._store("update_list", list_id, patch)
        if not media_list:
            raise ListNotFound("List not found", detail={"listId": list_id})
        return media_list

    async def add_items(self, list_id: str, items: List[Item]) -> MediaList:
        try:
            media_list = await self._store("add_items", list_id, items)
        except DuplicateItem as exc:
            raise ValidationError(exc.message, detail=exc.detail) from exc
        if not media_list:
            raise ListNotFound("List not found", detail={"listId": list_id})
        return media_list

    async def remove_items(self, list_id: str, media_ids: List[str]) -> MediaList:
        media_list = await self._store("remove_items", list_id, media_ids)
        if not media_list:
            raise ListNotFound("List not found", detail={"listId": list_id})
        return media_list

    async def update_item(
        self, list_id: str, media_id: str, updates: Dict[str, Any]
    ) -> MediaList:
        """Patch one embedded item; ``0`` and empty strings count as provided."""
        patch = provided_item_fields(updates)
        if not patch:
            raise ValidationError("No item fields to update")
        try:
            media_list = await self._store("update_item", list_id, media_id, patch)
        except RestrictedItemField as exc:
            raise FieldRestrictionError(exc.message, detail=exc.detail) from exc
        except MissingItem as exc:
            raise NotFoundError("Item not found", detail=exc.detail) from exc
        if not media_list:
            raise ListNotFound("List not found", detail={"listId": list_id})
        return media_list

    async def remove_tag_from_items(self, list_ids: List[str], tag: str) -> int:
        """Number of lists that had at least one item carrying ``tag``; zero is not an error."""
        if not list_ids:
            return 0
        modified = await self._store("remove_tag_from_items", list_ids, tag)
        self.logger.info("item_tag_removed", tag_lists=len(list_ids), modified=modified)
        return modified
