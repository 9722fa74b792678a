"""Storage rules shared by the memory and postgres backends.

Both backends call these from inside their write step (lock or transaction)
so the check and the write observe the same list state.
"""

from __future__ import annotations

from typing import Any, Dict, Iterable, List

from medialist.storage.errors import DuplicateItem, MissingItem, RestrictedItemField
from medialist.storage.models import (
    ITEM_MUTABLE_FIELDS,
    LIST_TYPES,
    RESTRICTED_ITEM_FIELDS,
    Item,
    MediaList,
)


def normalize_key(value: str) -> str:
    """Case-insensitive form used for username/email uniqueness."""
    return value.strip().casefold()


def provided_item_fields(updates: Dict[str, Any]) -> Dict[str, Any]:
    """Keep the mutable item fields whose value is defined (``0`` counts)."""
    return {
        key: value
        for key, value in updates.items()
        if key in ITEM_MUTABLE_FIELDS and value is not None
    }


def check_item_patch(list_type: str, updates: Dict[str, Any]) -> None:
    """Reject a patch that sets the field the list's ``type`` forbids.

    The rule is keyed on the list's type; privacy plays no part.
    """
    if list_type not in LIST_TYPES:
        raise ValueError(f"unknown list type: {list_type}")
    forbidden = RESTRICTED_ITEM_FIELDS[list_type]
    if updates.get(forbidden) is not None:
        raise RestrictedItemField(forbidden, list_type)


def patch_item(media_list: MediaList, media_id: str, updates: Dict[str, Any]) -> Item:
    """Validate and apply ``updates`` to the item with ``media_id`` in place."""
    check_item_patch(media_list.type, updates)
    for item in media_list.items:
        if item.media_id == media_id:
            item.apply_patch(updates)
            return item
    raise MissingItem(media_id)


def append_items(media_list: MediaList, items: Iterable[Item]) -> None:
    incoming = list(items)
    existing = set(media_list.media_ids())
    seen: set[str] = set()
    clashes: List[str] = []
    for item in incoming:
        if item.media_id in existing or item.media_id in seen:
            clashes.append(item.media_id)
        seen.add(item.media_id)
    if clashes:
        raise DuplicateItem(clashes)
    media_list.items.extend(incoming)


def drop_items(media_list: MediaList, media_ids: Iterable[str]) -> int:
    targets = set(media_ids)
    before = len(media_list.items)
    media_list.items = [item for item in media_list.items if item.media_id not in targets]
    return before - len(media_list.items)


def pull_item_tag(media_list: MediaList, tag: str) -> bool:
    """Remove ``tag`` from every item of the list; True when anything changed."""
    changed = False
    for item in media_list.items:
        if tag in item.tags:
            item.tags = [existing for existing in item.tags if existing != tag]
            changed = True
    return changed
