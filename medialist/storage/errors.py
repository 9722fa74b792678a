from __future__ import annotations

from typing import Any, Dict, List, Optional


class ConstraintViolation(Exception):
    """Raised when a storage-level invariant rejects a write."""

    def __init__(self, message: str, detail: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.detail = detail or {}


class DuplicateKey(ConstraintViolation):
    """A unique user field (username or email) is already taken."""

    def __init__(self, field: str, value: str):
        super().__init__(f"{field} already exists", {"field": field})
        self.field = field
        self.value = value


class RestrictedItemField(ConstraintViolation):
    """An item patch touched a field the list's type forbids."""

    def __init__(self, field: str, list_type: str):
        super().__init__(
            f"{field} cannot be set on {list_type} lists",
            {"field": field, "type": list_type},
        )
        self.field = field
        self.list_type = list_type


class MissingItem(ConstraintViolation):
    """No embedded item with the given mediaId exists in the list."""

    def __init__(self, media_id: str):
        super().__init__("item not found in list", {"mediaId": media_id})
        self.media_id = media_id


class DuplicateItem(ConstraintViolation):
    """An added item's mediaId is already present in the list."""

    def __init__(self, media_ids: List[str]):
        super().__init__("item already exists in list", {"mediaIds": media_ids})
        self.media_ids = media_ids


__all__ = [
    "ConstraintViolation",
    "DuplicateKey",
    "RestrictedItemField",
    "MissingItem",
    "DuplicateItem",
]
