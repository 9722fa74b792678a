from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

PROFILE_TYPES = ("public", "private")
PRIVACY_VALUES = ("public", "private")
LIST_TYPES = ("statusBased", "themeBased")

# Fields of an embedded item that may be patched after insertion
ITEM_MUTABLE_FIELDS = ("tags", "customNotes", "userRating", "anticipation", "sortOrder")

# Item field each list type refuses to accept in a patch
RESTRICTED_ITEM_FIELDS = {
    "statusBased": "userRating",
    "themeBased": "anticipation",
}


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


@dataclass
class ItemInformation:
    created_at: str
    poster_image: str
    updated_at: Optional[str] = None
    rating: Optional[float] = None
    age_rating: Optional[str] = None
    cover_image: Optional[str] = None
    genres: List[str] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ItemInformation":
        return cls(
            created_at=data["createdAt"],
            poster_image=data["posterImage"],
            updated_at=data.get("updatedAt"),
            rating=data.get("rating"),
            age_rating=data.get("ageRating"),
            cover_image=data.get("coverImage"),
            genres=list(data.get("genres") or []),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
            "rating": self.rating,
            "ageRating": self.age_rating,
            "posterImage": self.poster_image,
            "coverImage": self.cover_image,
            "genres": list(self.genres),
        }


@dataclass
class Item:
    """A media catalog entry embedded in a list, plus the owner's annotations."""

    media_id: str
    information: ItemInformation
    title: Optional[str] = None
    custom_notes: Optional[str] = None
    tags: List[str] = field(default_factory=list)
    user_rating: Optional[float] = None
    anticipation: Optional[int] = None
    sort_order: Optional[int] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Item":
        return cls(
            media_id=str(data["mediaId"]),
            information=ItemInformation.from_dict(data["information"]),
            title=data.get("title"),
            custom_notes=data.get("customNotes"),
            tags=list(data.get("tags") or []),
            user_rating=data.get("userRating"),
            anticipation=data.get("anticipation"),
            sort_order=data.get("sortOrder"),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "mediaId": self.media_id,
            "title": self.title,
            "information": self.information.to_dict(),
            "customNotes": self.custom_notes,
            "tags": list(self.tags),
            "userRating": self.user_rating,
            "anticipation": self.anticipation,
            "sortOrder": self.sort_order,
        }

    def apply_patch(self, updates: Dict[str, Any]) -> None:
        """Write every provided mutable field; ``None`` means not provided."""
        if updates.get("tags") is not None:
            self.tags = list(updates["tags"])
        if updates.get("customNotes") is not None:
            self.custom_notes = updates["customNotes"]
        if updates.get("userRating") is not None:
            self.user_rating = updates["userRating"]
        if updates.get("anticipation") is not None:
            self.anticipation = updates["anticipation"]
        if updates.get("sortOrder") is not None:
            self.sort_order = updates["sortOrder"]


@dataclass
class MediaList:
    id: str
    type: str
    privacy: str = "public"
    name: Optional[str] = None
    items: List[Item] = field(default_factory=list)
    added_at: datetime = field(default_factory=datetime.utcnow)
    updated_at: datetime = field(default_factory=datetime.utcnow)

    @classmethod
    def new(
        cls,
        list_type: str,
        privacy: str = "public",
        name: Optional[str] = None,
        items: Optional[List[Item]] = None,
        list_id: Optional[str] = None,
    ) -> "MediaList":
        now = datetime.utcnow()
        return cls(
            id=list_id or str(uuid.uuid4()),
            type=list_type,
            privacy=privacy,
            name=name,
            items=list(items or []),
            added_at=now,
            updated_at=now,
        )

    def media_ids(self) -> List[str]:
        return [item.media_id for item in self.items]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "type": self.type,
            "privacy": self.privacy,
            "items": [item.to_dict() for item in self.items],
            "addedAt": _iso(self.added_at),
            "updatedAt": _iso(self.updated_at),
        }


@dataclass
class SharedList:
    list_id: str
    shared_by: str
    shared_to: str

    def to_dict(self) -> Dict[str, Any]:
        return {"list": self.list_id, "sharedBy": self.shared_by, "sharedTo": self.shared_to}


@dataclass
class User:
    id: str
    name: str
    username: str
    email: str
    password_hash: str
    profile_type: str = "public"
    refresh_token: Optional[str] = None
    avatar: Optional[str] = None
    status_based: List[str] = field(default_factory=list)
    theme_based: List[str] = field(default_factory=list)
    tags: List[str] = field(default_factory=list)
    friends: List[str] = field(default_factory=list)
    friend_requests: List[str] = field(default_factory=list)
    shared_lists: List[SharedList] = field(default_factory=list)
    collaborative_lists: List[str] = field(default_factory=list)
    created_at: datetime = field(default_factory=datetime.utcnow)
    updated_at: datetime = field(default_factory=datetime.utcnow)

    def list_index(self, list_type: str) -> List[str]:
        """Ownership array that holds references for ``list_type``."""
        if list_type == "statusBased":
            return self.status_based
        if list_type == "themeBased":
            return self.theme_based
        raise ValueError(f"unknown list type: {list_type}")

    def owned_list_ids(self) -> List[str]:
        return [*self.status_based, *self.theme_based]

    def to_public(self) -> Dict[str, Any]:
        """Profile as returned to clients; never includes credentials."""
        return {
            "id": self.id,
            "name": self.name,
            "username": self.username,
            "email": self.email,
            "profileType": self.profile_type,
            "avatar": self.avatar,
            "list": {
                "statusBased": list(self.status_based),
                "themeBased": list(self.theme_based),
            },
            "tags": list(self.tags),
            "friends": list(self.friends),
            "friendRequests": list(self.friend_requests),
            "sharedLists": [shared.to_dict() for shared in self.shared_lists],
            "collaborativeLists": list(self.collaborative_lists),
            "createdAt": _iso(self.created_at),
            "updatedAt": _iso(self.updated_at),
        }
