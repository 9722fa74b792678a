from __future__ import annotations

import re
import unicodedata
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from medialist.storage.models import Item, ItemInformation

MAX_ITEMS_PER_REQUEST = 500

ProfileType = Literal["public", "private"]
Privacy = Literal["public", "private"]
ListType = Literal["statusBased", "themeBased"]
UpdateField = Literal["name", "username", "email", "profileType"]


class ApiModel(BaseModel):
    """Accepts both the camelCase wire names and the Python attribute names."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")


# -- error envelope --------------------------------------------------------


class ErrorResponse(ApiModel):
    from_: str = Field(default="errorHandler", alias="from")
    message: str
    code: str
    details: Optional[Any] = None


# -- field validators ------------------------------------------------------

_EMAIL_LOCAL_PART = re.compile(r"^[a-zA-Z0-9.!#$%&'*+/=?^_`{|}~-]+$")
_EMAIL_DOMAIN_LABEL = re.compile(r"^[a-zA-Z0-9](?:[a-zA-Z0-9-]{0,61}[a-zA-Z0-9])?$")


def _validate_email(value: str) -> str:
    normalized = unicodedata.normalize("NFKC", value.strip().lower())
    if len(normalized) > 254:
        raise ValueError("email address too long")
    local, sep, domain = normalized.partition("@")
    if not sep or not local or not domain:
        raise ValueError("invalid email address")
    if len(local) > 64 or not _EMAIL_LOCAL_PART.match(local):
        raise ValueError("invalid email address format")
    domain_parts = domain.split(".")
    if len(domain_parts) < 2:
        raise ValueError("invalid email address format")
    for label in domain_parts:
        if len(label) > 63 or not _EMAIL_DOMAIN_LABEL.match(label):
            raise ValueError("invalid email address format")
    return normalized


def _strip_text(value: Any) -> Any:
    return value.strip() if isinstance(value, str) else value


# -- auth ------------------------------------------------------------------


class RegisterRequest(ApiModel):
    name: str = Field(..., min_length=5, max_length=50)
    username: str = Field(..., min_length=5, max_length=20)
    email: str
    password: str = Field(..., min_length=6, max_length=20)
    profile_type: ProfileType = Field(..., alias="profileType")
    avatar: Optional[str] = Field(default=None, max_length=512)

    @field_validator("name", "username", mode="before")
    @classmethod
    def _strip(cls, value: Any) -> Any:
        return _strip_text(value)

    @field_validator("email")
    @classmethod
    def _validate_register_email(cls, value: str) -> str:
        return _validate_email(value)


class LoginRequest(ApiModel):
    username: Optional[str] = Field(default=None, min_length=5, max_length=20)
    email: Optional[str] = None
    password: str = Field(..., min_length=6, max_length=20)

    @field_validator("email")
    @classmethod
    def _validate_login_email(cls, value: Optional[str]) -> Optional[str]:
        return _validate_email(value) if value is not None else None

    @model_validator(mode="after")
    def _exactly_one_identifier(self):
        if (self.username is None) == (self.email is None):
            raise ValueError("provide exactly one of username or email")
        return self


class RefreshRequest(ApiModel):
    # Optional here so a missing value is reported as 403 by the route
    refresh_token: Optional[str] = Field(default=None, alias="refreshToken", max_length=4096)


# -- user ------------------------------------------------------------------


class DeleteUserRequest(ApiModel):
    password: str = Field(..., min_length=1, max_length=128)


def require_update_field(update_field: str, values: Dict[str, Any]) -> Dict[str, Any]:
    """The field named by ``updateField`` must be supplied; it is the only one applied."""
    value = values.get(update_field)
    if value is None:
        raise ValueError(f'"{update_field}" is required')
    return {update_field: value}


class UpdateUserRequest(ApiModel):
    update_field: UpdateField = Field(..., alias="updateField")
    name: Optional[str] = Field(default=None, min_length=5, max_length=50)
    username: Optional[str] = Field(default=None, min_length=5, max_length=20)
    email: Optional[str] = None
    profile_type: Optional[ProfileType] = Field(default=None, alias="profileType")

    @field_validator("email")
    @classmethod
    def _validate_update_email(cls, value: Optional[str]) -> Optional[str]:
        return _validate_email(value) if value is not None else None

    @model_validator(mode="after")
    def _named_field_present(self):
        require_update_field(self.update_field, self._by_wire_name())
        return self

    def _by_wire_name(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "username": self.username,
            "email": self.email,
            "profileType": self.profile_type,
        }

    def updates(self) -> Dict[str, Any]:
        return require_update_field(self.update_field, self._by_wire_name())


class UpdatePasswordRequest(ApiModel):
    old_password: str = Field(..., alias="oldPassword", min_length=6, max_length=20)
    new_password: str = Field(..., alias="newPassword", min_length=6, max_length=20)


class TagRequest(ApiModel):
    tag: str = Field(..., min_length=1, max_length=50)

    @field_validator("tag", mode="before")
    @classmethod
    def _strip(cls, value: Any) -> Any:
        return _strip_text(value)


# -- lists and items -------------------------------------------------------


def _catalog_id(value: Any) -> Any:
    # external catalogs hand out numeric ids as well as strings
    if isinstance(value, int) and not isinstance(value, bool):
        return str(value)
    return value


class ItemInformationIn(ApiModel):
    created_at: str = Field(..., alias="createdAt", min_length=1, max_length=64)
    poster_image: str = Field(..., alias="posterImage", min_length=1, max_length=2048)
    updated_at: Optional[str] = Field(default=None, alias="updatedAt", max_length=64)
    rating: Optional[float] = Field(default=None, ge=0, le=100)
    age_rating: Optional[str] = Field(default=None, alias="ageRating", max_length=32)
    cover_image: Optional[str] = Field(default=None, alias="coverImage", max_length=2048)
    genres: List[str] = Field(default_factory=list, max_length=50)


class ItemIn(ApiModel):
    media_id: str = Field(..., alias="mediaId", min_length=1, max_length=128)
    title: Optional[str] = Field(default=None, max_length=512)
    information: ItemInformationIn
    custom_notes: Optional[str] = Field(default=None, alias="customNotes", max_length=5000)
    tags: List[str] = Field(default_factory=list, max_length=100)
    user_rating: Optional[float] = Field(default=None, alias="userRating", ge=0, le=10)
    anticipation: Optional[int] = Field(default=None, ge=0, le=10)
    sort_order: Optional[int] = Field(default=None, alias="sortOrder")

    @field_validator("media_id", mode="before")
    @classmethod
    def _catalog_ids_are_strings(cls, value: Any) -> Any:
        return _catalog_id(value)

    def to_item(self) -> Item:
        info = self.information
        return Item(
            media_id=self.media_id,
            title=self.title,
            information=ItemInformation(
                created_at=info.created_at,
                poster_image=info.poster_image,
                updated_at=info.updated_at,
                rating=info.rating,
                age_rating=info.age_rating,
                cover_image=info.cover_image,
                genres=list(info.genres),
            ),
            custom_notes=self.custom_notes,
            tags=list(self.tags),
            user_rating=self.user_rating,
            anticipation=self.anticipation,
            sort_order=self.sort_order,
        )


class CreateListRequest(ApiModel):
    privacy: Privacy
    type: ListType
    name: Optional[str] = Field(default=None, min_length=3, max_length=100)
    items: List[ItemIn] = Field(default_factory=list, max_length=MAX_ITEMS_PER_REQUEST)

    @field_validator("name", mode="before")
    @classmethod
    def _strip(cls, value: Any) -> Any:
        return _strip_text(value)


class UpdateListRequest(ApiModel):
    privacy: Optional[Privacy] = None
    name: Optional[str] = Field(default=None, min_length=3, max_length=100)

    @field_validator("name", mode="before")
    @classmethod
    def _strip(cls, value: Any) -> Any:
        return _strip_text(value)


class AddItemsRequest(ApiModel):
    items: List[ItemIn] = Field(..., min_length=1, max_length=MAX_ITEMS_PER_REQUEST)


class RemoveItemsRequest(ApiModel):
    media_ids: List[str] = Field(..., alias="mediaIds", min_length=1, max_length=MAX_ITEMS_PER_REQUEST)

    @field_validator("media_ids", mode="before")
    @classmethod
    def _catalog_ids_are_strings(cls, value: Any) -> Any:
        if isinstance(value, list):
            return [_catalog_id(media_id) for media_id in value]
        return value


class UpdateItemRequest(ApiModel):
    tags: Optional[List[str]] = Field(default=None, max_length=100)
    custom_notes: Optional[str] = Field(default=None, alias="customNotes", max_length=5000)
    user_rating: Optional[float] = Field(default=None, alias="userRating", ge=0, le=10)
    anticipation: Optional[int] = Field(default=None, ge=0, le=10)
    sort_order: Optional[int] = Field(default=None, alias="sortOrder")

    def updates(self) -> Dict[str, Any]:
        """Wire-named fields that were sent with a value."""
        return {
            key: value
            for key, value in self.model_dump(by_alias=True).items()
            if value is not None
        }


# -- responses -------------------------------------------------------------


class MessageResponse(ApiModel):
    message: str


class ResultResponse(ApiModel):
    message: str
    result: Any = None


class LoginResponse(ApiModel):
    message: str
    access_token: str = Field(..., alias="accessToken")
    refresh_token: str = Field(..., alias="refreshToken")


class RefreshResponse(ApiModel):
    message: str
    access_token: str = Field(..., alias="accessToken")


class TagsResponse(ApiModel):
    message: Optional[str] = None
    tags: List[str]
