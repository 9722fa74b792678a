from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Header, Path, Query

from medialist.api.schemas import (
    AddItemsRequest,
    CreateListRequest,
    DeleteUserRequest,
    LoginRequest,
    LoginResponse,
    MessageResponse,
    RefreshRequest,
    RefreshResponse,
    RegisterRequest,
    RemoveItemsRequest,
    ResultResponse,
    TagRequest,
    TagsResponse,
    UpdateItemRequest,
    UpdateListRequest,
    UpdatePasswordRequest,
    UpdateUserRequest,
)
from medialist.logging import bind_request_context
from medialist.service.auth import AuthContext
from medialist.service.errors import ValidationError
from medialist.service.runtime import get_runtime

router = APIRouter(prefix="/v1")

LIST_UPDATE_TYPES = ("privacy", "name")
TAG_QUERY_TYPES = ("add", "remove")


async def get_user(authorization: Optional[str] = Header(None)) -> AuthContext:
    """Authorization guard; every failure goes through the shared error handlers."""
    ctx = await get_runtime().auth.authorize(authorization)
    bind_request_context(user_id=ctx.user_id)
    return ctx


# -- auth ------------------------------------------------------------------


@router.post("/auth/register", response_model=ResultResponse, tags=["auth"])
async def register(body: RegisterRequest):
    """Create an account. The password is hashed before it is stored.

    Raises:
        400: If validation fails or the username/email is taken
    """
    runtime = get_runtime()
    user = await runtime.users.create_user(
        name=body.name,
        username=body.username,
        email=body.email,
        password=body.password,
        profile_type=body.profile_type,
        avatar=body.avatar,
    )
    return ResultResponse(message="User created successfully", result=user.to_public())


@router.post("/auth/login", response_model=LoginResponse, tags=["auth"])
async def login(body: LoginRequest):
    """Authenticate with a username or an email plus password.

    Issues an access/refresh token pair; the access token is registered in
    the session cache and the refresh token replaces the stored one.
    """
    runtime = get_runtime()
    tokens = await runtime.users.login_user(
        password=body.password, username=body.username, email=body.email
    )
    return LoginResponse(
        message="Login successful",
        access_token=tokens.access_token,
        refresh_token=tokens.refresh_token,
    )


@router.post("/auth/refresh", response_model=RefreshResponse, tags=["auth"])
async def refresh(body: RefreshRequest, principal: AuthContext = Depends(get_user)):
    if not body.refresh_token:
        raise ValidationError('"refreshToken" is required', status_code=403)
    runtime = get_runtime()
    access_token = await runtime.auth.refresh(principal, body.refresh_token)
    return RefreshResponse(message="Token refreshed successfully", access_token=access_token)


@router.post("/auth/logout", response_model=MessageResponse, tags=["auth"])
async def logout(principal: AuthContext = Depends(get_user)):
    runtime = get_runtime()
    await runtime.auth.logout(principal)
    return MessageResponse(message="Logged out successfully")


# -- user ------------------------------------------------------------------


@router.get("/user/", response_model=ResultResponse, tags=["user"])
async def get_profile(principal: AuthContext = Depends(get_user)):
    runtime = get_runtime()
    user = await runtime.users.find_user(principal.user_id)
    return ResultResponse(message="User retrieved successfully", result=user.to_public())


@router.get("/user/search/{query}", response_model=ResultResponse, tags=["user"])
async def search_users(
    query: str = Path(..., min_length=1, max_length=50),
    search_type: str = Query(..., alias="type"),
    principal: AuthContext = Depends(get_user),
):
    """Find users by public-name substring or by exact username."""
    runtime = get_runtime()
    users = await runtime.users.search_user(query, search_type)
    return ResultResponse(
        message="Users retrieved successfully",
        result=[user.to_public() for user in users],
    )


@router.delete("/user/", response_model=ResultResponse, tags=["user"])
async def delete_user(body: DeleteUserRequest, principal: AuthContext = Depends(get_user)):
    """Delete the caller's account after re-checking the password.

    Every list the account owns is deleted with it and all of its sessions
    are revoked.
    """
    runtime = get_runtime()
    _, removed = await runtime.ownership.delete_account(principal.user_id, body.password)
    return ResultResponse(message="User deleted successfully", result={"listsRemoved": removed})


@router.put("/user/update", response_model=ResultResponse, tags=["user"])
async def update_user(body: UpdateUserRequest, principal: AuthContext = Depends(get_user)):
    runtime = get_runtime()
    user = await runtime.users.update_user(principal.user_id, body.updates())
    return ResultResponse(message="User updated successfully", result=user.to_public())


@router.put("/user/updatePassword", response_model=MessageResponse, tags=["user"])
async def update_password(
    body: UpdatePasswordRequest, principal: AuthContext = Depends(get_user)
):
    """Rotate the password. Existing sessions, this one included, stop working."""
    runtime = get_runtime()
    await runtime.users.update_password(
        principal.user_id, body.old_password, body.new_password
    )
    return MessageResponse(message="Password updated successfully")


@router.put("/user/tag", response_model=TagsResponse, tags=["user"])
async def update_tag(
    body: TagRequest,
    query_type: str = Query(..., alias="queryType"),
    principal: AuthContext = Depends(get_user),
):
    """Add a profile tag, or remove it from the profile and every owned item."""
    if query_type not in TAG_QUERY_TYPES:
        raise ValidationError(
            f"queryType must be one of: {', '.join(TAG_QUERY_TYPES)}",
            detail={"queryType": query_type},
        )
    runtime = get_runtime()
    if query_type == "add":
        tags = await runtime.users.handle_tag(principal.user_id, body.tag, "add")
        return TagsResponse(message="Tag added successfully", tags=tags)
    removal = await runtime.tags.remove_user_tag(principal.user_id, body.tag)
    return TagsResponse(message="Tag removed successfully", tags=removal.tags)


@router.get("/user/tags", response_model=TagsResponse, tags=["user"])
async def list_tags(
    search: Optional[str] = Query(None, max_length=50),
    principal: AuthContext = Depends(get_user),
):
    runtime = get_runtime()
    tags = await runtime.users.handle_tag(principal.user_id, search or "", "find")
    return TagsResponse(tags=tags)


@router.get("/user/lists", response_model=ResultResponse, tags=["user"])
async def list_index(
    list_type: Optional[str] = Query(None, alias="type"),
    principal: AuthContext = Depends(get_user),
):
    runtime = get_runtime()
    index = await runtime.ownership.get_user_lists(principal.user_id, list_type)
    return ResultResponse(message="Lists retrieved successfully", result=index)


# -- lists -----------------------------------------------------------------


@router.post("/list", response_model=ResultResponse, tags=["list"])
async def create_list(body: CreateListRequest, principal: AuthContext = Depends(get_user)):
    """Create a list and attach it to the caller's ownership index.

    If attaching fails the new list is deleted again before the error is
    returned, so no list is left without an owner.
    """
    runtime = get_runtime()
    media_list = await runtime.ownership.create_list_for_user(
        principal.user_id,
        body.type,
        privacy=body.privacy,
        name=body.name,
        items=[item.to_item() for item in body.items],
    )
    return ResultResponse(message="List created successfully", result=media_list.to_dict())


@router.get("/list/{list_id}", response_model=ResultResponse, tags=["list"])
async def get_list(
    list_id: str,
    list_type: str = Query(..., alias="type"),
    principal: AuthContext = Depends(get_user),
):
    runtime = get_runtime()
    media_list = await runtime.ownership.get_owned_list(principal.user_id, list_id, list_type)
    return ResultResponse(message="List retrieved successfully", result=media_list.to_dict())


@router.delete("/list/{list_id}", response_model=MessageResponse, tags=["list"])
async def delete_list(
    list_id: str,
    list_type: str = Query(..., alias="type"),
    principal: AuthContext = Depends(get_user),
):
    runtime = get_runtime()
    await runtime.ownership.delete_owned_list(principal.user_id, list_id, list_type)
    return MessageResponse(message="List deleted successfully")


@router.put("/list/update/{list_id}", response_model=ResultResponse, tags=["list"])
async def update_list(
    list_id: str,
    body: UpdateListRequest,
    update_type: str = Query(..., alias="updateType"),
    principal: AuthContext = Depends(get_user),
):
    """Change either the privacy or the name of a list, as named by ``updateType``."""
    if update_type not in LIST_UPDATE_TYPES:
        raise ValidationError(
            f"updateType must be one of: {', '.join(LIST_UPDATE_TYPES)}",
            detail={"updateType": update_type},
        )
    value = getattr(body, update_type)
    if value is None:
        raise ValidationError(f'"{update_type}" is required')
    runtime = get_runtime()
    media_list = await runtime.ownership.update_owned_list(
        principal.user_id, list_id, {update_type: value}
    )
    return ResultResponse(
        message=f"List {update_type} updated successfully", result=media_list.to_dict()
    )


@router.post("/list/{list_id}/items", response_model=ResultResponse, tags=["list"])
async def add_items(
    list_id: str,
    body: AddItemsRequest,
    list_type: str = Query(..., alias="type"),
    principal: AuthContext = Depends(get_user),
):
    runtime = get_runtime()
    media_list = await runtime.ownership.add_items(
        principal.user_id, list_id, list_type, [item.to_item() for item in body.items]
    )
    return ResultResponse(message="Items added successfully", result=media_list.to_dict())


@router.delete("/list/{list_id}/items", response_model=ResultResponse, tags=["list"])
async def remove_items(
    list_id: str,
    body: RemoveItemsRequest,
    list_type: str = Query(..., alias="type"),
    principal: AuthContext = Depends(get_user),
):
    runtime = get_runtime()
    media_list = await runtime.ownership.remove_items(
        principal.user_id, list_id, list_type, body.media_ids
    )
    return ResultResponse(message="Items removed successfully", result=media_list.to_dict())


@router.put("/list/{list_id}/items/{media_id}", response_model=ResultResponse, tags=["list"])
async def update_item(
    list_id: str,
    media_id: str,
    body: UpdateItemRequest,
    list_type: str = Query(..., alias="type"),
    principal: AuthContext = Depends(get_user),
):
    """Patch one item's annotations.

    statusBased lists do not accept ``userRating`` and themeBased lists do
    not accept ``anticipation``.
    """
    runtime = get_runtime()
    media_list = await runtime.ownership.update_item(
        principal.user_id, list_id, list_type, media_id, body.updates()
    )
    return ResultResponse(message="Item updated successfully", result=media_list.to_dict())
