from __future__ import annotations

from dataclasses import dataclass
from typing import List

from medialist.logging import get_logger
from medialist.service.lists import ListService
from medialist.service.users import UserDirectory

logger = get_logger(__name__)


@dataclass
class TagRemoval:
    tags: List[str]
    lists_modified: int


class TagPropagation:
    """Removes a tag from a user's profile and from every item in the lists they own."""

    def __init__(self, users: UserDirectory, lists: ListService) -> None:
        self.users = users
        self.lists = lists

    async def remove_user_tag(self, user_id: str, tag: str) -> TagRemoval:
        # Items are cleaned before the profile: a failure here leaves the
        # profile tag in place so the removal can be retried.
        user = await self.users.find_user(user_id)
        modified = await self.lists.remove_tag_from_items(user.owned_list_ids(), tag)
        tags = await self.users.handle_tag(user_id, tag, "remove")
        logger.info("user_tag_removed", user_id=user_id, lists_modified=modified)
        return TagRemoval(tags=tags, lists_modified=modified)
