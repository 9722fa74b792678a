"""Ownership index and list documents stay in agreement across multi-step changes."""

import time

import pytest

from medialist.config import Settings
from medialist.service.auth import AuthService
from medialist.service.credentials import CredentialStore
from medialist.service.errors import (
    ConsistencyError,
    IncorrectPassword,
    InvalidListType,
    ListNotFound,
    NotOwnedError,
    ServerError,
    ServiceUnavailableError,
    SessionNotFoundError,
)
from medialist.service.lists import ListService
from medialist.service.ownership import OwnershipCoordinator
from medialist.service.tokens import TokenService
from medialist.service.users import UserDirectory
from medialist.storage.memory import MemoryCache, MemoryStore
from medialist.storage.models import Item, ItemInformation


class FlakyStore(MemoryStore):
    """Memory store whose index writes can be made to fail on demand."""

    def __init__(self):
        super().__init__()
        self.fail_attach = False
        self.fail_detach = False
        self.fail_delete = False

    def attach_list(self, user_id, list_id, list_type):
        if self.fail_attach:
            raise RuntimeError("attach failed")
        return super().attach_list(user_id, list_id, list_type)

    def detach_list(self, user_id, list_id, list_type):
        if self.fail_detach:
            raise RuntimeError("detach failed")
        return super().detach_list(user_id, list_id, list_type)

    def delete_list(self, list_id):
        if self.fail_delete:
            raise RuntimeError("delete failed")
        return super().delete_list(list_id)


class SlowCreateStore(MemoryStore):
    """Memory store whose list inserts finish after the caller stopped waiting."""

    def create_list(self, list_type, **kwargs):
        time.sleep(0.3)
        return super().create_list(list_type, **kwargs)

class Services:
    def __init__(self):
        settings = Settings(jwt_access_secret="a-secret", jwt_refresh_secret="r-secret")
        self.store = FlakyStore()
        self.cache = MemoryCache()
        self.auth = AuthService(self.store, self.cache, TokenService(settings), settings)
        self.users = UserDirectory(self.store, CredentialStore(), self.auth, store_timeout=5.0)
        self.lists = ListService(self.store, store_timeout=5.0)
        self.ownership = OwnershipCoordinator(
            self.store, self.lists, self.users, self.auth, store_timeout=5.0
        )


@pytest.fixture
def svc():
    return Services()


async def _user(svc, username="alice"):
    return await svc.users.create_user(
        name="Test Person",
        username=username,
        email=f"{username}@x.com",
        password="secret1",
        profile_type="public",
    )


def _item(media_id):
    return Item(
        media_id=media_id,
        information=ItemInformation(created_at="2023-01-01", poster_image="/p.jpg"),
    )


class TestIndex:
    @pytest.mark.asyncio
    async def test_add_and_remove_reference(self, svc):
        user = await _user(svc)
        await svc.ownership.add_list_to_user(user.id, "L1", "themeBased")
        assert await svc.ownership.get_user_lists(user.id) == {
            "statusBased": [],
            "themeBased": ["L1"],
        }
        await svc.ownership.remove_list_from_user(user.id, "L1", "themeBased")
        assert await svc.ownership.get_user_lists(user.id, "themeBased") == {"themeBased": []}

    @pytest.mark.asyncio
    async def test_invalid_type(self, svc):
        user = await _user(svc)
        with pytest.raises(InvalidListType):
            await svc.ownership.add_list_to_user(user.id, "L1", "private")


class TestCreateProtocol:
    @pytest.mark.asyncio
    async def test_created_list_is_indexed_and_readable(self, svc):
        user = await _user(svc)
        created = await svc.ownership.create_list_for_user(
            user.id, "statusBased", privacy="public", name="Watchlist"
        )
        assert svc.store.get_user(user.id).status_based == [created.id]
        fetched = await svc.ownership.get_owned_list(user.id, created.id, "statusBased")
        assert fetched.name == "Watchlist"

    @pytest.mark.asyncio
    async def test_failed_attach_leaves_no_orphan(self, svc):
        """When attaching fails the freshly created list is deleted again."""
        user = await _user(svc)
        svc.store.fail_attach = True
        with pytest.raises(ServerError) as excinfo:
            await svc.ownership.create_list_for_user(user.id, "statusBased", name="Watchlist")
        assert excinfo.value.message == "Unable to add list, please try again"
        assert svc.store.lists == {}
        assert svc.store.get_user(user.id).status_based == []

    @pytest.mark.asyncio
    async def test_missing_owner_leaves_no_orphan(self, svc):
        with pytest.raises(ServerError):
            await svc.ownership.create_list_for_user("ghost", "themeBased")
        assert svc.store.lists == {}

    @pytest.mark.asyncio
    async def test_failed_compensation_is_a_consistency_error(self, svc):
        user = await _user(svc)
        svc.store.fail_attach = True
        svc.store.fail_delete = True
        with pytest.raises(ConsistencyError) as excinfo:
            await svc.ownership.create_list_for_user(user.id, "statusBased")
        assert excinfo.value.status_code == 500

    @pytest.mark.asyncio
    async def test_create_finishing_after_timeout_leaves_no_orphan(self):
        """A list written after the store call timed out is removed before the 503."""
        store = SlowCreateStore()
        settings = Settings(jwt_access_secret="a-secret", jwt_refresh_secret="r-secret")
        auth = AuthService(store, MemoryCache(), TokenService(settings), settings)
        users = UserDirectory(store, CredentialStore(), auth, store_timeout=5.0)
        lists = ListService(store, store_timeout=0.1)
        ownership = OwnershipCoordinator(store, lists, users, auth, store_timeout=5.0)
        user = await users.create_user(
            name="Test Person",
            username="alice",
            email="alice@x.com",
            password="secret1",
            profile_type="public",
        )

        with pytest.raises(ServiceUnavailableError) as excinfo:
            await ownership.create_list_for_user(user.id, "statusBased", name="Watchlist")

        assert excinfo.value.status_code == 503
        assert store.lists == {}
        assert store.get_user(user.id).status_based == []


class TestDeleteProtocol:
    @pytest.mark.asyncio
    async def test_delete_removes_document_and_reference(self, svc):
        user = await _user(svc)
        created = await svc.ownership.create_list_for_user(user.id, "themeBased")
        await svc.ownership.delete_owned_list(user.id, created.id, "themeBased")
        assert svc.store.get_list(created.id) is None
        assert svc.store.get_user(user.id).theme_based == []

    @pytest.mark.asyncio
    async def test_not_owner_cannot_delete(self, svc):
        """A foreign list id is refused and nothing changes on either side."""
        owner = await _user(svc, "owner1")
        intruder = await _user(svc, "intruder")
        created = await svc.ownership.create_list_for_user(owner.id, "statusBased")
        with pytest.raises(NotOwnedError) as excinfo:
            await svc.ownership.delete_owned_list(intruder.id, created.id, "statusBased")
        assert excinfo.value.status_code == 400
        assert excinfo.value.message == "List does not exist in user statusBased lists"
        assert svc.store.get_list(created.id) is not None
        assert svc.store.get_user(owner.id).status_based == [created.id]

    @pytest.mark.asyncio
    async def test_wrong_type_counts_as_not_owned(self, svc):
        user = await _user(svc)
        created = await svc.ownership.create_list_for_user(user.id, "statusBased")
        with pytest.raises(NotOwnedError):
            await svc.ownership.delete_owned_list(user.id, created.id, "themeBased")
        assert svc.store.get_list(created.id) is not None

    @pytest.mark.asyncio
    async def test_failed_detach_is_reported(self, svc):
        user = await _user(svc)
        created = await svc.ownership.create_list_for_user(user.id, "statusBased")
        svc.store.fail_detach = True
        with pytest.raises(ConsistencyError) as excinfo:
            await svc.ownership.delete_owned_list(user.id, created.id, "statusBased")
        assert excinfo.value.message == "List removed from store but not from owner index"
        assert svc.store.get_list(created.id) is None


class TestSelfHeal:
    @pytest.mark.asyncio
    async def test_read_of_vanished_list_drops_reference(self, svc):
        """A dangling index entry is removed before not-found is reported."""
        user = await _user(svc)
        created = await svc.ownership.create_list_for_user(user.id, "statusBased")
        svc.store.delete_list(created.id)
        with pytest.raises(ListNotFound):
            await svc.ownership.get_owned_list(user.id, created.id, "statusBased")
        assert svc.store.get_user(user.id).status_based == []

    @pytest.mark.asyncio
    async def test_delete_of_vanished_list_drops_reference(self, svc):
        user = await _user(svc)
        created = await svc.ownership.create_list_for_user(user.id, "themeBased")
        svc.store.delete_list(created.id)
        with pytest.raises(ListNotFound):
            await svc.ownership.delete_owned_list(user.id, created.id, "themeBased")
        assert svc.store.get_user(user.id).theme_based == []

    @pytest.mark.asyncio
    async def test_item_write_to_vanished_list_drops_reference(self, svc):
        user = await _user(svc)
        created = await svc.ownership.create_list_for_user(user.id, "themeBased")
        svc.store.delete_list(created.id)
        with pytest.raises(ListNotFound):
            await svc.ownership.add_items(user.id, created.id, "themeBased", [_item("1")])
        assert svc.store.get_user(user.id).theme_based == []


class TestOwnedUpdates:
    @pytest.mark.asyncio
    async def test_update_owned_list(self, svc):
        user = await _user(svc)
        created = await svc.ownership.create_list_for_user(user.id, "themeBased", name="Old")
        updated = await svc.ownership.update_owned_list(user.id, created.id, {"name": "New"})
        assert updated.name == "New"

    @pytest.mark.asyncio
    async def test_update_foreign_list_refused(self, svc):
        owner = await _user(svc, "owner1")
        other = await _user(svc, "other1")
        created = await svc.ownership.create_list_for_user(owner.id, "themeBased", name="Old")
        with pytest.raises(NotOwnedError):
            await svc.ownership.update_owned_list(other.id, created.id, {"name": "Mine"})
        assert svc.store.get_list(created.id).name == "Old"

    @pytest.mark.asyncio
    async def test_item_round_trip_through_owner(self, svc):
        user = await _user(svc)
        created = await svc.ownership.create_list_for_user(user.id, "statusBased")
        await svc.ownership.add_items(user.id, created.id, "statusBased", [_item("42")])
        patched = await svc.ownership.update_item(
            user.id, created.id, "statusBased", "42", {"anticipation": 0}
        )
        assert patched.items[0].anticipation == 0
        emptied = await svc.ownership.remove_items(user.id, created.id, "statusBased", ["42"])
        assert emptied.items == []


class TestDeleteAccount:
    @pytest.mark.asyncio
    async def test_cascade_removes_lists_and_sessions(self, svc):
        user = await _user(svc)
        pair = await svc.users.login_user(username="alice", password="secret1")
        kept_by_other = await svc.ownership.create_list_for_user(
            (await _user(svc, "bobby")).id, "statusBased"
        )
        await svc.ownership.create_list_for_user(user.id, "statusBased")
        await svc.ownership.create_list_for_user(user.id, "themeBased")
        _, removed = await svc.ownership.delete_account(user.id, "secret1")
        assert removed == 2
        assert list(svc.store.lists) == [kept_by_other.id]
        assert svc.store.get_user(user.id) is None
        with pytest.raises(SessionNotFoundError):
            await svc.auth.authorize(pair.access_token)

    @pytest.mark.asyncio
    async def test_wrong_password_keeps_everything(self, svc):
        user = await _user(svc)
        await svc.ownership.create_list_for_user(user.id, "statusBased")
        with pytest.raises(IncorrectPassword):
            await svc.ownership.delete_account(user.id, "wrong-pw")
        assert svc.store.get_user(user.id) is not None
        assert len(svc.store.lists) == 1
