"""
Unit Tests for the MongoDB Entitlement Store
============================================

Collections are mocked; these tests pin the queries the store sends and how
driver errors are mapped.
"""

from datetime import timedelta
from unittest.mock import AsyncMock, MagicMock

import pytest
from pymongo.errors import DuplicateKeyError, ServerSelectionTimeoutError

from conftest import T0
from slot_engine.errors import DuplicateSlotError, StoreUnavailableError
from slot_engine.models import Holder, PingEvent, RevokeReason, Slot, Tier
from slot_engine.mongo_store import HOLDERS, PING_EVENTS, SLOTS, MongoSlotStore


class FakeCursor:
    def __init__(self, docs):
        self.docs = docs
        self.sort_args = None

    def sort(self, *args):
        self.sort_args = args
        return self

    def __aiter__(self):
        self._iter = iter(self.docs)
        return self

    async def __anext__(self):
        try:
            return next(self._iter)
        except StopIteration:
            raise StopAsyncIteration


def make_collection():
    collection = MagicMock()
    collection.find_one = AsyncMock(return_value=None)
    collection.insert_one = AsyncMock()
    collection.update_one = AsyncMock()
    collection.delete_one = AsyncMock()
    collection.count_documents = AsyncMock(return_value=0)
    collection.find = MagicMock(return_value=FakeCursor([]))
    return collection


@pytest.fixture
def collections():
    return {HOLDERS: make_collection(), SLOTS: make_collection(), PING_EVENTS: make_collection()}


@pytest.fixture
def mongo_store(collections):
    db = MagicMock()
    db.__getitem__.side_effect = lambda name: collections[name]
    return MongoSlotStore(db)


def slot_doc(**overrides):
    doc = {
        "id": "s1",
        "holder_id": "u1",
        "display_name": "alice",
        "tier": "tier1",
        "resource_ref": "chan-1",
        "original_label": "general",
        "grant_ref": "role-slot",
        "expires_at": T0,
        "active": True,
        "created_at": T0 - timedelta(days=7),
        "deactivated_at": None,
        "revoke_reason": None,
    }
    doc.update(overrides)
    return doc


class TestCreateSlot:

    @pytest.mark.asyncio
    async def test_insert_serializes_enums(self, mongo_store, collections):
        slot = Slot(**slot_doc())

        await mongo_store.create_slot(slot)

        doc = collections[SLOTS].insert_one.await_args.args[0]
        assert doc["tier"] == "tier1"
        assert doc["active"] is True
        assert doc["expires_at"] == T0

    @pytest.mark.asyncio
    async def test_duplicate_key_is_duplicate_slot(self, mongo_store, collections):
        collections[SLOTS].insert_one.side_effect = DuplicateKeyError("E11000 idx_active_holder_unique")

        with pytest.raises(DuplicateSlotError) as exc_info:
            await mongo_store.create_slot(Slot(**slot_doc()))

        assert exc_info.value.holder_id == "u1"


class TestDeactivate:

    @pytest.mark.asyncio
    async def test_filters_on_active(self, mongo_store, collections):
        collections[SLOTS].update_one.return_value = MagicMock(modified_count=1)

        changed = await mongo_store.deactivate_slot("s1", RevokeReason.QUOTA_VIOLATION, T0)

        assert changed is True
        query, update = collections[SLOTS].update_one.await_args.args
        assert query == {"id": "s1", "active": True}
        assert update["$set"]["active"] is False
        assert update["$set"]["revoke_reason"] == "quota-violation"
        assert update["$set"]["deactivated_at"] == T0

    @pytest.mark.asyncio
    async def test_already_inactive(self, mongo_store, collections):
        collections[SLOTS].update_one.return_value = MagicMock(modified_count=0)

        assert await mongo_store.deactivate_slot("s1", RevokeReason.EXPIRED, T0) is False


class TestQueries:

    @pytest.mark.asyncio
    async def test_expired_query(self, mongo_store, collections):
        cursor = FakeCursor([slot_doc()])
        collections[SLOTS].find.return_value = cursor

        slots = await mongo_store.get_expired_slots(T0)

        query = collections[SLOTS].find.call_args.args[0]
        assert query == {"active": True, "expires_at": {"$ne": None, "$lte": T0}}
        assert cursor.sort_args[0] == "expires_at"
        assert [s.id for s in slots] == ["s1"]
        assert slots[0].tier is Tier.TIER1

    @pytest.mark.asyncio
    async def test_active_slot_by_holder(self, mongo_store, collections):
        collections[SLOTS].find_one.return_value = slot_doc()

        slot = await mongo_store.get_active_slot_by_holder("u1")

        assert slot.id == "s1"
        query = collections[SLOTS].find_one.await_args.args[0]
        assert query == {"holder_id": "u1", "active": True}

    @pytest.mark.asyncio
    async def test_count_window_inclusive(self, mongo_store, collections):
        collections[PING_EVENTS].count_documents.return_value = 2
        since = T0 - timedelta(hours=24)

        assert await mongo_store.count_ping_events("s1", since) == 2

        query = collections[PING_EVENTS].count_documents.await_args.args[0]
        assert query == {"slot_id": "s1", "used_at": {"$gte": since}}

    @pytest.mark.asyncio
    async def test_get_slot_missing(self, mongo_store):
        assert await mongo_store.get_slot("missing") is None


class TestHolders:

    @pytest.mark.asyncio
    async def test_upsert_sets_created_at_on_insert_only(self, mongo_store, collections):
        await mongo_store.upsert_holder(Holder(holder_id="u1", display_name="alice", created_at=T0))

        query, update = collections[HOLDERS].update_one.await_args.args
        assert query == {"holder_id": "u1"}
        assert update["$setOnInsert"] == {"created_at": T0}
        assert "created_at" not in update["$set"]
        assert collections[HOLDERS].update_one.await_args.kwargs["upsert"] is True


class TestErrors:

    @pytest.mark.asyncio
    async def test_driver_error_is_store_unavailable(self, mongo_store, collections):
        collections[SLOTS].find_one.side_effect = ServerSelectionTimeoutError("no primary")

        with pytest.raises(StoreUnavailableError) as exc_info:
            await mongo_store.get_active_slot_by_holder("u1")

        assert exc_info.value.operation == "get_active_slot_by_holder"

    @pytest.mark.asyncio
    async def test_write_error_is_store_unavailable(self, mongo_store, collections):
        collections[PING_EVENTS].insert_one.side_effect = ServerSelectionTimeoutError("no primary")

        with pytest.raises(StoreUnavailableError):
            await mongo_store.append_ping_event(PingEvent(slot_id="s1", holder_id="u1", used_at=T0))
