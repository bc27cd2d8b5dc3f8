"""
Tests for slot_engine.db_init

Covers the environment guard, dry-run output and the index that enforces one
active slot per holder.
"""

from unittest.mock import AsyncMock, MagicMock

import pytest
from pymongo.errors import OperationFailure

from slot_engine import db_init
from slot_engine.config import TIER_CATALOG_VERSION
from slot_engine.mongo_store import SLOTS


def make_db(existing_collections=(), existing_indexes=()):
    db = MagicMock()
    db.list_collection_names = AsyncMock(return_value=list(existing_collections))
    db.create_collection = AsyncMock()

    collections = {}

    def get_collection(name):
        if name not in collections:
            collection = MagicMock()
            collection.index_information = AsyncMock(return_value={i: {} for i in existing_indexes})
            collection.create_index = AsyncMock()
            collection.update_one = AsyncMock()
            collections[name] = collection
        return collections[name]

    db.__getitem__.side_effect = get_collection
    return db, collections


class TestEnvironmentGuard:

    def test_development_allowed(self, monkeypatch):
        monkeypatch.delenv("APP_ENV", raising=False)

        assert db_init.production_guard() is None

    def test_production_requires_confirm(self, monkeypatch):
        monkeypatch.setenv("APP_ENV", "production")
        monkeypatch.delenv("SLOT_DB_INIT_CONFIRM", raising=False)

        message = db_init.production_guard()

        assert message is not None
        assert "SLOT_DB_INIT_CONFIRM=YES" in message

    def test_production_confirmed(self, monkeypatch):
        monkeypatch.setenv("APP_ENV", "production")
        monkeypatch.setenv("SLOT_DB_INIT_CONFIRM", "YES")

        assert db_init.production_guard() is None


class TestIndexes:

    def test_active_holder_index_is_partial_unique(self):
        specs = {options["name"]: (collection, keys, options) for collection, keys, options in db_init.REQUIRED_INDEXES}

        collection, keys, options = specs["idx_active_holder_unique"]
        assert collection == SLOTS
        assert keys == [("holder_id", 1)]
        assert options["unique"] is True
        assert options["partialFilterExpression"] == {"active": True}


class TestInitDatabase:

    @pytest.mark.asyncio
    async def test_dry_run_changes_nothing(self):
        db, collections = make_db()

        lines = await db_init.init_database(db, dry_run=True)

        assert "  [DRY-RUN] collection slots" in lines
        assert "  [DRY-RUN] index slots.idx_active_holder_unique" in lines
        db.create_collection.assert_not_awaited()
        for collection in collections.values():
            collection.create_index.assert_not_awaited()
            collection.update_one.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_creates_missing(self):
        db, collections = make_db()

        lines = await db_init.init_database(db)

        assert db.create_collection.await_count == len(db_init.REQUIRED_COLLECTIONS)
        assert collections[SLOTS].create_index.await_count == 3
        assert lines[-1] == f"  [UPDATE] version stamp {db_init.INIT_VERSION}"

        stamp = collections[db_init.META].update_one.await_args.args[1]["$set"]
        assert stamp["version"] == db_init.INIT_VERSION
        assert stamp["tier_catalog_version"] == TIER_CATALOG_VERSION

    @pytest.mark.asyncio
    async def test_idempotent_rerun(self):
        names = [options["name"] for _, _, options in db_init.REQUIRED_INDEXES]
        db, collections = make_db(db_init.REQUIRED_COLLECTIONS, names)

        lines = await db_init.init_database(db)

        db.create_collection.assert_not_awaited()
        for collection in collections.values():
            collection.create_index.assert_not_awaited()
        assert sum("[SKIP]" in line for line in lines) == len(db_init.REQUIRED_COLLECTIONS) + len(names)

    @pytest.mark.asyncio
    async def test_index_created_concurrently(self):
        db, collections = make_db()
        collections[SLOTS] = MagicMock()
        collections[SLOTS].index_information = AsyncMock(return_value={})
        collections[SLOTS].create_index = AsyncMock(
            side_effect=OperationFailure("Index already exists with a different name")
        )

        lines = await db_init.init_database(db)

        assert "  [SKIP] index slots.idx_active_holder_unique" in lines
