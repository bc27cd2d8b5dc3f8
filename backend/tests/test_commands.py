"""
Unit Tests for the Slot command surface
=======================================

Replies carry the user-facing message; engine errors never escape.
"""

from unittest.mock import AsyncMock

import pytest

from conftest import CHANNEL_ID
from slot_engine.commands import SlotCommands
from slot_engine.errors import AuthorizationBackendError, StoreUnavailableError
from slot_engine.models import BroadcastDecision


@pytest.fixture
def commands(engine):
    return SlotCommands(engine)


class TestGrantSlot:

    @pytest.mark.asyncio
    async def test_success_message(self, commands):
        reply = await commands.grant_slot("u1", "tier1", CHANNEL_ID, display_name="Alice")

        assert reply.ok
        assert "Successfully created Tier 1 slot for Alice" in reply.message
        assert "Ping limit: 1 per 72 hours" in reply.message
        assert "🛒│alice-slot" in reply.message
        assert "<t:" in reply.message

    @pytest.mark.asyncio
    async def test_lifetime_message(self, commands):
        reply = await commands.grant_slot("u1", "partnered", CHANNEL_ID, display_name="alice")

        assert "Lifetime slot" in reply.message
        assert "Ping limit: 2 per 24 hours" in reply.message

    @pytest.mark.asyncio
    async def test_duplicate(self, commands):
        await commands.grant_slot("u1", "tier1", CHANNEL_ID, display_name="alice")

        reply = await commands.grant_slot("u1", "tier2", CHANNEL_ID, display_name="alice")

        assert not reply.ok
        assert reply.error_code == "DUPLICATE_SLOT"
        assert reply.message == "alice already has an active slot."

    @pytest.mark.asyncio
    async def test_unknown_tier_lists_valid_tiers(self, commands):
        reply = await commands.grant_slot("u1", "gold", CHANNEL_ID)

        assert reply.error_code == "UNKNOWN_TIER"
        assert reply.message == "Unknown slot tier 'gold'. Valid tiers: tier1, tier2, tier3, tier4, partnered."

    @pytest.mark.asyncio
    async def test_authorization_unavailable(self, commands, backend):
        backend.add_grant.side_effect = AuthorizationBackendError("Missing Permissions", 403)

        reply = await commands.grant_slot("u1", "tier1", CHANNEL_ID)

        assert not reply.ok
        assert reply.error_code == "AUTHORIZATION_UNAVAILABLE"


class TestRemoveSlot:

    @pytest.mark.asyncio
    async def test_remove(self, commands):
        await commands.grant_slot("u1", "tier1", CHANNEL_ID)

        reply = await commands.remove_slot("u1", display_name="alice")

        assert reply.ok
        assert reply.message == "✅ Successfully removed slot for alice."

    @pytest.mark.asyncio
    async def test_remove_missing(self, commands):
        reply = await commands.remove_slot("u1", display_name="alice")

        assert reply.error_code == "NO_ACTIVE_SLOT"
        assert reply.message == "alice doesn't have an active slot."


class TestQuerySlot:

    @pytest.mark.asyncio
    async def test_fresh_slot(self, commands):
        await commands.grant_slot("u1", "tier4", CHANNEL_ID, display_name="alice")

        reply = await commands.query_slot("u1", display_name="alice")

        assert reply.ok
        assert reply.status.pings_used == 0
        assert "Never (Lifetime)" in reply.message
        assert "Pings used: 0/1" in reply.message
        assert "Available now" in reply.message

    @pytest.mark.asyncio
    async def test_rate_limited(self, commands):
        await commands.grant_slot("u1", "partnered", CHANNEL_ID)
        await commands.on_broadcast_attempt("u1")
        await commands.on_broadcast_attempt("u1")

        reply = await commands.query_slot("u1")

        assert "Pings used: 2/2" in reply.message
        assert "Rate limited until <t:" in reply.message


class TestBroadcastAttempt:

    @pytest.mark.asyncio
    async def test_allowed_then_revoked(self, commands):
        await commands.grant_slot("u1", "tier3", CHANNEL_ID)

        first = await commands.on_broadcast_attempt("u1", CHANNEL_ID, "m1")
        second = await commands.on_broadcast_attempt("u1", CHANNEL_ID, "m2")

        assert first.ok and first.decision is BroadcastDecision.ALLOWED
        assert not second.ok
        assert second.decision is BroadcastDecision.OVER_LIMIT
        assert second.error_code == "PING_LIMIT_EXCEEDED"
        assert "SLOT REVOKED" in second.message

    @pytest.mark.asyncio
    async def test_no_slot(self, commands):
        reply = await commands.on_broadcast_attempt("u1")

        assert reply.error_code == "NO_ACTIVE_SLOT"
        assert reply.decision is None

    @pytest.mark.asyncio
    async def test_store_unavailable(self, commands, engine):
        engine.store.get_active_slot_by_holder = AsyncMock(
            side_effect=StoreUnavailableError("get_active_slot_by_holder", "no primary")
        )

        reply = await commands.on_broadcast_attempt("u1")

        assert reply.error_code == "STORE_UNAVAILABLE"
        assert reply.message == "Slot storage is unavailable. Please try again later."
