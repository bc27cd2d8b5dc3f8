"""
MongoDB entitlement store (motor)

CRITICAL: the "one active slot per holder" invariant is enforced by the
partial unique index `idx_active_holder_unique` on slots.holder_id
(active == true), created by db_init. Two racing inserts cannot both succeed,
even across processes.

Deactivation is a conditional update filtered on active == true, so only one
caller ever observes modified_count == 1 for a given slot.

The client must be created with tz_aware=True (see database.py) so stored
datetimes come back timezone-aware.
"""

import logging
from datetime import datetime, timedelta
from functools import wraps
from typing import Any, Dict, List, Optional

from pymongo import ASCENDING
from pymongo.errors import DuplicateKeyError, PyMongoError

from .errors import DuplicateSlotError, StoreUnavailableError
from .models import Holder, PingEvent, RevokeReason, Slot, SlotStats, utc_now
from .store import EntitlementStore, start_of_day

logger = logging.getLogger(__name__)

HOLDERS = "slot_holders"
SLOTS = "slots"
PING_EVENTS = "slot_ping_events"


def _store_call(func):
    """Map driver failures to StoreUnavailableError; slot engine errors pass through."""
    @wraps(func)
    async def wrapper(self, *args, **kwargs):
        try:
            return await func(self, *args, **kwargs)
        except PyMongoError as e:
            logger.error(f"Mongo error in {func.__name__}: {e}")
            raise StoreUnavailableError(func.__name__, str(e)) from e
    return wrapper


def _slot_doc(slot: Slot) -> Dict[str, Any]:
    doc = slot.model_dump()
    doc["tier"] = slot.tier.value
    doc["revoke_reason"] = slot.revoke_reason.value if slot.revoke_reason else None
    return doc


class MongoSlotStore(EntitlementStore):

    def __init__(self, db):
        self.db = db

    @_store_call
    async def get_holder(self, holder_id: str) -> Optional[Holder]:
        doc = await self.db[HOLDERS].find_one({"holder_id": holder_id}, {"_id": 0})
        return Holder(**doc) if doc else None

    @_store_call
    async def upsert_holder(self, holder: Holder) -> Holder:
        now = utc_now()
        await self.db[HOLDERS].update_one(
            {"holder_id": holder.holder_id},
            {
                "$set": {
                    "display_name": holder.display_name,
                    "avatar": holder.avatar,
                    "updated_at": now,
                },
                "$setOnInsert": {"created_at": holder.created_at},
            },
            upsert=True,
        )
        return holder.model_copy(update={"updated_at": now})

    @_store_call
    async def get_slot(self, slot_id: str) -> Optional[Slot]:
        doc = await self.db[SLOTS].find_one({"id": slot_id}, {"_id": 0})
        return Slot(**doc) if doc else None

    @_store_call
    async def get_active_slot_by_holder(self, holder_id: str) -> Optional[Slot]:
        doc = await self.db[SLOTS].find_one(
            {"holder_id": holder_id, "active": True},
            {"_id": 0},
        )
        return Slot(**doc) if doc else None

    @_store_call
    async def get_all_active_slots(self) -> List[Slot]:
        cursor = self.db[SLOTS].find({"active": True}, {"_id": 0})
        return [Slot(**doc) async for doc in cursor]

    @_store_call
    async def get_expired_slots(self, now: datetime) -> List[Slot]:
        cursor = self.db[SLOTS].find(
            {"active": True, "expires_at": {"$ne": None, "$lte": now}},
            {"_id": 0},
        ).sort("expires_at", ASCENDING)
        return [Slot(**doc) async for doc in cursor]

    @_store_call
    async def create_slot(self, slot: Slot) -> Slot:
        try:
            await self.db[SLOTS].insert_one(_slot_doc(slot))
        except DuplicateKeyError:
            raise DuplicateSlotError(slot.holder_id) from None
        return slot

    @_store_call
    async def deactivate_slot(self, slot_id: str, reason: RevokeReason, now: datetime) -> bool:
        result = await self.db[SLOTS].update_one(
            {"id": slot_id, "active": True},
            {"$set": {
                "active": False,
                "deactivated_at": now,
                "revoke_reason": reason.value,
            }},
        )
        return result.modified_count > 0

    @_store_call
    async def delete_slot(self, slot_id: str) -> bool:
        result = await self.db[SLOTS].delete_one({"id": slot_id})
        return result.deleted_count > 0

    @_store_call
    async def append_ping_event(self, event: PingEvent) -> PingEvent:
        await self.db[PING_EVENTS].insert_one(event.model_dump())
        return event

    @_store_call
    async def count_ping_events(self, slot_id: str, since: datetime) -> int:
        return await self.db[PING_EVENTS].count_documents(
            {"slot_id": slot_id, "used_at": {"$gte": since}}
        )

    @_store_call
    async def get_ping_events(self, slot_id: str, since: datetime) -> List[PingEvent]:
        cursor = self.db[PING_EVENTS].find(
            {"slot_id": slot_id, "used_at": {"$gte": since}},
            {"_id": 0},
        ).sort("used_at", ASCENDING)
        return [PingEvent(**doc) async for doc in cursor]

    @_store_call
    async def get_slot_stats(self, now: datetime, expiring_within: timedelta) -> SlotStats:
        slots = self.db[SLOTS]
        return SlotStats(
            total_slots=await slots.count_documents({}),
            active_slots=await slots.count_documents({"active": True}),
            expiring_soon=await slots.count_documents({
                "active": True,
                "expires_at": {"$ne": None, "$lte": now + expiring_within},
            }),
            today_pings=await self.db[PING_EVENTS].count_documents(
                {"used_at": {"$gte": start_of_day(now)}}
            ),
        )
