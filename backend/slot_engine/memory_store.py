"""
In-process entitlement store.

Single event loop only. No method suspends between reading and writing, so
check-then-create and the deactivate flip are atomic with respect to other
coroutines.
"""

import logging
from datetime import datetime, timedelta
from typing import Dict, List, Optional

from .errors import DuplicateSlotError
from .models import Holder, PingEvent, RevokeReason, Slot, SlotStats, utc_now
from .store import EntitlementStore, start_of_day

logger = logging.getLogger(__name__)


class MemorySlotStore(EntitlementStore):

    def __init__(self):
        self._holders: Dict[str, Holder] = {}
        self._slots: Dict[str, Slot] = {}
        self._ping_events: List[PingEvent] = []

    async def get_holder(self, holder_id: str) -> Optional[Holder]:
        return self._holders.get(holder_id)

    async def upsert_holder(self, holder: Holder) -> Holder:
        existing = self._holders.get(holder.holder_id)
        if existing:
            holder = existing.model_copy(update={
                "display_name": holder.display_name,
                "avatar": holder.avatar,
                "updated_at": utc_now(),
            })
        self._holders[holder.holder_id] = holder
        return holder

    async def get_slot(self, slot_id: str) -> Optional[Slot]:
        return self._slots.get(slot_id)

    async def get_active_slot_by_holder(self, holder_id: str) -> Optional[Slot]:
        for slot in self._slots.values():
            if slot.holder_id == holder_id and slot.active:
                return slot
        return None

    async def get_all_active_slots(self) -> List[Slot]:
        return [s for s in self._slots.values() if s.active]

    async def get_expired_slots(self, now: datetime) -> List[Slot]:
        return [
            s for s in self._slots.values()
            if s.active and s.expires_at is not None and s.expires_at <= now
        ]

    async def create_slot(self, slot: Slot) -> Slot:
        if await self.get_active_slot_by_holder(slot.holder_id):
            raise DuplicateSlotError(slot.holder_id)
        self._slots[slot.id] = slot
        return slot

    async def deactivate_slot(self, slot_id: str, reason: RevokeReason, now: datetime) -> bool:
        slot = self._slots.get(slot_id)
        if slot is None or not slot.active:
            return False
        self._slots[slot_id] = slot.model_copy(update={
            "active": False,
            "deactivated_at": now,
            "revoke_reason": reason,
        })
        return True

    async def delete_slot(self, slot_id: str) -> bool:
        return self._slots.pop(slot_id, None) is not None

    async def append_ping_event(self, event: PingEvent) -> PingEvent:
        self._ping_events.append(event)
        return event

    async def count_ping_events(self, slot_id: str, since: datetime) -> int:
        return len(await self.get_ping_events(slot_id, since))

    async def get_ping_events(self, slot_id: str, since: datetime) -> List[PingEvent]:
        events = [
            e for e in self._ping_events
            if e.slot_id == slot_id and e.used_at >= since
        ]
        return sorted(events, key=lambda e: e.used_at)

    async def get_slot_stats(self, now: datetime, expiring_within: timedelta) -> SlotStats:
        active = await self.get_all_active_slots()
        horizon = now + expiring_within
        today = start_of_day(now)

        return SlotStats(
            total_slots=len(self._slots),
            active_slots=len(active),
            expiring_soon=sum(
                1 for s in active if s.expires_at is not None and s.expires_at <= horizon
            ),
            today_pings=sum(1 for e in self._ping_events if e.used_at >= today),
        )
