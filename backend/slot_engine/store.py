"""
Entitlement Store contract

Capability set the lifecycle engine needs from persistence. Implementations:
- MemorySlotStore (memory_store.py): in-process, for development and tests
- MongoSlotStore (mongo_store.py): motor/MongoDB

CRITICAL: create_slot is the atomic check-then-create point for the
"one active slot per holder" invariant, and deactivate_slot must report
True only to the caller that actually flipped the slot.
"""

from abc import ABC, abstractmethod
from datetime import datetime, timedelta
from typing import List, Optional

from .models import Holder, PingEvent, RevokeReason, Slot, SlotStats


def start_of_day(now: datetime) -> datetime:
    return now.replace(hour=0, minute=0, second=0, microsecond=0)


class EntitlementStore(ABC):

    # ---------- holders ----------

    @abstractmethod
    async def get_holder(self, holder_id: str) -> Optional[Holder]:
        ...

    @abstractmethod
    async def upsert_holder(self, holder: Holder) -> Holder:
        """Insert the holder or refresh display name/avatar; created_at is kept."""

    # ---------- slots ----------

    @abstractmethod
    async def get_slot(self, slot_id: str) -> Optional[Slot]:
        ...

    @abstractmethod
    async def get_active_slot_by_holder(self, holder_id: str) -> Optional[Slot]:
        ...

    @abstractmethod
    async def get_all_active_slots(self) -> List[Slot]:
        ...

    @abstractmethod
    async def get_expired_slots(self, now: datetime) -> List[Slot]:
        """Active slots with a non-null expires_at <= now."""

    @abstractmethod
    async def create_slot(self, slot: Slot) -> Slot:
        """
        Persist a new active slot.

        Raises:
            DuplicateSlotError: holder already has an active slot
        """

    @abstractmethod
    async def deactivate_slot(self, slot_id: str, reason: RevokeReason, now: datetime) -> bool:
        """Flip active -> inactive. True only if this call made the change."""

    @abstractmethod
    async def delete_slot(self, slot_id: str) -> bool:
        ...

    # ---------- ping events ----------

    @abstractmethod
    async def append_ping_event(self, event: PingEvent) -> PingEvent:
        ...

    @abstractmethod
    async def count_ping_events(self, slot_id: str, since: datetime) -> int:
        """Events for the slot with used_at >= since."""

    @abstractmethod
    async def get_ping_events(self, slot_id: str, since: datetime) -> List[PingEvent]:
        """Events for the slot with used_at >= since, oldest first."""

    # ---------- analytics ----------

    @abstractmethod
    async def get_slot_stats(self, now: datetime, expiring_within: timedelta) -> SlotStats:
        ...
