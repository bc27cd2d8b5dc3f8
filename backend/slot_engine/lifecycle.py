"""
Slot Lifecycle Engine

States: none -> active -> inactive

Transitions:
- grant:                none -> active (admin command)
- remove:               active -> inactive, reason=manual
- on_broadcast_attempt: active -> inactive, reason=quota-violation (over limit only)
- expire:               active -> inactive, reason=expired (sweep)

Every terminal transition commits through _deactivate() and tears down through
the reconciler's revoke_access(), so both sides are defined once. The reason
is logged and stored only.

Transitions for one holder are serialized by a per-holder lock. The lock
covers store mutation (and the all-or-nothing grant setup); revoke teardown
runs after the lock is released, once deactivation has committed.

Grant reserves the slot in the store (the one-active-slot check) before any
external call, and drops the reservation if the grant fails.

IMPORTANT: admin capability is checked by the command collaborator, not here.
"""

import asyncio
import logging
import weakref
from datetime import datetime, timedelta
from typing import List, Optional

from .config import EXPIRING_SOON_HOURS
from .errors import AuthorizationUnavailableError, DuplicateSlotError, NoActiveSlotError
from .models import (
    BroadcastDecision,
    Holder,
    PingEvent,
    RevokeReason,
    Slot,
    SlotStats,
    SlotStatus,
    utc_now,
)
from .quota import QuotaEvaluator
from .reconciler import AuthorizationReconciler
from .store import EntitlementStore
from .tiers import tier_of

logger = logging.getLogger(__name__)


class SlotLifecycleEngine:
    """
    Usage:
        engine = SlotLifecycleEngine(store, reconciler)
        slot = await engine.grant("123", "tier1", "987", display_name="alice")
        decision = await engine.on_broadcast_attempt("123", "987", "msg-1")
        if decision is BroadcastDecision.OVER_LIMIT:
            # collaborator deletes the triggering message
            ...
    """

    def __init__(self, store: EntitlementStore, reconciler: AuthorizationReconciler):
        self.store = store
        self.reconciler = reconciler
        self.quota = QuotaEvaluator(store)
        self._holder_locks: "weakref.WeakValueDictionary[str, asyncio.Lock]" = weakref.WeakValueDictionary()

    def _lock_for(self, holder_id: str) -> asyncio.Lock:
        lock = self._holder_locks.get(holder_id)
        if lock is None:
            lock = asyncio.Lock()
            self._holder_locks[holder_id] = lock
        return lock

    # ==================== GRANT ====================

    async def grant(
        self,
        holder_id: str,
        tier_name: str,
        resource_ref: str,
        display_name: Optional[str] = None,
        avatar: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> Slot:
        """
        Create an active slot and grant external access.

        The slot is reserved in the store before anything external is
        touched, so a holder losing the insert race (possibly in another
        process) never changes the winner's access.

        Raises:
            UnknownTierError: tier_name is not in the catalog
            DuplicateSlotError: holder already has an active slot
            AuthorizationUnavailableError: access could not be granted, reservation dropped
        """
        tier = tier_of(tier_name)
        now = now or utc_now()

        async with self._lock_for(holder_id):
            if await self.store.get_active_slot_by_holder(holder_id):
                raise DuplicateSlotError(holder_id)

            known = await self.store.get_holder(holder_id)
            holder = await self.store.upsert_holder(Holder(
                holder_id=holder_id,
                display_name=display_name or (known.display_name if known else holder_id),
                avatar=avatar or (known.avatar if known else None),
            ))

            original_label = await self.reconciler.read_label(resource_ref)
            slot = await self.store.create_slot(Slot(
                holder_id=holder_id,
                display_name=holder.display_name,
                tier=tier.tier,
                resource_ref=resource_ref,
                original_label=original_label,
                grant_ref=self.reconciler.grant_ref,
                expires_at=tier.expires_at(now),
                created_at=now,
            ))

            try:
                await self.reconciler.grant_access(holder, resource_ref, original_label)
            except AuthorizationUnavailableError:
                await self.store.delete_slot(slot.id)
                logger.warning(f"Dropped slot reservation {slot.id} for holder {holder_id}: grant failed")
                raise

            # Removed by another process while access was being applied
            current = await self.store.get_slot(slot.id)
            if current is None or not current.active:
                logger.warning(f"Slot {slot.id} was revoked during grant")
                # A newer slot for this holder shares the role and overwrite
                if await self.store.get_active_slot_by_holder(holder_id) is None:
                    await self.reconciler.revoke_access(slot)
                raise NoActiveSlotError(holder_id)

        logger.info(
            f"Granted {tier.display_name} slot {slot.id} to holder {holder_id} "
            f"({tier.describe()}, expires: {slot.expires_at.isoformat() if slot.expires_at else 'never'})"
        )
        return slot

    # ==================== TERMINAL TRANSITIONS ====================

    async def revoke(self, slot: Slot, reason: RevokeReason, now: Optional[datetime] = None) -> bool:
        """
        Deactivate a slot and tear down its external access.

        Idempotent: only the call that flips the slot performs teardown.
        Later calls for an already inactive slot return False.
        """
        now = now or utc_now()

        async with self._lock_for(slot.holder_id):
            changed = await self._deactivate(slot, reason, now)

        if changed:
            await self.reconciler.revoke_access(slot)
        return changed

    async def _deactivate(self, slot: Slot, reason: RevokeReason, now: datetime) -> bool:
        """Commit the inactive state. Caller holds the holder lock."""
        changed = await self.store.deactivate_slot(slot.id, reason, now)
        if changed:
            logger.info(f"Revoked slot {slot.id} for holder {slot.holder_id} (reason={reason.value})")
        else:
            logger.debug(f"Slot {slot.id} already inactive, {reason.value} revoke is a no-op")
        return changed

    async def remove(self, holder_id: str, now: Optional[datetime] = None) -> Slot:
        """
        Manually remove a holder's active slot.

        Raises:
            NoActiveSlotError: holder has no active slot
        """
        now = now or utc_now()

        async with self._lock_for(holder_id):
            slot = await self.store.get_active_slot_by_holder(holder_id)
            if slot is None:
                raise NoActiveSlotError(holder_id)
            if not await self._deactivate(slot, RevokeReason.MANUAL, now):
                raise NoActiveSlotError(holder_id)

        await self.reconciler.revoke_access(slot)
        return slot

    async def expire(self, slot: Slot, now: Optional[datetime] = None) -> bool:
        return await self.revoke(slot, RevokeReason.EXPIRED, now)

    # ==================== BROADCAST QUOTA ====================

    async def on_broadcast_attempt(
        self,
        holder_id: str,
        resource_ref: Optional[str] = None,
        message_ref: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> BroadcastDecision:
        """
        Evaluate one broadcast ping before it is allowed to stand.

        ALLOWED: the ping is recorded.
        OVER_LIMIT: the ping is NOT recorded and the slot is revoked. The caller
        must undo the broadcast itself (e.g. delete the message).

        Raises:
            NoActiveSlotError: holder has no active slot, regardless of quota
        """
        now = now or utc_now()

        async with self._lock_for(holder_id):
            slot = await self.store.get_active_slot_by_holder(holder_id)
            if slot is None:
                raise NoActiveSlotError(holder_id)

            decision = await self.quota.evaluate(slot, now)
            if decision is BroadcastDecision.ALLOWED:
                await self.store.append_ping_event(PingEvent(
                    slot_id=slot.id,
                    holder_id=holder_id,
                    used_at=now,
                    message_ref=message_ref,
                    location_ref=resource_ref,
                ))
                return decision

            changed = await self._deactivate(slot, RevokeReason.QUOTA_VIOLATION, now)

        if changed:
            await self.reconciler.revoke_access(slot)
        return decision

    # ==================== QUERIES ====================

    async def _status(self, slot: Slot, now: datetime) -> SlotStatus:
        used, tier = await self.quota.usage(slot, now)
        rate_limited = used >= tier.quota
        return SlotStatus(
            slot=slot,
            tier_name=tier.display_name,
            pings_used=used,
            pings_allowed=tier.quota,
            rate_limited=rate_limited,
            next_ping_at=await self.quota.next_available_at(slot, now) if rate_limited else None,
        )

    async def query_slot(self, holder_id: str, now: Optional[datetime] = None) -> SlotStatus:
        """
        Raises:
            NoActiveSlotError: holder has no active slot
        """
        slot = await self.store.get_active_slot_by_holder(holder_id)
        if slot is None:
            raise NoActiveSlotError(holder_id)
        return await self._status(slot, now or utc_now())

    async def list_active_slots(self, now: Optional[datetime] = None) -> List[SlotStatus]:
        now = now or utc_now()
        return [await self._status(slot, now) for slot in await self.store.get_all_active_slots()]

    async def get_slot_stats(
        self,
        now: Optional[datetime] = None,
        expiring_within: timedelta = timedelta(hours=EXPIRING_SOON_HOURS),
    ) -> SlotStats:
        return await self.store.get_slot_stats(now or utc_now(), expiring_within)

    # ==================== ADMINISTRATION ====================

    async def delete_slot(self, slot_id: str, now: Optional[datetime] = None) -> bool:
        """
        Physically delete a slot record. An active slot is revoked first so no
        external access outlives the record.
        """
        slot = await self.store.get_slot(slot_id)
        if slot is None:
            return False

        if slot.active:
            await self.revoke(slot, RevokeReason.MANUAL, now)

        async with self._lock_for(slot.holder_id):
            deleted = await self.store.delete_slot(slot_id)

        if deleted:
            logger.info(f"Deleted slot {slot_id} (holder {slot.holder_id})")
        return deleted
