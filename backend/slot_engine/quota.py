"""
Quota Evaluator - sliding-window ping quota

Counts the exact number of ping events in the trailing window
[now - window, now] for a slot. There are no fixed buckets, so a cooldown
never resets early at a bucket boundary.

The evaluator never writes. Recording an allowed ping and revoking on an
over-limit ping are the lifecycle engine's job.
"""

import logging
from datetime import datetime
from typing import Optional, Tuple

from .models import BroadcastDecision, Slot
from .store import EntitlementStore
from .tiers import TierConfig, tier_of

logger = logging.getLogger(__name__)


class QuotaEvaluator:

    def __init__(self, store: EntitlementStore):
        self.store = store

    async def usage(self, slot: Slot, now: datetime) -> Tuple[int, TierConfig]:
        """Pings used in the current window, plus the tier they count against."""
        tier = tier_of(slot.tier)
        used = await self.store.count_ping_events(slot.id, now - tier.window)
        return used, tier

    async def evaluate(self, slot: Slot, now: datetime) -> BroadcastDecision:
        used, tier = await self.usage(slot, now)

        if used >= tier.quota:
            logger.info(
                f"Ping quota exceeded for holder {slot.holder_id}: "
                f"{used}/{tier.quota} in {tier.window}"
            )
            return BroadcastDecision.OVER_LIMIT

        return BroadcastDecision.ALLOWED

    async def next_available_at(self, slot: Slot, now: datetime) -> Optional[datetime]:
        """
        When the next ping becomes available, or None if one is available now.

        A ping frees up when the oldest event that keeps the window full
        slides out of it.
        """
        tier = tier_of(slot.tier)
        events = await self.store.get_ping_events(slot.id, now - tier.window)
        if len(events) < tier.quota:
            return None

        blocking = events[len(events) - tier.quota]
        return blocking.used_at + tier.window
