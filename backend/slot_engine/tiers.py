"""
Tier Catalog - resolves tier names to durations and ping quotas

Rules:
- Exactly five tiers are recognized; anything else is UnknownTierError
- No aliases, no case folding
- Lookups have no side effects
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import List, Optional

from .config import TIER_CATALOG
from .errors import UnknownTierError
from .models import Tier


@dataclass(frozen=True)
class TierConfig:
    tier: Tier
    display_name: str
    duration: Optional[timedelta]  # None = lifetime
    window: timedelta
    quota: int

    @property
    def is_lifetime(self) -> bool:
        return self.duration is None

    def expires_at(self, granted_at: datetime) -> Optional[datetime]:
        """Expiry for a slot granted at `granted_at`, None for lifetime tiers."""
        if self.duration is None:
            return None
        return granted_at + self.duration

    def describe(self) -> str:
        hours = int(self.window.total_seconds() // 3600)
        length = "Lifetime" if self.duration is None else f"{self.duration.days} days"
        return f"{length}, {self.quota} ping/{hours}h"


def _build(name: str) -> TierConfig:
    entry = TIER_CATALOG[name]
    days = entry["duration_days"]
    return TierConfig(
        tier=Tier(name),
        display_name=entry["name"],
        duration=timedelta(days=days) if days is not None else None,
        window=timedelta(hours=entry["ping_window_hours"]),
        quota=entry["pings_per_window"],
    )


_TIERS = {name: _build(name) for name in TIER_CATALOG}


def tier_of(name) -> TierConfig:
    """
    Resolve a tier name (or Tier member) to its catalog entry.

    Raises:
        UnknownTierError: name is not one of the five catalog tiers
    """
    key = name.value if isinstance(name, Tier) else name
    try:
        return _TIERS[key]
    except (KeyError, TypeError):
        raise UnknownTierError(str(name)) from None


def list_tiers() -> List[TierConfig]:
    """All tiers in privilege order."""
    return [_TIERS[t.value] for t in Tier]
