"""
Slot Engine Data Models

Pydantic models for slot engine records and results.
These define the structure of documents stored in the MongoDB collections.
"""

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def new_id() -> str:
    return str(uuid.uuid4())


class Tier(str, Enum):
    TIER1 = "tier1"
    TIER2 = "tier2"
    TIER3 = "tier3"
    TIER4 = "tier4"
    PARTNERED = "partnered"


class RevokeReason(str, Enum):
    MANUAL = "manual"
    QUOTA_VIOLATION = "quota-violation"
    EXPIRED = "expired"


class BroadcastDecision(str, Enum):
    ALLOWED = "allowed"
    OVER_LIMIT = "over_limit"


# ==================== ENTITLEMENT RECORDS ====================

class Holder(BaseModel):
    """Platform identity that has been granted a slot at least once"""
    holder_id: str
    display_name: str
    avatar: Optional[str] = None
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)


class Slot(BaseModel):
    """One entitlement grant. Only the lifecycle engine flips `active`."""
    id: str = Field(default_factory=new_id)
    holder_id: str
    display_name: str
    tier: Tier
    resource_ref: str
    original_label: str
    grant_ref: Optional[str] = None
    expires_at: Optional[datetime] = None  # None = lifetime
    active: bool = True
    created_at: datetime = Field(default_factory=utc_now)
    deactivated_at: Optional[datetime] = None
    revoke_reason: Optional[RevokeReason] = None


class PingEvent(BaseModel):
    """Immutable record of one broadcast ping"""
    id: str = Field(default_factory=new_id)
    slot_id: str
    holder_id: str
    used_at: datetime = Field(default_factory=utc_now)
    message_ref: Optional[str] = None
    location_ref: Optional[str] = None


# ==================== RESULT MODELS ====================

class GrantReceipt(BaseModel):
    """What the authorization reconciler applied while granting access"""
    grant_ref: str
    applied_label: str


class RevokeReport(BaseModel):
    """Outcome of best-effort teardown. Failures are listed, never raised."""
    slot_id: str
    holder_id: str
    grant_removed: bool = False
    access_removed: bool = False
    label_restored: bool = False
    failures: List[str] = Field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failures


class SlotStatus(BaseModel):
    """Slot plus its current ping usage, as shown by slot info and the dashboard"""
    slot: Slot
    tier_name: str
    pings_used: int
    pings_allowed: int
    rate_limited: bool
    next_ping_at: Optional[datetime] = None


class SlotStats(BaseModel):
    total_slots: int
    active_slots: int
    expiring_soon: int
    today_pings: int
