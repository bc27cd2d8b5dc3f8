"""
Slot Engine
Tiered, time-limited access slots for community members

This module provides:
- Tier catalog (duration + ping quota per tier)
- Slot lifecycle (grant, manual removal, quota revocation, expiry)
- Sliding-window ping quota evaluation
- Authorization reconciliation (roles, channel access, channel labels)
- Periodic expiration sweep

Collections used:
- slot_holders: Platform identities that have held a slot
- slots: Slot grants (active and inactive)
- slot_ping_events: Append-only broadcast ping log
- slot_engine_meta: Init version stamp
"""

__version__ = "1.0.0"
