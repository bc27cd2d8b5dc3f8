"""
Slot command surface

Entry points for the chat-platform command collaborator (/slotadd,
/slotremove, /slotinfo) and its message observer. Engine errors come back as
CommandReply objects carrying a user-facing message; they are never retried.

StoreUnavailableError is also turned into a reply here. Retrying is up to the
collaborator.
"""

import logging
from datetime import datetime
from typing import Optional

from pydantic import BaseModel

from .config import ERROR_CODES
from .errors import SlotEngineError, UnknownTierError
from .lifecycle import SlotLifecycleEngine
from .models import BroadcastDecision, SlotStatus
from .reconciler import slot_label
from .tiers import list_tiers, tier_of

logger = logging.getLogger(__name__)


class CommandReply(BaseModel):
    ok: bool
    message: str
    error_code: Optional[str] = None
    decision: Optional[BroadcastDecision] = None
    status: Optional[SlotStatus] = None


def _timestamp(value: datetime) -> str:
    # Discord relative timestamp markup
    return f"<t:{int(value.timestamp())}:R>"


class SlotCommands:

    def __init__(self, engine: SlotLifecycleEngine):
        self.engine = engine

    def _error_reply(self, error: SlotEngineError, name: str) -> CommandReply:
        template = ERROR_CODES.get(error.code, str(error))
        if isinstance(error, UnknownTierError):
            message = template.format(
                tier=error.tier,
                valid=", ".join(t.tier.value for t in list_tiers()),
            )
        else:
            message = template.format(name=name)
        return CommandReply(ok=False, message=message, error_code=error.code)

    async def grant_slot(
        self,
        holder_id: str,
        tier_name: str,
        resource_ref: str,
        display_name: Optional[str] = None,
        avatar: Optional[str] = None,
    ) -> CommandReply:
        name = display_name or holder_id
        try:
            slot = await self.engine.grant(holder_id, tier_name, resource_ref, display_name, avatar)
        except SlotEngineError as e:
            logger.info(f"slotadd for {holder_id} rejected: {e}")
            return self._error_reply(e, name)

        tier = tier_of(slot.tier)
        expiration = "Lifetime slot" if tier.is_lifetime else f"Expires: {_timestamp(slot.expires_at)}"
        hours = int(tier.window.total_seconds() // 3600)
        return CommandReply(
            ok=True,
            message=(
                f"✅ Successfully created {tier.display_name} slot for {name}!\n"
                f"📅 {expiration}\n"
                f"📊 Ping limit: {tier.quota} per {hours} hours\n"
                f"📢 Channel renamed to: {slot_label(slot.display_name)}"
            ),
        )

    async def remove_slot(self, holder_id: str, display_name: Optional[str] = None) -> CommandReply:
        name = display_name or holder_id
        try:
            await self.engine.remove(holder_id)
        except SlotEngineError as e:
            return self._error_reply(e, name)

        return CommandReply(ok=True, message=f"✅ Successfully removed slot for {name}.")

    async def query_slot(self, holder_id: str, display_name: Optional[str] = None) -> CommandReply:
        name = display_name or holder_id
        try:
            status = await self.engine.query_slot(holder_id)
        except SlotEngineError as e:
            return self._error_reply(e, name)

        slot = status.slot
        expires = _timestamp(slot.expires_at) if slot.expires_at else "Never (Lifetime)"
        if status.rate_limited:
            next_ping = f"Rate limited until {_timestamp(status.next_ping_at)}" if status.next_ping_at else "Rate limited"
        else:
            next_ping = "Available now"

        return CommandReply(
            ok=True,
            status=status,
            message=(
                f"📊 **Slot Information for {name}**\n"
                f"🏷️ Type: {status.tier_name}\n"
                f"📅 Expires: {expires}\n"
                f"📢 Pings used: {status.pings_used}/{status.pings_allowed}\n"
                f"⏰ Next ping available: {next_ping}"
            ),
        )

    async def on_broadcast_attempt(
        self,
        holder_id: str,
        resource_ref: Optional[str] = None,
        message_ref: Optional[str] = None,
    ) -> CommandReply:
        """
        Message-observer hook. On OVER_LIMIT the caller removes the triggering
        message and may deliver `message` to the holder.
        """
        try:
            decision = await self.engine.on_broadcast_attempt(holder_id, resource_ref, message_ref)
        except SlotEngineError as e:
            return self._error_reply(e, holder_id)

        if decision is BroadcastDecision.ALLOWED:
            return CommandReply(ok=True, decision=decision, message="Ping recorded.")

        return CommandReply(
            ok=False,
            decision=decision,
            error_code="PING_LIMIT_EXCEEDED",
            message=(
                "🚫 **SLOT REVOKED** - You exceeded your ping limit!\n"
                "Your shop role and channel access have been removed."
            ),
        )
