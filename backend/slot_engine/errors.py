"""
Slot Engine error taxonomy.

Validation errors (duplicate slot, no active slot, unknown tier) are terminal
for the request that raised them. AuthorizationUnavailableError rolls back a
grant. StoreUnavailableError aborts the operation and is left to the caller's
own retry policy.
"""

from typing import Optional


class SlotEngineError(Exception):
    """Base class for errors surfaced to callers of the slot engine."""

    code = "SLOT_ENGINE_ERROR"

    def __init__(self, message: str, holder_id: Optional[str] = None):
        self.holder_id = holder_id
        super().__init__(message)

    def to_dict(self):
        """Convert to command/API response format."""
        return {
            "error_code": self.code,
            "message": str(self),
            "holder_id": self.holder_id,
        }


class DuplicateSlotError(SlotEngineError):
    code = "DUPLICATE_SLOT"

    def __init__(self, holder_id: str):
        super().__init__(f"Holder {holder_id} already has an active slot", holder_id)


class NoActiveSlotError(SlotEngineError):
    code = "NO_ACTIVE_SLOT"

    def __init__(self, holder_id: str):
        super().__init__(f"Holder {holder_id} has no active slot", holder_id)


class UnknownTierError(SlotEngineError):
    code = "UNKNOWN_TIER"

    def __init__(self, tier: str):
        self.tier = tier
        super().__init__(f"Unknown tier: {tier!r}")


class AuthorizationUnavailableError(SlotEngineError):
    """The external authorization system could not be reached or refused a setup step."""

    code = "AUTHORIZATION_UNAVAILABLE"

    def __init__(self, operation: str, details: Optional[str] = None, holder_id: Optional[str] = None):
        self.operation = operation
        self.details = details
        message = f"Authorization unavailable during {operation}"
        if details:
            message = f"{message} - {details}"
        super().__init__(message, holder_id)


class StoreUnavailableError(SlotEngineError):
    code = "STORE_UNAVAILABLE"

    def __init__(self, operation: str, details: Optional[str] = None):
        self.operation = operation
        message = f"Entitlement store unavailable during {operation}"
        if details:
            message = f"{message} - {details}"
        super().__init__(message)


# ==================== AUTHORIZATION BACKEND ERRORS ====================
# Raised by AuthorizationBackend implementations, handled inside the reconciler.

class AuthorizationBackendError(Exception):
    def __init__(self, message: str, status_code: Optional[int] = None):
        self.status_code = status_code
        super().__init__(message)


class AuthorizationNotFoundError(AuthorizationBackendError):
    """Target member, role, overwrite or channel does not exist (already revoked)."""
