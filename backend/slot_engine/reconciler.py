"""
Authorization Reconciler

Bridge between slot state and the external authorization system
(role grants, per-member channel access, channel labels).

Policy:
- Setup (grant_access) is all-or-nothing. If any step fails, every step that
  was attempted is undone best-effort and AuthorizationUnavailableError
  is raised so the caller drops the slot it reserved.
- Teardown (revoke_access) is best-effort. It never raises. "Not found" counts
  as already revoked. Other failures are logged and listed in the RevokeReport
  for operator attention; internal state has already committed by then.
- Every backend call is bounded by a timeout. A timeout is reported as
  AuthorizationUnavailableError, never a hang.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Awaitable, Callable, List

from .config import AUTH_TIMEOUT_SECONDS, SLOT_LABEL_TEMPLATE
from .errors import (
    AuthorizationBackendError,
    AuthorizationNotFoundError,
    AuthorizationUnavailableError,
)
from .models import GrantReceipt, Holder, RevokeReport, Slot

logger = logging.getLogger(__name__)


class AuthorizationBackend(ABC):
    """
    External authorization collaborator.

    Implementations raise AuthorizationNotFoundError when the target does not
    exist and AuthorizationBackendError for anything else that went wrong.
    """

    @abstractmethod
    async def get_resource_label(self, resource_ref: str) -> str:
        ...

    @abstractmethod
    async def set_resource_label(self, resource_ref: str, label: str) -> None:
        ...

    @abstractmethod
    async def add_grant(self, holder_id: str, grant_ref: str) -> None:
        ...

    @abstractmethod
    async def remove_grant(self, holder_id: str, grant_ref: str) -> None:
        ...

    @abstractmethod
    async def allow_resource(self, resource_ref: str, holder_id: str) -> None:
        ...

    @abstractmethod
    async def deny_resource(self, resource_ref: str, holder_id: str) -> None:
        ...


def slot_label(display_name: str) -> str:
    return SLOT_LABEL_TEMPLATE.format(name=display_name.lower())


class AuthorizationReconciler:

    def __init__(
        self,
        backend: AuthorizationBackend,
        grant_ref: str,
        timeout_seconds: float = AUTH_TIMEOUT_SECONDS,
    ):
        self.backend = backend
        self.grant_ref = grant_ref
        self.timeout_seconds = timeout_seconds

    async def _call(self, operation: str, awaitable: Awaitable):
        try:
            return await asyncio.wait_for(awaitable, timeout=self.timeout_seconds)
        except asyncio.TimeoutError:
            raise AuthorizationUnavailableError(
                operation, f"timed out after {self.timeout_seconds}s"
            ) from None

    async def read_label(self, resource_ref: str) -> str:
        """
        Current label of the resource, to be restored on revoke. Read-only.

        Raises:
            AuthorizationUnavailableError: label could not be read
        """
        try:
            return await self._call("get_resource_label", self.backend.get_resource_label(resource_ref))
        except AuthorizationBackendError as e:
            raise AuthorizationUnavailableError("get_resource_label", str(e)) from e

    async def grant_access(self, holder: Holder, resource_ref: str, original_label: str) -> GrantReceipt:
        """
        Grant the slot role, open the channel to the holder and relabel it.
        original_label is what a rollback puts back on the resource.

        Each undo step is registered before its call is made: a call that
        timed out may still have been applied, and undoing something that
        never happened only hits the not-found path.

        Raises:
            AuthorizationUnavailableError: nothing is left applied
        """
        undo: List[Callable[[], Awaitable]] = []
        holder_id = holder.holder_id
        applied_label = slot_label(holder.display_name)

        try:
            undo.append(lambda: self.backend.remove_grant(holder_id, self.grant_ref))
            await self._call("add_grant", self.backend.add_grant(holder_id, self.grant_ref))

            undo.append(lambda: self.backend.deny_resource(resource_ref, holder_id))
            await self._call("allow_resource", self.backend.allow_resource(resource_ref, holder_id))

            undo.append(lambda: self.backend.set_resource_label(resource_ref, original_label))
            await self._call(
                "set_resource_label", self.backend.set_resource_label(resource_ref, applied_label)
            )
        except (AuthorizationBackendError, AuthorizationUnavailableError) as e:
            logger.error(f"Grant for holder {holder_id} on {resource_ref} failed: {e}")
            await self._undo(undo)
            if isinstance(e, AuthorizationUnavailableError):
                e.holder_id = holder_id
                raise
            raise AuthorizationUnavailableError("grant_access", str(e), holder_id) from e

        logger.info(f"Granted access to holder {holder_id} on {resource_ref} (label -> {applied_label})")
        return GrantReceipt(grant_ref=self.grant_ref, applied_label=applied_label)

    async def _undo(self, steps: List[Callable[[], Awaitable]]):
        for step in reversed(steps):
            try:
                await self._call("rollback", step())
            except AuthorizationNotFoundError:
                continue
            except (AuthorizationBackendError, AuthorizationUnavailableError) as e:
                logger.warning(f"Rollback step failed, manual cleanup may be needed: {e}")

    async def revoke_access(self, slot: Slot) -> RevokeReport:
        """Remove the role, close the channel to the holder and restore its label."""
        report = RevokeReport(slot_id=slot.id, holder_id=slot.holder_id)

        if slot.grant_ref:
            report.grant_removed = await self._teardown(
                report, "remove_grant",
                lambda: self.backend.remove_grant(slot.holder_id, slot.grant_ref),
            )
        else:
            report.grant_removed = True

        report.access_removed = await self._teardown(
            report, "deny_resource",
            lambda: self.backend.deny_resource(slot.resource_ref, slot.holder_id),
        )
        report.label_restored = await self._teardown(
            report, "restore_label",
            lambda: self.backend.set_resource_label(slot.resource_ref, slot.original_label),
        )

        if report.ok:
            logger.info(f"Revoked access for holder {slot.holder_id} on {slot.resource_ref}")
        else:
            logger.warning(
                f"Partial revoke for slot {slot.id} (holder {slot.holder_id}): "
                f"{'; '.join(report.failures)}"
            )
        return report

    async def _teardown(
        self,
        report: RevokeReport,
        operation: str,
        step: Callable[[], Awaitable],
    ) -> bool:
        try:
            await self._call(operation, step())
            return True
        except AuthorizationNotFoundError:
            logger.debug(f"{operation} for slot {report.slot_id}: already gone")
            return True
        except (AuthorizationBackendError, AuthorizationUnavailableError) as e:
            report.failures.append(f"{operation}: {e}")
            return False

