"""Global pause switch.

Pausing is manual only and persists across upgrades. Only the owner or an
admin may flip it; flipping it into the state it already has is a no-op.
"""

from __future__ import annotations

import logging
from typing import Optional

from pydantic import BaseModel

from warden.core.auth.access_control import AccessControlState
from warden.core.auth.models import Capability, Principal
from warden.core.errors import PausedError
from warden.core.memory.cells import StableCell
from warden.core.observability.audit import AuditTrail

log = logging.getLogger("warden.guards")


class GlobalFlags(BaseModel):
    paused: bool = False


class PausableState:
    def __init__(
        self,
        *,
        flags_cell: StableCell[GlobalFlags],
        access: AccessControlState,
        audit: Optional[AuditTrail] = None,
    ):
        self._flags_cell = flags_cell
        self._access = access
        self._audit = audit or AuditTrail()

    def seed(self) -> None:
        self._flags_cell.get_or_init(GlobalFlags)

    def is_paused(self) -> bool:
        return self._flags_cell.require().paused

    def _set(self, caller: Principal, paused: bool) -> bool:
        self._access.require_capability(caller, Capability.admin(), guard="admin-only")
        flags = self._flags_cell.require()
        if flags.paused == paused:
            return False
        flags.paused = paused
        self._flags_cell.set(flags)

        event = "paused" if paused else "unpaused"
        log.info("%s", {"event": event, "actor": str(caller)})
        self._audit.emit(event, actor=str(caller))
        return True

    def pause(self, caller: Principal) -> bool:
        """Returns True if the flag changed."""
        return self._set(caller, True)

    def unpause(self, caller: Principal) -> bool:
        return self._set(caller, False)

    def when_not_paused(self, *, guard: str = "not-paused", caller: Optional[str] = None) -> None:
        if self.is_paused():
            raise PausedError(guard, "Unit is paused", caller=caller)

    def when_paused(self, *, guard: str = "when-paused", caller: Optional[str] = None) -> None:
        if not self.is_paused():
            raise PausedError(guard, "Unit is not paused", caller=caller)
