from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

from warden.core.auth.models import Principal
from warden.core.errors import NotReadyError
from warden.core.memory.memory_map import UPGRADE_BUFFER_REGION_ID

if TYPE_CHECKING:
    from warden.core.auth.access_control import AccessControlState
    from warden.core.guards.pausable import PausableState
    from warden.core.guards.reentrancy import ReentrancyGuard
    from warden.core.lifecycle.manager import LifecycleManager
    from warden.core.memory.allocator import MemoryRegionAllocator
    from warden.core.memory.store import MemoryRegion
    from warden.core.observability.audit import AuditTrail


@dataclass
class GovernanceContext:
    """
    Governance state of one unit, owned by the unit for its process lifetime
    and handed to every guarded call. Nothing here is module-global.
    """

    access: "AccessControlState"
    pausable: "PausableState"
    reentrancy: "ReentrancyGuard"
    lifecycle: "LifecycleManager"
    allocator: "MemoryRegionAllocator"
    audit: "AuditTrail"
    ready: bool = False

    def require_ready(self) -> None:
        if not self.ready:
            raise NotReadyError("Unit has not completed init/post_upgrade")

    def user_region(self) -> "MemoryRegion":
        return self.allocator.user_region()

    def dynamic_region(self, region_id: int) -> "MemoryRegion":
        return self.allocator.dynamic_region(region_id)

    def upgrade_buffer(self) -> "MemoryRegion":
        return self.allocator.dynamic_region(UPGRADE_BUFFER_REGION_ID)


@dataclass(frozen=True)
class CallContext:
    """The caller of the current call tree plus the unit's governance handle."""

    caller: Principal
    gov: GovernanceContext
