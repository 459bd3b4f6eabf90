from .auth import AccessControlState, Capability, CapabilityKind, OwnershipState, Principal
from .config import WardenSettings, load_settings
from .context import CallContext, GovernanceContext
from .guards import guarded
from .host import FixedHost, SystemHost
from .lifecycle import BumpKind, UnitPhase, VersionRecord
from .memory import PagedStore
from .unit import Unit

__all__ = [
    "AccessControlState",
    "BumpKind",
    "CallContext",
    "Capability",
    "CapabilityKind",
    "FixedHost",
    "GovernanceContext",
    "OwnershipState",
    "PagedStore",
    "Principal",
    "SystemHost",
    "Unit",
    "UnitPhase",
    "VersionRecord",
    "WardenSettings",
    "guarded",
    "load_settings",
]
