from .manager import LifecycleManager, MigrationCallback
from .models import BumpKind, VersionRecord
from .state_machine import UnitPhase

__all__ = ["BumpKind", "LifecycleManager", "MigrationCallback", "UnitPhase", "VersionRecord"]
