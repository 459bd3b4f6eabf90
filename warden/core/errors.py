"""Governance error taxonomy.

Guard failures (UnauthorizedError, PausedError, ReentrancyError) are
recoverable at the call boundary: they reject a call before it touches state.
Configuration, allocator and migration errors abort the init/upgrade attempt.
"""

from __future__ import annotations

from typing import Any, Dict, Optional


class WardenError(Exception):
    pass


class ConfigurationError(WardenError):
    pass


class LayoutWindowError(ConfigurationError):
    """Layout operation attempted outside the init/upgrade window."""


class CapacityError(ConfigurationError):
    def __init__(self, *, region: str, needed: int, capacity: int):
        self.region = region
        self.needed = int(needed)
        self.capacity = int(capacity)
        super().__init__(f"Record for region={region} needs {needed} bytes, capacity is {capacity}")


class IdCollisionError(WardenError):
    def __init__(self, region_id: int):
        self.region_id = int(region_id)
        super().__init__(f"Dynamic region id {region_id} is already allocated")


class RangeError(WardenError):
    def __init__(self, region_id: int, *, owner: str, allowed: range):
        self.region_id = int(region_id)
        self.owner = owner
        self.allowed = allowed
        super().__init__(
            f"Dynamic region id {region_id} outside {owner} range [{allowed.start}, {allowed.stop})"
        )


class AlreadyInitializedError(WardenError):
    pass


class NotPendingSuccessorError(WardenError):
    pass


class InvalidPrincipalError(WardenError):
    pass


class NotReadyError(WardenError):
    pass


class MigrationError(WardenError):
    def __init__(self, *, old_layout: int, new_layout: int, reason: str):
        self.old_layout = int(old_layout)
        self.new_layout = int(new_layout)
        self.reason = reason
        super().__init__(f"Migration layout_v{old_layout} -> layout_v{new_layout} failed: {reason}")


class GuardError(WardenError):
    """
    Base for call-boundary rejections. `guard` names the guard that failed
    (e.g. "owner-only", "role:minter", "not-paused", "reentrancy-group:vault").
    """

    stage = "guard"

    def __init__(self, guard: str, message: str, *, caller: Optional[str] = None):
        self.guard = guard
        self.caller = caller
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error": type(self).__name__,
            "stage": self.stage,
            "guard": self.guard,
            "caller": self.caller,
            "detail": str(self),
        }


class UnauthorizedError(GuardError):
    stage = "access"


class PausedError(GuardError):
    stage = "pause"


class ReentrancyError(GuardError):
    stage = "reentrancy"
