# warden/core/lifecycle/state_machine.py
from __future__ import annotations

from enum import Enum
from typing import Dict, Set, Tuple

from warden.core.errors import ConfigurationError


class UnitPhase(str, Enum):
    NEW = "NEW"
    INITIALIZING = "INITIALIZING"
    UPGRADING = "UPGRADING"
    READY = "READY"
    FAILED = "FAILED"


_ALLOWED: Set[Tuple[UnitPhase, UnitPhase]] = {
    (UnitPhase.NEW, UnitPhase.INITIALIZING),
    (UnitPhase.NEW, UnitPhase.UPGRADING),
    (UnitPhase.INITIALIZING, UnitPhase.READY),
    (UnitPhase.INITIALIZING, UnitPhase.FAILED),
    (UnitPhase.UPGRADING, UnitPhase.READY),
    (UnitPhase.UPGRADING, UnitPhase.FAILED),
}

# A process runs its lifecycle hook once; the next code replacement is a new unit.
_TERMINAL: Set[UnitPhase] = {
    UnitPhase.READY,
    UnitPhase.FAILED,
}


def is_terminal(phase: UnitPhase) -> bool:
    return phase in _TERMINAL


def can_transition(src: UnitPhase, dst: UnitPhase) -> bool:
    if src in _TERMINAL:
        return False
    return (src, dst) in _ALLOWED


def ensure_transition(src: UnitPhase, dst: UnitPhase) -> None:
    if not can_transition(src, dst):
        raise ConfigurationError(f"Illegal lifecycle transition: {src.value} -> {dst.value}")


def allowed_next(src: UnitPhase) -> Dict[str, bool]:
    out: Dict[str, bool] = {}
    for a, b in _ALLOWED:
        if a == src:
            out[b.value] = True
    return out
