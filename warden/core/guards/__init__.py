from .chain import Guard, GuardChain, GuardStage, guard_chain_of, guarded, parse_guard
from .pausable import GlobalFlags, PausableState
from .reentrancy import LockState, ReentrancyGuard

__all__ = [
    "GlobalFlags",
    "Guard",
    "GuardChain",
    "GuardStage",
    "LockState",
    "PausableState",
    "ReentrancyGuard",
    "guard_chain_of",
    "guarded",
    "parse_guard",
]
