from __future__ import annotations

import logging
from contextlib import contextmanager
from enum import Enum
from typing import FrozenSet, Generator, Optional, Set

from warden.core.errors import ReentrancyError

log = logging.getLogger("warden.guards")


class LockState(str, Enum):
    IDLE = "IDLE"
    LOCKED = "LOCKED"


def group_key(group: str) -> str:
    return f"group:{group}"


def caller_key(subject: str) -> str:
    return f"caller:{subject}"


class ReentrancyGuard:
    """
    Single-flight locks keyed by lock group.

    The lock is transient (never persisted) and must be held for the whole
    guarded operation, across every await inside it. Entrypoints sharing a
    key are mutually exclusive; different keys are independent.
    """

    def __init__(self) -> None:
        self._locked: Set[str] = set()

    def state(self, key: str) -> LockState:
        return LockState.LOCKED if key in self._locked else LockState.IDLE

    def locked_keys(self) -> FrozenSet[str]:
        return frozenset(self._locked)

    def enter(self, key: str, *, guard: Optional[str] = None, caller: Optional[str] = None) -> None:
        if key in self._locked:
            raise ReentrancyError(
                guard or key,
                f"Reentrant call rejected: {key} is locked",
                caller=caller,
            )
        self._locked.add(key)

    def exit(self, key: str) -> None:
        # unconditional; releasing an idle key is a no-op
        self._locked.discard(key)

    @contextmanager
    def hold(
        self,
        key: str,
        *,
        guard: Optional[str] = None,
        caller: Optional[str] = None,
    ) -> Generator[None, None, None]:
        self.enter(key, guard=guard, caller=caller)
        try:
            yield
        finally:
            self.exit(key)
