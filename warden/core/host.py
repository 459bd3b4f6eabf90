from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Protocol


class Host(Protocol):
    """What the unit needs from the environment it runs in."""

    def time_ns(self) -> int:
        ...

    def code_version(self) -> int:
        ...


class SystemHost:
    """Wall clock plus a code version counter supplied by the deployer."""

    def __init__(self, code_version: int = 0):
        self._code_version = int(code_version)

    def time_ns(self) -> int:
        return time.time_ns()

    def code_version(self) -> int:
        return self._code_version


@dataclass
class FixedHost:
    """Deterministic host for tests and replays."""

    now_ns: int = 0
    version: int = 0

    def time_ns(self) -> int:
        return self.now_ns

    def code_version(self) -> int:
        return self.version

    def advance(self, seconds: float) -> None:
        self.now_ns += int(seconds * 1_000_000_000)
