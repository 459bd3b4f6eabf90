from __future__ import annotations

from enum import Enum
from typing import Tuple

from pydantic import BaseModel, Field

VersionTriple = Tuple[int, int, int]


class BumpKind(str, Enum):
    MAJOR = "major"
    MINOR = "minor"
    PATCH = "patch"


class VersionRecord(BaseModel):
    major: int = Field(default=0, ge=0)
    minor: int = Field(default=0, ge=0)
    patch: int = Field(default=0, ge=0)
    stable_layout_version: int = Field(default=0, ge=0)

    last_upgraded_ns: int = Field(default=0, ge=0)
    host_code_version: int = Field(default=0, ge=0)

    @property
    def semver(self) -> VersionTriple:
        return (self.major, self.minor, self.patch)

    def ordering_key(self) -> Tuple[int, int, int, int]:
        return (self.major, self.minor, self.patch, self.stable_layout_version)

    def bumped(self, kind: BumpKind) -> "VersionRecord":
        if kind == BumpKind.MAJOR:
            return self.model_copy(update={"major": self.major + 1, "minor": 0, "patch": 0})
        if kind == BumpKind.MINOR:
            return self.model_copy(update={"minor": self.minor + 1, "patch": 0})
        return self.model_copy(update={"patch": self.patch + 1})

    def text(self) -> str:
        # "v0.1.15,host_v24,layout_v3,1700000000.123456789"
        secs, nanos = divmod(self.last_upgraded_ns, 1_000_000_000)
        return (
            f"v{self.major}.{self.minor}.{self.patch},"
            f"host_v{self.host_code_version},"
            f"layout_v{self.stable_layout_version},"
            f"{secs}.{nanos}"
        )
