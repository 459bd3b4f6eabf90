from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import List, Optional, Union

from pydantic import BaseModel, Field

ANONYMOUS_SUBJECT = "anonymous"

# Role ids that would shadow the built-in capabilities
RESERVED_ROLE_IDS = frozenset({"owner", "admin"})


@dataclass(frozen=True, order=True)
class Principal:
    """Opaque, unforgeable caller identity presented with every call."""

    subject: str

    def __post_init__(self) -> None:
        if not isinstance(self.subject, str) or not self.subject:
            raise ValueError("Principal subject must be a non-empty string")

    @classmethod
    def anonymous(cls) -> "Principal":
        return cls(ANONYMOUS_SUBJECT)

    @property
    def is_anonymous(self) -> bool:
        return self.subject == ANONYMOUS_SUBJECT

    def __str__(self) -> str:
        return self.subject


class CapabilityKind(str, Enum):
    OWNER = "owner"
    ADMIN = "admin"
    ROLE = "role"
    ROLE_ADMIN = "role_admin"


@dataclass(frozen=True)
class Capability:
    """
    Requirement evaluated by AccessControlState.require_capability.

    Precedence is Owner > Admin > Role: the owner satisfies every capability,
    admins satisfy everything except OWNER.
    """

    kind: CapabilityKind
    role: Optional[str] = None

    @classmethod
    def owner(cls) -> "Capability":
        return cls(CapabilityKind.OWNER)

    @classmethod
    def admin(cls) -> "Capability":
        return cls(CapabilityKind.ADMIN)

    @classmethod
    def for_role(cls, role: str) -> "Capability":
        return cls(CapabilityKind.ROLE, validate_role_id(role))

    @classmethod
    def role_admin(cls, role: str) -> "Capability":
        return cls(CapabilityKind.ROLE_ADMIN, validate_role_id(role))

    @classmethod
    def parse(cls, value: Union[str, "Capability"]) -> "Capability":
        """
        "owner" / "admin" name the built-ins, "role-admin:X" the admin
        capability of role X, anything else is a role id.
        """
        if isinstance(value, Capability):
            return value
        v = (value or "").strip()
        if v == CapabilityKind.OWNER.value:
            return cls.owner()
        if v == CapabilityKind.ADMIN.value:
            return cls.admin()
        if v.startswith("role-admin:"):
            return cls.role_admin(v.split(":", 1)[1])
        if v.startswith("role:"):
            v = v.split(":", 1)[1]
        return cls.for_role(v)

    @property
    def label(self) -> str:
        if self.kind == CapabilityKind.ROLE:
            return f"role:{self.role}"
        if self.kind == CapabilityKind.ROLE_ADMIN:
            return f"role-admin:{self.role}"
        return self.kind.value


def validate_role_id(role: str) -> str:
    r = (role or "").strip() if isinstance(role, str) else ""
    if not r:
        raise ValueError("Role id must be a non-empty string")
    if r in RESERVED_ROLE_IDS:
        raise ValueError(f"Role id {r!r} is reserved")
    if ":" in r or "," in r:
        raise ValueError(f"Role id {r!r} may not contain ':' or ','")
    return r


# ----------------------------
# persisted records
# ----------------------------


class AccessControlRecord(BaseModel):
    owner: Optional[str] = None
    pending_owner: Optional[str] = None
    owner_initialized: bool = False
    admins: List[str] = Field(default_factory=list)
    # role -> roles whose holders may grant/revoke it
    role_admins: dict[str, List[str]] = Field(default_factory=dict)


class RoleTableRecord(BaseModel):
    members: dict[str, List[str]] = Field(default_factory=dict)
