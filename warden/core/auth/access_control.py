from __future__ import annotations

import logging
from typing import Dict, FrozenSet, Iterable, List, Optional, Set, Tuple, Union

from warden.core.errors import InvalidPrincipalError, NotPendingSuccessorError, UnauthorizedError
from warden.core.memory.cells import StableCell
from warden.core.observability.audit import AuditTrail

from .models import (
    AccessControlRecord,
    Capability,
    CapabilityKind,
    Principal,
    RoleTableRecord,
    validate_role_id,
)
from .ownership import OwnershipEvent, OwnershipState, ensure_transition, ownership_state

log = logging.getLogger("warden.access")

CapabilityLike = Union[str, Capability]


def _json_log(event: str, **fields) -> None:
    msg = {"event": event, **fields}
    log.info("%s", msg)


def _require_not_anonymous(p: Principal, what: str) -> None:
    if p.is_anonymous:
        raise InvalidPrincipalError(f"Cannot {what} the anonymous principal")


class AccessControlState:
    """
    Two-step ownable plus admins plus roles.

    The owner manages admins. Owner and admins manage role admins. Holders of
    a role configured as admin of role X may grant and revoke X. All state is
    read from and written back to the paged store on every operation.
    """

    def __init__(
        self,
        *,
        record_cell: StableCell[AccessControlRecord],
        roles_cell: StableCell[RoleTableRecord],
        audit: Optional[AuditTrail] = None,
    ):
        self._record_cell = record_cell
        self._roles_cell = roles_cell
        self._audit = audit or AuditTrail()

    def seed(self) -> None:
        """Write empty records on first deployment; keep existing ones."""
        self._record_cell.get_or_init(AccessControlRecord)
        self._roles_cell.get_or_init(RoleTableRecord)

    def _record(self) -> AccessControlRecord:
        return self._record_cell.require()

    def _roles(self) -> RoleTableRecord:
        return self._roles_cell.require()

    def _emit(self, event_type: str, actor: Optional[Principal], **extra) -> None:
        _json_log(event_type, actor=str(actor) if actor else None, **extra)
        self._audit.emit(event_type, actor=str(actor) if actor else None, extra=extra or None)

    # ----------------------------
    # queries
    # ----------------------------

    def owner(self) -> Optional[Principal]:
        o = self._record().owner
        return Principal(o) if o else None

    def pending_owner(self) -> Optional[Principal]:
        p = self._record().pending_owner
        return Principal(p) if p else None

    def owner_and_pending_owner(self) -> Tuple[Optional[Principal], Optional[Principal]]:
        rec = self._record()
        return (
            Principal(rec.owner) if rec.owner else None,
            Principal(rec.pending_owner) if rec.pending_owner else None,
        )

    def ownership_state(self) -> OwnershipState:
        return ownership_state(self._record())

    def is_owner(self, p: Principal) -> bool:
        return self._record().owner == p.subject

    def is_admin(self, p: Principal) -> bool:
        return p.subject in self._record().admins

    def admins(self) -> List[Principal]:
        return [Principal(a) for a in self._record().admins]

    def roles_of(self, p: Principal) -> FrozenSet[str]:
        members = self._roles().members
        return frozenset(role for role, subjects in members.items() if p.subject in subjects)

    def members_of(self, role: str) -> List[Principal]:
        role = validate_role_id(role)
        return [Principal(s) for s in self._roles().members.get(role, [])]

    def has_role(self, role: str, p: Principal) -> bool:
        return validate_role_id(role) in self.roles_of(p)

    def has_any_role(self, roles: Iterable[str], p: Principal) -> bool:
        held = self.roles_of(p)
        return any(validate_role_id(r) in held for r in roles)

    def has_all_roles(self, roles: Iterable[str], p: Principal) -> bool:
        held = self.roles_of(p)
        return all(validate_role_id(r) in held for r in roles)

    def role_admins_of(self, role: str) -> FrozenSet[str]:
        role = validate_role_id(role)
        return frozenset(self._record().role_admins.get(role, []))

    # ----------------------------
    # capability evaluation
    # ----------------------------

    def has_capability(self, caller: Principal, capability: CapabilityLike) -> bool:
        cap = Capability.parse(capability)
        rec = self._record()

        if rec.owner is not None and rec.owner == caller.subject:
            return True
        if cap.kind == CapabilityKind.OWNER:
            return False

        if caller.subject in rec.admins:
            return True
        if cap.kind == CapabilityKind.ADMIN:
            return False

        held = self.roles_of(caller)
        if cap.kind == CapabilityKind.ROLE:
            return cap.role in held

        # ROLE_ADMIN
        return bool(held & set(rec.role_admins.get(cap.role or "", [])))

    def require_capability(
        self,
        caller: Principal,
        capability: CapabilityLike,
        *,
        guard: Optional[str] = None,
    ) -> None:
        cap = Capability.parse(capability)
        if not self.has_capability(caller, cap):
            raise UnauthorizedError(
                guard or cap.label,
                f"Caller {caller} lacks capability {cap.label}",
                caller=str(caller),
            )

    # ----------------------------
    # ownership
    # ----------------------------

    def init_owner(self, p: Principal) -> None:
        _require_not_anonymous(p, "make owner")
        rec = self._record()
        ensure_transition(ownership_state(rec), OwnershipEvent.INIT, caller=str(p))

        rec.owner = p.subject
        rec.pending_owner = None
        rec.owner_initialized = True
        if p.subject not in rec.admins:
            rec.admins.append(p.subject)
        self._record_cell.set(rec)
        self._emit("owner_initialized", p, owner=p.subject)

    def propose_owner_transfer(self, caller: Principal, new_owner: Principal) -> None:
        self.require_capability(caller, Capability.owner(), guard="owner-only")
        _require_not_anonymous(new_owner, "transfer ownership to")

        rec = self._record()
        ensure_transition(ownership_state(rec), OwnershipEvent.PROPOSE, caller=str(caller))
        rec.pending_owner = new_owner.subject
        self._record_cell.set(rec)
        self._emit("owner_transfer_proposed", caller, pending_owner=new_owner.subject)

    def accept_owner_transfer(self, caller: Principal) -> None:
        rec = self._record()
        ensure_transition(ownership_state(rec), OwnershipEvent.ACCEPT, caller=str(caller))
        if rec.pending_owner != caller.subject:
            raise NotPendingSuccessorError(f"Caller {caller} is not the pending owner")

        previous = rec.owner
        rec.owner = caller.subject
        rec.pending_owner = None
        self._record_cell.set(rec)
        self._emit("owner_transfer_accepted", caller, previous_owner=previous, owner=caller.subject)

    def cancel_owner_transfer(self, caller: Principal) -> None:
        self.require_capability(caller, Capability.owner(), guard="owner-only")
        rec = self._record()
        ensure_transition(ownership_state(rec), OwnershipEvent.CANCEL, caller=str(caller))
        if rec.pending_owner is None:
            return
        cancelled = rec.pending_owner
        rec.pending_owner = None
        self._record_cell.set(rec)
        self._emit("owner_transfer_cancelled", caller, cancelled_pending_owner=cancelled)

    def renounce_ownership(self, caller: Principal) -> None:
        self.require_capability(caller, Capability.owner(), guard="owner-only")
        rec = self._record()
        ensure_transition(ownership_state(rec), OwnershipEvent.RENOUNCE, caller=str(caller))
        rec.owner = None
        rec.pending_owner = None
        self._record_cell.set(rec)
        self._emit("owner_renounced", caller)

    # ----------------------------
    # admins
    # ----------------------------

    def add_admin(self, caller: Principal, p: Principal) -> None:
        self.require_capability(caller, Capability.owner(), guard="owner-only")
        _require_not_anonymous(p, "grant admin to")
        rec = self._record()
        if p.subject in rec.admins:
            return
        rec.admins.append(p.subject)
        self._record_cell.set(rec)
        self._emit("admin_added", caller, admin=p.subject)

    def remove_admin(self, caller: Principal, p: Principal) -> None:
        self.require_capability(caller, Capability.owner(), guard="owner-only")
        rec = self._record()
        if p.subject not in rec.admins:
            return
        rec.admins = [a for a in rec.admins if a != p.subject]
        self._record_cell.set(rec)
        self._emit("admin_removed", caller, admin=p.subject)

    def renounce_admin(self, caller: Principal) -> None:
        rec = self._record()
        if caller.subject not in rec.admins:
            raise UnauthorizedError("admin-only", f"Caller {caller} is not an admin", caller=str(caller))
        rec.admins = [a for a in rec.admins if a != caller.subject]
        self._record_cell.set(rec)
        self._emit("admin_renounced", caller)

    # ----------------------------
    # roles
    # ----------------------------

    def grant_role(self, caller: Principal, role: str, p: Principal) -> None:
        role = validate_role_id(role)
        self.require_capability(caller, Capability.role_admin(role))
        _require_not_anonymous(p, "grant a role to")

        table = self._roles()
        members = table.members.setdefault(role, [])
        if p.subject in members:
            return
        members.append(p.subject)
        members.sort()
        self._roles_cell.set(table)
        self._emit("role_granted", caller, role=role, principal=p.subject)

    def revoke_role(self, caller: Principal, role: str, p: Principal) -> None:
        role = validate_role_id(role)
        self.require_capability(caller, Capability.role_admin(role))

        table = self._roles()
        members = table.members.get(role, [])
        if p.subject not in members:
            return
        remaining = [m for m in members if m != p.subject]
        if remaining:
            table.members[role] = remaining
        else:
            table.members.pop(role, None)
        self._roles_cell.set(table)
        self._emit("role_revoked", caller, role=role, principal=p.subject)

    def set_role_admins(self, caller: Principal, role: str, admin_roles: Iterable[str]) -> None:
        role = validate_role_id(role)
        self.require_capability(caller, Capability.admin(), guard="admin-only")
        added: Set[str] = {validate_role_id(r) for r in admin_roles}

        rec = self._record()
        current = set(rec.role_admins.get(role, []))
        if added <= current:
            return
        rec.role_admins[role] = sorted(current | added)
        self._record_cell.set(rec)
        self._emit("role_admins_set", caller, role=role, admin_roles=sorted(added))

    def revoke_role_admins(self, caller: Principal, role: str, admin_roles: Iterable[str]) -> None:
        role = validate_role_id(role)
        self.require_capability(caller, Capability.admin(), guard="admin-only")
        removed: Set[str] = {validate_role_id(r) for r in admin_roles}

        rec = self._record()
        current = set(rec.role_admins.get(role, []))
        if not (current & removed):
            return
        remaining = sorted(current - removed)
        if remaining:
            rec.role_admins[role] = remaining
        else:
            rec.role_admins.pop(role, None)
        self._record_cell.set(rec)
        self._emit("role_admins_revoked", caller, role=role, admin_roles=sorted(removed))

    def snapshot(self) -> Dict[str, object]:
        rec = self._record()
        return {
            "owner": rec.owner,
            "pending_owner": rec.pending_owner,
            "state": ownership_state(rec).value,
            "admins": list(rec.admins),
            "role_admins": {k: list(v) for k, v in rec.role_admins.items()},
            "roles": {k: list(v) for k, v in self._roles().members.items()},
        }
