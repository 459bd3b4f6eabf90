# warden/core/auth/ownership.py
from __future__ import annotations

from enum import Enum
from typing import Dict, Tuple, Type, Union

from warden.core.errors import (
    AlreadyInitializedError,
    NotPendingSuccessorError,
    UnauthorizedError,
    WardenError,
)

from .models import AccessControlRecord


class OwnershipState(str, Enum):
    UNSET = "UNSET"
    OWNED = "OWNED"
    TRANSFER_PENDING = "TRANSFER_PENDING"
    RENOUNCED = "RENOUNCED"


class OwnershipEvent(str, Enum):
    INIT = "INIT"
    PROPOSE = "PROPOSE"
    ACCEPT = "ACCEPT"
    CANCEL = "CANCEL"
    RENOUNCE = "RENOUNCE"


# Total table: every (state, event) pair has an entry, either the next state
# or the error raised to reject the event.
_Outcome = Union[OwnershipState, Type[WardenError]]

_TABLE: Dict[Tuple[OwnershipState, OwnershipEvent], _Outcome] = {
    (OwnershipState.UNSET, OwnershipEvent.INIT): OwnershipState.OWNED,
    (OwnershipState.UNSET, OwnershipEvent.PROPOSE): UnauthorizedError,
    (OwnershipState.UNSET, OwnershipEvent.ACCEPT): NotPendingSuccessorError,
    (OwnershipState.UNSET, OwnershipEvent.CANCEL): UnauthorizedError,
    (OwnershipState.UNSET, OwnershipEvent.RENOUNCE): UnauthorizedError,

    (OwnershipState.OWNED, OwnershipEvent.INIT): AlreadyInitializedError,
    (OwnershipState.OWNED, OwnershipEvent.PROPOSE): OwnershipState.TRANSFER_PENDING,
    (OwnershipState.OWNED, OwnershipEvent.ACCEPT): NotPendingSuccessorError,
    (OwnershipState.OWNED, OwnershipEvent.CANCEL): OwnershipState.OWNED,
    (OwnershipState.OWNED, OwnershipEvent.RENOUNCE): OwnershipState.RENOUNCED,

    (OwnershipState.TRANSFER_PENDING, OwnershipEvent.INIT): AlreadyInitializedError,
    (OwnershipState.TRANSFER_PENDING, OwnershipEvent.PROPOSE): OwnershipState.TRANSFER_PENDING,
    (OwnershipState.TRANSFER_PENDING, OwnershipEvent.ACCEPT): OwnershipState.OWNED,
    (OwnershipState.TRANSFER_PENDING, OwnershipEvent.CANCEL): OwnershipState.OWNED,
    (OwnershipState.TRANSFER_PENDING, OwnershipEvent.RENOUNCE): OwnershipState.RENOUNCED,

    (OwnershipState.RENOUNCED, OwnershipEvent.INIT): AlreadyInitializedError,
    (OwnershipState.RENOUNCED, OwnershipEvent.PROPOSE): UnauthorizedError,
    (OwnershipState.RENOUNCED, OwnershipEvent.ACCEPT): NotPendingSuccessorError,
    (OwnershipState.RENOUNCED, OwnershipEvent.CANCEL): UnauthorizedError,
    (OwnershipState.RENOUNCED, OwnershipEvent.RENOUNCE): UnauthorizedError,
}


def ownership_state(rec: AccessControlRecord) -> OwnershipState:
    if rec.owner is None:
        return OwnershipState.RENOUNCED if rec.owner_initialized else OwnershipState.UNSET
    if rec.pending_owner is not None:
        return OwnershipState.TRANSFER_PENDING
    return OwnershipState.OWNED


def next_state(src: OwnershipState, event: OwnershipEvent) -> _Outcome:
    return _TABLE[(src, event)]


def ensure_transition(src: OwnershipState, event: OwnershipEvent, *, caller: str) -> OwnershipState:
    outcome = next_state(src, event)
    if isinstance(outcome, OwnershipState):
        return outcome

    message = f"Ownership event {event.value} rejected in state {src.value}"
    if issubclass(outcome, UnauthorizedError):
        raise UnauthorizedError("owner-only", message, caller=caller)
    raise outcome(message)


def allowed_events(src: OwnershipState) -> Dict[str, str]:
    out: Dict[str, str] = {}
    for (state, event), outcome in _TABLE.items():
        if state == src and isinstance(outcome, OwnershipState):
            out[event.value] = outcome.value
    return out
