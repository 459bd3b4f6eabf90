import pytest

from warden.core.auth.models import Capability, CapabilityKind, Principal
from warden.core.auth.ownership import OwnershipState
from warden.core.errors import (
    AlreadyInitializedError,
    InvalidPrincipalError,
    NotPendingSuccessorError,
    UnauthorizedError,
)

BOB = Principal("bob")
CAROL = Principal("carol")
MALLORY = Principal("mallory")


def test_deployer_is_owner_and_admin(gov, owner):
    access = gov.access
    assert access.owner() == owner
    assert access.is_owner(owner)
    assert access.is_admin(owner)
    assert access.ownership_state() == OwnershipState.OWNED


def test_init_owner_twice_rejected(gov):
    with pytest.raises(AlreadyInitializedError):
        gov.access.init_owner(BOB)


def test_unset_owner_then_init(make_unit):
    u = make_unit()
    u.init()
    access = u.gov.access
    assert access.owner() is None
    assert access.ownership_state() == OwnershipState.UNSET

    with pytest.raises(InvalidPrincipalError):
        access.init_owner(Principal.anonymous())
    access.init_owner(BOB)
    assert access.owner() == BOB


def test_two_step_transfer(gov, owner):
    access = gov.access
    access.propose_owner_transfer(owner, BOB)

    # proposing does not move ownership
    assert access.owner() == owner
    assert access.pending_owner() == BOB
    assert access.ownership_state() == OwnershipState.TRANSFER_PENDING

    with pytest.raises(NotPendingSuccessorError):
        access.accept_owner_transfer(CAROL)

    access.accept_owner_transfer(BOB)
    assert access.owner_and_pending_owner() == (BOB, None)
    assert not access.is_owner(owner)


def test_only_owner_may_propose(gov):
    with pytest.raises(UnauthorizedError) as ei:
        gov.access.propose_owner_transfer(MALLORY, MALLORY)
    assert ei.value.guard == "owner-only"
    assert gov.access.pending_owner() is None


def test_accept_without_pending_rejected(gov):
    with pytest.raises(NotPendingSuccessorError):
        gov.access.accept_owner_transfer(BOB)


def test_cancel_transfer(gov, owner):
    access = gov.access
    access.propose_owner_transfer(owner, BOB)
    access.cancel_owner_transfer(owner)

    assert access.pending_owner() is None
    with pytest.raises(NotPendingSuccessorError):
        access.accept_owner_transfer(BOB)

    # nothing pending: no-op
    access.cancel_owner_transfer(owner)


def test_new_proposal_replaces_pending(gov, owner):
    access = gov.access
    access.propose_owner_transfer(owner, BOB)
    access.propose_owner_transfer(owner, CAROL)

    with pytest.raises(NotPendingSuccessorError):
        access.accept_owner_transfer(BOB)
    access.accept_owner_transfer(CAROL)
    assert access.owner() == CAROL


def test_renounce_is_terminal(gov, owner):
    access = gov.access
    access.propose_owner_transfer(owner, BOB)
    access.renounce_ownership(owner)

    assert access.owner() is None
    assert access.pending_owner() is None
    assert access.ownership_state() == OwnershipState.RENOUNCED

    with pytest.raises(AlreadyInitializedError):
        access.init_owner(BOB)
    with pytest.raises(NotPendingSuccessorError):
        access.accept_owner_transfer(BOB)


def test_add_remove_admin_owner_only_and_idempotent(gov, owner):
    access = gov.access
    access.add_admin(owner, BOB)
    access.add_admin(owner, BOB)
    assert [a.subject for a in access.admins()].count("bob") == 1

    with pytest.raises(UnauthorizedError):
        access.add_admin(BOB, CAROL)

    access.remove_admin(owner, BOB)
    access.remove_admin(owner, BOB)
    assert not access.is_admin(BOB)


def test_renounce_admin(gov, owner):
    access = gov.access
    access.add_admin(owner, BOB)
    access.renounce_admin(BOB)
    assert not access.is_admin(BOB)

    with pytest.raises(UnauthorizedError):
        access.renounce_admin(BOB)


def test_grant_revoke_role_minter_scenario(gov, owner):
    access = gov.access

    with pytest.raises(UnauthorizedError):
        access.grant_role(MALLORY, "minter", MALLORY)

    access.grant_role(owner, "minter", BOB)
    assert access.has_role("minter", BOB)
    access.require_capability(BOB, "minter")
    with pytest.raises(UnauthorizedError):
        access.require_capability(CAROL, "minter")
    assert access.roles_of(BOB) == frozenset({"minter"})
    assert access.members_of("minter") == [BOB]

    access.revoke_role(owner, "minter", BOB)
    assert not access.has_role("minter", BOB)
    with pytest.raises(UnauthorizedError):
        access.require_capability(BOB, "minter")
    assert access.members_of("minter") == []


def test_role_admin_delegation(gov, owner):
    access = gov.access
    access.set_role_admins(owner, "minter", ["minter_admin"])
    access.grant_role(owner, "minter_admin", CAROL)

    # carol holds the admin role of minter, so she may manage minters
    access.grant_role(CAROL, "minter", BOB)
    assert access.has_role("minter", BOB)

    # but not roles she does not administer
    with pytest.raises(UnauthorizedError):
        access.grant_role(CAROL, "burner", BOB)

    access.revoke_role_admins(owner, "minter", ["minter_admin"])
    assert access.role_admins_of("minter") == frozenset()
    with pytest.raises(UnauthorizedError):
        access.revoke_role(CAROL, "minter", BOB)


def test_role_admins_require_admin(gov):
    with pytest.raises(UnauthorizedError):
        gov.access.set_role_admins(BOB, "minter", ["bob_role"])


def test_capability_precedence(gov, owner):
    access = gov.access
    access.add_admin(owner, BOB)
    access.grant_role(owner, "minter", CAROL)

    assert access.has_capability(owner, Capability.owner())
    assert access.has_capability(owner, "minter")

    assert not access.has_capability(BOB, "owner")
    assert access.has_capability(BOB, "admin")
    assert access.has_capability(BOB, "role:minter")

    assert not access.has_capability(CAROL, "admin")
    assert access.has_capability(CAROL, "minter")
    assert not access.has_capability(CAROL, "burner")


def test_has_any_and_all_roles(gov, owner):
    access = gov.access
    access.grant_role(owner, "minter", BOB)
    access.grant_role(owner, "pauser", BOB)

    assert access.has_any_role(["burner", "minter"], BOB)
    assert access.has_all_roles(["minter", "pauser"], BOB)
    assert not access.has_all_roles(["minter", "burner"], BOB)


def test_require_capability_reports_label(gov):
    with pytest.raises(UnauthorizedError) as ei:
        gov.access.require_capability(BOB, "role-admin:minter")
    assert ei.value.guard == "role-admin:minter"
    assert ei.value.stage == "access"


def test_capability_parse():
    assert Capability.parse("owner").kind == CapabilityKind.OWNER
    assert Capability.parse("admin").kind == CapabilityKind.ADMIN
    assert Capability.parse("role:minter") == Capability.for_role("minter")
    assert Capability.parse("minter") == Capability.for_role("minter")
    assert Capability.parse("role-admin:minter").kind == CapabilityKind.ROLE_ADMIN


@pytest.mark.parametrize("bad", ["", "owner", "admin", "a:b", "a,b"])
def test_invalid_role_ids(bad):
    with pytest.raises(ValueError):
        Capability.for_role(bad)


def test_state_survives_new_unit_on_same_store(unit, make_unit, owner):
    unit.gov.access.grant_role(owner, "minter", BOB)

    upgraded = make_unit()
    upgraded.post_upgrade("patch")
    access = upgraded.gov.access
    assert access.owner() == owner
    assert access.has_role("minter", BOB)


def test_access_mutations_are_audited(gov, owner, caplog):
    with caplog.at_level("INFO", logger="warden.audit"):
        gov.access.grant_role(owner, "minter", BOB)
    assert any('"type":"role_granted"' in r.getMessage() for r in caplog.records)
