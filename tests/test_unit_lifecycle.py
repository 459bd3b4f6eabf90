import asyncio
import json
from pathlib import Path

import pytest

from warden.core.auth.models import Principal
from warden.core.config import WardenSettings
from warden.core.errors import AlreadyInitializedError, ConfigurationError, LayoutWindowError
from warden.core.lifecycle.state_machine import UnitPhase
from warden.core.memory.allocator import RegionOwner
from warden.core.memory.memory_map import ACCESS_ROLES_REGION_ID, UPGRADE_BUFFER_REGION_ID
from warden.core.memory.store import PagedStore
from warden.core.observability.metrics import snapshot_named
from warden.core.unit import Unit

USER_PAGE_END = 96


def test_init_lays_out_framework_regions(unit):
    table = unit.gov.allocator.region_table()
    assert table[ACCESS_ROLES_REGION_ID].owner == RegionOwner.FRAMEWORK
    assert table[UPGRADE_BUFFER_REGION_ID].owner == RegionOwner.FRAMEWORK
    assert min(e.start_page for e in table.values()) >= USER_PAGE_END

    assert unit.phase == UnitPhase.READY
    assert unit.config_user_page_end() == USER_PAGE_END
    assert snapshot_named()["lifecycle|init|ok"] == 1


def test_second_init_on_deployed_store_rejected(unit, make_unit):
    again = make_unit()
    with pytest.raises(AlreadyInitializedError):
        again.init()
    assert again.phase == UnitPhase.FAILED


def test_upgrade_on_empty_store_rejected(make_unit):
    u = make_unit()
    with pytest.raises(ConfigurationError):
        u.post_upgrade("patch")
    assert u.phase == UnitPhase.FAILED


def test_missing_user_page_end(make_unit, store):
    u = make_unit(settings=WardenSettings())
    with pytest.raises(ConfigurationError, match="WARDEN_USER_PAGE_END"):
        u.init()
    assert store.pages_in_use() == 0


def test_user_page_end_change_rejected_on_upgrade(unit, make_unit):
    u = make_unit(settings=WardenSettings(user_page_end=USER_PAGE_END + 8))
    with pytest.raises(ConfigurationError):
        u.post_upgrade("patch")


def test_failed_init_restores_store(make_unit, store, owner):
    u = make_unit()

    @u.on_init
    def seed_supply(gov):
        gov.user_region().write(0, b"partial")
        raise RuntimeError("seed failed")

    with pytest.raises(RuntimeError):
        u.init(deployer=owner)

    assert u.phase == UnitPhase.FAILED
    assert store.pages_in_use() == 0
    assert snapshot_named()["lifecycle|init|failed"] == 1

    # the store is still deployable
    fresh = make_unit()
    fresh.init(deployer=owner)
    assert fresh.gov.access.owner() == owner


def test_allocation_only_inside_hooks(unit):
    with pytest.raises(LayoutWindowError):
        unit.gov.allocator.allocate_dynamic_region(1)


def test_application_regions_allocated_in_hooks(make_unit):
    first = make_unit()

    @first.on_init
    def allocate(gov):
        gov.allocator.allocate_dynamic_region(0, 2).write(0, b"ledger")

    first.init()

    second = make_unit()
    seen = {}

    @second.on_upgrade
    def reattach(gov, flags):
        seen["data"] = gov.dynamic_region(0).read(0, 6)
        seen["flags"] = dict(flags)

    second.post_upgrade("minor", extra_flags={"rebuild_index": True})
    assert seen == {"data": b"ledger", "flags": {"rebuild_index": True}}


def test_upgrade_buffer_available(unit):
    buf = unit.gov.upgrade_buffer()
    buf.write(0, b"scratch")
    assert buf.read(0, 7) == b"scratch"


def test_file_backed_store_survives_process_restart(file_store_path: Path, settings, host, owner):
    u1 = Unit(PagedStore(path=file_store_path), settings=settings, host=host)
    u1.init(deployer=owner)
    u1.gov.access.grant_role(owner, "minter", Principal("bob"))

    # later mutations are flushed by the host at its own checkpoints
    u1.store.flush()

    u2 = Unit(PagedStore.open(file_store_path), settings=settings, host=host)
    u2.post_upgrade("patch")
    assert u2.gov.access.has_role("minter", Principal("bob"))
    assert u2.version().semver == (0, 0, 1)


def test_entrypoint_end_to_end(unit, owner):
    @unit.entrypoint("role:minter", "not-paused", "reentrancy-group:supply")
    def mint(ctx, amount):
        region = ctx.gov.user_region()
        total = int.from_bytes(region.read(0, 8), "big") + amount
        region.write(0, total.to_bytes(8, "big"))
        return total

    unit.gov.access.grant_role(owner, "minter", Principal("bob"))
    assert asyncio.run(unit.call("bob", "mint", 5)) == 5
    assert asyncio.run(unit.call("bob", "mint", amount=2)) == 7
    assert snapshot_named()["call|mint|ok"] == 2


def test_audit_file_written(tmp_path: Path, store, host, owner):
    audit_path = tmp_path / "audit" / "warden.jsonl"
    u = Unit(store, settings=WardenSettings(user_page_end=USER_PAGE_END, audit_path=audit_path), host=host)
    u.init(deployer=owner)
    u.gov.pausable.pause(owner)

    lines = [json.loads(x) for x in audit_path.read_text(encoding="utf-8").splitlines()]
    types = [x["type"] for x in lines]
    assert "lifecycle_init" in types
    assert "owner_initialized" in types
    assert lines[-1]["type"] == "paused"
    assert lines[-1]["actor"] == "alice"


def test_from_settings_opens_configured_store(file_store_path: Path, host, owner):
    settings = WardenSettings(user_page_end=USER_PAGE_END, store_path=file_store_path)

    u1 = Unit.from_settings(settings, host=host)
    assert u1.store.path == file_store_path
    u1.init(deployer=owner)
    assert file_store_path.exists()

    u2 = Unit.from_settings(settings, host=host)
    u2.post_upgrade("patch")
    assert u2.gov.access.owner() == owner


def test_from_settings_reads_store_path_from_env(monkeypatch, tmp_path: Path, host):
    path = tmp_path / "env" / "unit.pages"
    monkeypatch.setenv("WARDEN_USER_PAGE_END", str(USER_PAGE_END))
    monkeypatch.setenv("WARDEN_STORE_PATH", str(path))

    u = Unit.from_settings(host=host)
    u.init()
    assert u.store.path == path
    assert path.exists()


def test_from_settings_without_store_path_is_in_memory(host):
    u = Unit.from_settings(WardenSettings(user_page_end=USER_PAGE_END), host=host)
    u.init()
    assert u.store.path is None
    assert u.phase == UnitPhase.READY
