from pathlib import Path

import pytest

from warden.core.auth.models import Principal
from warden.core.config import WardenSettings
from warden.core.host import FixedHost
from warden.core.memory.store import PagedStore
from warden.core.observability.audit import close_audit_handlers
from warden.core.observability.metrics import reset_metrics
from warden.core.unit import Unit

USER_PAGE_END = 96


@pytest.fixture(autouse=True)
def _clean_process_state(monkeypatch):
    # Settings must come from the fixtures, never from the developer's shell
    for key in ("WARDEN_CONFIG", "WARDEN_USER_PAGE_END", "WARDEN_AUDIT_PATH", "WARDEN_STORE_PATH"):
        monkeypatch.delenv(key, raising=False)
    reset_metrics()
    yield
    close_audit_handlers()


@pytest.fixture()
def store() -> PagedStore:
    return PagedStore()


@pytest.fixture()
def host() -> FixedHost:
    return FixedHost(now_ns=1_700_000_000_000_000_000, version=1)


@pytest.fixture()
def settings() -> WardenSettings:
    return WardenSettings(user_page_end=USER_PAGE_END)


@pytest.fixture()
def owner() -> Principal:
    return Principal("alice")


@pytest.fixture()
def make_unit(store, settings, host):
    """Build a Unit over the shared store, as a fresh deployment of new code would."""

    def _make(**kwargs) -> Unit:
        kwargs.setdefault("settings", settings)
        kwargs.setdefault("host", host)
        return Unit(kwargs.pop("store", store), **kwargs)

    return _make


@pytest.fixture()
def unit(make_unit, owner) -> Unit:
    u = make_unit()
    u.init(deployer=owner)
    return u


@pytest.fixture()
def gov(unit):
    return unit.gov


@pytest.fixture()
def file_store_path(tmp_path: Path) -> Path:
    return tmp_path / "state" / "unit.pages"
