from __future__ import annotations

import inspect
import logging
from typing import Any, Callable, Dict, List, Mapping, Optional, Union

from warden.core.auth.access_control import AccessControlState
from warden.core.auth.models import AccessControlRecord, Principal, RoleTableRecord
from warden.core.config import WardenSettings, load_settings
from warden.core.context import CallContext, GovernanceContext
from warden.core.errors import AlreadyInitializedError, ConfigurationError, NotReadyError
from warden.core.guards.chain import guarded
from warden.core.guards.pausable import GlobalFlags, PausableState
from warden.core.guards.reentrancy import ReentrancyGuard
from warden.core.host import Host, SystemHost
from warden.core.lifecycle.manager import LifecycleManager, MigrationCallback
from warden.core.lifecycle.models import BumpKind, VersionRecord, VersionTriple
from warden.core.lifecycle.state_machine import UnitPhase, ensure_transition
from warden.core.memory.allocator import MemoryRegionAllocator, RegionOwner
from warden.core.memory.cells import StableCell
from warden.core.memory.memory_map import (
    ACCESS_CONTROL_PAGE_END,
    ACCESS_CONTROL_PAGE_START,
    ACCESS_ROLES_REGION_ID,
    ACCESS_ROLES_REGION_PAGES,
    GLOBAL_FLAGS_PAGE_END,
    GLOBAL_FLAGS_PAGE_START,
    LIFECYCLE_PAGE_END,
    LIFECYCLE_PAGE_START,
    RESERVED_PREFIX_PAGES,
    UPGRADE_BUFFER_REGION_ID,
)
from warden.core.memory.store import PagedStore
from warden.core.observability.audit import AuditTrail
from warden.core.observability.metrics import inc_lifecycle

log = logging.getLogger("warden.lifecycle")

InitHook = Callable[[GovernanceContext], None]
UpgradeHook = Callable[[GovernanceContext, Mapping[str, Any]], None]


class Unit:
    """
    One persistent execution unit: a paged store plus the code currently
    running on it.

    A code replacement is modelled as a new Unit over the same store. Exactly
    one lifecycle hook runs per Unit, before any call is served:

      init()          first deployment
      post_upgrade()  every later code replacement

    Both run inside the allocator's layout window and are all-or-nothing:
    on failure the store is restored to its state before the hook and the
    unit is left FAILED.
    """

    def __init__(
        self,
        store: PagedStore,
        *,
        settings: Optional[WardenSettings] = None,
        compiled_version: Optional[VersionTriple] = None,
        stable_layout_version: Optional[int] = None,
        migration: Optional[MigrationCallback] = None,
        host: Optional[Host] = None,
        reserved_prefix_pages: int = RESERVED_PREFIX_PAGES,
    ):
        self.store = store
        self.settings = settings if settings is not None else load_settings()
        self.host = host or SystemHost()
        self.allocator = MemoryRegionAllocator(store)
        self.audit = AuditTrail(self.settings.audit_path)

        self._compiled_version = compiled_version
        self._stable_layout_version = stable_layout_version
        self._migration = migration
        self._reserved_prefix_pages = reserved_prefix_pages

        self._phase = UnitPhase.NEW
        self._gov: Optional[GovernanceContext] = None
        self._entrypoints: Dict[str, Callable[..., Any]] = {}
        self._init_hooks: List[InitHook] = []
        self._upgrade_hooks: List[UpgradeHook] = []

    @classmethod
    def from_settings(cls, settings: Optional[WardenSettings] = None, **kwargs: Any) -> "Unit":
        """
        Build a unit over the store named by settings.store_path
        (WARDEN_STORE_PATH). Without one the store lives in memory only.
        """
        settings = settings if settings is not None else load_settings()
        if settings.store_path is not None:
            store = PagedStore.open(settings.store_path)
        else:
            log.warning("store_path not configured; unit state will not survive the process")
            store = PagedStore()
        return cls(store, settings=settings, **kwargs)

    # ----------------------------
    # state
    # ----------------------------

    @property
    def phase(self) -> UnitPhase:
        return self._phase

    @property
    def gov(self) -> GovernanceContext:
        if self._phase != UnitPhase.READY or self._gov is None:
            raise NotReadyError(f"Unit is {self._phase.value}; governance state is not available")
        return self._gov

    def context(self, caller: Union[Principal, str]) -> CallContext:
        p = caller if isinstance(caller, Principal) else Principal(caller)
        return CallContext(caller=p, gov=self.gov)

    def version(self) -> VersionRecord:
        return self.gov.lifecycle.current()

    def version_text(self) -> str:
        return self.gov.lifecycle.version_text()

    def config_user_page_end(self) -> int:
        """The user_page_end this store was deployed with; it must never change."""
        end = self.allocator.user_page_end
        if end is None:
            raise NotReadyError("Layout not configured")
        return end

    # ----------------------------
    # registration
    # ----------------------------

    def on_init(self, fn: InitHook) -> InitHook:
        """Register application init code; it runs inside the layout window."""
        self._init_hooks.append(fn)
        return fn

    def on_upgrade(self, fn: UpgradeHook) -> UpgradeHook:
        """Register application post-upgrade code; receives the extra flags."""
        self._upgrade_hooks.append(fn)
        return fn

    def entrypoint(self, *guards: str, name: Optional[str] = None) -> Callable[[Callable[..., Any]], Callable[..., Any]]:
        def deco(fn: Callable[..., Any]) -> Callable[..., Any]:
            ep = name or fn.__name__
            if ep in self._entrypoints:
                raise ConfigurationError(f"Entrypoint {ep!r} registered twice")
            wrapped = guarded(*guards, name=ep)(fn)
            self._entrypoints[ep] = wrapped
            return wrapped
        return deco

    def entrypoints(self) -> List[str]:
        return sorted(self._entrypoints)

    async def call(self, caller: Union[Principal, str], entrypoint: str, *args: Any, **kwargs: Any) -> Any:
        """Dispatch an external call to a registered entrypoint."""
        fn = self._entrypoints.get(entrypoint)
        if fn is None:
            raise KeyError(entrypoint)
        ctx = self.context(caller)
        if inspect.iscoroutinefunction(fn):
            return await fn(ctx, *args, **kwargs)
        return fn(ctx, *args, **kwargs)

    # ----------------------------
    # lifecycle hooks
    # ----------------------------

    def _user_page_end(self) -> int:
        n = self.settings.user_page_end
        if n is None:
            raise ConfigurationError(
                "user_page_end is not configured. Set WARDEN_USER_PAGE_END (e.g. 1024). "
                "For a deployed store, use the value it was deployed with."
            )
        return n

    def _build_context(self) -> GovernanceContext:
        alloc = self.allocator
        alloc.reserve(self._reserved_prefix_pages)
        alloc.configure_user_page_end(self._user_page_end())

        roles_region = alloc.ensure_dynamic_region(
            ACCESS_ROLES_REGION_ID, ACCESS_ROLES_REGION_PAGES, owner=RegionOwner.FRAMEWORK
        )
        alloc.ensure_dynamic_region(UPGRADE_BUFFER_REGION_ID, 1, owner=RegionOwner.FRAMEWORK)

        access = AccessControlState(
            record_cell=StableCell(
                alloc.framework_region(ACCESS_CONTROL_PAGE_START, ACCESS_CONTROL_PAGE_END, name="access_control"),
                AccessControlRecord,
            ),
            roles_cell=StableCell(roles_region, RoleTableRecord),
            audit=self.audit,
        )
        pausable = PausableState(
            flags_cell=StableCell(
                alloc.framework_region(GLOBAL_FLAGS_PAGE_START, GLOBAL_FLAGS_PAGE_END, name="global_flags"),
                GlobalFlags,
            ),
            access=access,
            audit=self.audit,
        )
        lifecycle = LifecycleManager(
            cell=StableCell(
                alloc.framework_region(LIFECYCLE_PAGE_START, LIFECYCLE_PAGE_END, name="lifecycle"),
                VersionRecord,
            ),
            compiled_version=self._compiled_version,
            stable_layout_version=self._stable_layout_version,
            migration=self._migration,
            host=self.host,
            audit=self.audit,
        )
        access.seed()
        pausable.seed()
        return GovernanceContext(
            access=access,
            pausable=pausable,
            reentrancy=ReentrancyGuard(),
            lifecycle=lifecycle,
            allocator=alloc,
            audit=self.audit,
        )

    def _run_hook(self, kind: str, target: UnitPhase, body: Callable[[], GovernanceContext]) -> GovernanceContext:
        if self._phase != UnitPhase.NEW:
            raise AlreadyInitializedError(f"Lifecycle hook already ran for this unit (phase={self._phase.value})")
        ensure_transition(self._phase, target)
        self._phase = target

        snapshot = self.store.snapshot()
        try:
            with self.allocator.layout_window():
                gov = body()
        except Exception as e:
            self.store.restore(snapshot)
            ensure_transition(self._phase, UnitPhase.FAILED)
            self._phase = UnitPhase.FAILED
            inc_lifecycle(kind, "failed")
            log.error("%s failed, store restored: %s: %s", kind, type(e).__name__, e)
            self.audit.emit(f"lifecycle_{kind}_failed", actor=None, extra={"error": f"{type(e).__name__}: {e}"})
            raise

        self.store.flush()
        ensure_transition(self._phase, UnitPhase.READY)
        gov.ready = True
        self._gov = gov
        self._phase = UnitPhase.READY
        inc_lifecycle(kind, "ok")
        return gov

    def init(self, deployer: Optional[Principal] = None) -> GovernanceContext:
        """First deployment: lay out memory, seed governance state and version."""

        def body() -> GovernanceContext:
            if self.allocator.has_persisted_layout():
                raise AlreadyInitializedError("Store already holds a deployed unit; use post_upgrade()")
            gov = self._build_context()
            gov.lifecycle.on_init()
            if deployer is not None:
                gov.access.init_owner(deployer)
            for hook in self._init_hooks:
                hook(gov)
            return gov

        gov = self._run_hook("init", UnitPhase.INITIALIZING, body)
        log.info("unit initialized version=%s", gov.lifecycle.version_text())
        return gov

    def post_upgrade(
        self,
        bump_kind: Union[BumpKind, str] = BumpKind.PATCH,
        stable_layout_changed: bool = False,
        extra_flags: Optional[Mapping[str, Any]] = None,
    ) -> GovernanceContext:
        """Code replacement: re-attach, bump versions, migrate, then serve calls."""
        try:
            kind = BumpKind(bump_kind)
        except ValueError as e:
            raise ConfigurationError(f"Unknown bump kind: {bump_kind!r}") from e
        flags: Mapping[str, Any] = dict(extra_flags or {})

        def body() -> GovernanceContext:
            if not self.allocator.has_persisted_layout():
                raise ConfigurationError("Store holds no deployed unit; use init()")
            gov = self._build_context()
            gov.lifecycle.on_upgrade(kind, stable_layout_changed)
            for hook in self._upgrade_hooks:
                hook(gov, flags)
            return gov

        gov = self._run_hook("upgrade", UnitPhase.UPGRADING, body)
        log.info(
            "unit upgraded kind=%s layout_changed=%s flags=%s version=%s",
            kind.value, stable_layout_changed, sorted(flags), gov.lifecycle.version_text(),
        )
        return gov
