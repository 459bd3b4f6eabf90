"""Version bookkeeping across init and in-place upgrades.

No hook runs before code replacement. All durable state already lives in the
paged store.
"""

from __future__ import annotations

import logging
from typing import Callable, Optional, Tuple

from warden.core.errors import AlreadyInitializedError, ConfigurationError, MigrationError
from warden.core.host import Host, SystemHost
from warden.core.memory.cells import StableCell
from warden.core.observability.audit import AuditTrail

from .models import BumpKind, VersionRecord, VersionTriple

log = logging.getLogger("warden.lifecycle")

# (old_stable_layout_version, new_stable_layout_version)
MigrationCallback = Callable[[int, int], None]


class LifecycleManager:
    def __init__(
        self,
        *,
        cell: StableCell[VersionRecord],
        compiled_version: Optional[VersionTriple] = None,
        stable_layout_version: Optional[int] = None,
        migration: Optional[MigrationCallback] = None,
        host: Optional[Host] = None,
        audit: Optional[AuditTrail] = None,
    ):
        if compiled_version is not None:
            if len(compiled_version) != 3 or any(int(x) < 0 for x in compiled_version):
                raise ConfigurationError(f"compiled_version must be three non-negative ints, got {compiled_version!r}")
            compiled_version = (int(compiled_version[0]), int(compiled_version[1]), int(compiled_version[2]))
        if stable_layout_version is not None and stable_layout_version < 0:
            raise ConfigurationError("stable_layout_version must be non-negative")

        self._cell = cell
        self.compiled_version = compiled_version
        self.stable_layout_version = stable_layout_version
        self._migration = migration
        self._host = host or SystemHost()
        self._audit = audit or AuditTrail()
        self._ran = False

    def current(self) -> VersionRecord:
        return self._cell.require()

    def version_text(self) -> str:
        return self.current().text()

    def _mark_ran(self) -> None:
        if self._ran:
            raise ConfigurationError("Lifecycle hook already ran for this process")
        self._ran = True

    def on_init(self) -> VersionRecord:
        self._mark_ran()
        if not self._cell.is_empty():
            raise AlreadyInitializedError("Version record already exists; this store was initialized before")

        major, minor, patch = self.compiled_version or (0, 0, 0)
        rec = VersionRecord(
            major=major,
            minor=minor,
            patch=patch,
            stable_layout_version=self.stable_layout_version or 0,
            last_upgraded_ns=self._host.time_ns(),
            host_code_version=self._host.code_version(),
        )
        self._cell.set(rec)

        log.info("lifecycle init version=%s", rec.text())
        self._audit.emit("lifecycle_init", actor=None, extra={"version": rec.text()})
        return rec

    def plan_upgrade(self, bump_kind: BumpKind, stable_layout_changed: bool) -> Tuple[VersionRecord, VersionRecord]:
        """Compute (old, new) without writing anything; raises on inconsistent versions."""
        old = self._cell.require()
        new = old.bumped(bump_kind)
        if stable_layout_changed:
            new = new.model_copy(update={"stable_layout_version": old.stable_layout_version + 1})

        if self.compiled_version is not None:
            if old.semver > self.compiled_version:
                raise ConfigurationError(
                    f"Downgrade refused: stored v{'.'.join(map(str, old.semver))} is newer than "
                    f"compiled v{'.'.join(map(str, self.compiled_version))}"
                )
            if new.semver != self.compiled_version:
                raise ConfigurationError(
                    f"{bump_kind.value} bump of stored v{'.'.join(map(str, old.semver))} gives "
                    f"v{'.'.join(map(str, new.semver))}, compiled version is "
                    f"v{'.'.join(map(str, self.compiled_version))}"
                )

        if self.stable_layout_version is not None:
            if old.stable_layout_version > self.stable_layout_version:
                raise ConfigurationError(
                    f"Downgrade refused: stored layout_v{old.stable_layout_version} is newer than "
                    f"compiled layout_v{self.stable_layout_version}"
                )
            if new.stable_layout_version != self.stable_layout_version:
                raise ConfigurationError(
                    f"Stable layout mismatch: upgrade yields layout_v{new.stable_layout_version}, "
                    f"compiled layout is layout_v{self.stable_layout_version}"
                )

        if stable_layout_changed and self._migration is None:
            raise ConfigurationError("Stable layout changed but no migration callback is registered")

        return old, new

    def on_upgrade(self, bump_kind: BumpKind, stable_layout_changed: bool = False) -> VersionRecord:
        self._mark_ran()
        bump_kind = BumpKind(bump_kind)
        old, new = self.plan_upgrade(bump_kind, stable_layout_changed)

        if stable_layout_changed and self._migration is not None:
            log.info(
                "migration start layout_v%d -> layout_v%d",
                old.stable_layout_version, new.stable_layout_version,
            )
            try:
                self._migration(old.stable_layout_version, new.stable_layout_version)
            except Exception as e:
                log.error(
                    "migration failed layout_v%d -> layout_v%d: %s",
                    old.stable_layout_version, new.stable_layout_version, e,
                )
                raise MigrationError(
                    old_layout=old.stable_layout_version,
                    new_layout=new.stable_layout_version,
                    reason=f"{type(e).__name__}: {e}",
                ) from e

        new = new.model_copy(
            update={
                "last_upgraded_ns": self._host.time_ns(),
                "host_code_version": self._host.code_version(),
            }
        )
        self._cell.set(new)

        log.info("lifecycle upgrade kind=%s %s -> %s", bump_kind.value, old.text(), new.text())
        self._audit.emit(
            "lifecycle_upgrade",
            actor=None,
            extra={
                "bump_kind": bump_kind.value,
                "stable_layout_changed": stable_layout_changed,
                "from": old.text(),
                "to": new.text(),
            },
        )
        return new
