from __future__ import annotations

import logging
from contextlib import contextmanager
from enum import Enum
from typing import Dict, Generator, Optional

from pydantic import BaseModel, Field

from warden.core.errors import (
    ConfigurationError,
    IdCollisionError,
    LayoutWindowError,
    RangeError,
)

from .cells import StableCell
from .memory_map import (
    ACCESS_CONTROL_PAGE_END,
    FRAMEWORK_REGION_IDS,
    LAYOUT_HEADER_PAGE_END,
    LAYOUT_HEADER_PAGE_START,
    USER_REGION_IDS,
)
from .store import MemoryRegion, PagedStore

log = logging.getLogger("warden.memory")


class RegionOwner(str, Enum):
    USER = "user"
    FRAMEWORK = "framework"


_ID_RANGES: Dict[RegionOwner, range] = {
    RegionOwner.USER: USER_REGION_IDS,
    RegionOwner.FRAMEWORK: FRAMEWORK_REGION_IDS,
}


class RegionEntry(BaseModel):
    start_page: int = Field(ge=0)
    end_page: int = Field(ge=1)
    owner: RegionOwner = RegionOwner.USER


class LayoutHeader(BaseModel):
    reserved_prefix_pages: int
    user_page_end: int
    next_free_page: int
    regions: Dict[int, RegionEntry] = Field(default_factory=dict)


class MemoryRegionAllocator:
    """
    Owns the layout of a paged store.

      [0, prefix)              framework records (this header included)
      [prefix, user_page_end)  fixed-size user structures
      [user_page_end, ...)     dynamic regions keyed by a small integer id

    Layout operations are only accepted inside layout_window(), which the
    unit opens for the duration of init/post-upgrade.
    """

    def __init__(self, store: PagedStore):
        self.store = store
        self._header_cell: StableCell[LayoutHeader] = StableCell(
            store.region(LAYOUT_HEADER_PAGE_START, LAYOUT_HEADER_PAGE_END, name="layout_header"),
            LayoutHeader,
        )
        self._prefix: Optional[int] = None
        self._user_page_end: Optional[int] = None
        self._attached = False
        self._window_open = False

    # ----------------------------
    # window
    # ----------------------------

    @contextmanager
    def layout_window(self) -> Generator["MemoryRegionAllocator", None, None]:
        if self._window_open:
            raise LayoutWindowError("Layout window already open")
        self._window_open = True
        try:
            yield self
        finally:
            self._window_open = False

    def _require_window(self, op: str) -> None:
        if not self._window_open:
            raise LayoutWindowError(f"{op} is only allowed during init or upgrade")

    # ----------------------------
    # layout
    # ----------------------------

    @property
    def attached(self) -> bool:
        """True when reserve() found a layout written by an earlier process."""
        return self._attached

    @property
    def reserved_prefix_pages(self) -> Optional[int]:
        return self._prefix

    @property
    def user_page_end(self) -> Optional[int]:
        return self._user_page_end

    def has_persisted_layout(self) -> bool:
        return not self._header_cell.is_empty()

    def reserve(self, prefix_pages: int) -> None:
        self._require_window("reserve")
        if self._prefix is not None:
            raise ConfigurationError("reserve() may only be called once per process lifetime")
        if prefix_pages < ACCESS_CONTROL_PAGE_END:
            raise ConfigurationError(
                f"Reserved prefix of {prefix_pages} pages cannot hold framework records "
                f"(need at least {ACCESS_CONTROL_PAGE_END})"
            )

        header = self._header_cell.get()
        if header is not None:
            if header.reserved_prefix_pages != prefix_pages:
                raise ConfigurationError(
                    f"Reserved prefix changed: persisted={header.reserved_prefix_pages} requested={prefix_pages}"
                )
            self._attached = True

        self._prefix = prefix_pages
        log.info("layout reserve prefix_pages=%d attached=%s", prefix_pages, self._attached)

    def configure_user_page_end(self, n: int) -> None:
        self._require_window("configure_user_page_end")
        if self._prefix is None:
            raise ConfigurationError("reserve() must precede configure_user_page_end()")

        if self._user_page_end is not None:
            if self._user_page_end == n:
                return
            raise ConfigurationError(
                f"user_page_end already configured as {self._user_page_end}, refusing {n}"
            )

        if n <= self._prefix:
            raise ConfigurationError(f"user_page_end={n} must be above the reserved prefix ({self._prefix})")

        header = self._header_cell.get()
        if header is not None:
            if n < header.user_page_end:
                raise ConfigurationError(
                    f"user_page_end cannot shrink: persisted={header.user_page_end} requested={n}"
                )
            if n != header.user_page_end:
                raise ConfigurationError(
                    f"user_page_end is immutable once deployed: persisted={header.user_page_end} requested={n}"
                )
        else:
            self._header_cell.set(
                LayoutHeader(reserved_prefix_pages=self._prefix, user_page_end=n, next_free_page=n)
            )

        self._user_page_end = n
        log.info("layout user_page_end=%d", n)

    def _header(self) -> LayoutHeader:
        if self._user_page_end is None:
            raise ConfigurationError("configure_user_page_end() must precede dynamic region operations")
        return self._header_cell.require()

    # ----------------------------
    # regions
    # ----------------------------

    def framework_region(self, start_page: int, end_page: int, *, name: str = "") -> MemoryRegion:
        if self._prefix is None:
            raise ConfigurationError("reserve() must precede framework region access")
        if end_page > self._prefix:
            raise ConfigurationError(f"Framework region [{start_page}, {end_page}) exceeds reserved prefix")
        return self.store.region(start_page, end_page, name=name)

    def user_region(self) -> MemoryRegion:
        if self._prefix is None or self._user_page_end is None:
            raise ConfigurationError("Layout not configured")
        return self.store.region(self._prefix, self._user_page_end, name="user")

    def allocate_dynamic_region(
        self,
        region_id: int,
        size_hint: int = 1,
        *,
        owner: RegionOwner = RegionOwner.USER,
    ) -> MemoryRegion:
        self._require_window("allocate_dynamic_region")
        allowed = _ID_RANGES[owner]
        if region_id not in allowed:
            raise RangeError(region_id, owner=owner.value, allowed=allowed)

        header = self._header()
        if region_id in header.regions:
            raise IdCollisionError(region_id)

        pages = max(1, int(size_hint))
        entry = RegionEntry(
            start_page=header.next_free_page,
            end_page=header.next_free_page + pages,
            owner=owner,
        )
        header.regions[region_id] = entry
        header.next_free_page = entry.end_page
        self._header_cell.set(header)

        log.info(
            "dynamic region allocated id=%d owner=%s pages=[%d,%d)",
            region_id, owner.value, entry.start_page, entry.end_page,
        )
        return self.store.region(entry.start_page, entry.end_page, name=f"dynamic:{region_id}")

    def ensure_dynamic_region(
        self,
        region_id: int,
        size_hint: int = 1,
        *,
        owner: RegionOwner = RegionOwner.FRAMEWORK,
    ) -> MemoryRegion:
        """Re-attach to an existing region, allocating it on first use."""
        header = self._header()
        if region_id in header.regions:
            entry = header.regions[region_id]
            if entry.owner != owner:
                raise ConfigurationError(
                    f"Dynamic region {region_id} belongs to {entry.owner.value}, not {owner.value}"
                )
            return self.store.region(entry.start_page, entry.end_page, name=f"dynamic:{region_id}")
        return self.allocate_dynamic_region(region_id, size_hint, owner=owner)

    def dynamic_region(self, region_id: int) -> MemoryRegion:
        header = self._header()
        entry = header.regions.get(region_id)
        if entry is None:
            raise KeyError(region_id)
        return self.store.region(entry.start_page, entry.end_page, name=f"dynamic:{region_id}")

    def region_table(self) -> Dict[int, RegionEntry]:
        return dict(self._header().regions)
