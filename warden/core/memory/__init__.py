from .allocator import LayoutHeader, MemoryRegionAllocator, RegionEntry, RegionOwner
from .cells import StableCell
from .store import PAGE_SIZE, MemoryRegion, PagedStore

__all__ = [
    "PAGE_SIZE",
    "LayoutHeader",
    "MemoryRegion",
    "MemoryRegionAllocator",
    "PagedStore",
    "RegionEntry",
    "RegionOwner",
    "StableCell",
]
