from pathlib import Path

import pytest
from pydantic import BaseModel

from warden.core.errors import CapacityError, ConfigurationError
from warden.core.memory.cells import StableCell
from warden.core.memory.store import PAGE_SIZE, PagedStore


class Counter(BaseModel):
    value: int = 0
    label: str = ""


def test_untouched_pages_read_as_zeros():
    s = PagedStore()
    assert s.read(10 * PAGE_SIZE, 16) == bytes(16)
    assert s.pages_in_use() == 0


def test_write_spanning_page_boundary():
    s = PagedStore()
    data = b"x" * 10
    s.write(PAGE_SIZE - 4, data)

    assert s.read(PAGE_SIZE - 4, 10) == data
    assert s.pages_in_use() == 2


def test_region_bounds_are_enforced():
    s = PagedStore()
    r = s.region(2, 3, name="one_page")

    r.write(PAGE_SIZE - 1, b"z")
    with pytest.raises(CapacityError) as ei:
        r.write(PAGE_SIZE - 1, b"zz")
    assert ei.value.region == "one_page"
    assert ei.value.capacity == PAGE_SIZE


def test_invalid_region_range_rejected():
    with pytest.raises(ConfigurationError):
        PagedStore().region(5, 5)


def test_snapshot_and_restore():
    s = PagedStore()
    s.write(0, b"before")
    snap = s.snapshot()

    s.write(0, b"after!")
    s.write(5 * PAGE_SIZE, b"new page")
    s.restore(snap)

    assert s.read(0, 6) == b"before"
    assert s.pages_in_use() == 1


def test_flush_and_reopen(tmp_path: Path):
    path = tmp_path / "data" / "store.pages"
    s = PagedStore(path=path)
    s.write(3 * PAGE_SIZE + 7, b"persisted")
    s.flush()

    reopened = PagedStore.open(path)
    assert reopened.read(3 * PAGE_SIZE + 7, 9) == b"persisted"
    assert reopened.pages_in_use() == 1


def test_open_missing_file_gives_empty_store(tmp_path: Path):
    s = PagedStore.open(tmp_path / "absent.pages")
    assert s.pages_in_use() == 0


def test_open_rejects_foreign_file(tmp_path: Path):
    p = tmp_path / "bogus.pages"
    p.write_bytes(b"not a store")
    with pytest.raises(ConfigurationError):
        PagedStore.open(p)


def test_cell_empty_then_set_get():
    cell = StableCell(PagedStore().region(0, 1), Counter)
    assert cell.is_empty()
    assert cell.get() is None

    cell.set(Counter(value=3, label="a"))
    assert not cell.is_empty()
    assert cell.get() == Counter(value=3, label="a")


def test_cell_get_or_init_keeps_existing():
    cell = StableCell(PagedStore().region(0, 1), Counter)
    first = cell.get_or_init(lambda: Counter(value=1))
    second = cell.get_or_init(lambda: Counter(value=99))

    assert first.value == 1
    assert second.value == 1


def test_cell_require_on_empty_region():
    cell = StableCell(PagedStore().region(0, 1), Counter)
    with pytest.raises(ConfigurationError):
        cell.require()


def test_cell_rejects_oversized_record():
    cell = StableCell(PagedStore().region(0, 1), Counter)
    with pytest.raises(CapacityError):
        cell.set(Counter(label="x" * PAGE_SIZE))
    assert cell.is_empty()


def test_cell_rejects_garbage_region():
    s = PagedStore()
    s.write(0, b"JUNKJUNK")
    with pytest.raises(ConfigurationError):
        StableCell(s.region(0, 1), Counter).get()


def test_cell_tolerates_added_fields():
    class CounterV1(BaseModel):
        value: int = 0

    region = PagedStore().region(0, 1)
    StableCell(region, CounterV1).set(CounterV1(value=7))

    upgraded = StableCell(region, Counter).require()
    assert upgraded.value == 7
    assert upgraded.label == ""
