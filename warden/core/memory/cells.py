from __future__ import annotations

import struct
from typing import Callable, Generic, Optional, Type, TypeVar

from pydantic import BaseModel, ValidationError

from warden.core.errors import CapacityError, ConfigurationError

from .store import MemoryRegion

M = TypeVar("M", bound=BaseModel)

# magic + payload length; a zeroed header means "never written"
_CELL_MAGIC = b"WCL1"
_HEADER = struct.Struct(">4sI")


class StableCell(Generic[M]):
    """
    One pydantic record stored at the start of a region.

    Encoding is length-prefixed JSON. Reading tolerates unknown fields and
    fills defaults for missing ones, so records written by older or newer
    code keep decoding as long as fields are only ever added.
    """

    def __init__(self, region: MemoryRegion, model: Type[M]):
        self.region = region
        self.model = model

    def is_empty(self) -> bool:
        magic, _ = _HEADER.unpack(self.region.read(0, _HEADER.size))
        return magic != _CELL_MAGIC

    def get(self) -> Optional[M]:
        magic, length = _HEADER.unpack(self.region.read(0, _HEADER.size))
        if magic == bytes(4):
            return None
        if magic != _CELL_MAGIC:
            raise ConfigurationError(
                f"Region {self.region.name or self.region.start_page} does not hold a {self.model.__name__} record"
            )
        payload = self.region.read(_HEADER.size, length)
        try:
            return self.model.model_validate_json(payload)
        except ValidationError as e:
            raise ConfigurationError(f"Corrupt {self.model.__name__} record: {e}") from e

    def set(self, value: M) -> None:
        payload = value.model_dump_json().encode("utf-8")
        needed = _HEADER.size + len(payload)
        if needed > self.region.size_bytes:
            raise CapacityError(
                region=self.region.name or str(self.region.start_page),
                needed=needed,
                capacity=self.region.size_bytes,
            )
        self.region.write(0, _HEADER.pack(_CELL_MAGIC, len(payload)) + payload)

    def get_or_init(self, factory: Callable[[], M]) -> M:
        current = self.get()
        if current is not None:
            return current
        value = factory()
        self.set(value)
        return value

    def require(self) -> M:
        current = self.get()
        if current is None:
            raise ConfigurationError(f"{self.model.__name__} record missing; unit was never initialized")
        return current
