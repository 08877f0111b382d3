"""
Plain data types describing a virtual disk.

All sizes and offsets here are expressed in sectors, never in bytes.
"""

from dataclasses import asdict, dataclass, field
from enum import IntEnum
from typing import Any, Dict, NamedTuple

# IDE-style geometry used when a disk is described by capacity alone.
DEFAULT_HEADS = 16
DEFAULT_SECTORS_PER_TRACK = 63
MAX_IDE_CYLINDERS = 16383


class AdapterType(IntEnum):
    IDE = 1
    SCSI_BUSLOGIC = 2
    SCSI_LSILOGIC = 3
    UNKNOWN = 256


class AllocatedBlock(NamedTuple):
    """One contiguous allocated extent: `offset` and `length` in sectors."""
    offset: int
    length: int


@dataclass(frozen=True)
class Geometry:
    cylinders: int = 0
    heads: int = 0
    sectors: int = 0

    @classmethod
    def for_capacity(cls, capacity: int) -> "Geometry":
        """
        Derive a CHS geometry for a disk of `capacity` sectors.

        Uses 16 heads and 63 sectors per track; the cylinder count is
        capped at the IDE limit.
        """
        cylinders = capacity // (DEFAULT_HEADS * DEFAULT_SECTORS_PER_TRACK)
        return cls(
            cylinders=min(cylinders, MAX_IDE_CYLINDERS),
            heads=DEFAULT_HEADS,
            sectors=DEFAULT_SECTORS_PER_TRACK,
        )


@dataclass(frozen=True)
class DeviceInfo:
    """
    Immutable snapshot of a disk, fetched once when the disk is opened.

    `capacity` (in sectors) is the only field the adapter relies on; it is
    never refreshed for the life of an open device.
    """
    capacity: int
    bios_geo: Geometry = field(default_factory=Geometry)
    phys_geo: Geometry = field(default_factory=Geometry)
    adapter_type: AdapterType = AdapterType.UNKNOWN
    num_links: int = 1
    parent_file_name_hint: str = ""
    uuid: str = ""

    @classmethod
    def for_capacity(cls, capacity: int, uuid: str = "") -> "DeviceInfo":
        geometry = Geometry.for_capacity(capacity)
        return cls(
            capacity=capacity,
            bios_geo=geometry,
            phys_geo=geometry,
            adapter_type=AdapterType.IDE,
            uuid=uuid,
        )

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["adapter_type"] = int(self.adapter_type)
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "DeviceInfo":
        return cls(
            capacity=int(data["capacity"]),
            bios_geo=Geometry(**data.get("bios_geo", {})),
            phys_geo=Geometry(**data.get("phys_geo", {})),
            adapter_type=AdapterType(data.get("adapter_type", AdapterType.UNKNOWN)),
            num_links=int(data.get("num_links", 1)),
            parent_file_name_hint=data.get("parent_file_name_hint", ""),
            uuid=data.get("uuid", ""),
        )
