from abc import ABC, abstractmethod
from typing import List

from vdisk.errors import DiskLibError, VIX_E_DISK_OUTOFRANGE, VIX_E_INVALID_ARG
from vdisk.models import AllocatedBlock, DeviceInfo
from vdisk.util import MAX_CHUNK_NUMBER, MAX_CHUNK_SIZE, MIN_CHUNK_SIZE, SECTOR_SIZE


class BlockDevice(ABC):
    """
    Abstract sector device interface.

    A BlockDevice reads and writes whole sectors of SECTOR_SIZE = 512 bytes.
    It never sees a byte range inside a sector: SectorAdapter translates
    byte-offset requests into sector runs and performs read-modify-write for
    the partial sectors at either end.

    Every failure is raised as DiskLibError. A request reaching past the end
    of the disk must use the VIX_E_DISK_OUTOFRANGE code so the adapter can
    report it as end of stream / short write.

    A device is owned by exactly one SectorAdapter and closed exactly once.
    """

    @abstractmethod
    def read_sectors(self, start_sector: int, sector_count: int, buffer) -> None:
        """
        Read `sector_count` sectors starting at `start_sector` into `buffer`.

        SectorAdapter.read_at() calls this at most three times per request:
            leading partial sector  -> read_sectors(first, 1, scratch)
            aligned middle run      -> read_sectors(next, n, destination[a:b])
            trailing partial sector -> read_sectors(last, 1, scratch)

        Args:
            start_sector: First sector to read.
            sector_count: Number of sectors.
            buffer: Writable buffer of exactly sector_count * SECTOR_SIZE bytes.
        """
        raise NotImplementedError

    @abstractmethod
    def write_sectors(self, start_sector: int, sector_count: int, data) -> None:
        """
        Write `sector_count` whole sectors starting at `start_sector`.

        Each sector must be written atomically: a concurrent reader sees
        either the old or the new sector content, never a mix.

        Args:
            start_sector: First sector to write.
            sector_count: Number of sectors.
            data: Bytes-like object of exactly sector_count * SECTOR_SIZE bytes.
        """
        raise NotImplementedError

    @abstractmethod
    def get_info(self) -> DeviceInfo:
        """Return the disk's info snapshot (capacity, geometry, uuid, ...)."""
        raise NotImplementedError

    @abstractmethod
    def query_allocated_blocks(self, start_sector: int, num_sectors: int, chunk_size: int) -> List[AllocatedBlock]:
        """
        List the allocated extents of [start_sector, start_sector + num_sectors).

        Results are reported at `chunk_size` granularity, ordered by offset.
        See validate_query() for the argument rules.
        """
        raise NotImplementedError

    @abstractmethod
    def close(self) -> None:
        """Release the device. Closing twice raises DiskLibError."""
        raise NotImplementedError


def check_buffer(sector_count: int, buffer) -> None:
    expected = sector_count * SECTOR_SIZE
    if len(buffer) != expected:
        raise ValueError(
            f"Buffer must be exactly {expected} bytes for {sector_count} sectors; got {len(buffer)} bytes"
        )


def check_sector_range(start_sector: int, sector_count: int, capacity: int) -> None:
    """Raise an out-of-range DiskLibError unless the run lies inside the disk."""
    if start_sector < 0 or sector_count < 0:
        raise DiskLibError(VIX_E_INVALID_ARG, f"Invalid sector range ({start_sector}, {sector_count}).")
    if start_sector + sector_count > capacity:
        raise DiskLibError(
            VIX_E_DISK_OUTOFRANGE,
            f"Sectors [{start_sector}, {start_sector + sector_count}) are beyond disk capacity {capacity}.",
        )


def validate_query(start_sector: int, num_sectors: int, chunk_size: int, capacity: int) -> None:
    """
    Validate arguments of an allocated-block query.

    Rules:
        MIN_CHUNK_SIZE <= chunk_size <= MAX_CHUNK_SIZE
        start_sector and num_sectors are multiples of chunk_size
        num_sectors // chunk_size <= MAX_CHUNK_NUMBER
        the range lies within the disk
    """
    if not MIN_CHUNK_SIZE <= chunk_size <= MAX_CHUNK_SIZE:
        raise DiskLibError(
            VIX_E_INVALID_ARG,
            f"QueryAllocatedBlocks({start_sector}, {num_sectors}, {chunk_size}) error: invalid chunk size.",
        )
    if start_sector % chunk_size or num_sectors % chunk_size:
        raise DiskLibError(
            VIX_E_INVALID_ARG,
            f"QueryAllocatedBlocks({start_sector}, {num_sectors}, {chunk_size}) error: range not chunk aligned.",
        )
    if num_sectors // chunk_size > MAX_CHUNK_NUMBER:
        raise DiskLibError(
            VIX_E_INVALID_ARG,
            f"QueryAllocatedBlocks({start_sector}, {num_sectors}, {chunk_size}) error: too many chunks.",
        )
    check_sector_range(start_sector, num_sectors, capacity)
