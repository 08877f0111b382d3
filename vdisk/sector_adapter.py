"""
Byte-offset read/write over a sector-granular BlockDevice.

This module is the core of the package. A device only accepts whole
sectors, so every (offset, length) request is split into up to three
phases:

    leading partial sector   read-modify-write (write) / copy out (read)
    aligned middle run       one multi-sector device call, no scratch copy
    trailing partial sector  read-modify-write (write) / copy out (read)

Locking:
    The adapter lock is taken only when the request is not sector-aligned.
    That serializes concurrent read-modify-write merges against each other.
    Fully aligned requests never take the lock and rely on the device's
    per-sector atomicity. An unaligned write and an aligned write that
    touch the same sector can therefore still race; the aligned path is
    kept lock-free for throughput.
"""

import logging
import threading
from contextlib import nullcontext
from typing import List, Optional

from vdisk.device import BlockDevice
from vdisk.errors import (
    DeviceIOError,
    DiskLibError,
    Outcome,
    ShortWriteError,
    map_error,
)
from vdisk.models import AllocatedBlock, DeviceInfo
from vdisk.util import SECTOR_SIZE, aligned

LEADING = "leading partial sector"
ALIGNED_RUN = "aligned run"
TRAILING = "trailing partial sector"


class SectorAdapter:
    """
    Byte-addressed view of one open BlockDevice.

    The adapter exposes:
        - read_at(buffer, offset) -> int
        - write_at(data, offset) -> int
        - capacity (bytes)
        - query_allocated_blocks(start_sector, num_sectors, chunk_size)
        - close()

    It owns the device for its whole lifetime and closes it exactly once.
    """

    def __init__(
            self,
            device: BlockDevice,
            info: DeviceInfo,
            logger: Optional[logging.Logger] = None,
    ) -> None:
        """
        Args:
            device: Open sector device. Owned by this adapter from now on.
            info: Snapshot returned by device.get_info() at open time.
                  Its capacity is used for every bounds check.
            logger: Logger for transfer tracing; module logger by default.
        """
        self.device = device
        self.info = info
        self.logger = logger or logging.getLogger(__name__)
        self._capacity = info.capacity * SECTOR_SIZE
        self._lock = threading.Lock()

    @property
    def capacity(self) -> int:
        """
        Total size of the disk in bytes. Fixed for the life of the adapter.
        """
        return self._capacity

    def _guard(self, length: int, offset: int):
        if aligned(length, offset):
            return nullcontext()
        return self._lock

    # ---------------------------------------------------------------------
    # Reads
    # ---------------------------------------------------------------------

    def read_at(self, buffer, offset: int) -> int:
        """
        Fill `buffer` with the disk bytes starting at `offset`.

        Reads are clamped at the end of the disk: only the bytes inside
        the disk are copied and counted, the rest of `buffer` is left
        untouched. Reading at or past the end returns 0.

        A device "out of range" error ends the stream early and the count
        copied so far is returned. Any other device error is raised as
        DeviceIOError with `bytes_transferred` set.

        Returns:
            Number of bytes copied into `buffer`.
        """
        if offset < 0:
            raise ValueError(f"negative offset {offset}")

        capacity = self.capacity
        if offset >= capacity:
            return 0

        view = memoryview(buffer).cast("B")
        requested = len(view)
        if offset + requested > capacity:
            view = view[:capacity - offset]
        if not view:
            return 0

        with self._guard(len(view), offset):
            total = self._read(view, offset)

        self.logger.debug("read_at returning %d, len=%d, offset=%d", total, requested, offset)
        return total

    def _read(self, view: memoryview, offset: int) -> int:
        start_sector, skew = divmod(offset, SECTOR_SIZE)
        length = len(view)
        total = 0
        phase = LEADING

        try:
            if skew:
                scratch = bytearray(SECTOR_SIZE)
                self.device.read_sectors(start_sector, 1, scratch)
                count = min(SECTOR_SIZE - skew, length)
                view[:count] = scratch[skew:skew + count]
                start_sector += 1
                total += count

            phase = ALIGNED_RUN
            num_sectors = (length - total) // SECTOR_SIZE
            if num_sectors > 0:
                end = total + num_sectors * SECTOR_SIZE
                self.device.read_sectors(start_sector, num_sectors, view[total:end])
                start_sector += num_sectors
                total = end

            phase = TRAILING
            if length - total > 0:
                scratch = bytearray(SECTOR_SIZE)
                self.device.read_sectors(start_sector, 1, scratch)
                count = length - total
                view[total:] = scratch[:count]
                total += count
        except DiskLibError as err:
            if map_error(err) is Outcome.END_OF_STREAM:
                self.logger.debug("read_at hit end of disk in %s after %d bytes", phase, total)
                return total
            raise DeviceIOError.from_disk_error(err, total, phase) from err

        return total

    # ---------------------------------------------------------------------
    # Writes
    # ---------------------------------------------------------------------

    def write_at(self, data, offset: int) -> int:
        """
        Write `data` to the disk starting at `offset`.

        A write that would reach past the end of the disk is refused with
        ShortWriteError before anything is written.

        Partial sectors at either end are merged with their current
        content (read, patch, write back); whole sectors in between are
        written straight from `data`.

        Returns:
            len(data) on success.

        Raises:
            ShortWriteError: the write reaches past the disk, or the device
                             reported "out of range" mid-way.
            DeviceIOError: any other device failure. Both carry the bytes
                           written before the failure and the failing phase.
        """
        if offset < 0:
            raise ValueError(f"negative offset {offset}")

        view = memoryview(data).cast("B")
        capacity = self.capacity
        if offset > capacity or offset + len(view) > capacity:
            raise ShortWriteError(0)

        if not view:
            return 0

        with self._guard(len(view), offset):
            self._write(view, offset)

        self.logger.debug("write_at returning %d, offset=%d", len(view), offset)
        return len(view)

    def _write(self, view: memoryview, offset: int) -> None:
        start_sector, skew = divmod(offset, SECTOR_SIZE)
        length = len(view)
        total = 0
        phase = LEADING

        try:
            if skew:
                scratch = bytearray(SECTOR_SIZE)
                self.device.read_sectors(start_sector, 1, scratch)
                count = min(SECTOR_SIZE - skew, length)
                scratch[skew:skew + count] = view[:count]
                self.device.write_sectors(start_sector, 1, scratch)
                start_sector += 1
                total += count

            # Middle aligned part, override directly
            phase = ALIGNED_RUN
            num_sectors = (length - total) // SECTOR_SIZE
            if num_sectors > 0:
                end = total + num_sectors * SECTOR_SIZE
                self.device.write_sectors(start_sector, num_sectors, view[total:end])
                start_sector += num_sectors
                total = end

            phase = TRAILING
            if length - total > 0:
                count = length - total
                scratch = bytearray(SECTOR_SIZE)
                self.device.read_sectors(start_sector, 1, scratch)
                scratch[:count] = view[total:]
                self.device.write_sectors(start_sector, 1, scratch)
                total += count
        except DiskLibError as err:
            if map_error(err, write=True) is Outcome.SHORT_WRITE:
                raise ShortWriteError(total, phase) from err
            raise DeviceIOError.from_disk_error(err, total, phase) from err

    # ---------------------------------------------------------------------
    # Pass-throughs
    # ---------------------------------------------------------------------

    def query_allocated_blocks(self, start_sector: int, num_sectors: int, chunk_size: int) -> List[AllocatedBlock]:
        return self.device.query_allocated_blocks(start_sector, num_sectors, chunk_size)

    def close(self) -> None:
        """
        Close the underlying device. Not idempotent: a second call raises
        the device's DiskLibError.
        """
        self.device.close()


def open_device(device: BlockDevice, logger: Optional[logging.Logger] = None) -> SectorAdapter:
    """
    Fetch the device info and wrap the device in a SectorAdapter.

    If the info cannot be fetched the device is closed before the error
    is re-raised.
    """
    try:
        info = device.get_info()
    except DiskLibError:
        try:
            device.close()
        except DiskLibError as close_err:
            (logger or logging.getLogger(__name__)).warning("Closing device after failed open: %s", close_err)
        raise
    return SectorAdapter(device, info, logger)
