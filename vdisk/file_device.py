import json
import logging
import os
import tempfile
import uuid
from typing import List, Optional

from vdisk.device import BlockDevice, check_buffer, check_sector_range, validate_query
from vdisk.errors import DiskLibError, VIX_E_FAIL, VIX_E_FILE_NOT_FOUND, VIX_E_INVALID_ARG
from vdisk.models import AllocatedBlock, DeviceInfo
from vdisk.util import SECTOR_SIZE, coalesce_chunks

logger = logging.getLogger(__name__)


class FileDevice(BlockDevice):
    """
    Local filesystem-backed sector device.

    Sectors are stored under:
        <base_path>/disks/<disk_name>/sectors/<sector_id>
    and the disk description under:
        <base_path>/disks/<disk_name>/info.json

    Each sector file is exactly SECTOR_SIZE bytes. Missing sectors are
    treated as zero-filled (never written), which also makes the disk
    sparse: only written sectors count as allocated.
    """

    def __init__(self, base_path: str = "data", disk_name: str = "vdisk0",
                 capacity_sectors: Optional[int] = None):
        """
        Args:
            base_path: Root directory where disks/ will live.
            disk_name: Name of the disk (namespace for its sectors).
            capacity_sectors: Size of a new disk, in sectors. Ignored when
                              the disk already has an info.json.
        """
        self.base_path = base_path
        self.disk_name = disk_name
        self._closed = False
        self._info = self._load_or_create_info(capacity_sectors)

    def _disk_path(self) -> str:
        return os.path.join(self.base_path, "disks", self.disk_name)

    def _info_path(self) -> str:
        return os.path.join(self._disk_path(), "info.json")

    def _sectors_path(self) -> str:
        return os.path.join(self._disk_path(), "sectors")

    def _sector_path(self, sector_id: int) -> str:
        """
        Returns the full filesystem path for a given sector file.
        """
        return os.path.join(self._sectors_path(), str(sector_id))

    def _load_or_create_info(self, capacity_sectors: Optional[int]) -> DeviceInfo:
        path = self._info_path()
        if os.path.exists(path):
            with open(path, "r") as f:
                return DeviceInfo.from_dict(json.load(f))

        if capacity_sectors is None:
            raise DiskLibError(VIX_E_FILE_NOT_FOUND, f"Disk {self.disk_name} not found under {self.base_path}.")
        if capacity_sectors <= 0:
            raise DiskLibError(VIX_E_INVALID_ARG, f"Invalid disk capacity {capacity_sectors}.")

        info = DeviceInfo.for_capacity(capacity_sectors, uuid=str(uuid.uuid4()))
        os.makedirs(self._sectors_path(), exist_ok=True)
        with open(path, "w") as f:
            json.dump(info.to_dict(), f)
        logger.info("Created disk %s with %d sectors at %s", self.disk_name, capacity_sectors, self._disk_path())
        return info

    def _check_open(self) -> None:
        if self._closed:
            raise DiskLibError(VIX_E_INVALID_ARG, f"Disk {self.disk_name} is closed.")

    def _read_sector(self, sector_id: int) -> bytes:
        path = self._sector_path(sector_id)

        # Sector not written yet -> zero-filled sector
        if not os.path.exists(path):
            return bytes(SECTOR_SIZE)

        try:
            with open(path, "rb") as f:
                data = f.read()
        except OSError as e:
            raise DiskLibError(VIX_E_FAIL, f"Read sector {sector_id} failed: {e}") from e

        # Normalize sector size
        if len(data) < SECTOR_SIZE:
            data = data + bytes(SECTOR_SIZE - len(data))
        elif len(data) > SECTOR_SIZE:
            data = data[:SECTOR_SIZE]
        return data

    def _write_sector(self, sector_id: int, data) -> None:
        """
        Write exactly one sector atomically: write to a unique temp file in
        the same directory, then rename over the sector file.
        """
        path = self._sector_path(sector_id)
        try:
            fd, temp_path = tempfile.mkstemp(dir=self._sectors_path(), prefix=f"{sector_id}.", suffix=".tmp")
        except OSError as e:
            raise DiskLibError(VIX_E_FAIL, f"Write sector {sector_id} failed: {e}") from e
        try:
            with os.fdopen(fd, "wb") as f:
                f.write(data)
            os.replace(temp_path, path)
        except OSError as e:
            if os.path.exists(temp_path):
                os.remove(temp_path)
            raise DiskLibError(VIX_E_FAIL, f"Write sector {sector_id} failed: {e}") from e

    # ------------------------
    # BlockDevice API
    # ------------------------

    def read_sectors(self, start_sector: int, sector_count: int, buffer) -> None:
        self._check_open()
        check_sector_range(start_sector, sector_count, self._info.capacity)
        view = memoryview(buffer).cast("B")
        check_buffer(sector_count, view)

        for i in range(sector_count):
            view[i * SECTOR_SIZE:(i + 1) * SECTOR_SIZE] = self._read_sector(start_sector + i)

    def write_sectors(self, start_sector: int, sector_count: int, data) -> None:
        self._check_open()
        check_sector_range(start_sector, sector_count, self._info.capacity)
        view = memoryview(data).cast("B")
        check_buffer(sector_count, view)

        try:
            os.makedirs(self._sectors_path(), exist_ok=True)
        except OSError as e:
            raise DiskLibError(VIX_E_FAIL, f"Write to disk {self.disk_name} failed: {e}") from e
        for i in range(sector_count):
            self._write_sector(start_sector + i, view[i * SECTOR_SIZE:(i + 1) * SECTOR_SIZE])

    def get_info(self) -> DeviceInfo:
        self._check_open()
        return self._info

    def query_allocated_blocks(self, start_sector: int, num_sectors: int, chunk_size: int) -> List[AllocatedBlock]:
        self._check_open()
        validate_query(start_sector, num_sectors, chunk_size, self._info.capacity)

        sectors_path = self._sectors_path()
        if not os.path.isdir(sectors_path):
            return []
        # Skip in-flight temp files ("<id>.<random>.tmp").
        written = [int(name) for name in os.listdir(sectors_path) if name.isdigit()]
        return coalesce_chunks(written, start_sector, num_sectors, chunk_size)

    def close(self) -> None:
        if self._closed:
            raise DiskLibError(VIX_E_INVALID_ARG, "Close virtual disk failed: disk is already closed.")
        self._closed = True
        logger.debug("Closed disk %s", self.disk_name)
