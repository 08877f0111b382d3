import io
import logging
import threading
from typing import Optional

from vdisk.errors import InvalidOffsetError, SectorIOError
from vdisk.sector_adapter import SectorAdapter


class StreamCursor(io.RawIOBase):
    """
    Sequential read/write stream over a SectorAdapter.

    The cursor keeps its own byte offset behind a lock, so several threads
    can share one cursor and each read()/write() moves the offset by the
    bytes it actually transferred. The lock covers only the offset update
    around the delegated call; device atomicity is the adapter's business.

    read_at()/write_at() bypass the offset (and its lock) entirely.

    Closing the cursor does not close the adapter: cursors can be created
    and dropped freely while the adapter stays open.
    """

    def __init__(self, adapter: SectorAdapter, logger: Optional[logging.Logger] = None) -> None:
        super().__init__()
        self.adapter = adapter
        self.logger = logger or logging.getLogger(__name__)
        self._offset = 0
        self._mutex = threading.Lock()

    def readable(self) -> bool:
        return True

    def writable(self) -> bool:
        return True

    def seekable(self) -> bool:
        return True

    def readinto(self, buffer) -> int:
        self._checkClosed()
        with self._mutex:
            try:
                n = self.adapter.read_at(buffer, self._offset)
            except SectorIOError as err:
                self._offset += err.bytes_transferred
                raise
            self._offset += n
            self.logger.debug("Read returning %d, len(p) = %d, offset=%d", n, len(buffer), self._offset)
            return n

    def write(self, data) -> int:
        self._checkClosed()
        with self._mutex:
            try:
                n = self.adapter.write_at(data, self._offset)
            except SectorIOError as err:
                self._offset += err.bytes_transferred
                raise
            self._offset += n
            self.logger.debug("Write returning %d, offset=%d", n, self._offset)
            return n

    def seek(self, offset: int, whence: int = io.SEEK_SET) -> int:
        self._checkClosed()
        with self._mutex:
            if whence == io.SEEK_SET:
                desired = offset
            elif whence == io.SEEK_CUR:
                desired = self._offset + offset
            elif whence == io.SEEK_END:
                raise io.UnsupportedOperation("Seek from SEEK_END not implemented")
            else:
                raise ValueError(f"invalid whence ({whence})")

            if desired < 0:
                raise InvalidOffsetError(f"Cannot seek to negative offset {desired}")
            self._offset = desired
            return self._offset

    def tell(self) -> int:
        with self._mutex:
            return self._offset

    def read_at(self, buffer, offset: int) -> int:
        return self.adapter.read_at(buffer, offset)

    def write_at(self, data, offset: int) -> int:
        return self.adapter.write_at(data, offset)
