"""
Error vocabulary for virtual disk I/O.

Devices raise DiskLibError carrying a numeric code. The adapter turns
those codes into one of a small set of outcomes via map_error() and raises
the matching SectorIOError subclass, always carrying the number of bytes
moved before the failure.
"""

from enum import Enum
from typing import Optional

# Device error codes (same numbering as VixDiskLib).
VIX_OK = 0
VIX_E_FAIL = 1
VIX_E_INVALID_ARG = 3
VIX_E_FILE_NOT_FOUND = 4
VIX_E_DISK_OUTOFRANGE = 16007


class DiskLibError(Exception):
    """Raised by a BlockDevice when a sector-level call fails."""

    def __init__(self, code: int, message: str) -> None:
        super().__init__(code, message)
        self.code = code
        self.message = message

    def __str__(self) -> str:
        return f"{self.message} with error code: {self.code}"


class SectorIOError(Exception):
    """
    Base class for failures of a byte-addressed transfer.

    Attributes:
        bytes_transferred: bytes actually read or written before the
                           failure. Never discarded.
        phase: which part of the transfer failed (leading partial sector,
               aligned run, trailing partial sector), or None when the
               request was rejected up front.
    """

    def __init__(self, message: str, bytes_transferred: int = 0, phase: Optional[str] = None) -> None:
        super().__init__(message)
        self.bytes_transferred = bytes_transferred
        self.phase = phase


class ShortWriteError(SectorIOError):
    """A write could not be completed because it reaches past the disk."""

    def __init__(self, bytes_transferred: int = 0, phase: Optional[str] = None) -> None:
        super().__init__("short write", bytes_transferred, phase)


class DeviceIOError(SectorIOError):
    """Any other device failure, with the device code and message kept verbatim."""

    def __init__(self, code: int, message: str, bytes_transferred: int = 0, phase: Optional[str] = None) -> None:
        text = f"{message} with error code: {code}"
        if phase:
            text = f"{phase} failed: {text}"
        super().__init__(text, bytes_transferred, phase)
        self.code = code
        self.message = message

    @classmethod
    def from_disk_error(cls, error: DiskLibError, bytes_transferred: int, phase: str) -> "DeviceIOError":
        return cls(error.code, error.message, bytes_transferred, phase)


class InvalidOffsetError(ValueError):
    """Seek target would be a negative offset."""


class Outcome(Enum):
    END_OF_STREAM = "end-of-stream"
    SHORT_WRITE = "short-write"
    FAILURE = "failure"


def map_error(error: DiskLibError, write: bool = False) -> Outcome:
    """
    Classify a device error for a byte-stream caller.

    "Out of range" means end of stream for a read and a short write for a
    write. Every other code is a plain failure and is propagated as is.
    """
    if error.code == VIX_E_DISK_OUTOFRANGE:
        return Outcome.SHORT_WRITE if write else Outcome.END_OF_STREAM
    return Outcome.FAILURE
