"""
Utility helpers for sector math and constants shared by every device.
"""

from typing import Iterable, List

from vdisk.models import AllocatedBlock

# Fixed sector size for every virtual disk in the process.
# All device-level reads/writes are whole multiples of this size.
SECTOR_SIZE = 512

# Allocation query limits, in sectors.
MIN_CHUNK_SIZE = 128
MAX_CHUNK_SIZE = 64 * 1024 * 1024
MAX_CHUNK_NUMBER = 512 * 1024


def aligned(length: int, offset: int) -> bool:
    """
    True when both the length and the offset fall on sector boundaries,
    i.e. the request can be passed to the device without any merge.
    """
    return length % SECTOR_SIZE == 0 and offset % SECTOR_SIZE == 0


def coalesce_chunks(
        allocated_sectors: Iterable[int],
        start_sector: int,
        num_sectors: int,
        chunk_size: int,
) -> List[AllocatedBlock]:
    """
    Turn a set of written sector ids into allocated extents.

    A chunk of `chunk_size` sectors counts as allocated when at least one
    of its sectors is. Adjacent allocated chunks are merged into a single
    AllocatedBlock. Only chunks inside [start_sector, start_sector +
    num_sectors) are reported.
    """
    end_sector = start_sector + num_sectors
    chunks = sorted({
        (sector - start_sector) // chunk_size
        for sector in allocated_sectors
        if start_sector <= sector < end_sector
    })

    blocks: List[AllocatedBlock] = []
    for chunk in chunks:
        offset = start_sector + chunk * chunk_size
        if blocks and blocks[-1].offset + blocks[-1].length == offset:
            last = blocks.pop()
            blocks.append(AllocatedBlock(last.offset, last.length + chunk_size))
        else:
            blocks.append(AllocatedBlock(offset, chunk_size))
    return blocks
