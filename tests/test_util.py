from vdisk.models import AllocatedBlock, DeviceInfo, Geometry
from vdisk.util import (
    SECTOR_SIZE,
    aligned,
    coalesce_chunks,
)


def test_aligned_requires_both_length_and_offset():
    assert aligned(SECTOR_SIZE, 0)
    assert aligned(0, SECTOR_SIZE * 3)
    assert not aligned(SECTOR_SIZE, 500)
    assert not aligned(SECTOR_SIZE + 14, 0)


def test_coalesce_chunks_merges_adjacent_chunks():
    # chunks of 4 sectors: sectors 1 and 5 fall in chunks 0 and 1, 17 in chunk 4
    blocks = coalesce_chunks([1, 5, 17], start_sector=0, num_sectors=32, chunk_size=4)
    assert blocks == [AllocatedBlock(0, 8), AllocatedBlock(16, 4)]


def test_coalesce_chunks_ignores_sectors_outside_range():
    blocks = coalesce_chunks([0, 9, 40], start_sector=8, num_sectors=8, chunk_size=4)
    assert blocks == [AllocatedBlock(8, 4)]


def test_device_info_dict_round_trip_keeps_geometry():
    info = DeviceInfo.for_capacity(2048, uuid="abc")
    restored = DeviceInfo.from_dict(info.to_dict())

    assert restored == info
    assert restored.bios_geo == Geometry(cylinders=2, heads=16, sectors=63)
