import io
import json

import boto3
import pytest
from botocore.exceptions import EndpointConnectionError
from botocore.response import StreamingBody
from botocore.stub import Stubber

from vdisk.errors import DeviceIOError, DiskLibError, VIX_E_DISK_OUTOFRANGE, VIX_E_FAIL, VIX_E_FILE_NOT_FOUND
from vdisk.models import AllocatedBlock, DeviceInfo
from vdisk.s3_device import S3Device
from vdisk.sector_adapter import open_device
from vdisk.stream_cursor import StreamCursor
from vdisk.util import SECTOR_SIZE


BUCKET = "vdiskbucket"
DISK = "dev1"
CAPACITY = 512  # sectors
INFO_KEY = f"disks/{DISK}/info.json"


def body(data: bytes) -> StreamingBody:
    return StreamingBody(io.BytesIO(data), len(data))


def sector_key(sector_id: int) -> str:
    return f"disks/{DISK}/sectors/{sector_id}"


class UnreachableKeyClient:
    """Forwards to a real client but loses the connection on one key."""

    def __init__(self, client, failing_key):
        self.client = client
        self.failing_key = failing_key
        self.closed = False

    def _check(self, key):
        if key == self.failing_key:
            raise EndpointConnectionError(endpoint_url="http://localhost:9000")

    def get_object(self, **kwargs):
        self._check(kwargs["Key"])
        return self.client.get_object(**kwargs)

    def put_object(self, **kwargs):
        self._check(kwargs["Key"])
        return self.client.put_object(**kwargs)

    def close(self):
        self.closed = True


@pytest.fixture
def s3_client():
    """Offline boto3 client; every call is answered by the Stubber."""
    return boto3.client(
        "s3",
        region_name="us-east-1",
        aws_access_key_id="testing",
        aws_secret_access_key="testing",
    )


@pytest.fixture
def stubber(s3_client):
    with Stubber(s3_client) as stub:
        yield stub
        stub.assert_no_pending_responses()


@pytest.fixture
def device(s3_client):
    return S3Device(bucket=BUCKET, disk_name=DISK, client=s3_client)


def stub_info(stubber, capacity=CAPACITY):
    info = DeviceInfo.for_capacity(capacity, uuid=DISK)
    stubber.add_response(
        "get_object",
        {"Body": body(json.dumps(info.to_dict()).encode())},
        {"Bucket": BUCKET, "Key": INFO_KEY},
    )


def test_get_info_loads_existing_disk(stubber, device):
    stub_info(stubber)

    info = device.get_info()

    assert info.capacity == CAPACITY
    assert info.uuid == DISK
    # cached after the first call
    assert device.get_info() is info


def test_get_info_creates_missing_disk(stubber, s3_client):
    device = S3Device(bucket=BUCKET, disk_name=DISK, capacity_sectors=64, client=s3_client)
    expected = DeviceInfo.for_capacity(64, uuid=DISK)
    stubber.add_client_error("get_object", service_error_code="NoSuchKey", http_status_code=404)
    stubber.add_response(
        "put_object",
        {},
        {"Bucket": BUCKET, "Key": INFO_KEY, "Body": json.dumps(expected.to_dict()).encode()},
    )

    assert device.get_info() == expected


def test_get_info_for_unknown_disk_fails(stubber, device):
    stubber.add_client_error("get_object", service_error_code="NoSuchKey", http_status_code=404)

    with pytest.raises(DiskLibError) as excinfo:
        device.get_info()
    assert excinfo.value.code == VIX_E_FILE_NOT_FOUND


def test_read_missing_sector_returns_zero_fill(stubber, device):
    stub_info(stubber)
    stubber.add_client_error("get_object", service_error_code="NoSuchKey", http_status_code=404)

    buf = bytearray(b"\xff" * SECTOR_SIZE)
    device.read_sectors(7, 1, buf)

    assert buf == bytes(SECTOR_SIZE)


def test_write_puts_one_object_per_sector(stubber, device):
    stub_info(stubber)
    data = b"A" * SECTOR_SIZE + b"B" * SECTOR_SIZE
    stubber.add_response("put_object", {}, {"Bucket": BUCKET, "Key": sector_key(5), "Body": b"A" * SECTOR_SIZE})
    stubber.add_response("put_object", {}, {"Bucket": BUCKET, "Key": sector_key(6), "Body": b"B" * SECTOR_SIZE})

    device.write_sectors(5, 2, data)


def test_read_normalizes_short_objects(stubber, device):
    stub_info(stubber)
    stubber.add_response("get_object", {"Body": body(b"XYZ")}, {"Bucket": BUCKET, "Key": sector_key(9)})
    stubber.add_response(
        "get_object",
        {"Body": body(b"Q" * (SECTOR_SIZE + 7))},
        {"Bucket": BUCKET, "Key": sector_key(10)},
    )

    buf = bytearray(SECTOR_SIZE * 2)
    device.read_sectors(9, 2, buf)

    assert buf[:3] == b"XYZ"
    assert buf[3:SECTOR_SIZE] == bytes(SECTOR_SIZE - 3)
    assert buf[SECTOR_SIZE:] == b"Q" * SECTOR_SIZE


def test_s3_errors_become_device_errors(stubber, device):
    stub_info(stubber)
    stubber.add_client_error("get_object", service_error_code="AccessDenied", http_status_code=403)

    with pytest.raises(DiskLibError) as excinfo:
        device.read_sectors(0, 1, bytearray(SECTOR_SIZE))
    assert excinfo.value.code == VIX_E_FAIL
    assert "AccessDenied" in excinfo.value.message


def test_out_of_range_is_rejected_without_s3_calls(stubber, device):
    stub_info(stubber)

    with pytest.raises(DiskLibError) as excinfo:
        device.write_sectors(CAPACITY - 1, 2, bytes(SECTOR_SIZE * 2))
    assert excinfo.value.code == VIX_E_DISK_OUTOFRANGE


def test_query_allocated_blocks_lists_sector_objects(stubber, device):
    stub_info(stubber)
    stubber.add_response(
        "list_objects_v2",
        {
            "IsTruncated": False,
            "KeyCount": 3,
            "Contents": [
                {"Key": sector_key(3)},
                {"Key": sector_key(140)},
                {"Key": sector_key(400)},
            ],
        },
    )

    blocks = device.query_allocated_blocks(0, CAPACITY, 128)

    assert blocks == [AllocatedBlock(0, 256), AllocatedBlock(384, 128)]


def test_close_twice_fails(stubber, device):
    device.close()

    with pytest.raises(DiskLibError):
        device.close()
    with pytest.raises(DiskLibError):
        device.get_info()


def test_connection_error_during_read_carries_partial_count(stubber, s3_client):
    stub_info(stubber)
    stubber.add_response("get_object", {"Body": body(b"L" * SECTOR_SIZE)}, {"Bucket": BUCKET, "Key": sector_key(0)})
    stubber.add_response("get_object", {"Body": body(b"M" * SECTOR_SIZE)}, {"Bucket": BUCKET, "Key": sector_key(1)})
    client = UnreachableKeyClient(s3_client, sector_key(2))
    cursor = StreamCursor(open_device(S3Device(bucket=BUCKET, disk_name=DISK, client=client)))
    cursor.seek(500)

    with pytest.raises(DeviceIOError) as excinfo:
        cursor.read(SECTOR_SIZE + 14)

    assert excinfo.value.code == VIX_E_FAIL
    assert excinfo.value.bytes_transferred == 12 + SECTOR_SIZE
    assert isinstance(excinfo.value.__cause__, DiskLibError)
    assert cursor.tell() == 500 + 12 + SECTOR_SIZE


def test_connection_error_during_write_becomes_device_error(stubber, s3_client):
    stub_info(stubber)
    client = UnreachableKeyClient(s3_client, sector_key(4))
    device = S3Device(bucket=BUCKET, disk_name=DISK, client=client)

    with pytest.raises(DiskLibError) as excinfo:
        device.write_sectors(4, 1, bytes(SECTOR_SIZE))
    assert excinfo.value.code == VIX_E_FAIL
    assert isinstance(excinfo.value.__cause__, EndpointConnectionError)


def test_close_leaves_injected_client_open(s3_client):
    client = UnreachableKeyClient(s3_client, None)
    device = S3Device(bucket=BUCKET, disk_name=DISK, client=client)

    device.close()

    assert not client.closed


def test_close_releases_client_it_built(monkeypatch, s3_client):
    client = UnreachableKeyClient(s3_client, None)
    monkeypatch.setattr("vdisk.s3_device.boto3.client", lambda *args, **kwargs: client)
    device = S3Device(bucket=BUCKET, disk_name=DISK)

    device.close()

    assert client.closed
