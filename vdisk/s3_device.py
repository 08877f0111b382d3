import json
import logging
from typing import List, Optional

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from vdisk.device import BlockDevice, check_buffer, check_sector_range, validate_query
from vdisk.errors import DiskLibError, VIX_E_FAIL, VIX_E_FILE_NOT_FOUND, VIX_E_INVALID_ARG
from vdisk.models import AllocatedBlock, DeviceInfo
from vdisk.util import SECTOR_SIZE, coalesce_chunks

logger = logging.getLogger(__name__)

MISSING_KEY_CODES = ("NoSuchKey", "404")


class S3Device(BlockDevice):
    """
    S3-backed sector device (AWS S3 or MinIO).

    Sectors are stored under:
        disks/<disk_name>/sectors/<sector_id>
    and the disk description under:
        disks/<disk_name>/info.json

    Missing sector objects return zero-filled bytes(SECTOR_SIZE). A single
    PUT replaces an object atomically, so every sector write is atomic.
    """

    def __init__(
            self,
            bucket: str,
            disk_name: str,
            capacity_sectors: Optional[int] = None,
            endpoint_url: Optional[str] = None,
            region: str = "us-east-1",
            aws_access_key_id: Optional[str] = None,
            aws_secret_access_key: Optional[str] = None,
            client=None,
    ) -> None:
        """
        Args:
            bucket: S3 bucket name.
            disk_name: logical disk name (key namespace).
            capacity_sectors: size of a new disk, used when the bucket holds
                              no info.json for it yet.
            endpoint_url: Optional MinIO URL (e.g., http://localhost:9000)
            region: AWS region (ignored for MinIO).
            aws_access_key_id / aws_secret_access_key: credentials.
            client: pre-built boto3 S3 client; skips client construction.
                    The caller keeps ownership: close() leaves it open.
        """
        self.bucket = bucket
        self.disk_name = disk_name
        self.capacity_sectors = capacity_sectors
        self._info: Optional[DeviceInfo] = None
        self._closed = False
        self._owns_client = client is None

        if client is None:
            client = boto3.client(
                "s3",
                endpoint_url=endpoint_url,
                region_name=region,
                aws_access_key_id=aws_access_key_id,
                aws_secret_access_key=aws_secret_access_key,
            )
        self.s3 = client

    # ------------------------
    # Internal helpers
    # ------------------------

    def _prefix(self) -> str:
        return f"disks/{self.disk_name}/sectors/"

    def _key(self, sector_id: int) -> str:
        """
        S3 key for this sector.
        """
        return f"{self._prefix()}{sector_id}"

    def _info_key(self) -> str:
        return f"disks/{self.disk_name}/info.json"

    def _check_open(self) -> None:
        if self._closed:
            raise DiskLibError(VIX_E_INVALID_ARG, f"Disk {self.disk_name} is closed.")

    def _client_error(self, action: str, e: Exception) -> DiskLibError:
        if isinstance(e, ClientError):
            err = e.response["Error"]
            return DiskLibError(VIX_E_FAIL, f"{action} failed: {err.get('Code')} {err.get('Message', '')}".rstrip())
        # Connection, timeout and streaming failures carry no S3 error code.
        return DiskLibError(VIX_E_FAIL, f"{action} failed: {e}")

    def _capacity(self) -> int:
        return self.get_info().capacity

    def _read_sector(self, sector_id: int) -> bytes:
        try:
            resp = self.s3.get_object(Bucket=self.bucket, Key=self._key(sector_id))
            data = resp["Body"].read()
        except ClientError as e:
            if e.response["Error"]["Code"] in MISSING_KEY_CODES:
                return bytes(SECTOR_SIZE)  # zero-fill
            raise self._client_error(f"Read sector {sector_id}", e) from e
        except BotoCoreError as e:
            raise self._client_error(f"Read sector {sector_id}", e) from e

        # Normalize to SECTOR_SIZE
        if len(data) < SECTOR_SIZE:
            data = data + bytes(SECTOR_SIZE - len(data))
        elif len(data) > SECTOR_SIZE:
            data = data[:SECTOR_SIZE]
        return data

    # ------------------------
    # BlockDevice API
    # ------------------------

    def get_info(self) -> DeviceInfo:
        """
        Fetch info.json once; create it from `capacity_sectors` when the
        disk does not exist yet.
        """
        self._check_open()
        if self._info is not None:
            return self._info

        try:
            resp = self.s3.get_object(Bucket=self.bucket, Key=self._info_key())
            self._info = DeviceInfo.from_dict(json.loads(resp["Body"].read()))
            return self._info
        except ClientError as e:
            if e.response["Error"]["Code"] not in MISSING_KEY_CODES:
                raise self._client_error("GetInfo", e) from e
        except BotoCoreError as e:
            raise self._client_error("GetInfo", e) from e

        if self.capacity_sectors is None:
            raise DiskLibError(VIX_E_FILE_NOT_FOUND, f"Disk {self.disk_name} not found in bucket {self.bucket}.")

        info = DeviceInfo.for_capacity(self.capacity_sectors, uuid=self.disk_name)
        try:
            self.s3.put_object(
                Bucket=self.bucket,
                Key=self._info_key(),
                Body=json.dumps(info.to_dict()).encode(),
            )
        except (ClientError, BotoCoreError) as e:
            raise self._client_error("Create disk", e) from e
        logger.info("Created disk %s with %d sectors in bucket %s", self.disk_name, info.capacity, self.bucket)
        self._info = info
        return info

    def read_sectors(self, start_sector: int, sector_count: int, buffer) -> None:
        self._check_open()
        check_sector_range(start_sector, sector_count, self._capacity())
        view = memoryview(buffer).cast("B")
        check_buffer(sector_count, view)

        for i in range(sector_count):
            view[i * SECTOR_SIZE:(i + 1) * SECTOR_SIZE] = self._read_sector(start_sector + i)

    def write_sectors(self, start_sector: int, sector_count: int, data) -> None:
        self._check_open()
        check_sector_range(start_sector, sector_count, self._capacity())
        view = memoryview(data).cast("B")
        check_buffer(sector_count, view)

        for i in range(sector_count):
            sector_id = start_sector + i
            try:
                self.s3.put_object(
                    Bucket=self.bucket,
                    Key=self._key(sector_id),
                    Body=bytes(view[i * SECTOR_SIZE:(i + 1) * SECTOR_SIZE]),
                )
            except (ClientError, BotoCoreError) as e:
                raise self._client_error(f"Write sector {sector_id}", e) from e

    def query_allocated_blocks(self, start_sector: int, num_sectors: int, chunk_size: int) -> List[AllocatedBlock]:
        self._check_open()
        validate_query(start_sector, num_sectors, chunk_size, self._capacity())

        prefix = self._prefix()
        written = []
        paginator = self.s3.get_paginator("list_objects_v2")
        try:
            for page in paginator.paginate(Bucket=self.bucket, Prefix=prefix):
                for obj in page.get("Contents", []):
                    name = obj["Key"][len(prefix):]
                    if name.isdigit():
                        written.append(int(name))
        except (ClientError, BotoCoreError) as e:
            raise self._client_error("QueryAllocatedBlocks", e) from e

        return coalesce_chunks(written, start_sector, num_sectors, chunk_size)

    def close(self) -> None:
        if self._closed:
            raise DiskLibError(VIX_E_INVALID_ARG, "Close virtual disk failed: disk is already closed.")
        self._closed = True
        if self._owns_client:
            self.s3.close()
        logger.debug("Closed disk %s in bucket %s", self.disk_name, self.bucket)
