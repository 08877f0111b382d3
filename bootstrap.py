"""
bootstrap.py
------------

Bootstraps a SectorAdapter over the configured sector device (FileDevice
or S3Device) based on command-line flags or environment variables.

Wiring only: it parses configuration, sets up logging, builds the device
and runs the open sequence. Byte-level I/O lives in vdisk.sector_adapter.
"""

import argparse
import os

from vdisk.file_device import FileDevice
from vdisk.logging_config import setup_logging
from vdisk.s3_device import S3Device
from vdisk.sector_adapter import SectorAdapter, open_device
from vdisk.stream_cursor import StreamCursor


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Virtual disk bootstrapper")

    parser.add_argument("--disk", type=str, default=os.getenv("VDISK_NAME", "vdisk0"),
                        help="Disk name")

    parser.add_argument("--capacity-sectors", type=int, default=None,
                        help="Capacity in sectors when creating a new disk")

    parser.add_argument("--backend", choices=["file", "s3"],
                        default=os.getenv("VDISK_BACKEND", "file"),
                        help="Sector device type")

    parser.add_argument("--path", type=str, default=os.getenv("VDISK_PATH", "data"),
                        help="Base directory for FileDevice disks")

    # S3 configuration
    parser.add_argument("--bucket", type=str, default=os.getenv("S3_BUCKET", "vdiskbucket"))
    parser.add_argument("--endpoint", type=str, default=os.getenv("S3_ENDPOINT", "http://localhost:9000"))
    parser.add_argument("--access-key", type=str, default=os.getenv("AWS_ACCESS_KEY_ID", "minioadmin"))
    parser.add_argument("--secret-key", type=str, default=os.getenv("AWS_SECRET_ACCESS_KEY", "minioadmin"))

    parser.add_argument("--log-level", type=str, default=os.getenv("VDISK_LOG_LEVEL", "INFO"))
    parser.add_argument("--log-file", type=str, default=os.getenv("VDISK_LOG_FILE"))

    return parser


def create_adapter_from_args(argv=None) -> SectorAdapter:
    args = build_parser().parse_args(argv)
    logger = setup_logging("vdisk", level=args.log_level, log_file=args.log_file)

    # -------------------------------------------------------------
    # Choose device
    # -------------------------------------------------------------
    if args.backend == "file":
        device = FileDevice(args.path, args.disk, capacity_sectors=args.capacity_sectors)
        logger.info("Using FileDevice at %s", args.path)

    else:  # args.backend == "s3"
        device = S3Device(
            bucket=args.bucket,
            disk_name=args.disk,
            capacity_sectors=args.capacity_sectors,
            endpoint_url=args.endpoint,
            aws_access_key_id=args.access_key,
            aws_secret_access_key=args.secret_key,
        )
        logger.info("Using S3Device bucket=%s endpoint=%s", args.bucket, args.endpoint)

    # -------------------------------------------------------------
    # Open the disk
    # -------------------------------------------------------------
    adapter = open_device(device, logger)
    logger.info("Opened disk %s, capacity=%d bytes", args.disk, adapter.capacity)

    return adapter


if __name__ == "__main__":
    # Manual invocation for debugging: dump the first sector.
    adapter = create_adapter_from_args()
    try:
        print(StreamCursor(adapter).read(512))
    finally:
        adapter.close()
