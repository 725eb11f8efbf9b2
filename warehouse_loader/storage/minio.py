"""
MinIO / S3 downloads of load files.

Warehouses that cannot read object storage themselves (DuckDB) pull the load
files of a table into a local folder first.
"""

import logging
import os
from typing import Any, Dict, List, Optional

from minio import Minio
from minio.error import S3Error

from warehouse_loader.config import MINIO_CONFIG
from .location import get_location_folder, split_bucket_key

logger = logging.getLogger(__name__)

LOAD_FILE_SUFFIX = '.csv.gz'


def get_minio_client(config: Optional[Dict[str, Any]] = None) -> Minio:
    """Get MinIO client."""
    config = config or MINIO_CONFIG
    return Minio(
        config["endpoint"],
        access_key=config["access_key"],
        secret_key=config["secret_key"],
        session_token=config.get("session_token"),
        secure=config["secure"]
    )


def _local_path(dest_dir: str, key: str) -> str:
    return os.path.join(dest_dir, *key.split('/'))


def download_object(location: str, dest_dir: str, client: Optional[Minio] = None) -> str:
    """Download one object. Returns the local path."""
    bucket, key = split_bucket_key(location)
    local_path = _local_path(dest_dir, key)
    os.makedirs(os.path.dirname(local_path), exist_ok=True)

    try:
        client = client or get_minio_client()
        client.fget_object(bucket, key, local_path)
    except S3Error as e:
        logger.error(f"Download {bucket}/{key} error: {e}")
        raise

    logger.info(f"Downloaded {bucket}/{key} to {local_path}")
    return local_path


def download_folder(location: str, dest_dir: str, client: Optional[Minio] = None) -> str:
    """
    Download every load file sitting next to location. Returns the local
    folder holding them.
    """
    bucket, key = split_bucket_key(location)
    prefix = get_location_folder(key) + '/'
    local_dir = _local_path(dest_dir, prefix.rstrip('/'))
    os.makedirs(local_dir, exist_ok=True)

    downloaded: List[str] = []
    try:
        client = client or get_minio_client()
        for obj in client.list_objects(bucket, prefix=prefix):
            if obj.is_dir or not obj.object_name.endswith(LOAD_FILE_SUFFIX):
                continue
            local_path = _local_path(dest_dir, obj.object_name)
            client.fget_object(bucket, obj.object_name, local_path)
            downloaded.append(local_path)
    except S3Error as e:
        logger.error(f"Download {bucket}/{prefix} error: {e}")
        raise

    logger.info(f"Downloaded {len(downloaded)} load files from {bucket}/{prefix}")
    return local_dir
