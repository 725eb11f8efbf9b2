"""Storage module exports"""
from .postgres import get_db_connection
from .location import (
    S3, GCS, AZURE_BLOB, MINIO,
    cloud_provider, object_storage_type, get_object_location, get_object_folder, split_bucket_key
)

__all__ = [
    'get_db_connection',
    'S3',
    'GCS',
    'AZURE_BLOB',
    'MINIO',
    'cloud_provider',
    'object_storage_type',
    'get_object_location',
    'get_object_folder',
    'split_bucket_key',
]
