"""
Object storage URLs as the warehouses ingest them.

Load files are recorded with their https object URL; each provider wants its
own scheme (s3://, gcs://, azure://) and bulk loads point at the folder that
holds every file of a table.
"""

import re
from types import MappingProxyType
from typing import Any, Mapping

S3 = 'S3'
GCS = 'GCS'
AZURE_BLOB = 'AZURE_BLOB'
MINIO = 'MINIO'

AWS = 'AWS'
GCP = 'GCP'
AZURE = 'AZURE'

_S3_HOST_REGEX = re.compile(r'\.s3.*\.amazonaws\.com')
_GCS_HOST = 'https://storage.googleapis.com/'

_PROVIDER_STORAGE = MappingProxyType({
    AWS: S3,
    GCP: GCS,
    AZURE: AZURE_BLOB,
})


def cloud_provider(config: Mapping[str, Any]) -> str:
    """Cloud the warehouse account runs on, AWS unless configured otherwise."""
    provider = config.get('cloudProvider')
    return str(provider).upper() if provider else AWS


def object_storage_type(config: Mapping[str, Any], use_rudder_storage: bool) -> str:
    if use_rudder_storage:
        return S3
    return _PROVIDER_STORAGE.get(cloud_provider(config), S3)


def get_s3_location(location: str) -> str:
    """https://bucket.s3.us-east-1.amazonaws.com/key -> s3://bucket/key"""
    return _S3_HOST_REGEX.sub('', location).replace('https', 's3', 1)


def get_gcs_location(location: str) -> str:
    return location.replace(_GCS_HOST, 'gcs://', 1)


def get_azure_blob_location(location: str) -> str:
    return location.replace('https', 'azure', 1)


def get_location_folder(location: str) -> str:
    index = location.rfind('/')
    return location[:index] if index >= 0 else location


def get_object_location(storage_type: str, location: str) -> str:
    if storage_type == S3:
        return get_s3_location(location)
    if storage_type == GCS:
        return get_gcs_location(location)
    if storage_type == AZURE_BLOB:
        return get_azure_blob_location(location)
    return location


def get_object_folder(storage_type: str, location: str) -> str:
    return get_location_folder(get_object_location(storage_type, location))


def split_bucket_key(location: str):
    """
    (bucket, key) for s3://bucket/key, virtual hosted S3 URLs and path style
    http(s) URLs such as http://minio:9000/bucket/key.
    """
    if _S3_HOST_REGEX.search(location):
        location = get_s3_location(location)
    if location.startswith('s3://'):
        rest = location[len('s3://'):]
    else:
        rest = re.sub(r'^https?://[^/]+/', '', location)
    bucket, _, key = rest.partition('/')
    return bucket, key
