"""Upload execution"""
from .job import UploadJob
from .namespace import resolve_namespace, to_safe_namespace
from .uploader import ManifestUploader

__all__ = ['UploadJob', 'resolve_namespace', 'to_safe_namespace', 'ManifestUploader']
