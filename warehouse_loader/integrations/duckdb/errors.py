"""DuckDB error texts mapped to job error kinds."""

from typing import Tuple

import duckdb

from warehouse_loader.core.errors import ErrorKind, JobError, iter_causes

ERROR_MAPPINGS: Tuple[JobError, ...] = (
    JobError.compile(ErrorKind.PERMISSION_ERROR, r"Permission Error"),
    JobError.compile(ErrorKind.PERMISSION_ERROR, r"Cannot execute statement of type \".*\" on database \".*\" which is attached in read-only mode"),
    JobError.compile(ErrorKind.PERMISSION_ERROR, r"Could not set lock on file .*: Conflicting lock is held"),
    JobError.compile(ErrorKind.INSUFFICIENT_RESOURCE_ERROR, r"Out of Memory Error"),
    JobError.compile(ErrorKind.INSUFFICIENT_RESOURCE_ERROR, r"No space left on device"),
    JobError.compile(ErrorKind.RESOURCE_NOT_FOUND_ERROR, r"Table with name .* does not exist"),
    JobError.compile(ErrorKind.RESOURCE_NOT_FOUND_ERROR, r"Schema with name .* does not exist"),
    JobError.compile(ErrorKind.RESOURCE_NOT_FOUND_ERROR, r"No files found that match the pattern"),
    JobError.compile(ErrorKind.COLUMN_COUNT_ERROR, r"Too many columns"),
    # Object storage responses while downloading load files
    JobError.compile(ErrorKind.PERMISSION_ERROR, r"code: (AccessDenied|InvalidAccessKeyId|SignatureDoesNotMatch)"),
    JobError.compile(ErrorKind.RESOURCE_NOT_FOUND_ERROR, r"code: (NoSuchKey|NoSuchBucket)"),
)


def is_already_exists(err: BaseException) -> bool:
    for cause in iter_causes(err):
        if isinstance(cause, duckdb.CatalogException) and 'already exists' in str(cause):
            return True
    return False
