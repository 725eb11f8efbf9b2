"""Load engine core: contract, staging, dedup merge, schema reconciliation."""
from .context import Context
from .errors import (
    ErrorKind, JobError, ErrorClassifier, WarehouseError, LoadTableError,
    ConnectionTimeoutError, ContextCancelled, DeadlineExceeded
)
from .model import (
    Source, Destination, Warehouse, ColumnInfo, LoadFile, DeleteByParams,
    AlterTableResponse, MergeResult, UploadJobsStats, SchemaDiff
)
from .driver import DestinationDriver, driver_class, register, registered_types

__all__ = [
    'Context',
    'ErrorKind',
    'JobError',
    'ErrorClassifier',
    'WarehouseError',
    'LoadTableError',
    'ConnectionTimeoutError',
    'ContextCancelled',
    'DeadlineExceeded',
    'Source',
    'Destination',
    'Warehouse',
    'ColumnInfo',
    'LoadFile',
    'DeleteByParams',
    'AlterTableResponse',
    'MergeResult',
    'UploadJobsStats',
    'SchemaDiff',
    'DestinationDriver',
    'driver_class',
    'register',
    'registered_types',
]
