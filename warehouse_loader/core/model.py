"""
Core data model shared by the drivers.

Everything here is plain data: the upload snapshot a driver is set up with,
schema mappings and the small result types returned by loads.
"""

from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any, Dict, List, NamedTuple, Optional

# Abstract column types
BOOLEAN = 'boolean'
INT = 'int'
BIGINT = 'bigint'
FLOAT = 'float'
STRING = 'string'
TEXT = 'text'
DATETIME = 'datetime'
JSON = 'json'

MISSING_DATATYPE = '<missing_datatype>'

# Well-known tables (lower case, converted per provider)
USERS_TABLE = 'users'
IDENTIFIES_TABLE = 'identifies'
DISCARDS_TABLE = 'rudder_discards'
IDENTITY_MERGE_RULES_TABLE = 'rudder_identity_merge_rules'
IDENTITY_MAPPINGS_TABLE = 'rudder_identity_mappings'

# Event tables scanned for identities and emptiness checks
IDENTITY_SOURCE_TABLES = ('tracks', 'pages', 'screens', 'identifies', 'aliases')

STAGING_TABLE_PREFIX = 'rudder_staging_'

# Upload statuses that are never picked up again
EXPORTED_DATA = 'exported_data'
ABORTED = 'aborted'

TableSchema = Dict[str, str]
Schema = Dict[str, TableSchema]


@dataclass(frozen=True)
class Source:
    id: str
    name: str = ''
    source_type: str = ''


@dataclass(frozen=True)
class Destination:
    id: str
    name: str = ''
    destination_type: str = ''
    config: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class Warehouse:
    """Per-upload snapshot of the destination a driver writes to."""
    namespace: str
    source: Source
    destination: Destination
    workspace_id: str = ''

    def config_value(self, key: str, default: str = '') -> str:
        value = self.destination.config.get(key)
        if value is None:
            return default
        return str(value)

    def config_bool(self, key: str) -> bool:
        value = self.destination.config.get(key)
        if isinstance(value, str):
            return value.lower() == 'true'
        return bool(value)

    @property
    def identifier(self) -> str:
        """destinationID_namespace, as used by the in-progress skip list."""
        return f"{self.destination.id}_{self.namespace}"


class ColumnInfo(NamedTuple):
    name: str
    type: str


@dataclass(frozen=True)
class LoadFile:
    location: str
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class DeleteByParams:
    source_id: str
    task_run_id: str
    job_run_id: str
    start_time: str


@dataclass
class AlterTableResponse:
    is_dependent: bool = False
    blocking_views: List[str] = field(default_factory=list)


@dataclass
class MergeResult:
    inserted: int = 0
    updated: int = 0


@dataclass
class UploadJobsStats:
    pending_jobs: int = 0
    pickup_lag: timedelta = timedelta(0)
    pickup_wait_time: timedelta = timedelta(0)


@dataclass
class SchemaDiff:
    """Difference between the warehouse schema and an upload's schema."""
    tables_to_create: Schema = field(default_factory=dict)
    columns_to_add: Dict[str, List[ColumnInfo]] = field(default_factory=dict)
    columns_to_alter: Dict[str, List[ColumnInfo]] = field(default_factory=dict)
    # table -> column -> (warehouse type, upload type)
    type_mismatches: Dict[str, Dict[str, tuple]] = field(default_factory=dict)

    @property
    def exists(self) -> bool:
        return bool(self.tables_to_create or self.columns_to_add or self.columns_to_alter)


def columns_of(schema: Optional[TableSchema]) -> List[str]:
    """Sorted column names of a table schema."""
    return sorted((schema or {}).keys())
