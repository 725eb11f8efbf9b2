"""
Destination driver contract.

A backend subclasses DestinationDriver, supplies its dialect, connection,
bulk copy and error tables, and inherits the load orchestration. Backends
are looked up by destination type through the registry at the bottom of
this module.
"""

import logging
from abc import ABC, abstractmethod
from types import MappingProxyType
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, TextIO, Tuple, Type

import pandas as pd

from .context import Context
from .db import DB
from .dedup import DedupMergeEngine
from .errors import (
    ConnectionTimeoutError, DeadlineExceeded, ErrorClassifier, JobError, LoadTableError, WarehouseError, wrap
)
from .identity import IdentityResolver
from .logfield import format_fields, warehouse_fields
from .model import (
    DISCARDS_TABLE, IDENTIFIES_TABLE, IDENTITY_SOURCE_TABLES, USERS_TABLE,
    AlterTableResponse, ColumnInfo, DeleteByParams, MergeResult, Schema, TableSchema, Warehouse
)
from .schema import SchemaManager
from .sql import Dialect, MergePlan
from .staging import StagingLoader
from .uploader import Uploader
from ..monitoring.stats import MemStats, Stats

logger = logging.getLogger(__name__)

# Lower case, converted to the provider case at setup
PRIMARY_KEYS = MappingProxyType({
    USERS_TABLE: 'id',
    IDENTIFIES_TABLE: 'id',
    DISCARDS_TABLE: 'row_id',
})
PARTITION_KEYS = MappingProxyType({
    DISCARDS_TABLE: ('row_id', 'column_name', 'table_name'),
})
ADDITIONAL_JOIN_COLUMNS = MappingProxyType({
    DISCARDS_TABLE: ('table_name', 'column_name'),
})
DEFAULT_KEY = 'id'
RECEIVED_AT = 'received_at'
USER_ID = 'user_id'
ANONYMOUS_ID = 'anonymous_id'

IDENTITY_RULES_BATCH_SIZE = 10000


class DestinationDriver(ABC):
    """One warehouse backend. An instance serves a single upload at a time."""

    destination_type = ''

    def __init__(self, config: Optional[Mapping[str, Any]] = None, stats: Optional[Stats] = None):
        self.config: Dict[str, Any] = dict(config or {})
        self.stats = stats if stats is not None else MemStats()
        self.connect_timeout = float(self.config.get('connect_timeout', 0) or 0)
        self.dialect = self.new_dialect()
        self.classifier = ErrorClassifier(self.error_mappings())

        self.warehouse: Optional[Warehouse] = None
        self.namespace = ''
        self.uploader: Optional[Uploader] = None
        self.db: Optional[DB] = None
        self._fields: Dict[str, str] = {}

        self.schema: Optional[SchemaManager] = None
        self.merger: Optional[DedupMergeEngine] = None
        self.staging: Optional[StagingLoader] = None
        self.identity: Optional[IdentityResolver] = None

    # --- backend hooks ----------------------------------------------------------
    @abstractmethod
    def new_dialect(self) -> Dialect:
        ...

    @abstractmethod
    def open_connection(self, ctx: Context, warehouse: Warehouse, scoped: bool = False) -> DB:
        """Open a connection for warehouse. scoped=True selects the namespace as default schema."""
        ...

    @abstractmethod
    def copy_into(
        self, ctx: Context, db: DB, table_ref: str, columns: Sequence[str], location: str, folder: bool = True
    ) -> None:
        ...

    @abstractmethod
    def is_already_exists(self, err: BaseException) -> bool:
        ...

    @abstractmethod
    def error_mappings(self) -> Sequence[JobError]:
        ...

    # --- lifecycle --------------------------------------------------------------
    def _bind(self, warehouse: Warehouse) -> None:
        self.warehouse = warehouse
        self.namespace = warehouse.namespace
        self._fields = warehouse_fields(warehouse)

    def _connect_scoped(self, ctx: Context) -> DB:
        return self.open_connection(ctx, self.warehouse, scoped=True)

    def _name(self, name: str) -> str:
        return self.dialect.to_provider_case(name)

    def setup(self, ctx: Context, warehouse: Warehouse, uploader: Uploader) -> None:
        self._bind(warehouse)
        self.uploader = uploader

        c = self._name
        self.merger = DedupMergeEngine(
            self.dialect,
            warehouse,
            self.stats,
            primary_keys={c(t): c(k) for t, k in PRIMARY_KEYS.items()},
            partition_keys={c(t): tuple(c(k) for k in keys) for t, keys in PARTITION_KEYS.items()},
            additional_join_columns={c(t): tuple(c(k) for k in keys) for t, keys in ADDITIONAL_JOIN_COLUMNS.items()},
            default_key=c(DEFAULT_KEY),
            received_at=c(RECEIVED_AT),
        )
        self.staging = StagingLoader(self._connect_scoped, self.dialect, warehouse, uploader, self, self.merger)
        self.identity = IdentityResolver(
            self._connect_scoped, self.dialect, warehouse, uploader, self, self.merger, self.is_already_exists
        )

        self.db = self.open_connection(ctx, warehouse)
        self.schema = SchemaManager(self.db, self.dialect, warehouse, self.stats, self.is_already_exists)

    def connect(self, ctx: Context, warehouse: Warehouse) -> DB:
        """Standalone connection for callers outside an upload. The caller closes it."""
        self._bind(warehouse)
        return self.open_connection(ctx, warehouse)

    def test_connection(self, ctx: Context, warehouse: Optional[Warehouse] = None) -> None:
        try:
            self.db.ping(ctx)
        except DeadlineExceeded as e:
            raise ConnectionTimeoutError(f"connection timeout: {e}") from e
        except WarehouseError as e:
            raise WarehouseError(f"pinging: {e}") from e

    def set_connection_timeout(self, timeout: float) -> None:
        self.connect_timeout = timeout

    def cleanup(self, ctx: Optional[Context] = None) -> None:
        if self.db is not None:
            self.db.close()

    def crash_recover(self, ctx: Context) -> None:
        pass

    # --- schema -----------------------------------------------------------------
    def create_schema(self, ctx: Context) -> None:
        self.schema.create_schema(ctx)

    def create_table(self, ctx: Context, table_name: str, columns: TableSchema) -> None:
        self.schema.create_table(ctx, table_name, columns)

    def add_columns(self, ctx: Context, table_name: str, columns: Sequence[ColumnInfo]) -> None:
        self.schema.add_columns(ctx, table_name, columns)

    def alter_column(self, ctx: Context, table_name: str, column_name: str, column_type: str) -> AlterTableResponse:
        return AlterTableResponse()

    def drop_table(self, ctx: Context, table_name: str) -> None:
        self.schema.drop_table(ctx, table_name)

    def fetch_schema(self, ctx: Context) -> Tuple[Schema, Schema]:
        return self.schema.fetch_schema(ctx)

    # --- loads ------------------------------------------------------------------
    def load_table(self, ctx: Context, table_name: str) -> MergeResult:
        handle = self.staging.load_table(ctx, table_name, self.uploader.get_table_schema_in_upload(table_name))
        return handle.result

    def load_user_tables(self, ctx: Context) -> Dict[str, Optional[Exception]]:
        identifies_table = self._name(IDENTIFIES_TABLE)
        users_table = self._name(USERS_TABLE)
        identifies_schema = self.uploader.get_table_schema_in_upload(identifies_table)
        users_schema = self.uploader.get_table_schema_in_upload(users_table)

        logger.info(f"Started loading for identifies and users tables {format_fields(self._fields)}")

        try:
            handle = self.staging.load_table(ctx, identifies_table, identifies_schema, retain=True)
        except WarehouseError as e:
            return {identifies_table: LoadTableError(f"loading table {identifies_table}", e)}

        with handle:
            if not users_schema:
                return {identifies_table: None}

            id_column = self._name(DEFAULT_KEY)
            user_columns = sorted(
                c for c in self.uploader.get_table_schema_in_warehouse(users_table) if c != id_column
            )
            staging_name = self.dialect.staging_table_name(users_table)
            staging_ref = self.dialect.staging_ref(self.namespace, staging_name)
            users_ref = self.dialect.table_ref(self.namespace, users_table)

            statement = self.dialect.create_temp_as(
                staging_ref,
                self.dialect.users_staging_select(
                    users_ref,
                    handle.ref,
                    id_column=id_column,
                    user_id_column=self._name(USER_ID),
                    received_at_column=self._name(RECEIVED_AT),
                    user_columns=user_columns,
                    identify_columns=list(identifies_schema),
                ),
            )
            logger.info(
                f"Creating staging table for users {format_fields(self._fields, tableName=users_table, stagingTableName=staging_name, query=statement)}"
            )
            try:
                handle.db.execute(ctx, statement)
            except WarehouseError as e:
                logger.warning(f"Failure creating staging table for users {format_fields(self._fields, error=e)}")
                return {identifies_table: None, users_table: wrap("creating staging table for users", e)}

            try:
                plan = MergePlan(
                    target=users_ref,
                    staging=staging_ref,
                    columns=(id_column,) + tuple(user_columns),
                    match_keys=(id_column,),
                    rank=False,
                )
                result = self.merger.merge(ctx, handle.db, plan, users_table)
            except WarehouseError as e:
                logger.warning(f"Failure running deduplication {format_fields(self._fields, tableName=users_table, error=e)}")
                return {identifies_table: None, users_table: wrap("running deduplication", e)}
            finally:
                try:
                    handle.db.execute(Context.background(), self.dialect.drop_temp_table(staging_ref))
                except WarehouseError as e:
                    logger.warning(f"Failed dropping staging table {staging_name}: {e}")

        logger.info(
            f"Completed loading for users and identifies tables {format_fields(self._fields)} "
            f"inserted={result.inserted} updated={result.updated}"
        )
        return {identifies_table: None, users_table: None}

    def load_identity_merge_rules_table(self, ctx: Context) -> None:
        self.identity.load_merge_rules(ctx)

    def load_identity_mappings_table(self, ctx: Context) -> MergeResult:
        return self.identity.load_mappings(ctx)

    def load_test_table(self, ctx: Context, location: str, table_name: str) -> None:
        """Bulk copy the (id, val) fixture used by destination validation."""
        self.copy_into(ctx, self.db, self.dialect.table_ref(self.namespace, table_name), ['id', 'val'], location)

    # --- maintenance ------------------------------------------------------------
    def delete_by(self, ctx: Context, table_names: Sequence[str], params: DeleteByParams) -> None:
        enabled = bool(self.config.get('enable_delete_by_jobs'))
        for table_name in table_names:
            statement = self.dialect.delete_by(self.dialect.table_ref(self.namespace, table_name))
            logger.info(f"Cleaning up table {format_fields(self._fields, tableName=table_name)}")
            logger.debug(f"Executing delete {statement}")
            if not enabled:
                continue
            self.db.execute(ctx, statement, [params.job_run_id, params.task_run_id, params.source_id, params.start_time])

    def get_total_count_in_table(self, ctx: Context, table_name: str) -> int:
        row = self.db.query_row(ctx, self.dialect.count(self.dialect.table_ref(self.namespace, table_name)))
        return int(row[0]) if row else 0

    def is_empty(self, ctx: Context, warehouse: Warehouse) -> bool:
        """True when none of the event tables hold rows. Uses its own connection."""
        self._bind(warehouse)
        db = self.open_connection(ctx, warehouse)
        try:
            for table in IDENTITY_SOURCE_TABLES:
                table_name = self._name(table)
                row = db.query_row(ctx, self.dialect.table_exists(), [self.namespace, table_name])
                if not (row and row[0]):
                    continue
                row = db.query_row(ctx, self.dialect.count(self.dialect.table_ref(self.namespace, table_name)))
                if row and row[0] > 0:
                    return False
            return True
        finally:
            db.close()

    def download_identity_rules(self, ctx: Context, writer: TextIO) -> None:
        """
        Write distinct (anonymous_id, user_id) pairs of the event tables as
        CSV merge rules, paging through each table.
        """
        for table in IDENTITY_SOURCE_TABLES:
            self._download_identity_rules_from(ctx, self._name(table), writer)

    def _download_identity_rules_from(self, ctx: Context, table_name: str, writer: TextIO) -> None:
        if not self.schema.table_exists(ctx, table_name):
            return

        table_ref = self.dialect.table_ref(self.namespace, table_name)
        row = self.db.query_row(ctx, self.dialect.count(table_ref))
        total_rows = int(row[0]) if row else 0

        anonymous_id = self._name(ANONYMOUS_ID)
        user_id = self._name(USER_ID)
        has_anonymous_id = self.schema.column_exists(ctx, anonymous_id, table_name)
        has_user_id = self.schema.column_exists(ctx, user_id, table_name)
        if not has_anonymous_id and not has_user_id:
            logger.info(f"{anonymous_id}, {user_id} columns not present in table {table_name}")
            return

        q = self.dialect.quote
        fields = ', '.join([
            q(anonymous_id) if has_anonymous_id else f"NULL AS {q(anonymous_id)}",
            q(user_id) if has_user_id else f"NULL AS {q(user_id)}",
        ])

        offset = 0
        while True:
            statement = self.dialect.distinct_identities(table_ref, fields, IDENTITY_RULES_BATCH_SIZE, offset)
            logger.info(f"Downloading distinct combinations of anonymous_id, user_id: {statement}, totalRows: {total_rows}")
            df = self.db.query_df(ctx, statement)
            write_identity_rules(df, writer)

            offset += IDENTITY_RULES_BATCH_SIZE
            if offset >= total_rows:
                break


def write_identity_rules(df: pd.DataFrame, writer: TextIO) -> int:
    """Write (anonymous_id, user_id) rows as merge rule lines. Returns the row count written."""
    rows = []
    for anonymous_id, user_id in df.itertuples(index=False, name=None):
        has_anonymous_id = not pd.isna(anonymous_id)
        has_user_id = not pd.isna(user_id)
        if not has_anonymous_id and not has_user_id:
            continue
        if has_anonymous_id:
            rows.append(('anonymous_id', anonymous_id, 'user_id', user_id if has_user_id else ''))
        else:
            rows.append(('user_id', user_id, 'anonymous_id', ''))

    if rows:
        pd.DataFrame(rows).to_csv(writer, header=False, index=False, lineterminator='\n')
    return len(rows)


# --- registry -------------------------------------------------------------------
_DRIVERS: Dict[str, Type[DestinationDriver]] = {}


def register(destination_type: str) -> Callable[[Type[DestinationDriver]], Type[DestinationDriver]]:
    def decorator(cls: Type[DestinationDriver]) -> Type[DestinationDriver]:
        cls.destination_type = destination_type
        _DRIVERS[destination_type] = cls
        return cls
    return decorator


def driver_class(destination_type: str) -> Type[DestinationDriver]:
    try:
        return _DRIVERS[destination_type]
    except KeyError:
        raise WarehouseError(f"unsupported destination type: {destination_type}")


def registered_types() -> List[str]:
    return sorted(_DRIVERS)
