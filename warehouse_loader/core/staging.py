"""
Staging table lifecycle.

A load opens its own connection, creates a temporary table shaped like the
target, bulk copies the batch into it and merges it into the target. The
staging table and the connection are released on every exit path unless the
caller retains them to chain a further load.
"""

import logging
from typing import Callable, Optional, Protocol, Sequence

from .context import Context
from .db import DB
from .dedup import DedupMergeEngine
from .errors import LoadTableError, WarehouseError, wrap
from .logfield import format_fields, warehouse_fields
from .model import MergeResult, TableSchema, Warehouse, columns_of
from .sql import Dialect
from .uploader import Uploader

logger = logging.getLogger(__name__)

Connector = Callable[[Context], DB]


class BulkCopier(Protocol):
    """
    Backend bulk load. With folder=True every load file next to location is
    ingested, otherwise only the object itself.
    """

    def copy_into(
        self, ctx: Context, db: DB, table_ref: str, columns: Sequence[str], location: str, folder: bool = True
    ) -> None: ...


class StagingHandle:
    """A staging table plus the dedicated connection it lives on."""

    def __init__(self, db: DB, dialect: Dialect, name: str, ref: str, target: str):
        self.db = db
        self.dialect = dialect
        self.name = name
        self.ref = ref
        self.target = target
        self.result = MergeResult()
        self._released = False

    @property
    def released(self) -> bool:
        return self._released

    def release(self) -> None:
        if self._released:
            return
        self._released = True
        try:
            if not self.db.closed:
                self.db.execute(Context.background(), self.dialect.drop_temp_table(self.ref))
        except WarehouseError as e:
            logger.warning(f"Failed dropping staging table {self.name}: {e}")
        finally:
            self.db.close()

    def __enter__(self) -> 'StagingHandle':
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.release()


class StagingLoader:
    def __init__(
        self,
        connect: Connector,
        dialect: Dialect,
        warehouse: Warehouse,
        uploader: Uploader,
        copier: BulkCopier,
        merger: DedupMergeEngine,
    ):
        self.connect = connect
        self.dialect = dialect
        self.warehouse = warehouse
        self.namespace = warehouse.namespace
        self.uploader = uploader
        self.copier = copier
        self.merger = merger
        self._fields = warehouse_fields(warehouse)

    def open(self, ctx: Context) -> DB:
        try:
            return self.connect(ctx)
        except Exception as e:
            raise wrap("connect", e)

    def create_staging_table(self, ctx: Context, db: DB, table_name: str) -> StagingHandle:
        staging_name = self.dialect.staging_table_name(table_name)
        staging_ref = self.dialect.staging_ref(self.namespace, staging_name)
        target_ref = self.dialect.table_ref(self.namespace, table_name)
        handle = StagingHandle(db, self.dialect, staging_name, staging_ref, target_ref)

        logger.debug(
            f"Creating temporary table {format_fields(self._fields, tableName=table_name, stagingTableName=staging_name)}"
        )
        try:
            db.execute(ctx, self.dialect.create_staging_like(staging_ref, target_ref))
        except WarehouseError as e:
            logger.warning(
                f"Failure creating temporary table {format_fields(self._fields, tableName=table_name, stagingTableName=staging_name, error=e)}"
            )
            raise wrap("create temporary table", e)
        return handle

    def copy(self, ctx: Context, handle: StagingHandle, table_name: str, columns: Sequence[str]) -> None:
        try:
            location = self.uploader.get_sample_load_file_location(table_name)
        except Exception as e:
            raise wrap("getting sample load file location", e)

        try:
            self.copier.copy_into(ctx, handle.db, handle.ref, columns, location)
        except WarehouseError as e:
            logger.warning(f"Failure running COPY command {format_fields(self._fields, tableName=table_name, error=e)}")
            raise wrap("copy into table", e)

    def load_table(
        self,
        ctx: Context,
        table_name: str,
        schema_in_upload: Optional[TableSchema],
        retain: bool = False,
    ) -> StagingHandle:
        """
        Stage and merge one table. With retain=True the returned handle keeps
        its connection and staging table open and the caller must release it.
        """
        logger.info(f"Started loading {format_fields(self._fields, tableName=table_name)}")

        columns = columns_of(schema_in_upload)
        if not columns:
            raise LoadTableError("load table", WarehouseError(f"no columns in upload schema for {table_name}"))

        db = self.open(ctx)
        handle: Optional[StagingHandle] = None
        try:
            handle = self.create_staging_table(ctx, db, table_name)
            self.copy(ctx, handle, table_name, columns)

            plan = self.merger.plan(
                table_name,
                handle.target,
                handle.ref,
                columns,
                keep_latest=self.uploader.should_on_dedup_use_new_record(),
            )
            try:
                handle.result = self.merger.merge(ctx, db, plan, table_name)
            except WarehouseError as e:
                logger.warning(f"Failure running deduplication {format_fields(self._fields, tableName=table_name, error=e)}")
                raise wrap("merge into table", e)
        except BaseException:
            if handle is not None:
                handle.release()
            else:
                db.close()
            raise

        if not retain:
            handle.release()

        logger.info(
            f"Completed loading {format_fields(self._fields, tableName=table_name)} "
            f"inserted={handle.result.inserted} updated={handle.result.updated}"
        )
        return handle
