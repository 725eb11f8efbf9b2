"""
Schema discovery and reconciliation.

The live schema is read from the backend catalog and compared with the schema
of the current upload; missing schemas, tables and columns are created in an
idempotent way.
"""

import logging
from typing import Callable, List, Optional, Sequence, Tuple

from .context import Context
from .db import DB
from .errors import WarehouseError, wrap
from .logfield import format_fields, warehouse_fields
from .model import (
    MISSING_DATATYPE, STRING, TEXT, ColumnInfo, Schema, SchemaDiff, TableSchema, Warehouse
)
from .sql import Dialect
from ..monitoring.stats import Stats

logger = logging.getLogger(__name__)

MISSING_DATATYPE_STAT = 'rudder_missing_datatype'

AlreadyExistsPredicate = Callable[[BaseException], bool]


class SchemaManager:
    def __init__(
        self,
        db: DB,
        dialect: Dialect,
        warehouse: Warehouse,
        stats: Stats,
        is_already_exists: AlreadyExistsPredicate,
    ):
        self.db = db
        self.dialect = dialect
        self.warehouse = warehouse
        self.namespace = warehouse.namespace
        self.stats = stats
        self.is_already_exists = is_already_exists
        self._fields = warehouse_fields(warehouse)

    def fetch_schema(self, ctx: Context) -> Tuple[Schema, Schema]:
        """Return (schema, unrecognized) for the namespace."""
        schema: Schema = {}
        unrecognized: Schema = {}

        try:
            rows = self.db.query(ctx, self.dialect.fetch_schema(), [self.namespace])
        except WarehouseError as e:
            raise wrap("fetching schema", e)

        for table_name, column_name, column_type, numeric_scale in rows:
            table = schema.setdefault(table_name, {})
            datatype, ok = self.dialect.types.map(column_type, numeric_scale)
            if ok:
                table[column_name] = datatype
                continue

            unrecognized.setdefault(table_name, {})[column_name] = MISSING_DATATYPE
            self.stats.counter(MISSING_DATATYPE_STAT, {
                'destType': self.warehouse.destination.destination_type,
                'workspaceId': self.warehouse.workspace_id,
                'destID': self.warehouse.destination.id,
                'sourceID': self.warehouse.source.id,
                'datatype': column_type,
            }).count(1)
            logger.info(
                f"Unrecognized column type {format_fields(self._fields, tableName=table_name, columnName=column_name, columnType=column_type)}"
            )

        return schema, unrecognized

    def schema_exists(self, ctx: Context) -> bool:
        row = self.db.query_row(ctx, self.dialect.schema_exists(), [self.namespace])
        return bool(row and row[0])

    def table_exists(self, ctx: Context, table_name: str) -> bool:
        row = self.db.query_row(ctx, self.dialect.table_exists(), [self.namespace, table_name])
        return bool(row and row[0])

    def column_exists(self, ctx: Context, column_name: str, table_name: str) -> bool:
        row = self.db.query_row(ctx, self.dialect.column_exists(), [self.namespace, table_name, column_name])
        return bool(row and row[0])

    def create_schema(self, ctx: Context) -> None:
        if self.schema_exists(ctx):
            logger.info(f"Skipping creating schema {self.namespace} since it already exists {format_fields(self._fields)}")
            return
        statement = self.dialect.create_schema(self.namespace)
        logger.info(f"Creating schema {format_fields(self._fields, query=statement)}")
        self.db.execute(ctx, statement)

    def create_table(self, ctx: Context, table_name: str, columns: TableSchema) -> None:
        statement = self.dialect.create_table(self.namespace, table_name, columns)
        logger.info(f"Creating table {format_fields(self._fields, tableName=table_name, query=statement)}")
        self.db.execute(ctx, statement)

    def add_columns(self, ctx: Context, table_name: str, columns: Sequence[ColumnInfo]) -> None:
        if not columns:
            return
        for statement in self.dialect.add_columns(self.namespace, table_name, columns):
            logger.info(f"Adding columns {format_fields(self._fields, tableName=table_name, query=statement)}")
            try:
                self.db.execute(ctx, statement)
            except WarehouseError as e:
                # A partially applied multi column ALTER is not safe to treat as done.
                if len(columns) == 1 and self.is_already_exists(e):
                    logger.info(
                        f"Column {columns[0].name} already exists on {self.namespace}.{table_name}: {e}"
                    )
                    return
                raise

    def drop_table(self, ctx: Context, table_name: str) -> None:
        statement = self.dialect.drop_table(self.namespace, table_name)
        logger.info(f"Dropping table {format_fields(self._fields, tableName=table_name, query=statement)}")
        self.db.execute(ctx, statement)

    @staticmethod
    def diff(live: Schema, upload: Schema, unrecognized: Optional[Schema] = None) -> SchemaDiff:
        """Compare the warehouse schema with the upload's schema."""
        result = SchemaDiff()
        unrecognized = unrecognized or {}

        for table_name, upload_columns in upload.items():
            current = dict(live.get(table_name) or {})
            current.update(unrecognized.get(table_name) or {})

            if table_name not in live and table_name not in unrecognized:
                result.tables_to_create[table_name] = dict(upload_columns)
                continue

            to_add: List[ColumnInfo] = []
            to_alter: List[ColumnInfo] = []
            for column_name in sorted(upload_columns):
                column_type = upload_columns[column_name]
                if column_name not in current:
                    to_add.append(ColumnInfo(column_name, column_type))
                    continue
                existing_type = current[column_name]
                if existing_type == column_type or existing_type == MISSING_DATATYPE:
                    continue
                if column_type == TEXT and existing_type == STRING:
                    to_alter.append(ColumnInfo(column_name, column_type))
                else:
                    result.type_mismatches.setdefault(table_name, {})[column_name] = (existing_type, column_type)

            if to_add:
                result.columns_to_add[table_name] = to_add
            if to_alter:
                result.columns_to_alter[table_name] = to_alter

        return result

    def reconcile(self, ctx: Context, upload: Schema) -> SchemaDiff:
        """Bring the namespace up to the upload's schema. Safe to run repeatedly."""
        live, unrecognized = self.fetch_schema(ctx)
        result = self.diff(live, upload, unrecognized)

        self.create_schema(ctx)
        for table_name, columns in result.tables_to_create.items():
            self.create_table(ctx, table_name, columns)
        for table_name, columns in result.columns_to_add.items():
            self.add_columns(ctx, table_name, columns)

        for table_name, mismatches in result.type_mismatches.items():
            for column_name, (existing_type, upload_type) in mismatches.items():
                logger.warning(
                    f"Column type mismatch, keeping {existing_type} over {upload_type} "
                    f"{format_fields(self._fields, tableName=table_name, columnName=column_name)}"
                )
        return result
