"""Loading of the identity resolution tables."""

import logging

from .context import Context
from .db import DB
from .dedup import DedupMergeEngine
from .errors import WarehouseError, wrap
from .logfield import format_fields, warehouse_fields
from .model import IDENTITY_MAPPINGS_TABLE, IDENTITY_MERGE_RULES_TABLE, LoadFile, MergeResult, Warehouse
from .schema import AlreadyExistsPredicate
from .sql import Dialect, MergePlan
from .staging import BulkCopier, Connector
from .uploader import Uploader

logger = logging.getLogger(__name__)

MERGE_RULES_COLUMNS = (
    'merge_property_1_type',
    'merge_property_1_value',
    'merge_property_2_type',
    'merge_property_2_value',
)

MERGE_PROPERTY_TYPE = 'merge_property_type'
MERGE_PROPERTY_VALUE = 'merge_property_value'
RUDDER_ID = 'rudder_id'
UPDATED_AT = 'updated_at'
SURROGATE_KEY = 'id'


class IdentityResolver:
    def __init__(
        self,
        connect: Connector,
        dialect: Dialect,
        warehouse: Warehouse,
        uploader: Uploader,
        copier: BulkCopier,
        merger: DedupMergeEngine,
        is_already_exists: AlreadyExistsPredicate,
    ):
        self.connect = connect
        self.dialect = dialect
        self.warehouse = warehouse
        self.namespace = warehouse.namespace
        self.uploader = uploader
        self.copier = copier
        self.merger = merger
        self.is_already_exists = is_already_exists
        self._fields = warehouse_fields(warehouse)

    def _name(self, name: str) -> str:
        return self.dialect.to_provider_case(name)

    def _open(self, ctx: Context) -> DB:
        try:
            return self.connect(ctx)
        except WarehouseError as e:
            raise wrap("connect", e)

    def _load_file(self, table_name: str) -> LoadFile:
        try:
            return self.uploader.get_single_load_file(table_name)
        except WarehouseError as e:
            raise wrap("getting load file", e)

    def load_merge_rules(self, ctx: Context) -> None:
        """Append the merge rules of this upload. Rules are never deduplicated."""
        table_name = self._name(IDENTITY_MERGE_RULES_TABLE)
        logger.info(f"Starting load {format_fields(self._fields, tableName=table_name)}")

        load_file = self._load_file(table_name)
        columns = [self._name(c) for c in MERGE_RULES_COLUMNS]

        db = self._open(ctx)
        try:
            self.copier.copy_into(
                ctx, db, self.dialect.table_ref(self.namespace, table_name), columns, load_file.location, folder=False
            )
        except WarehouseError as e:
            logger.warning(f"Failure running COPY command {format_fields(self._fields, tableName=table_name, error=e)}")
            raise wrap("copy into table", e)
        finally:
            db.close()

        logger.info(f"Completed load {format_fields(self._fields, tableName=table_name)}")

    def load_mappings(self, ctx: Context) -> MergeResult:
        """
        Upsert anonymous/user id to rudder id mappings.

        Rows are ranked by a surrogate key assigned in file order, so for
        duplicated (type, value) pairs the row appearing last in the batch wins.
        """
        table_name = self._name(IDENTITY_MAPPINGS_TABLE)
        logger.info(f"Starting load {format_fields(self._fields, tableName=table_name)}")

        load_file = self._load_file(table_name)
        staging_name = self.dialect.staging_table_name(table_name)
        staging_ref = self.dialect.staging_ref(self.namespace, staging_name)
        target_ref = self.dialect.table_ref(self.namespace, table_name)
        surrogate_key = self._name(SURROGATE_KEY)
        match_keys = (self._name(MERGE_PROPERTY_TYPE), self._name(MERGE_PROPERTY_VALUE))
        payload = (self._name(RUDDER_ID), self._name(UPDATED_AT))

        db = self._open(ctx)
        try:
            try:
                db.execute(ctx, self.dialect.create_staging_like(staging_ref, target_ref))
            except WarehouseError as e:
                raise wrap("create temporary table", e)

            for statement in self.dialect.add_surrogate_key(staging_ref, surrogate_key):
                logger.info(f"Adding autoincrement column {format_fields(self._fields, tableName=staging_name)}")
                try:
                    db.execute(ctx, statement)
                except WarehouseError as e:
                    if not self.is_already_exists(e):
                        raise wrap("add autoincrement column", e)
                    logger.info(f"Surrogate key already present on {staging_name}: {e}")

            try:
                self.copier.copy_into(ctx, db, staging_ref, match_keys + payload, load_file.location, folder=False)
            except WarehouseError as e:
                logger.warning(f"Failure running COPY command {format_fields(self._fields, tableName=table_name, error=e)}")
                raise wrap("copy into table", e)

            try:
                for statement in self.dialect.fill_surrogate_key(staging_ref, surrogate_key):
                    db.execute(ctx, statement)
            except WarehouseError as e:
                raise wrap("add autoincrement column", e)

            plan = MergePlan(
                target=target_ref,
                staging=staging_ref,
                columns=match_keys + payload,
                match_keys=match_keys,
                partition_key=match_keys,
                order_by=surrogate_key,
                keep_latest=True,
                update_columns=payload,
            )
            try:
                result = self.merger.apply(ctx, db, plan, table_name)
            except WarehouseError as e:
                logger.warning(f"Failure running deduplication {format_fields(self._fields, tableName=table_name, error=e)}")
                raise wrap("merge into table", e)
        finally:
            try:
                if not db.closed:
                    db.execute(Context.background(), self.dialect.drop_temp_table(staging_ref))
            except WarehouseError as e:
                logger.warning(f"Failed dropping staging table {staging_name}: {e}")
            db.close()

        logger.info(
            f"Completed load {format_fields(self._fields, tableName=table_name)} "
            f"inserted={result.inserted} updated={result.updated}"
        )
        return result
