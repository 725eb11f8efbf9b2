"""
Deduplicating merge of a staging table into its target.

Staged rows are ranked per partition key by arrival time and only the latest
one takes part in the merge. When the upload prefers the latest record every
column of a matched row is overwritten, otherwise target values win and the
matched rows are only counted.
"""

import logging
from types import MappingProxyType
from typing import Mapping, Optional, Sequence, Tuple

from .context import Context
from .db import DB
from .logfield import format_fields, warehouse_fields
from .model import MergeResult, Warehouse
from .sql import Dialect, MergePlan
from ..monitoring.stats import Stats

logger = logging.getLogger(__name__)

DEDUP_ROWS_STAT = 'dedup_rows'


class DedupMergeEngine:
    def __init__(
        self,
        dialect: Dialect,
        warehouse: Warehouse,
        stats: Stats,
        primary_keys: Mapping[str, str],
        partition_keys: Mapping[str, Tuple[str, ...]],
        additional_join_columns: Mapping[str, Tuple[str, ...]],
        default_key: str,
        received_at: str,
    ):
        self.dialect = dialect
        self.warehouse = warehouse
        self.stats = stats
        self.primary_keys = MappingProxyType(dict(primary_keys))
        self.partition_keys = MappingProxyType(dict(partition_keys))
        self.additional_join_columns = MappingProxyType(dict(additional_join_columns))
        self.default_key = default_key
        self.received_at = received_at
        self._fields = warehouse_fields(warehouse)

    def primary_key(self, table_name: str) -> str:
        return self.primary_keys.get(table_name, self.default_key)

    def partition_key(self, table_name: str) -> Tuple[str, ...]:
        return self.partition_keys.get(table_name, (self.default_key,))

    def plan(
        self,
        table_name: str,
        target_ref: str,
        staging_ref: str,
        columns: Sequence[str],
        keep_latest: bool,
    ) -> MergePlan:
        match_keys = (self.primary_key(table_name),) + tuple(self.additional_join_columns.get(table_name, ()))
        return MergePlan(
            target=target_ref,
            staging=staging_ref,
            columns=tuple(sorted(columns)),
            match_keys=match_keys,
            partition_key=self.partition_key(table_name),
            order_by=self.received_at,
            keep_latest=keep_latest,
        )

    def merge(self, ctx: Context, db: DB, plan: MergePlan, table_name: str) -> MergeResult:
        result = self.apply(ctx, db, plan, table_name)
        self.publish(table_name, result)
        return result

    def apply(self, ctx: Context, db: DB, plan: MergePlan, table_name: str) -> MergeResult:
        """Run the merge statements for plan without publishing metrics."""
        statements = self.dialect.merge_statements(plan)
        result = MergeResult()

        for statement in statements:
            logger.info(f"Deduplication {format_fields(self._fields, tableName=table_name, query=statement.sql)}")

        if len(statements) > 1:
            with db.transaction(ctx):
                self._run(ctx, db, statements, result)
        else:
            self._run(ctx, db, statements, result)
        return result

    @staticmethod
    def _run(ctx: Context, db: DB, statements, result: MergeResult) -> None:
        for statement in statements:
            row: Optional[tuple] = db.query_row(ctx, statement.sql)
            for name, value in zip(statement.counts, row or ()):
                setattr(result, name, getattr(result, name) + int(value or 0))

    def publish(self, table_name: str, result: MergeResult) -> None:
        self.stats.counter(DEDUP_ROWS_STAT, {
            'sourceID': self.warehouse.source.id,
            'sourceType': self.warehouse.source.source_type,
            'destID': self.warehouse.destination.id,
            'destType': self.warehouse.destination.destination_type,
            'workspaceId': self.warehouse.workspace_id,
            'tableName': table_name,
        }).count(result.updated)
