"""
Upload job: one upload end to end.

Setup the driver, reconcile the namespace schema with the upload, load every
table, then users/identifies and the identity tables. Failures are classified
with the driver's error mappings and reported in the result dict.
"""

import logging
from datetime import datetime
from typing import Any, Dict, Optional

from warehouse_loader.core.context import Context
from warehouse_loader.core.driver import DestinationDriver
from warehouse_loader.core.errors import WarehouseError
from warehouse_loader.core.model import (
    IDENTIFIES_TABLE, IDENTITY_MAPPINGS_TABLE, IDENTITY_MERGE_RULES_TABLE, USERS_TABLE, Warehouse
)
from warehouse_loader.monitoring.load_metrics import LoadMetrics, LoadMetricsLogger
from .uploader import ManifestUploader

logger = logging.getLogger(__name__)


class UploadJob:
    def __init__(
        self,
        upload_id: str,
        driver: DestinationDriver,
        warehouse: Warehouse,
        uploader: ManifestUploader,
        metrics_logger: Optional[LoadMetricsLogger] = None,
    ):
        self.upload_id = upload_id
        self.driver = driver
        self.warehouse = warehouse
        self.uploader = uploader
        self.metrics_logger = metrics_logger

    def _record_error(self, result: Dict[str, Any], table: Optional[str], err: BaseException) -> None:
        kind = self.driver.classifier.classify_error(err)
        logger.error(f"Upload {self.upload_id} failed at table={table}: {err} (kind={kind.value})")
        result['errors'].append({'table': table, 'kind': kind.value, 'message': str(err)})

    def _special_tables(self):
        c = self.driver.dialect.to_provider_case
        return {
            'users': c(USERS_TABLE),
            'identifies': c(IDENTIFIES_TABLE),
            'merge_rules': c(IDENTITY_MERGE_RULES_TABLE),
            'mappings': c(IDENTITY_MAPPINGS_TABLE),
        }

    def run(self, ctx: Optional[Context] = None) -> Dict[str, Any]:
        """
        Run the upload.

        Flow:
        1. Setup driver and connect
        2. Crash recovery hook
        3. Reconcile schema (create schema / tables / columns)
        4. Load regular tables
        5. Load identifies and users
        6. Load identity merge rules and mappings
        7. Cleanup
        """
        ctx = ctx or Context.background()
        start_time = datetime.now()
        result = {
            'success': False,
            'upload_id': self.upload_id,
            'namespace': self.warehouse.namespace,
            'start_time': start_time.isoformat(),
            'stats': {},
            'errors': [],
        }
        special = self._special_tables()
        upload_schema = self.uploader.schema_in_upload

        try:
            logger.info("=" * 60)
            logger.info(f"UPLOAD START: {self.upload_id} namespace={self.warehouse.namespace}")
            logger.info("=" * 60)

            self.driver.setup(ctx, self.warehouse, self.uploader)
            self.driver.crash_recover(ctx)

            diff = self.driver.schema.reconcile(ctx, upload_schema)
            result['stats']['schema'] = {
                'tables_created': sorted(diff.tables_to_create),
                'columns_added': {t: [c.name for c in cols] for t, cols in diff.columns_to_add.items()},
                'type_mismatches': {t: sorted(m) for t, m in diff.type_mismatches.items()},
            }
            self.uploader.schema_in_warehouse, _ = self.driver.fetch_schema(ctx)

            for table_name in sorted(upload_schema):
                if table_name in special.values():
                    continue
                try:
                    merge = self.driver.load_table(ctx, table_name)
                    result['stats'][table_name] = {'inserted': merge.inserted, 'updated': merge.updated}
                except WarehouseError as e:
                    self._record_error(result, table_name, e)

            if special['identifies'] in upload_schema:
                for table_name, err in self.driver.load_user_tables(ctx).items():
                    if err is not None:
                        self._record_error(result, table_name, err)
                    else:
                        result['stats'][table_name] = {'loaded': True}

            if special['merge_rules'] in upload_schema:
                try:
                    self.driver.load_identity_merge_rules_table(ctx)
                    result['stats'][special['merge_rules']] = {'loaded': True}
                except WarehouseError as e:
                    self._record_error(result, special['merge_rules'], e)

            if special['mappings'] in upload_schema:
                try:
                    merge = self.driver.load_identity_mappings_table(ctx)
                    result['stats'][special['mappings']] = {'inserted': merge.inserted, 'updated': merge.updated}
                except WarehouseError as e:
                    self._record_error(result, special['mappings'], e)

            result['success'] = not result['errors']

        except WarehouseError as e:
            self._record_error(result, None, e)

        finally:
            self.driver.cleanup(ctx)

            end_time = datetime.now()
            result['end_time'] = end_time.isoformat()
            result['duration_seconds'] = (end_time - start_time).total_seconds()

            logger.info("=" * 60)
            logger.info(f"UPLOAD END: {self.upload_id} success={result['success']} "
                        f"duration={result['duration_seconds']:.2f}s")
            logger.info("=" * 60)

            if self.metrics_logger is not None:
                self.metrics_logger.log(self._metrics(result, start_time, end_time))

        return result

    def _metrics(self, result: Dict[str, Any], start_time: datetime, end_time: datetime) -> LoadMetrics:
        table_stats = [s for name, s in result['stats'].items() if name != 'schema']
        first_error = result['errors'][0] if result['errors'] else None
        return LoadMetrics(
            upload_id=self.upload_id,
            destination_id=self.warehouse.destination.id,
            destination_type=self.warehouse.destination.destination_type,
            namespace=self.warehouse.namespace,
            workspace_id=self.warehouse.workspace_id,
            start_time=start_time,
            end_time=end_time,
            duration_seconds=result['duration_seconds'],
            tables_loaded=len(table_stats),
            rows_inserted=sum(s.get('inserted', 0) for s in table_stats),
            rows_updated=sum(s.get('updated', 0) for s in table_stats),
            status='success' if result['success'] else 'failed',
            error_kind=first_error['kind'] if first_error else None,
            error_message=first_error['message'] if first_error else None,
            metadata={'errors': result['errors']} if result['errors'] else {},
        )
