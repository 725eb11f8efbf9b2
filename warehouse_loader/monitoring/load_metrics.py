"""Load Metrics Logger - Persist one summary row per upload."""

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, Optional

import psycopg2

from warehouse_loader.storage.postgres import get_db_connection

logger = logging.getLogger(__name__)


@dataclass
class LoadMetrics:
    """Upload load metrics."""
    upload_id: str
    destination_id: str
    destination_type: str
    namespace: str
    workspace_id: str = ''
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    duration_seconds: float = 0.0
    tables_loaded: int = 0
    rows_inserted: int = 0
    rows_updated: int = 0
    status: str = 'running'
    error_kind: Optional[str] = None
    error_message: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def throughput(self) -> float:
        """Rows per second."""
        if self.duration_seconds > 0:
            return (self.rows_inserted + self.rows_updated) / self.duration_seconds
        return 0.0


class LoadMetricsLogger:
    """Logger for upload metrics to the monitoring.wh_load_metrics table."""

    def __init__(self, conn_factory: Callable = get_db_connection):
        self.conn_factory = conn_factory

    def log(self, metrics: LoadMetrics) -> bool:
        """Insert metrics. A failure is logged and reported, never raised."""
        conn = None
        try:
            conn = self.conn_factory()
            with conn.cursor() as cur:
                cur.execute("""
                    INSERT INTO monitoring.wh_load_metrics (
                        upload_id, destination_id, destination_type, namespace, workspace_id,
                        status, duration_seconds, tables_loaded, rows_inserted, rows_updated,
                        throughput, error_kind, error_message, metadata, started_at, completed_at
                    ) VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
                """, (
                    metrics.upload_id, metrics.destination_id, metrics.destination_type,
                    metrics.namespace, metrics.workspace_id, metrics.status,
                    metrics.duration_seconds, metrics.tables_loaded,
                    metrics.rows_inserted, metrics.rows_updated, metrics.throughput,
                    metrics.error_kind, metrics.error_message,
                    json.dumps(metrics.metadata) if metrics.metadata else None,
                    metrics.start_time, metrics.end_time
                ))
            conn.commit()
            logger.info(
                f"Load metrics logged: {metrics.upload_id} - {metrics.rows_inserted} inserted, "
                f"{metrics.rows_updated} updated in {metrics.duration_seconds:.2f}s"
            )
            return True
        except psycopg2.Error as e:
            logger.warning(f"Failed to log load metrics: {e}")
            return False
        finally:
            if conn:
                conn.close()
