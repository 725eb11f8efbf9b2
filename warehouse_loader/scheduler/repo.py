"""Read side of the wh_uploads jobs table used for pickup accounting."""

import logging
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional, Sequence

import psycopg2

from warehouse_loader.core.errors import WarehouseError
from warehouse_loader.core.model import ABORTED, EXPORTED_DATA, UploadJobsStats
from warehouse_loader.storage.postgres import get_db_connection

logger = logging.getLogger(__name__)

UPLOADS_TABLE = 'wh_uploads'


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class UploadsRepo:
    """
    Queries over wh_uploads. `now` is injectable so tests can pin the clock;
    it is passed to the database instead of relying on NOW().
    """

    def __init__(self, conn_factory: Callable = get_db_connection, now: Callable[[], datetime] = _utcnow):
        self.conn_factory = conn_factory
        self.now = now

    def upload_jobs_stats(
        self,
        destination_type: str,
        skip_identifiers: Optional[Sequence[str]] = None,
        skip_workspaces: Optional[Sequence[str]] = None,
    ) -> UploadJobsStats:
        """
        Pending uploads of destination_type that could be picked up now, with
        the age of the oldest one and the summed wait since last execution.
        """
        now = self.now()
        query = f"""
            SELECT
                COUNT(*),
                COALESCE(EXTRACT(EPOCH FROM AGE(%s, MIN(COALESCE(created_at, %s)))), 0),
                COALESCE(SUM(EXTRACT(EPOCH FROM AGE(%s, COALESCE(last_exec_at, %s)))), 0)
            FROM
                {UPLOADS_TABLE}
            WHERE
                destination_type = %s
                AND in_progress = FALSE
                AND status != ALL(%s)
                AND COALESCE(metadata->>'nextRetryTime', NOW()::text)::timestamptz <= %s
        """
        params = [now, now, now, now, destination_type, [EXPORTED_DATA, ABORTED], now]

        if skip_identifiers:
            query += " AND (destination_id || '_' || namespace) != ALL(%s)"
            params.append(list(skip_identifiers))
        if skip_workspaces:
            query += " AND workspace_id != ALL(%s)"
            params.append(list(skip_workspaces))

        conn = None
        try:
            conn = self.conn_factory()
            with conn.cursor() as cur:
                cur.execute(query, params)
                pending_jobs, pickup_lag, pickup_wait_time = cur.fetchone()
        except psycopg2.Error as e:
            raise WarehouseError(f"count pending jobs: {e}") from e
        finally:
            if conn:
                conn.close()

        stats = UploadJobsStats(
            pending_jobs=int(pending_jobs or 0),
            pickup_lag=timedelta(seconds=float(pickup_lag or 0)),
            pickup_wait_time=timedelta(seconds=float(pickup_wait_time or 0)),
        )
        logger.debug(f"Upload jobs stats for {destination_type}: {stats}")
        return stats
