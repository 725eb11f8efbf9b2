"""Pickup metrics published per destination type on every scheduling pass."""

import logging
from typing import Optional, Sequence

from warehouse_loader.config import SCHEDULER_CONFIG
from warehouse_loader.core.model import UploadJobsStats
from warehouse_loader.monitoring.stats import Stats
from .repo import UploadsRepo

logger = logging.getLogger(__name__)

PENDING_JOBS_STAT = 'wh_processing_pending_jobs'
AVAILABLE_WORKERS_STAT = 'wh_processing_available_workers'
PICKUP_LAG_STAT = 'wh_processing_pickup_lag'
PICKUP_WAIT_TIME_STAT = 'wh_processing_pickup_wait_time'


def processing_stats(stats: Stats, destination_type: str, available_workers: int, job_stats: UploadJobsStats) -> None:
    tags = {'destType': destination_type}
    stats.gauge(PENDING_JOBS_STAT, tags).gauge(job_stats.pending_jobs)
    stats.gauge(AVAILABLE_WORKERS_STAT, tags).gauge(available_workers)
    stats.timer(PICKUP_LAG_STAT, tags).send_timing(job_stats.pickup_lag)
    stats.timer(PICKUP_WAIT_TIME_STAT, tags).send_timing(job_stats.pickup_wait_time)


def available_workers(in_progress: int, max_parallel_loads: Optional[int] = None) -> int:
    limit = SCHEDULER_CONFIG["max_parallel_loads"] if max_parallel_loads is None else max_parallel_loads
    return max(0, limit - in_progress)


def report_processing_stats(
    repo: UploadsRepo,
    stats: Stats,
    destination_type: str,
    in_progress: int = 0,
    skip_identifiers: Optional[Sequence[str]] = None,
    skip_workspaces: Optional[Sequence[str]] = None,
    max_parallel_loads: Optional[int] = None,
) -> UploadJobsStats:
    """Query pending jobs for destination_type and publish the pickup metrics."""
    job_stats = repo.upload_jobs_stats(destination_type, skip_identifiers, skip_workspaces)
    workers = available_workers(in_progress, max_parallel_loads)
    processing_stats(stats, destination_type, workers, job_stats)
    logger.info(
        f"Processing stats destType={destination_type} pendingJobs={job_stats.pending_jobs} "
        f"availableWorkers={workers} pickupLag={job_stats.pickup_lag.total_seconds():.0f}s"
    )
    return job_stats
