"""Monitoring module - Metrics."""

from .stats import Measurement, MemStats, Stats
from .load_metrics import LoadMetrics, LoadMetricsLogger

__all__ = ['Measurement', 'MemStats', 'Stats', 'LoadMetrics', 'LoadMetricsLogger']
