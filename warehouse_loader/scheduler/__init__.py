"""Upload pickup accounting"""
from .repo import UploadsRepo
from .processing import available_workers, processing_stats, report_processing_stats

__all__ = ['UploadsRepo', 'available_workers', 'processing_stats', 'report_processing_stats']
