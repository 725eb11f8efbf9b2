"""Configuration module"""
from .database_config import DB_CONFIG
from .storage_config import MINIO_CONFIG, AWS_COPY_CONFIG
from .warehouse_config import SNOWFLAKE_CONFIG, DUCKDB_CONFIG, SCHEDULER_CONFIG

__all__ = [
    'DB_CONFIG',
    'MINIO_CONFIG',
    'AWS_COPY_CONFIG',
    'SNOWFLAKE_CONFIG',
    'DUCKDB_CONFIG',
    'SCHEDULER_CONFIG',
]
