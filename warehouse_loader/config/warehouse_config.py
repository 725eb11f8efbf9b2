"""Warehouse backend configuration"""
import os

# Durations are in seconds
SNOWFLAKE_CONFIG = {
    "slow_query_threshold": float(os.getenv("WAREHOUSE_SNOWFLAKE_SLOW_QUERY_THRESHOLD", "300")),
    "query_timeout": float(os.getenv("WAREHOUSE_SNOWFLAKE_QUERY_TIMEOUT", "0")),
    "connect_timeout": float(os.getenv("WAREHOUSE_SNOWFLAKE_CONNECT_TIMEOUT", "0")),
    "enable_delete_by_jobs": os.getenv("WAREHOUSE_SNOWFLAKE_ENABLE_DELETE_BY_JOBS", "false").lower() == "true",
}

DUCKDB_CONFIG = {
    "slow_query_threshold": float(os.getenv("WAREHOUSE_DUCKDB_SLOW_QUERY_THRESHOLD", "60")),
    "query_timeout": float(os.getenv("WAREHOUSE_DUCKDB_QUERY_TIMEOUT", "0")),
    "enable_delete_by_jobs": os.getenv("WAREHOUSE_DUCKDB_ENABLE_DELETE_BY_JOBS", "false").lower() == "true",
    "download_dir": os.getenv("WAREHOUSE_DUCKDB_DOWNLOAD_DIR", "/tmp/warehouse_loader"),
}

# Pickup accounting
SCHEDULER_CONFIG = {
    "max_parallel_loads": int(os.getenv("WAREHOUSE_MAX_PARALLEL_LOADS", "8")),
}
