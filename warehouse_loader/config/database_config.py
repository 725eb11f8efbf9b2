"""Jobs database configuration (PostgreSQL holding wh_uploads)"""
import os

DB_CONFIG = {
    "host": os.getenv("WAREHOUSE_JOBS_DB_HOST", "localhost"),
    "port": int(os.getenv("WAREHOUSE_JOBS_DB_PORT", "5432")),
    "user": os.getenv("WAREHOUSE_JOBS_DB_USER", "rudder"),
    "password": os.getenv("WAREHOUSE_JOBS_DB_PASSWORD", "rudder"),
    "database": os.getenv("WAREHOUSE_JOBS_DB_DB_NAME", "jobsdb"),
}
