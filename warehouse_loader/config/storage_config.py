"""Object storage configuration (MinIO / S3 compatible)"""
import os

MINIO_CONFIG = {
    "endpoint": os.getenv("MINIO_ENDPOINT", "localhost:9000"),
    "access_key": os.getenv("MINIO_ACCESS_KEY", "minioadmin"),
    "secret_key": os.getenv("MINIO_SECRET_KEY", "minioadmin"),
    "secure": os.getenv("MINIO_SECURE", "false").lower() == "true",
}

# Platform owned AWS user whose temporary credentials authorize COPY from platform storage
AWS_COPY_CONFIG = {
    "access_key_id": os.getenv("RUDDER_AWS_S3_COPY_USER_ACCESS_KEY_ID", ""),
    "secret_access_key": os.getenv("RUDDER_AWS_S3_COPY_USER_ACCESS_KEY", ""),
    "session_duration": int(os.getenv("RUDDER_AWS_S3_COPY_SESSION_DURATION", "3600")),
}
