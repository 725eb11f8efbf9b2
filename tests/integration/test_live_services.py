"""Integration tests against live services.

NOTE: These tests require running services (PostgreSQL jobs database, MinIO,
a Snowflake account). They are skipped unless the matching environment
variables are set.
Run with: WAREHOUSE_IT_POSTGRES=1 WAREHOUSE_IT_MINIO=1 pytest tests/integration/ -v -m integration
"""
import gzip
import io
import shutil
import tempfile
import uuid
import pytest
import sys
import os

import duckdb

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', '..'))


# Mark all tests in this module as integration tests
pytestmark = pytest.mark.integration


class TestJobsDatabase:
    """Integration tests for the wh_uploads pickup queries."""

    @pytest.mark.skipif(not os.getenv("WAREHOUSE_IT_POSTGRES"), reason="Requires PostgreSQL connection")
    def test_upload_jobs_stats_runs(self):
        """Pending job statistics should be computed by PostgreSQL."""
        from warehouse_loader.scheduler.repo import UploadsRepo

        stats = UploadsRepo().upload_jobs_stats('SNOWFLAKE')
        assert stats.pending_jobs >= 0


class TestMinIOLoadFiles:
    """Integration tests for DuckDB loads from MinIO."""

    @pytest.mark.skipif(not os.getenv("WAREHOUSE_IT_MINIO"), reason="Requires MinIO connection")
    def test_load_from_minio(self):
        """Load files in MinIO should be downloaded and loaded."""
        from warehouse_loader.core.context import Context
        from warehouse_loader.core.model import Destination, LoadFile, Source, Warehouse
        from warehouse_loader.config import MINIO_CONFIG
        from warehouse_loader.integrations.duckdb import DuckDBDriver
        from warehouse_loader.storage.minio import get_minio_client
        from warehouse_loader.upload.uploader import ManifestUploader

        client = get_minio_client()
        bucket = os.getenv("WAREHOUSE_IT_MINIO_BUCKET", "warehouse-it")
        if not client.bucket_exists(bucket):
            client.make_bucket(bucket)

        key = f"load-objects/{uuid.uuid4().hex}/tracks/load.csv.gz"
        payload = gzip.compress(b"a,2023-01-01 00:00:00,x\n")
        client.put_object(bucket, key, io.BytesIO(payload), len(payload))

        scheme = 'https' if MINIO_CONFIG["secure"] else 'http'
        location = f"{scheme}://{MINIO_CONFIG['endpoint']}/{bucket}/{key}"
        download_dir = tempfile.mkdtemp(prefix='wh_it_')
        conn = duckdb.connect()
        driver = DuckDBDriver(config={'download_dir': download_dir}, connection=conn, minio_client=client)
        warehouse = Warehouse(
            namespace='it_ns',
            source=Source(id='src'),
            destination=Destination(id='dest', destination_type='DUCKDB'),
        )
        schema = {'tracks': {'id': 'string', 'received_at': 'datetime', 'value': 'string'}}
        uploader = ManifestUploader(schema_in_upload=schema, load_files={'tracks': [LoadFile(location)]})
        ctx = Context.background()
        try:
            driver.setup(ctx, warehouse, uploader)
            driver.schema.reconcile(ctx, schema)
            result = driver.load_table(ctx, 'tracks')
            assert result.inserted == 1
        finally:
            driver.cleanup(ctx)
            conn.close()
            client.remove_object(bucket, key)
            shutil.rmtree(download_dir, ignore_errors=True)


class TestSnowflake:
    """Integration tests for the Snowflake driver."""

    @pytest.mark.skipif(not os.getenv("WAREHOUSE_IT_SNOWFLAKE_ACCOUNT"), reason="Requires Snowflake account")
    def test_connection(self):
        """The driver should connect and ping."""
        from warehouse_loader.core.context import Context
        from warehouse_loader.core.model import Destination, Source, Warehouse
        from warehouse_loader.integrations.snowflake import SnowflakeDriver
        from warehouse_loader.upload.uploader import ManifestUploader

        config = {
            'account': os.getenv("WAREHOUSE_IT_SNOWFLAKE_ACCOUNT"),
            'user': os.getenv("WAREHOUSE_IT_SNOWFLAKE_USER"),
            'password': os.getenv("WAREHOUSE_IT_SNOWFLAKE_PASSWORD"),
            'role': os.getenv("WAREHOUSE_IT_SNOWFLAKE_ROLE", ""),
            'database': os.getenv("WAREHOUSE_IT_SNOWFLAKE_DATABASE"),
            'warehouse': os.getenv("WAREHOUSE_IT_SNOWFLAKE_WAREHOUSE"),
        }
        warehouse = Warehouse(
            namespace='IT_NS',
            source=Source(id='src'),
            destination=Destination(id='dest', destination_type='SNOWFLAKE', config=config),
        )
        driver = SnowflakeDriver()
        ctx = Context(timeout=60)
        try:
            driver.setup(ctx, warehouse, ManifestUploader())
            driver.test_connection(ctx, warehouse)
        finally:
            driver.cleanup(ctx)
