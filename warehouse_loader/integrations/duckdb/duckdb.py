"""
DuckDB destination.

Embedded column store: every connection is a cursor of one root database
connection, so temporary staging tables stay private to the connection that
created them. Load files are read with read_csv from a local folder; files
in S3 or MinIO are downloaded first.
"""

import glob
import logging
import os
import shutil
import tempfile
import threading
from typing import Any, Mapping, Optional, Sequence
from urllib.parse import urlparse

import duckdb
from minio.error import MinioException
from urllib3.exceptions import HTTPError

from warehouse_loader.config import DUCKDB_CONFIG
from warehouse_loader.core.context import Context
from warehouse_loader.core.db import DB
from warehouse_loader.core.driver import DestinationDriver, register
from warehouse_loader.core.errors import JobError, WarehouseError
from warehouse_loader.core.logfield import format_fields, warehouse_fields
from warehouse_loader.core.model import Warehouse
from warehouse_loader.core.redact import DUCKDB_SECRETS_REGEX
from warehouse_loader.monitoring.stats import Stats
from warehouse_loader.storage.location import get_location_folder
from warehouse_loader.storage.minio import LOAD_FILE_SUFFIX, download_folder, download_object, get_minio_client
from .dialect import DuckDBDialect
from .errors import ERROR_MAPPINGS, is_already_exists

logger = logging.getLogger(__name__)

DUCKDB = 'DUCKDB'

# Destination config keys
PATH = 'path'
IN_MEMORY = ':memory:'


def duckdb_execute(conn, statement: str, params, timeout: Optional[float]):
    timer = None
    if timeout:
        timer = threading.Timer(timeout, conn.interrupt)
        timer.daemon = True
        timer.start()
    try:
        if params is None:
            return conn.execute(statement)
        return conn.execute(statement, params)
    finally:
        if timer is not None:
            timer.cancel()


def is_local(location: str) -> bool:
    scheme = urlparse(location).scheme
    return scheme in ('', 'file')


def local_path(location: str) -> str:
    if location.startswith('file://'):
        return urlparse(location).path
    return location


@register(DUCKDB)
class DuckDBDriver(DestinationDriver):
    def __init__(
        self,
        config: Optional[Mapping[str, Any]] = None,
        stats: Optional[Stats] = None,
        connection: Optional[duckdb.DuckDBPyConnection] = None,
        minio_client=None,
    ):
        super().__init__(config if config is not None else DUCKDB_CONFIG, stats)
        self._root = connection
        self._owns_root = connection is None
        self._root_lock = threading.Lock()
        self._minio_client = minio_client

    def new_dialect(self) -> DuckDBDialect:
        return DuckDBDialect()

    def error_mappings(self) -> Sequence[JobError]:
        return ERROR_MAPPINGS

    def is_already_exists(self, err: BaseException) -> bool:
        return is_already_exists(err)

    def root_connection(self, warehouse: Warehouse) -> duckdb.DuckDBPyConnection:
        with self._root_lock:
            if self._root is None:
                path = warehouse.config_value(PATH, IN_MEMORY)
                if path != IN_MEMORY:
                    os.makedirs(os.path.dirname(os.path.abspath(path)), exist_ok=True)
                try:
                    self._root = duckdb.connect(path)
                except duckdb.Error as e:
                    raise WarehouseError(f"duckdb connect error: {e}") from e
                logger.info(f"Opened DuckDB database {path}")
            return self._root

    def open_connection(self, ctx: Context, warehouse: Warehouse, scoped: bool = False) -> DB:
        ctx.check()
        conn = self.root_connection(warehouse).cursor()
        return DB(
            conn,
            execute_fn=duckdb_execute,
            secrets_regex=DUCKDB_SECRETS_REGEX,
            slow_query_threshold=float(self.config.get('slow_query_threshold', 60)),
            query_timeout=float(self.config.get('query_timeout', 0) or 0),
            log_fields=warehouse_fields(warehouse),
        )

    def cleanup(self, ctx: Optional[Context] = None) -> None:
        super().cleanup(ctx)
        with self._root_lock:
            if self._owns_root and self._root is not None:
                self._root.close()
                self._root = None

    def _minio(self):
        if self._minio_client is None:
            self._minio_client = get_minio_client()
        return self._minio_client

    def copy_into(
        self, ctx: Context, db: DB, table_ref: str, columns: Sequence[str], location: str, folder: bool = True
    ) -> None:
        download_dir = None
        try:
            if is_local(location):
                path = local_path(location)
                folder_path = get_location_folder(path)
            else:
                base_dir = self.config.get('download_dir') or tempfile.gettempdir()
                os.makedirs(base_dir, exist_ok=True)
                download_dir = tempfile.mkdtemp(prefix='load_files_', dir=base_dir)
                try:
                    if folder:
                        path = folder_path = download_folder(location, download_dir, self._minio())
                    else:
                        path = download_object(location, download_dir, self._minio())
                except (MinioException, HTTPError, OSError) as e:
                    raise WarehouseError(f"downloading load files: {e}") from e

            if folder:
                path_glob = os.path.join(folder_path, f"*{LOAD_FILE_SUFFIX}")
                if not glob.glob(path_glob):
                    raise WarehouseError(f"No files found that match the pattern \"{path_glob}\"")
            else:
                path_glob = path

            statement = self.dialect.copy_into(table_ref, columns, path_glob)
            logger.info(f"Running COPY command {format_fields(self._fields, query=db.redact(statement))}")
            db.execute(ctx, statement)
        finally:
            if download_dir is not None:
                shutil.rmtree(download_dir, ignore_errors=True)
