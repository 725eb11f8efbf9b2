"""
Snowflake destination.

Load files are ingested with COPY INTO straight from object storage, either
through a storage integration or with temporary AWS credentials, and merged
with a single MERGE statement.
"""

import logging
import math
from typing import Any, Mapping, Optional, Sequence

import snowflake.connector
from botocore.exceptions import BotoCoreError, ClientError

from warehouse_loader.config import SNOWFLAKE_CONFIG
from warehouse_loader.core.context import Context
from warehouse_loader.core.db import DB
from warehouse_loader.core.driver import DestinationDriver, register
from warehouse_loader.core.errors import JobError, WarehouseError
from warehouse_loader.core.logfield import format_fields, warehouse_fields
from warehouse_loader.core.model import Warehouse
from warehouse_loader.core.redact import AWS_SECRETS_REGEX
from warehouse_loader.core.uploader import Uploader
from warehouse_loader.monitoring.stats import Stats
from warehouse_loader.storage.credentials import CredentialProvider, StsCredentialProvider
from warehouse_loader.storage.location import (
    AWS, cloud_provider, get_object_folder, get_object_location, object_storage_type
)
from .dialect import SnowflakeDialect
from .errors import ERROR_MAPPINGS, is_already_exists

logger = logging.getLogger(__name__)

SNOWFLAKE = 'SNOWFLAKE'
APPLICATION = 'Rudderstack_Warehouse'

# Destination config keys
STORAGE_INTEGRATION = 'storageIntegration'
ACCOUNT = 'account'
WAREHOUSE = 'warehouse'
DATABASE = 'database'
USER = 'user'
ROLE = 'role'
PASSWORD = 'password'
USE_RUDDER_STORAGE = 'useRudderStorage'


def snowflake_execute(conn, statement: str, params, timeout: Optional[float]):
    cursor = conn.cursor()
    kwargs = {}
    if timeout:
        kwargs['timeout'] = max(1, math.ceil(timeout))
    cursor.execute(statement, params, **kwargs)
    return cursor


@register(SNOWFLAKE)
class SnowflakeDriver(DestinationDriver):
    def __init__(
        self,
        config: Optional[Mapping[str, Any]] = None,
        stats: Optional[Stats] = None,
        credential_provider: Optional[CredentialProvider] = None,
        connector=None,
    ):
        super().__init__(config if config is not None else SNOWFLAKE_CONFIG, stats)
        self.credential_provider = credential_provider or StsCredentialProvider()
        self._connector = connector or snowflake.connector.connect
        self.cloud_provider = AWS
        self.object_storage = ''

    def new_dialect(self) -> SnowflakeDialect:
        return SnowflakeDialect()

    def error_mappings(self) -> Sequence[JobError]:
        return ERROR_MAPPINGS

    def is_already_exists(self, err: BaseException) -> bool:
        return is_already_exists(err)

    def setup(self, ctx: Context, warehouse: Warehouse, uploader: Uploader) -> None:
        self.cloud_provider = cloud_provider(warehouse.destination.config)
        self.object_storage = object_storage_type(warehouse.destination.config, uploader.use_rudder_storage())
        super().setup(ctx, warehouse, uploader)

    def connect(self, ctx: Context, warehouse: Warehouse) -> DB:
        self.cloud_provider = cloud_provider(warehouse.destination.config)
        self.object_storage = object_storage_type(
            warehouse.destination.config, warehouse.config_bool(USE_RUDDER_STORAGE)
        )
        return super().connect(ctx, warehouse)

    def open_connection(self, ctx: Context, warehouse: Warehouse, scoped: bool = False) -> DB:
        ctx.check()
        params = {
            'account': warehouse.config_value(ACCOUNT),
            'user': warehouse.config_value(USER),
            'password': warehouse.config_value(PASSWORD),
            'role': warehouse.config_value(ROLE),
            'database': warehouse.config_value(DATABASE),
            'warehouse': warehouse.config_value(WAREHOUSE),
            'application': APPLICATION,
        }
        if scoped:
            params['schema'] = warehouse.namespace
        if self.connect_timeout > 0:
            params['login_timeout'] = self.connect_timeout

        try:
            conn = self._connector(**params)
        except snowflake.connector.errors.Error as e:
            raise WarehouseError(f"snowflake connect error: {e}") from e

        db = DB(
            conn,
            execute_fn=snowflake_execute,
            secrets_regex=AWS_SECRETS_REGEX,
            slow_query_threshold=float(self.config.get('slow_query_threshold', 300)),
            query_timeout=float(self.config.get('query_timeout', 0) or 0),
            log_fields=warehouse_fields(warehouse),
        )
        try:
            db.execute(ctx, "ALTER SESSION SET ABORT_DETACHED_QUERY=TRUE")
        except WarehouseError as e:
            db.close()
            raise WarehouseError(f"snowflake alter session error: {e}") from e
        return db

    def auth_string(self) -> str:
        if self.warehouse.config_bool(USE_RUDDER_STORAGE) or (
            self.cloud_provider == AWS and not self.warehouse.config_value(STORAGE_INTEGRATION)
        ):
            try:
                creds = self.credential_provider(self.warehouse.destination)
            except (BotoCoreError, ClientError) as e:
                raise WarehouseError(f"fetching temporary credentials: {e}") from e
            return (
                f"CREDENTIALS = (AWS_KEY_ID='{creds.access_key_id}' "
                f"AWS_SECRET_KEY='{creds.secret_access_key}' AWS_TOKEN='{creds.session_token}')"
            )
        return f"STORAGE_INTEGRATION = {self.warehouse.config_value(STORAGE_INTEGRATION)}"

    def copy_into(
        self, ctx: Context, db: DB, table_ref: str, columns: Sequence[str], location: str, folder: bool = True
    ) -> None:
        if folder:
            source = get_object_folder(self.object_storage, location)
        else:
            source = get_object_location(self.object_storage, location)
        statement = self.dialect.copy_into(table_ref, columns, source, self.auth_string())
        logger.info(f"Running COPY command {format_fields(self._fields, query=db.redact(statement))}")
        db.execute(ctx, statement)
