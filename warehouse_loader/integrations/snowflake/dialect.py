"""Snowflake identifiers and types."""

from types import MappingProxyType

from warehouse_loader.core import model
from warehouse_loader.core.sql import Dialect
from warehouse_loader.core.types import TypeMapper

DATA_TYPES = MappingProxyType({
    model.BOOLEAN: 'boolean',
    model.INT: 'number',
    model.BIGINT: 'number',
    model.FLOAT: 'double precision',
    model.STRING: 'varchar',
    model.TEXT: 'varchar',
    model.DATETIME: 'timestamp_tz',
    model.JSON: 'variant',
})

DATA_TYPES_REVERSE = MappingProxyType({
    'NUMBER': model.INT,
    'DECIMAL': model.INT,
    'NUMERIC': model.INT,
    'INT': model.INT,
    'INTEGER': model.INT,
    'BIGINT': model.INT,
    'SMALLINT': model.INT,
    'FLOAT': model.FLOAT,
    'FLOAT4': model.FLOAT,
    'FLOAT8': model.FLOAT,
    'DOUBLE': model.FLOAT,
    'REAL': model.FLOAT,
    'DOUBLE PRECISION': model.FLOAT,
    'BOOLEAN': model.BOOLEAN,
    'TEXT': model.STRING,
    'VARCHAR': model.STRING,
    'CHAR': model.STRING,
    'CHARACTER': model.STRING,
    'STRING': model.STRING,
    'BINARY': model.STRING,
    'VARBINARY': model.STRING,
    'TIMESTAMP_NTZ': model.DATETIME,
    'DATE': model.DATETIME,
    'DATETIME': model.DATETIME,
    'TIME': model.DATETIME,
    'TIMESTAMP': model.DATETIME,
    'TIMESTAMP_LTZ': model.DATETIME,
    'TIMESTAMP_TZ': model.DATETIME,
    'VARIANT': model.JSON,
})

TYPE_MAPPER = TypeMapper(DATA_TYPES, DATA_TYPES_REVERSE)

COPY_PATTERN = r".*\.csv\.gz"


class SnowflakeDialect(Dialect):
    name = 'snowflake'
    table_name_limit = 127

    def __init__(self):
        super().__init__(TYPE_MAPPER)

    def to_provider_case(self, name: str) -> str:
        return name.upper()

    def copy_into(self, table_ref: str, columns, location: str, auth: str) -> str:
        return (
            f"COPY INTO {table_ref}({self.column_list(sorted(columns))}) FROM '{location}' {auth} "
            f"PATTERN = '{COPY_PATTERN}' "
            "FILE_FORMAT = ( TYPE = csv FIELD_OPTIONALLY_ENCLOSED_BY = '\"' ESCAPE_UNENCLOSED_FIELD = NONE) "
            "TRUNCATECOLUMNS = TRUE;"
        )
