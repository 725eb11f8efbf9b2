"""
DuckDB statements.

DuckDB has no MERGE with per-action counts, so the dedup merge is rendered
as an UPDATE ... FROM followed by an INSERT ... WHERE NOT EXISTS, both
against the same ranked staging rows and run in one transaction. Temporary
tables live in the connection's temp catalog and are referenced unqualified.
"""

from types import MappingProxyType
from typing import Dict, List, Sequence

from warehouse_loader.core import model
from warehouse_loader.core.sql import Dialect, MergePlan, MergeStatement
from warehouse_loader.core.types import TypeMapper

DATA_TYPES = MappingProxyType({
    model.BOOLEAN: 'BOOLEAN',
    model.INT: 'BIGINT',
    model.BIGINT: 'BIGINT',
    model.FLOAT: 'DOUBLE',
    model.STRING: 'VARCHAR',
    model.TEXT: 'VARCHAR',
    model.DATETIME: 'TIMESTAMP',
    model.JSON: 'JSON',
})

DATA_TYPES_REVERSE = MappingProxyType({
    'TINYINT': model.INT,
    'SMALLINT': model.INT,
    'INTEGER': model.INT,
    'INT': model.INT,
    'BIGINT': model.INT,
    'HUGEINT': model.INT,
    'UTINYINT': model.INT,
    'USMALLINT': model.INT,
    'UINTEGER': model.INT,
    'UBIGINT': model.INT,
    'DECIMAL': model.INT,
    'NUMERIC': model.INT,
    'FLOAT': model.FLOAT,
    'REAL': model.FLOAT,
    'DOUBLE': model.FLOAT,
    'BOOLEAN': model.BOOLEAN,
    'VARCHAR': model.STRING,
    'TEXT': model.STRING,
    'STRING': model.STRING,
    'BLOB': model.STRING,
    'UUID': model.STRING,
    'DATE': model.DATETIME,
    'TIME': model.DATETIME,
    'TIMESTAMP': model.DATETIME,
    'TIMESTAMP_S': model.DATETIME,
    'TIMESTAMP_MS': model.DATETIME,
    'TIMESTAMP_NS': model.DATETIME,
    'TIMESTAMP WITH TIME ZONE': model.DATETIME,
    'JSON': model.JSON,
})

TYPE_MAPPER = TypeMapper(DATA_TYPES, DATA_TYPES_REVERSE)


class DuckDBDialect(Dialect):
    name = 'duckdb'
    table_name_limit = 63
    placeholder = '?'

    def __init__(self):
        super().__init__(TYPE_MAPPER)

    def to_provider_case(self, name: str) -> str:
        return name.lower()

    def staging_ref(self, namespace: str, staging_table: str) -> str:
        return self.quote(staging_table)

    # --- catalog ----------------------------------------------------------------
    def schema_exists(self) -> str:
        return (
            "SELECT EXISTS ( SELECT 1 FROM information_schema.schemata "
            "WHERE schema_name = ? AND catalog_name = current_database() )"
        )

    def table_exists(self) -> str:
        return (
            "SELECT EXISTS ( SELECT 1 FROM information_schema.tables "
            "WHERE table_schema = ? AND table_name = ? AND table_catalog = current_database() )"
        )

    def column_exists(self) -> str:
        return (
            "SELECT EXISTS ( SELECT 1 FROM information_schema.columns "
            "WHERE table_schema = ? AND table_name = ? AND column_name = ? "
            "AND table_catalog = current_database() )"
        )

    def fetch_schema(self) -> str:
        return """
            SELECT
                table_name,
                column_name,
                data_type,
                numeric_scale
            FROM
                information_schema.columns
            WHERE
                table_schema = ?
                AND table_catalog = current_database()
        """

    def add_columns(self, namespace: str, table: str, columns: Sequence) -> List[str]:
        # one column per ALTER
        return [
            f"ALTER TABLE {self.table_ref(namespace, table)} ADD COLUMN {self.quote(c.name)} {self.types.to_warehouse(c.type)}"
            for c in columns
        ]

    # --- staging ----------------------------------------------------------------
    def create_staging_like(self, staging_ref: str, target_ref: str) -> str:
        return f"CREATE TEMPORARY TABLE {staging_ref} AS SELECT * FROM {target_ref} LIMIT 0"

    def create_temp_as(self, staging_ref: str, select_sql: str) -> str:
        return f"CREATE TEMPORARY TABLE {staging_ref} AS {select_sql}"

    def add_surrogate_key(self, staging_ref: str, column: str) -> List[str]:
        return [f"ALTER TABLE {staging_ref} ADD COLUMN {self.quote(column)} BIGINT"]

    def fill_surrogate_key(self, staging_ref: str, column: str) -> List[str]:
        # rowid follows insertion order, i.e. file order
        return [f"UPDATE {staging_ref} SET {self.quote(column)} = rowid + 1"]

    def read_csv(self, path_glob: str, columns: Sequence[str]) -> str:
        types: Dict[str, str] = {c: 'VARCHAR' for c in columns}
        struct = ', '.join(f"{self.literal(name)}: {self.literal(t)}" for name, t in types.items())
        return f"read_csv({self.literal(path_glob)}, header = false, delim = ',', quote = '\"', columns = {{{struct}}})"

    def copy_into(self, table_ref: str, columns: Sequence[str], path_glob: str) -> str:
        columns = sorted(columns)
        column_list = self.column_list(columns)
        return f"INSERT INTO {table_ref} ({column_list}) SELECT {column_list} FROM {self.read_csv(path_glob, columns)}"

    # --- merge ------------------------------------------------------------------
    def merge_statements(self, plan: MergePlan) -> List[MergeStatement]:
        update = f"""
            UPDATE {plan.target} AS original
            SET {self.update_assignments(plan, qualify_target=False)}
            FROM (
              {self.ranked_staging(plan)}
            ) AS staging
            WHERE {self.match_condition(plan)}
        """
        insert = f"""
            INSERT INTO {plan.target} ({self.column_list(plan.columns)})
            SELECT {self.column_list(plan.columns, 'staging')}
            FROM (
              {self.ranked_staging(plan)}
            ) AS staging
            WHERE NOT EXISTS (
              SELECT 1 FROM {plan.target} AS original WHERE {self.match_condition(plan)}
            )
        """
        return [MergeStatement(update, ('updated',)), MergeStatement(insert, ('inserted',))]
