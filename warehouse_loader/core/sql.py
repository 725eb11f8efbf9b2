"""
Statement builders.

A Dialect owns identifier quoting and every statement shape the engine
issues, so that no other module concatenates SQL by hand. The base class
renders ANSI MERGE statements; backends without MERGE override the merge
builders.
"""

from dataclasses import dataclass, field
from typing import List, Optional, Sequence, Tuple

from .model import STAGING_TABLE_PREFIX, TableSchema
from .types import TypeMapper

STAGING_ROW_NUMBER = '_rudder_staging_row_number'


@dataclass(frozen=True)
class MergePlan:
    """Everything needed to merge a staging table into its target."""
    target: str  # rendered reference
    staging: str  # rendered reference
    columns: Tuple[str, ...]  # sorted, unquoted
    match_keys: Tuple[str, ...]
    partition_key: Tuple[str, ...] = ()
    order_by: Optional[str] = None
    keep_latest: bool = True
    rank: bool = True
    # None means every column
    update_columns: Optional[Tuple[str, ...]] = None


@dataclass(frozen=True)
class MergeStatement:
    """A statement whose single result row holds the named counts."""
    sql: str
    counts: Tuple[str, ...] = field(default_factory=tuple)


class Dialect:
    name = 'ansi'
    table_name_limit = 127
    placeholder = '%s'

    def __init__(self, type_mapper: TypeMapper):
        self.types = type_mapper

    # --- naming -----------------------------------------------------------------
    def to_provider_case(self, name: str) -> str:
        return name

    def quote(self, identifier: str) -> str:
        return '"' + identifier.replace('"', '""') + '"'

    def literal(self, value: str) -> str:
        return "'" + str(value).replace("'", "''") + "'"

    def table_ref(self, namespace: str, table: str) -> str:
        return f"{self.quote(namespace)}.{self.quote(table)}"

    def staging_ref(self, namespace: str, staging_table: str) -> str:
        return self.table_ref(namespace, staging_table)

    def staging_table_name(self, table: str) -> str:
        name = self.to_provider_case(STAGING_TABLE_PREFIX) + table
        return name[:self.table_name_limit]

    def column_list(self, columns: Sequence[str], prefix: str = '') -> str:
        prefix = f"{prefix}." if prefix else ''
        return ','.join(f"{prefix}{self.quote(c)}" for c in columns)

    def columns_with_types(self, schema: TableSchema) -> str:
        return ','.join(
            f"{self.quote(name)} {self.types.to_warehouse(schema[name])}" for name in sorted(schema)
        )

    # --- schema -----------------------------------------------------------------
    def schema_exists(self) -> str:
        return f"SELECT EXISTS ( SELECT 1 FROM INFORMATION_SCHEMA.SCHEMATA WHERE SCHEMA_NAME = {self.placeholder} )"

    def create_schema(self, namespace: str) -> str:
        return f"CREATE SCHEMA IF NOT EXISTS {self.quote(namespace)}"

    def table_exists(self) -> str:
        return (
            "SELECT EXISTS ( SELECT 1 FROM information_schema.tables "
            f"WHERE table_schema = {self.placeholder} AND table_name = {self.placeholder} )"
        )

    def column_exists(self) -> str:
        return (
            "SELECT EXISTS ( SELECT 1 FROM information_schema.columns "
            f"WHERE table_schema = {self.placeholder} AND table_name = {self.placeholder} "
            f"AND column_name = {self.placeholder} )"
        )

    def fetch_schema(self) -> str:
        return f"""
            SELECT
                table_name,
                column_name,
                data_type,
                numeric_scale
            FROM
                INFORMATION_SCHEMA.COLUMNS
            WHERE
                table_schema = {self.placeholder}
        """

    def create_table(self, namespace: str, table: str, schema: TableSchema) -> str:
        return f"CREATE TABLE IF NOT EXISTS {self.table_ref(namespace, table)} ( {self.columns_with_types(schema)} )"

    def add_columns(self, namespace: str, table: str, columns: Sequence) -> List[str]:
        definitions = ','.join(
            f" {self.quote(c.name)} {self.types.to_warehouse(c.type)}" for c in columns
        )
        return [f"ALTER TABLE {self.table_ref(namespace, table)} ADD COLUMN{definitions};"]

    def drop_table(self, namespace: str, table: str) -> str:
        return f"DROP TABLE {self.table_ref(namespace, table)}"

    def drop_temp_table(self, staging_ref: str) -> str:
        return f"DROP TABLE IF EXISTS {staging_ref}"

    def count(self, table_ref: str) -> str:
        return f"SELECT count(*) FROM {table_ref}"

    # --- staging ----------------------------------------------------------------
    def create_staging_like(self, staging_ref: str, target_ref: str) -> str:
        return f"CREATE TEMPORARY TABLE {staging_ref} LIKE {target_ref}"

    def create_temp_as(self, staging_ref: str, select_sql: str) -> str:
        return f"CREATE TEMPORARY TABLE {staging_ref} AS ( {select_sql} )"

    def add_surrogate_key(self, staging_ref: str, column: str) -> List[str]:
        """Statements run before the bulk copy."""
        return [f"ALTER TABLE {staging_ref} ADD COLUMN {self.quote(column)} int AUTOINCREMENT start 1 increment 1"]

    def fill_surrogate_key(self, staging_ref: str, column: str) -> List[str]:
        """Statements run after the bulk copy."""
        return []

    # --- merge ------------------------------------------------------------------
    def ranked_staging(self, plan: MergePlan) -> str:
        if not plan.rank:
            return f"SELECT {self.column_list(plan.columns)} FROM {plan.staging}"
        return f"""
              SELECT
                *
              FROM
                (
                  SELECT
                    *,
                    row_number() OVER (
                      PARTITION BY {self.column_list(plan.partition_key)}
                      ORDER BY
                        {self.quote(plan.order_by)} DESC
                    ) AS {STAGING_ROW_NUMBER}
                  FROM
                    {plan.staging}
                ) AS q
              WHERE
                {STAGING_ROW_NUMBER} = 1"""

    def match_condition(self, plan: MergePlan) -> str:
        return ' AND '.join(f"original.{self.quote(k)} = staging.{self.quote(k)}" for k in plan.match_keys)

    def update_assignments(self, plan: MergePlan, qualify_target: bool = True) -> str:
        target = 'original.' if qualify_target else ''
        if plan.keep_latest:
            columns = plan.update_columns if plan.update_columns is not None else plan.columns
            return ','.join(f"{target}{self.quote(c)} = staging.{self.quote(c)}" for c in columns)
        # Self assignment keeps target values while the merge still reports matched rows.
        # TODO: drop it once dedup_rows consumers accept a zero count for keep-first loads.
        first = self.quote(plan.columns[0])
        return f"{target}{first} = original.{first}"

    def merge_statements(self, plan: MergePlan) -> List[MergeStatement]:
        sql = f"""
            MERGE INTO {plan.target} AS original USING (
              {self.ranked_staging(plan)}
            ) AS staging ON (
              {self.match_condition(plan)}
            )
            WHEN NOT MATCHED THEN
              INSERT ({self.column_list(plan.columns)}) VALUES ({self.column_list(plan.columns, 'staging')})
            WHEN MATCHED THEN
              UPDATE SET {self.update_assignments(plan)};
        """
        return [MergeStatement(sql, ('inserted', 'updated'))]

    # --- users ------------------------------------------------------------------
    def users_staging_select(
        self,
        users_ref: str,
        identifies_staging_ref: str,
        id_column: str,
        user_id_column: str,
        received_at_column: str,
        user_columns: Sequence[str],
        identify_columns: Sequence[str],
    ) -> str:
        """
        Latest known value per attribute: union existing users touched by this
        batch with the batch's identifies, then take the first non-null value
        per column ordered by arrival.
        """
        quoted_id = self.quote(id_column)
        quoted_user_id = self.quote(user_id_column)
        first_values = ','.join(
            f"""
                FIRST_VALUE({self.quote(c)} IGNORE NULLS) OVER (
                  PARTITION BY {quoted_id}
                  ORDER BY
                    {self.quote(received_at_column)} DESC ROWS BETWEEN UNBOUNDED PRECEDING
                    AND UNBOUNDED FOLLOWING
                ) AS {self.quote(c)}"""
            for c in user_columns
        )
        identify_values = ','.join(
            self.quote(c) if c in identify_columns else f"NULL AS {self.quote(c)}" for c in user_columns
        )
        return f"""
          SELECT
            DISTINCT *
          FROM
            (
              SELECT
                {quoted_id},
                {first_values}
              FROM
                (
                  (
                    SELECT
                      {quoted_id},
                      {self.column_list(user_columns)}
                    FROM
                      {users_ref}
                    WHERE
                      {quoted_id} in (
                        SELECT
                          {quoted_user_id}
                        FROM
                          {identifies_staging_ref}
                        WHERE
                          {quoted_user_id} IS NOT NULL
                      )
                  )
                  UNION
                    (
                      SELECT
                        {quoted_user_id},
                        {identify_values}
                      FROM
                        {identifies_staging_ref}
                      WHERE
                        {quoted_user_id} IS NOT NULL
                    )
                ) AS unioned
            ) AS merged
        """

    # --- maintenance ------------------------------------------------------------
    def delete_by(self, table_ref: str) -> str:
        def c(name: str) -> str:
            return self.quote(self.to_provider_case(name))

        p = self.placeholder
        return f"""
            DELETE FROM
                {table_ref}
            WHERE
                {c('context_sources_job_run_id')} <> {p} AND
                {c('context_sources_task_run_id')} <> {p} AND
                {c('context_source_id')} = {p} AND
                {c('received_at')} < {p}
        """

    def distinct_identities(self, table_ref: str, fields: str, limit: int, offset: int) -> str:
        return f"SELECT DISTINCT {fields} FROM {table_ref} LIMIT {int(limit)} OFFSET {int(offset)}"
