"""Read-only view of the upload that is being loaded."""

from typing import Protocol

from .model import LoadFile, TableSchema


class Uploader(Protocol):
    def get_table_schema_in_upload(self, table_name: str) -> TableSchema: ...

    def get_table_schema_in_warehouse(self, table_name: str) -> TableSchema: ...

    def get_single_load_file(self, table_name: str) -> LoadFile: ...

    def get_sample_load_file_location(self, table_name: str) -> str: ...

    def should_on_dedup_use_new_record(self) -> bool: ...

    def use_rudder_storage(self) -> bool: ...
