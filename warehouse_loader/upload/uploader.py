"""In-memory Uploader backed by an upload's manifest."""

from dataclasses import dataclass, field
from typing import Dict, List

from warehouse_loader.core.errors import WarehouseError
from warehouse_loader.core.model import LoadFile, Schema, TableSchema


@dataclass
class ManifestUploader:
    """
    Everything a driver asks about one upload, resolved up front: the upload
    and warehouse schemas and the load files written per table.
    """
    schema_in_upload: Schema = field(default_factory=dict)
    schema_in_warehouse: Schema = field(default_factory=dict)
    load_files: Dict[str, List[LoadFile]] = field(default_factory=dict)
    use_new_record: bool = True
    rudder_storage: bool = False

    def get_table_schema_in_upload(self, table_name: str) -> TableSchema:
        return dict(self.schema_in_upload.get(table_name) or {})

    def get_table_schema_in_warehouse(self, table_name: str) -> TableSchema:
        return dict(self.schema_in_warehouse.get(table_name) or {})

    def get_load_files(self, table_name: str) -> List[LoadFile]:
        return list(self.load_files.get(table_name) or [])

    def get_single_load_file(self, table_name: str) -> LoadFile:
        files = self.get_load_files(table_name)
        if not files:
            raise WarehouseError(f"no load file for table {table_name}")
        return files[0]

    def get_sample_load_file_location(self, table_name: str) -> str:
        return self.get_single_load_file(table_name).location

    def should_on_dedup_use_new_record(self) -> bool:
        return self.use_new_record

    def use_rudder_storage(self) -> bool:
        return self.rudder_storage
