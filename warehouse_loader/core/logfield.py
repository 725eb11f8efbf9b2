"""
Structured fields in driver log lines.

Every line carries the warehouse fields below; per call fields such as
tableName, stagingTableName, query and error are passed as keywords.
"""

from typing import Dict

from .model import Warehouse

SOURCE_ID = 'sourceID'
SOURCE_TYPE = 'sourceType'
DESTINATION_ID = 'destinationID'
DESTINATION_TYPE = 'destinationType'
WORKSPACE_ID = 'workspaceID'
NAMESPACE = 'namespace'


def warehouse_fields(warehouse: Warehouse) -> Dict[str, str]:
    return {
        SOURCE_ID: warehouse.source.id,
        SOURCE_TYPE: warehouse.source.source_type,
        DESTINATION_ID: warehouse.destination.id,
        DESTINATION_TYPE: warehouse.destination.destination_type,
        WORKSPACE_ID: warehouse.workspace_id,
        NAMESPACE: warehouse.namespace,
    }


def format_fields(fields: Dict[str, str], **extra) -> str:
    merged = dict(fields)
    merged.update({k: v for k, v in extra.items() if v is not None})
    return ' '.join(f"{k}={v}" for k, v in merged.items())
