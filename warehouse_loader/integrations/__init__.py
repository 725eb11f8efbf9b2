"""Warehouse backends. Importing this package registers every driver."""
from typing import Any, Mapping, Optional

from warehouse_loader.core.driver import DestinationDriver, driver_class, registered_types
from warehouse_loader.monitoring.stats import Stats
from .duckdb import DuckDBDriver
from .snowflake import SnowflakeDriver


def new_driver(destination_type: str, config: Optional[Mapping[str, Any]] = None,
               stats: Optional[Stats] = None, **kwargs) -> DestinationDriver:
    """Driver for destination_type. config defaults to the backend's env config."""
    return driver_class(destination_type)(config, stats, **kwargs)


__all__ = [
    'DuckDBDriver',
    'SnowflakeDriver',
    'new_driver',
    'registered_types',
]
