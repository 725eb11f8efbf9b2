"""Per-backend mapping between abstract column types and SQL types."""

from types import MappingProxyType
from typing import Mapping, Optional, Tuple

from .model import FLOAT, INT


class TypeMapper:
    """
    Immutable lookup table. `to_warehouse` renders an abstract type for DDL,
    `map` turns a raw catalog type (plus numeric scale) back into an abstract
    type.
    """

    def __init__(self, to_warehouse: Mapping[str, str], from_warehouse: Mapping[str, str]):
        self._to_warehouse = MappingProxyType(dict(to_warehouse))
        self._from_warehouse = MappingProxyType({k.upper(): v for k, v in from_warehouse.items()})

    def to_warehouse(self, abstract_type: str) -> str:
        try:
            return self._to_warehouse[abstract_type]
        except KeyError:
            raise ValueError(f"unsupported column type: {abstract_type}")

    def map(self, raw_type: str, numeric_scale: Optional[int] = None) -> Tuple[str, bool]:
        key = (raw_type or '').strip().upper()
        datatype = self._from_warehouse.get(key)
        if datatype is None and '(' in key:
            # DECIMAL(18,3) -> DECIMAL
            datatype = self._from_warehouse.get(key.split('(', 1)[0].strip())
        if datatype is None:
            return '', False
        if datatype == INT and numeric_scale is not None and numeric_scale > 0:
            datatype = FLOAT
        return datatype, True
