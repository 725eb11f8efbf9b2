"""DuckDB destination"""
from .duckdb import DUCKDB, DuckDBDriver

__all__ = ['DUCKDB', 'DuckDBDriver']
