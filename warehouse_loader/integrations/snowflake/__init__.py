"""Snowflake destination"""
from .snowflake import SNOWFLAKE, SnowflakeDriver

__all__ = ['SNOWFLAKE', 'SnowflakeDriver']
