"""
Runtime configuration.
"""
from .settings import RuntimeSettings, get_table_name, TABLE_NAME_ENV_VARS

__all__ = [
    'RuntimeSettings',
    'get_table_name',
    'TABLE_NAME_ENV_VARS',
]
