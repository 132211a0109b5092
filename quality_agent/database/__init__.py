"""
Database adapters, factory and schema models
"""

from .adapters import DatabaseAdapter, MySQLAdapter, PostgreSQLAdapter, SQLiteAdapter
from .factory import DatabaseFactory
from .models import (
    ColumnInfo,
    DeclaredRelation,
    ImplicitRelation,
    QueryResult,
    RankedRelation,
    SchemaModel,
    TableInfo,
)

__all__ = [
    'DatabaseAdapter',
    'PostgreSQLAdapter',
    'MySQLAdapter',
    'SQLiteAdapter',
    'DatabaseFactory',
    'ColumnInfo',
    'DeclaredRelation',
    'ImplicitRelation',
    'QueryResult',
    'RankedRelation',
    'SchemaModel',
    'TableInfo',
]
