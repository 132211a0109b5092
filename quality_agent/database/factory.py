"""
Database factory for creating appropriate database adapters
"""

from typing import List

from ..config import ConnectionDescriptor
from .adapters import DatabaseAdapter, MySQLAdapter, PostgreSQLAdapter, SQLiteAdapter


class DatabaseFactory:
    """Factory class to create appropriate database connector"""

    @staticmethod
    def create_connector(descriptor: ConnectionDescriptor, pool_size: int = 5,
                         connect_timeout: int = 10) -> DatabaseAdapter:
        """Create database adapter based on type"""
        db_type = descriptor.db_type.lower()
        if db_type in ['postgresql', 'postgres']:
            return PostgreSQLAdapter(descriptor, pool_size=pool_size, connect_timeout=connect_timeout)
        elif db_type == 'mysql':
            return MySQLAdapter(descriptor, pool_size=pool_size, connect_timeout=connect_timeout)
        elif db_type == 'sqlite':
            return SQLiteAdapter(descriptor, pool_size=pool_size, connect_timeout=connect_timeout)
        else:
            raise ValueError(f"Unsupported database type: {descriptor.db_type}")

    @staticmethod
    def get_supported_types() -> List[str]:
        """Get list of supported database types"""
        return ['postgresql', 'mysql', 'sqlite']
