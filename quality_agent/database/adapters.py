"""
Database adapters for different database types
"""

import threading
import time
from abc import ABC, abstractmethod
from contextlib import contextmanager
from typing import Dict, Iterator, List, Optional, Tuple

from sqlalchemy import create_engine, inspect, text
from sqlalchemy.engine import URL, Connection, Engine
from sqlalchemy.exc import DBAPIError, InterfaceError, OperationalError, SQLAlchemyError

from ..config import ConnectionDescriptor
from ..errors import DiscoveryError, ExecutionError
from ..utils.logger import get_logger
from .models import (
    ColumnInfo,
    DeclaredRelation,
    QueryResult,
    TableInfo,
    build_rows,
)

logger = get_logger("DatabaseAdapter")


def classify_error(exc: Exception) -> str:
    """Map a driver error onto a coarse failure reason"""
    message = str(exc).lower()
    if any(token in message for token in ('timeout', 'canceling statement', 'interrupted',
                                          'max_execution_time', 'timed out')):
        return 'timeout'
    if any(token in message for token in ('permission denied', 'access denied',
                                          'insufficient privilege', 'authentication failed')):
        return 'privileges'
    if isinstance(exc, (OperationalError, InterfaceError)):
        return 'unreachable'
    return 'database'


class DatabaseAdapter(ABC):
    """Abstract base class for database adapters"""

    dialect = ''
    random_function = 'RANDOM()'

    def __init__(self, descriptor: ConnectionDescriptor, pool_size: int = 5, connect_timeout: int = 10):
        self.descriptor = descriptor
        self.pool_size = pool_size
        self.connect_timeout = connect_timeout
        self.engine: Optional[Engine] = None
        self._engine_lock = threading.Lock()

    @abstractmethod
    def _build_url(self) -> URL:
        """SQLAlchemy URL for this descriptor"""

    @abstractmethod
    def list_tables(self, timeout_seconds: float) -> List[TableInfo]:
        """Enumerate user tables with their columns"""

    @abstractmethod
    def list_foreign_keys(self, timeout_seconds: float) -> List[DeclaredRelation]:
        """Enumerate declared foreign keys"""

    @abstractmethod
    def _prepare_connection(self, conn: Connection, timeout_seconds: float):
        """Make a fresh connection read-only and bound it by a statement timeout"""

    @property
    def default_schema(self) -> str:
        return self.descriptor.schema or 'public'

    def _engine_options(self) -> Dict:
        return {
            'pool_size': self.pool_size,
            'max_overflow': self.pool_size,
            'pool_pre_ping': True,
            'connect_args': {'connect_timeout': self.connect_timeout},
        }

    def connect(self) -> Engine:
        """Create the engine and verify the database answers"""
        with self._engine_lock:
            if self.engine is not None:
                return self.engine

            try:
                engine = create_engine(self._build_url(), **self._engine_options())
                with engine.connect() as conn:
                    conn.execute(text('SELECT 1'))
            except SQLAlchemyError as e:
                raise DiscoveryError(f"{self.dialect} connection failed: {e}", reason=classify_error(e)) from e

            self.engine = engine
        logger.info(f"✅ Connected to {self.dialect} database {self.descriptor.database}")
        return engine

    def dispose(self):
        if self.engine is not None:
            self.engine.dispose()
            self.engine = None

    @contextmanager
    def read_only_connection(self, timeout_seconds: float) -> Iterator[Connection]:
        """Checkout an independent pooled connection; the transaction is always rolled back"""
        engine = self.connect()
        with engine.connect() as conn:
            try:
                self._prepare_connection(conn, timeout_seconds)
                yield conn
            finally:
                self._release_connection(conn)
                conn.rollback()

    def _release_connection(self, conn: Connection):
        """Undo per-checkout driver state"""

    def analyze_schema(self, timeout_seconds: float) -> Tuple[List[TableInfo], List[DeclaredRelation]]:
        """Tables, columns and declared relations, with driver errors mapped to DiscoveryError"""
        try:
            tables = self.list_tables(timeout_seconds)
            relations = self.list_foreign_keys(timeout_seconds)
        except DBAPIError as e:
            raise DiscoveryError(f"Schema introspection failed: {e.orig}", reason=classify_error(e)) from e
        except SQLAlchemyError as e:
            raise DiscoveryError(f"Schema introspection failed: {e}", reason=classify_error(e)) from e
        return tables, relations

    def execute_read_only(self, sql: str, timeout_seconds: float, max_rows: int = 10000) -> QueryResult:
        """Run one statement on its own connection and return normalized rows"""
        try:
            with self.read_only_connection(timeout_seconds) as conn:
                result = conn.execution_options(no_parameters=True).exec_driver_sql(sql)
                if not result.returns_rows:
                    return QueryResult(columns=(), rows=())
                columns = list(result.keys())
                raw_rows = result.fetchmany(max_rows)
                return QueryResult(columns=tuple(columns), rows=build_rows(columns, raw_rows))
        except DiscoveryError as e:
            raise ExecutionError(str(e), reason=e.reason) from e
        except DBAPIError as e:
            raise ExecutionError(str(e.orig).strip(), reason=classify_error(e)) from e
        except SQLAlchemyError as e:
            raise ExecutionError(str(e), reason=classify_error(e)) from e

    def quote_identifier(self, name: str) -> str:
        return '"' + name.replace('"', '""') + '"'

    def quote_table(self, full_name: str) -> str:
        return '.'.join(self.quote_identifier(part) for part in full_name.split('.', 1))


class PostgreSQLAdapter(DatabaseAdapter):
    """PostgreSQL database adapter backed by information_schema and pg_stats"""

    dialect = 'postgresql'

    TABLES_SQL = """
        SELECT t.table_schema,
               t.table_name,
               t.table_type,
               COALESCE(s.n_live_tup, 0) AS estimated_rows,
               pg_size_pretty(pg_total_relation_size(
                   quote_ident(t.table_schema) || '.' || quote_ident(t.table_name))) AS table_size,
               EXISTS (
                   SELECT 1 FROM information_schema.table_constraints tc
                   WHERE tc.table_schema = t.table_schema
                     AND tc.table_name = t.table_name
                     AND tc.constraint_type = 'PRIMARY KEY'
               ) AS has_primary_key
        FROM information_schema.tables t
        LEFT JOIN pg_stat_user_tables s
               ON s.schemaname = t.table_schema AND s.relname = t.table_name
        WHERE t.table_type = 'BASE TABLE'
          AND t.table_schema NOT IN ('pg_catalog', 'information_schema')
          AND t.table_schema NOT LIKE 'pg_toast%'
          AND t.table_schema NOT LIKE 'pg_temp%'
          AND (CAST(:schema AS text) IS NULL OR t.table_schema = :schema)
        ORDER BY t.table_schema, t.table_name
    """

    COLUMNS_SQL = """
        SELECT c.table_schema,
               c.table_name,
               c.column_name,
               c.data_type,
               c.is_nullable,
               c.column_default,
               c.ordinal_position,
               EXISTS (
                   SELECT 1
                   FROM information_schema.table_constraints tc
                   JOIN information_schema.key_column_usage kcu
                     ON tc.constraint_name = kcu.constraint_name
                    AND tc.table_schema = kcu.table_schema
                    AND tc.table_name = kcu.table_name
                   WHERE tc.constraint_type = 'PRIMARY KEY'
                     AND kcu.table_schema = c.table_schema
                     AND kcu.table_name = c.table_name
                     AND kcu.column_name = c.column_name
               ) AS is_primary_key,
               EXISTS (
                   SELECT 1
                   FROM information_schema.table_constraints tc
                   JOIN information_schema.key_column_usage kcu
                     ON tc.constraint_name = kcu.constraint_name
                    AND tc.table_schema = kcu.table_schema
                    AND tc.table_name = kcu.table_name
                   WHERE tc.constraint_type = 'FOREIGN KEY'
                     AND kcu.table_schema = c.table_schema
                     AND kcu.table_name = c.table_name
                     AND kcu.column_name = c.column_name
               ) AS is_foreign_key,
               COALESCE(s.n_distinct, 0) AS distinct_values,
               COALESCE(s.null_frac, 0) AS null_fraction
        FROM information_schema.columns c
        JOIN information_schema.tables t
          ON t.table_schema = c.table_schema AND t.table_name = c.table_name
        LEFT JOIN pg_stats s
               ON s.schemaname = c.table_schema
              AND s.tablename = c.table_name
              AND s.attname = c.column_name
        WHERE t.table_type = 'BASE TABLE'
          AND c.table_schema NOT IN ('pg_catalog', 'information_schema')
          AND c.table_schema NOT LIKE 'pg_toast%'
          AND c.table_schema NOT LIKE 'pg_temp%'
          AND (CAST(:schema AS text) IS NULL OR c.table_schema = :schema)
        ORDER BY c.table_schema, c.table_name, c.ordinal_position
    """

    FOREIGN_KEYS_SQL = """
        SELECT kcu.table_schema,
               kcu.table_name,
               kcu.column_name,
               rcu.table_schema AS foreign_schema,
               rcu.table_name AS foreign_table,
               rcu.column_name AS foreign_column,
               kcu.constraint_name
        FROM information_schema.referential_constraints rc
        JOIN information_schema.key_column_usage kcu
          ON kcu.constraint_schema = rc.constraint_schema
         AND kcu.constraint_name = rc.constraint_name
        JOIN information_schema.key_column_usage rcu
          ON rcu.constraint_schema = rc.unique_constraint_schema
         AND rcu.constraint_name = rc.unique_constraint_name
         AND rcu.ordinal_position = kcu.position_in_unique_constraint
        WHERE kcu.table_schema NOT IN ('pg_catalog', 'information_schema')
          AND (CAST(:schema AS text) IS NULL OR kcu.table_schema = :schema)
        ORDER BY kcu.table_schema, kcu.table_name, kcu.constraint_name, kcu.ordinal_position
    """

    def _build_url(self) -> URL:
        return URL.create(
            'postgresql+psycopg2',
            username=self.descriptor.user,
            password=self.descriptor.password,
            host=self.descriptor.host,
            port=self.descriptor.port or 5432,
            database=self.descriptor.database,
        )

    def _prepare_connection(self, conn: Connection, timeout_seconds: float):
        conn.exec_driver_sql("SET TRANSACTION READ ONLY")
        conn.exec_driver_sql(f"SET LOCAL statement_timeout = {int(timeout_seconds * 1000)}")

    def list_tables(self, timeout_seconds: float) -> List[TableInfo]:
        params = {'schema': self.descriptor.schema}
        with self.read_only_connection(timeout_seconds) as conn:
            table_rows = conn.execute(text(self.TABLES_SQL), params).mappings().all()
            column_rows = conn.execute(text(self.COLUMNS_SQL), params).mappings().all()

        columns_by_table: Dict[Tuple[str, str], List[ColumnInfo]] = {}
        for row in column_rows:
            columns_by_table.setdefault((row['table_schema'], row['table_name']), []).append(ColumnInfo(
                name=row['column_name'],
                data_type=row['data_type'],
                is_nullable=row['is_nullable'] == 'YES',
                default=row['column_default'],
                is_primary_key=bool(row['is_primary_key']),
                is_foreign_key=bool(row['is_foreign_key']),
                distinct_values=float(row['distinct_values'] or 0),
                null_fraction=float(row['null_fraction'] or 0),
                ordinal_position=int(row['ordinal_position']),
            ))

        tables = []
        for row in table_rows:
            columns = tuple(columns_by_table.get((row['table_schema'], row['table_name']), []))
            tables.append(TableInfo(
                schema_name=row['table_schema'],
                table_name=row['table_name'],
                table_type=row['table_type'],
                column_count=len(columns),
                estimated_row_count=int(row['estimated_rows'] or 0),
                table_size=row['table_size'] or '',
                has_primary_key=bool(row['has_primary_key']),
                columns=columns,
            ))
        return tables

    def list_foreign_keys(self, timeout_seconds: float) -> List[DeclaredRelation]:
        with self.read_only_connection(timeout_seconds) as conn:
            rows = conn.execute(text(self.FOREIGN_KEYS_SQL), {'schema': self.descriptor.schema}).mappings().all()

        return [
            DeclaredRelation(
                source_schema=row['table_schema'],
                source_table=row['table_name'],
                source_column=row['column_name'],
                target_schema=row['foreign_schema'],
                target_table=row['foreign_table'],
                target_column=row['foreign_column'],
                constraint_name=row['constraint_name'],
            )
            for row in rows
        ]


class InspectorAdapter(DatabaseAdapter):
    """Adapter that reads metadata through the SQLAlchemy inspector"""

    def _inspector_schema(self) -> Optional[str]:
        return self.descriptor.schema

    def _estimate_rows(self, conn: Connection, table_name: str) -> int:
        """Exact count; dialects with catalog statistics override this"""
        full_name = f"{self.default_schema}.{table_name}"
        return int(conn.exec_driver_sql(f"SELECT COUNT(*) FROM {self.quote_table(full_name)}").scalar() or 0)

    def list_tables(self, timeout_seconds: float) -> List[TableInfo]:
        schema = self._inspector_schema()
        tables = []

        with self.read_only_connection(timeout_seconds) as conn:
            inspector = inspect(conn)
            for table_name in sorted(inspector.get_table_names(schema=schema)):
                pk_constraint = inspector.get_pk_constraint(table_name, schema=schema) or {}
                primary_keys = set(pk_constraint.get('constrained_columns') or [])
                fk_columns = set()
                for fk in inspector.get_foreign_keys(table_name, schema=schema):
                    fk_columns.update(fk.get('constrained_columns') or [])

                columns = tuple(
                    ColumnInfo(
                        name=col['name'],
                        data_type=str(col['type']),
                        is_nullable=bool(col.get('nullable', True)),
                        default=None if col.get('default') is None else str(col['default']),
                        is_primary_key=col['name'] in primary_keys,
                        is_foreign_key=col['name'] in fk_columns,
                        ordinal_position=position,
                    )
                    for position, col in enumerate(inspector.get_columns(table_name, schema=schema), 1)
                )
                tables.append(TableInfo(
                    schema_name=self.default_schema,
                    table_name=table_name,
                    column_count=len(columns),
                    estimated_row_count=self._estimate_rows(conn, table_name),
                    has_primary_key=bool(primary_keys),
                    columns=columns,
                ))
        return tables

    def list_foreign_keys(self, timeout_seconds: float) -> List[DeclaredRelation]:
        schema = self._inspector_schema()
        relations = []

        with self.read_only_connection(timeout_seconds) as conn:
            inspector = inspect(conn)
            for table_name in sorted(inspector.get_table_names(schema=schema)):
                for fk in inspector.get_foreign_keys(table_name, schema=schema):
                    pairs = zip(fk.get('constrained_columns') or [], fk.get('referred_columns') or [])
                    for source_column, target_column in pairs:
                        relations.append(DeclaredRelation(
                            source_schema=self.default_schema,
                            source_table=table_name,
                            source_column=source_column,
                            target_schema=fk.get('referred_schema') or self.default_schema,
                            target_table=fk['referred_table'],
                            target_column=target_column,
                            constraint_name=fk.get('name') or '',
                        ))
        return relations


class MySQLAdapter(InspectorAdapter):
    """MySQL database adapter"""

    dialect = 'mysql'
    random_function = 'RAND()'

    @property
    def default_schema(self) -> str:
        return self.descriptor.database

    def _inspector_schema(self) -> Optional[str]:
        return self.descriptor.database

    def _build_url(self) -> URL:
        return URL.create(
            'mysql+pymysql',
            username=self.descriptor.user,
            password=self.descriptor.password,
            host=self.descriptor.host,
            port=self.descriptor.port or 3306,
            database=self.descriptor.database,
        )

    def _prepare_connection(self, conn: Connection, timeout_seconds: float):
        conn.exec_driver_sql("SET SESSION TRANSACTION READ ONLY")
        conn.exec_driver_sql(f"SET SESSION MAX_EXECUTION_TIME = {int(timeout_seconds * 1000)}")

    def _estimate_rows(self, conn: Connection, table_name: str) -> int:
        row_count = conn.execute(
            text("SELECT TABLE_ROWS FROM information_schema.TABLES "
                 "WHERE TABLE_SCHEMA = :schema AND TABLE_NAME = :table"),
            {'schema': self.descriptor.database, 'table': table_name},
        ).scalar()
        return int(row_count or 0)

    def quote_identifier(self, name: str) -> str:
        return '`' + name.replace('`', '``') + '`'


class SQLiteAdapter(InspectorAdapter):
    """SQLite adapter; statement timeouts are enforced with a progress handler"""

    dialect = 'sqlite'

    @property
    def default_schema(self) -> str:
        return 'main'

    def _inspector_schema(self) -> Optional[str]:
        return None

    def _build_url(self) -> URL:
        return URL.create('sqlite', database=self.descriptor.database)

    def _engine_options(self) -> Dict:
        return {'connect_args': {'check_same_thread': False, 'timeout': self.connect_timeout}}

    def _prepare_connection(self, conn: Connection, timeout_seconds: float):
        conn.exec_driver_sql("PRAGMA query_only = ON")
        deadline = time.monotonic() + timeout_seconds
        driver_connection = conn.connection.driver_connection
        driver_connection.set_progress_handler(lambda: 1 if time.monotonic() > deadline else 0, 1000)

    def _release_connection(self, conn: Connection):
        conn.connection.driver_connection.set_progress_handler(None, 0)
