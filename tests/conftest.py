"""Shared fixtures: SQLite scenario databases, canned text generators and fake adapters."""

import json
import threading
from typing import Callable, Dict, List, Optional

import pytest
from sqlalchemy import create_engine

from quality_agent.config import ConnectionDescriptor, PipelineConfig
from quality_agent.database.adapters import SQLiteAdapter
from quality_agent.database.models import (
    ColumnInfo,
    DeclaredRelation,
    QueryResult,
    TableInfo,
    build_rows,
)
from quality_agent.errors import ExecutionError, GenerationError
from quality_agent.utils.llm_monitor import GenerationRequest


SCENARIO_A = [
    "CREATE TABLE customers (id INTEGER PRIMARY KEY, name VARCHAR(100) NOT NULL, "
    "email VARCHAR(200), created_at TIMESTAMP)",
    "CREATE TABLE orders (id INTEGER PRIMARY KEY, "
    "customer_id INTEGER REFERENCES customers(id), order_date TIMESTAMP, "
    "status VARCHAR(20), total NUMERIC(10, 2))",
    "INSERT INTO customers VALUES (1, 'Ana', 'ana@example.com', '2024-01-01 10:00:00')",
    "INSERT INTO customers VALUES (2, 'Bruno', 'bruno@example.com', '2024-02-01 10:00:00')",
    "INSERT INTO orders VALUES (1, 1, '2024-01-05 09:00:00', 'PAID', 10.5)",
    "INSERT INTO orders VALUES (2, 2, '2024-01-15 09:00:00', 'OPEN', 20.0)",
    "INSERT INTO orders VALUES (3, 1, '2024-03-01 09:00:00', 'PAID', 5.25)",
]

SCENARIO_B = [
    "CREATE TABLE clients (id INTEGER PRIMARY KEY, name VARCHAR(100), created_at TIMESTAMP)",
    "CREATE TABLE invoices (id INTEGER PRIMARY KEY, client_id INTEGER, "
    "invoice_number VARCHAR(20), issued_at TIMESTAMP, amount NUMERIC(10, 2))",
    "INSERT INTO clients VALUES (1, 'Acme', '2024-01-01 00:00:00')",
    "INSERT INTO clients VALUES (2, 'Globex', '2024-01-02 00:00:00')",
    "INSERT INTO clients VALUES (3, 'Initech', '2024-01-03 00:00:00')",
    "INSERT INTO invoices VALUES (1, 1, 'INV-1', '2024-02-01 00:00:00', 100)",
    "INSERT INTO invoices VALUES (2, 1, 'INV-2', '2024-02-02 00:00:00', 250)",
    "INSERT INTO invoices VALUES (3, 2, 'INV-2', '2024-02-03 00:00:00', 80)",
    "INSERT INTO invoices VALUES (4, 3, 'INV-4', '2024-02-04 00:00:00', 40)",
    "INSERT INTO invoices VALUES (5, 99, 'INV-5', '2024-02-05 00:00:00', 15)",
]


def build_sqlite(path, statements: List[str]) -> ConnectionDescriptor:
    """Create a SQLite database file from DDL/DML and return its descriptor."""
    engine = create_engine(f"sqlite:///{path}")
    with engine.begin() as conn:
        conn.exec_driver_sql("PRAGMA foreign_keys = OFF")
        for statement in statements:
            conn.exec_driver_sql(statement)
    engine.dispose()
    return ConnectionDescriptor(db_type='sqlite', database=str(path))


@pytest.fixture
def scenario_a(tmp_path) -> ConnectionDescriptor:
    """orders.customer_id with a declared foreign key to customers.id."""
    return build_sqlite(tmp_path / "scenario_a.db", SCENARIO_A)


@pytest.fixture
def scenario_b(tmp_path) -> ConnectionDescriptor:
    """invoices.client_id with no declared foreign key; one orphaned invoice."""
    return build_sqlite(tmp_path / "scenario_b.db", SCENARIO_B)


@pytest.fixture
def sqlite_adapter_factory():
    """Open SQLite adapters and dispose them after the test."""
    adapters = []

    def factory(descriptor: ConnectionDescriptor) -> SQLiteAdapter:
        adapter = SQLiteAdapter(descriptor)
        adapters.append(adapter)
        return adapter

    yield factory
    for adapter in adapters:
        adapter.dispose()


@pytest.fixture
def fast_config() -> PipelineConfig:
    return PipelineConfig(statement_timeout_seconds=10, generation_timeout_seconds=10)


class FakeTextGenerator:
    """Canned TextGenerator: returns queued responses or raises a GenerationError."""

    model = 'fake-model'

    def __init__(self, responses: Optional[List[str]] = None, error: Optional[GenerationError] = None):
        self.responses = list(responses or [])
        self.error = error
        self.requests: List[GenerationRequest] = []
        self.credentials: List[Optional[str]] = []

    def generate(self, request: GenerationRequest, credential: Optional[str]) -> str:
        self.requests.append(request)
        self.credentials.append(credential)
        if self.error is not None:
            raise self.error
        if len(self.responses) > 1:
            return self.responses.pop(0)
        return self.responses[0] if self.responses else ''


@pytest.fixture
def fake_generator_factory() -> Callable[..., FakeTextGenerator]:
    return FakeTextGenerator


def proposals_json(*entries: Dict) -> str:
    return json.dumps(list(entries))


class FakeAdapter:
    """Adapter stand-in for the execution stage: maps SQL markers to results or failures."""

    dialect = 'postgresql'

    def __init__(self, results: Optional[Dict[str, List[Dict]]] = None, failing: Optional[List[str]] = None,
                 delay: float = 0.0):
        self.results = results or {}
        self.failing = failing or []
        self.delay = delay
        self.executed: List[str] = []
        self.active = 0
        self.max_active = 0
        self._lock = threading.Lock()

    def execute_read_only(self, sql: str, timeout_seconds: float, max_rows: int = 10000) -> QueryResult:
        with self._lock:
            self.executed.append(sql)
            self.active += 1
            self.max_active = max(self.max_active, self.active)
        try:
            if self.delay:
                threading.Event().wait(self.delay)
            for marker in self.failing:
                if marker in sql:
                    raise ExecutionError(f"relation for {marker} does not exist", reason='database')
            for marker, rows in self.results.items():
                if marker in sql:
                    columns = list(rows[0].keys()) if rows else []
                    return QueryResult(columns=tuple(columns),
                                       rows=build_rows(columns, [tuple(r.values()) for r in rows]))
            return QueryResult(columns=('total_records', 'invalid_records'),
                               rows=({'total_records': 10, 'invalid_records': 0},))
        finally:
            with self._lock:
                self.active -= 1

    def dispose(self):
        pass


@pytest.fixture
def fake_adapter_factory() -> Callable[..., FakeAdapter]:
    return FakeAdapter


def make_table(name: str, columns: List[ColumnInfo], schema: str = 'public', rows: int = 100) -> TableInfo:
    return TableInfo(
        schema_name=schema,
        table_name=name,
        column_count=len(columns),
        estimated_row_count=rows,
        has_primary_key=any(col.is_primary_key for col in columns),
        columns=tuple(columns),
    )


def pk(name: str = 'id', data_type: str = 'integer') -> ColumnInfo:
    return ColumnInfo(name=name, data_type=data_type, is_nullable=False, is_primary_key=True, ordinal_position=1)


def col(name: str, data_type: str = 'integer', position: int = 2, **kwargs) -> ColumnInfo:
    return ColumnInfo(name=name, data_type=data_type, ordinal_position=position, **kwargs)


def declared(source: str, source_column: str, target: str, target_column: str = 'id',
             schema: str = 'public') -> DeclaredRelation:
    return DeclaredRelation(
        source_schema=schema,
        source_table=source,
        source_column=source_column,
        target_schema=schema,
        target_table=target,
        target_column=target_column,
        constraint_name=f"fk_{source}_{source_column}",
    )
