"""
Data models for database schema representation and query results
"""

import re
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta, timezone
from decimal import Decimal
from enum import Enum
from typing import Dict, List, Optional, Tuple, Union
from uuid import UUID

Scalar = Union[str, int, float, bool, None]
ResultRow = Dict[str, Scalar]


class DataClassification(Enum):
    """Semantic role of a column, inferred from its name and declared type"""
    IDENTIFIER = "IDENTIFIER"
    TEMPORAL = "TEMPORAL"
    NUMERIC = "NUMERIC"
    EMAIL = "EMAIL"
    DOCUMENT = "DOCUMENT"
    PHONE = "PHONE"
    POSTAL_CODE = "POSTAL_CODE"
    TEXT = "TEXT"
    BOOLEAN = "BOOLEAN"
    JSON = "JSON"
    UUID = "UUID"
    OTHER = "OTHER"


class RelationType(Enum):
    """Where a ranked relation came from"""
    DECLARED = "FK_DECLARED"
    IMPLICIT = "IMPLICIT"


def type_family(data_type: str) -> str:
    """Collapse a declared SQL type into a comparable family"""
    t = (data_type or '').lower()
    if 'uuid' in t or 'uniqueidentifier' in t:
        return 'uuid'
    if 'json' in t:
        return 'json'
    if 'bool' in t or t == 'bit':
        return 'boolean'
    if 'interval' in t:
        return 'other'
    if 'timestamp' in t or 'date' in t or re.search(r'\btime\b', t):
        return 'temporal'
    if re.search(r'int|serial', t):
        return 'integer'
    if re.search(r'numeric|decimal|real|double|float|money', t):
        return 'numeric'
    if re.search(r'char|text|string|clob|citext', t):
        return 'text'
    return 'other'


def types_compatible(first: str, second: str) -> bool:
    """Two declared types can be joined without casting"""
    a, b = type_family(first), type_family(second)
    if a == 'other' or b == 'other':
        return (first or '').lower() == (second or '').lower()
    if {a, b} <= {'integer', 'numeric'}:
        return True
    return a == b


@dataclass(frozen=True)
class ColumnInfo:
    """Information about a single column"""
    name: str
    data_type: str
    is_nullable: bool = True
    default: Optional[str] = None
    is_primary_key: bool = False
    is_foreign_key: bool = False
    distinct_values: float = 0.0
    null_fraction: float = 0.0
    ordinal_position: int = 0

    @property
    def has_statistics(self) -> bool:
        return self.distinct_values != 0

    @property
    def data_classification(self) -> DataClassification:
        name = self.name.lower()
        family = type_family(self.data_type)

        if family == 'uuid':
            return DataClassification.UUID
        if name == 'id' or name.endswith('_id') or name.startswith('id_'):
            return DataClassification.IDENTIFIER
        if family == 'boolean':
            return DataClassification.BOOLEAN
        if family == 'json':
            return DataClassification.JSON
        if family == 'temporal' or name.endswith('_at') or 'date' in name:
            return DataClassification.TEMPORAL
        if 'email' in name:
            return DataClassification.EMAIL
        if 'phone' in name or 'mobile' in name or name.startswith('tel'):
            return DataClassification.PHONE
        if any(token in name for token in ('cpf', 'cnpj', 'ssn', 'document', 'tax_id')):
            return DataClassification.DOCUMENT
        if any(token in name for token in ('zip', 'postal', 'cep')):
            return DataClassification.POSTAL_CODE
        if family in ('integer', 'numeric'):
            return DataClassification.NUMERIC
        if family == 'text':
            return DataClassification.TEXT
        return DataClassification.OTHER


@dataclass(frozen=True)
class QualityBreakdown:
    """Named sub-scores of a table's composite quality score"""
    primary_key_score: float
    completeness_score: float
    statistics_score: float
    foreign_key_score: float
    type_appropriateness_score: float

    @property
    def total_score(self) -> float:
        total = (self.primary_key_score + self.completeness_score + self.statistics_score
                 + self.foreign_key_score + self.type_appropriateness_score)
        return round(min(100.0, max(0.0, total)), 2)


@dataclass(frozen=True)
class TableInfo:
    """Information about a database table"""
    schema_name: str
    table_name: str
    table_type: str = 'BASE TABLE'
    column_count: int = 0
    estimated_row_count: int = 0
    table_size: str = ''
    has_primary_key: bool = False
    columns: Tuple[ColumnInfo, ...] = ()
    quality_breakdown: Optional[QualityBreakdown] = None

    @property
    def full_name(self) -> str:
        return f"{self.schema_name}.{self.table_name}"

    @property
    def quality_score(self) -> float:
        return self.quality_breakdown.total_score if self.quality_breakdown else 0.0

    @property
    def primary_key_columns(self) -> List[str]:
        return [col.name for col in self.columns if col.is_primary_key]

    def get_column(self, name: str) -> Optional[ColumnInfo]:
        for col in self.columns:
            if col.name.lower() == name.lower():
                return col
        return None


@dataclass(frozen=True)
class DeclaredRelation:
    """A foreign key declared in the database's constraint metadata"""
    source_schema: str
    source_table: str
    source_column: str
    target_schema: str
    target_table: str
    target_column: str
    constraint_name: str = ''

    @property
    def source_full_name(self) -> str:
        return f"{self.source_schema}.{self.source_table}"

    @property
    def target_full_name(self) -> str:
        return f"{self.target_schema}.{self.target_table}"


@dataclass(frozen=True)
class ImplicitRelation:
    """A relationship inferred from naming patterns; tables are full names"""
    source_table: str
    source_column: str
    target_table: str
    target_column: str
    confidence: float
    detection_method: str
    evidence: str

    def __post_init__(self):
        if not 0.0 <= self.confidence <= 1.0:
            raise ValueError(f"confidence must be within [0, 1], got {self.confidence}")


@dataclass(frozen=True)
class RankedRelation:
    """Declared or implicit relation with an importance score for downstream use"""
    source_table: str
    source_column: str
    target_table: str
    target_column: str
    relation_type: RelationType
    importance_score: int
    confidence: float
    evidence: str
    validation_opportunities: Tuple[str, ...] = ()

    @property
    def join_condition(self) -> str:
        return (f"{self.source_table}.{self.source_column} = "
                f"{self.target_table}.{self.target_column}")

    def involves(self, table_full_name: str) -> bool:
        return table_full_name in (self.source_table, self.target_table)

    def other_side(self, table_full_name: str) -> str:
        return self.target_table if self.source_table == table_full_name else self.source_table


@dataclass(frozen=True)
class DiscoveryMetrics:
    """Aggregate metrics describing one discovery run"""
    total_tables: int
    declared_relations: int
    implicit_relations: int
    total_relations: int
    average_quality_score: float
    relationship_coverage: float
    quality_rating: str
    discovery_seconds: float = 0.0
    implicit_detection_degraded: bool = False


@dataclass(frozen=True)
class SchemaModel:
    """Complete, immutable result of one schema discovery"""
    database_name: str
    dialect: str
    tables: Tuple[TableInfo, ...]
    declared_relations: Tuple[DeclaredRelation, ...] = ()
    implicit_relations: Tuple[ImplicitRelation, ...] = ()
    statistical_relations: Tuple[ImplicitRelation, ...] = ()
    join_patterns: Tuple[Dict[str, str], ...] = ()
    ranked_relations: Tuple[RankedRelation, ...] = ()
    metrics: Optional[DiscoveryMetrics] = None
    discovered_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def find_table(self, name: str) -> Optional[TableInfo]:
        """Resolve 'schema.table' or a bare table name, case-insensitively"""
        wanted = name.strip().strip('"').lower()
        for table in self.tables:
            if table.full_name.lower() == wanted:
                return table
        for table in self.tables:
            if table.table_name.lower() == wanted:
                return table
        return None

    def relations_for(self, table_full_name: str) -> List[RankedRelation]:
        return [rel for rel in self.ranked_relations if rel.involves(table_full_name)]


@dataclass(frozen=True)
class QueryResult:
    """Rows returned by a read-only statement"""
    columns: Tuple[str, ...]
    rows: Tuple[ResultRow, ...]

    @property
    def row_count(self) -> int:
        return len(self.rows)


def normalize_value(value) -> Scalar:
    """Convert a driver value into a tagged scalar (str, int, float, bool or None)"""
    if value is None or isinstance(value, (bool, int, float, str)):
        return value
    if isinstance(value, Decimal):
        return float(value)
    if isinstance(value, (datetime, date, time)):
        return value.isoformat()
    if isinstance(value, timedelta):
        return value.total_seconds()
    if isinstance(value, UUID):
        return str(value)
    if isinstance(value, (bytes, bytearray, memoryview)):
        return bytes(value).hex()
    return str(value)


def build_rows(columns: List[str], raw_rows) -> Tuple[ResultRow, ...]:
    """Zip driver rows into ordered column → scalar maps"""
    return tuple(
        {col: normalize_value(val) for col, val in zip(columns, raw)}
        for raw in raw_rows
    )
