"""
Context agent: related tables, cross-table samples and context complexity
"""

import json
from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple

from ..config import PipelineConfig
from ..database.adapters import DatabaseAdapter
from ..database.models import RankedRelation, RelationType, ResultRow, SchemaModel, TableInfo, type_family
from ..errors import ContextError, ExecutionError
from ..utils.cancellation import CancellationToken
from ..utils.logger import get_logger
from ..utils.schema_analyzer import SchemaAnalyzer

logger = get_logger("ContextAgent")

COMPLEXITY_LEVELS = (
    (5, 'SIMPLE'),
    (15, 'MODERATE'),
    (30, 'COMPLEX'),
)

PROMPT_COLUMNS_PER_TABLE = 12
PROMPT_ROWS_PER_SAMPLE = 5


@dataclass(frozen=True)
class RelatedTable:
    """A table reachable from the focus table through ranked relations"""
    table: TableInfo
    relation: RankedRelation
    importance_score: int
    hops: int

    @property
    def table_name(self) -> str:
        return self.table.full_name

    @property
    def relation_type(self) -> RelationType:
        return self.relation.relation_type

    @property
    def join_condition(self) -> str:
        return self.relation.join_condition


@dataclass(frozen=True)
class CrossTableSample:
    """Bounded rows sampled from one table"""
    table_name: str
    rows: Tuple[ResultRow, ...]
    strategy: str
    join_condition: Optional[str] = None


@dataclass(frozen=True)
class AnalysisContext:
    """Everything the proposer needs to know about the focus table's neighbourhood"""
    focus_table: TableInfo
    related_tables: Tuple[RelatedTable, ...]
    relationships: Tuple[RankedRelation, ...]
    samples: Tuple[CrossTableSample, ...]
    complexity_score: float
    complexity_level: str
    business_context: Optional[str] = None

    @property
    def total_sample_rows(self) -> int:
        return sum(len(sample.rows) for sample in self.samples)

    def find_related(self, table_name: str) -> Optional[RelatedTable]:
        wanted = table_name.lower()
        for related in self.related_tables:
            if wanted in (related.table.full_name.lower(), related.table.table_name.lower()):
                return related
        return None

    def known_tables(self) -> List[TableInfo]:
        return [self.focus_table] + [related.table for related in self.related_tables]

    def build_prompt_sections(self) -> str:
        """Structured text describing the focus table, its neighbours and the samples"""
        sections = [f"FOCUS TABLE: {self.focus_table.full_name}",
                    self._describe_table(self.focus_table, limit=None)]

        if self.related_tables:
            sections.append("RELATED TABLES:")
            for related in self.related_tables:
                sections.append(
                    f"- {related.table_name} ({related.relation_type.value}, importance "
                    f"{related.importance_score}, {related.hops} hop(s)) JOIN ON {related.join_condition}"
                )
                sections.append(self._describe_table(related.table, limit=PROMPT_COLUMNS_PER_TABLE))

        if self.relationships:
            sections.append("RELATIONSHIPS:")
            for rel in self.relationships:
                sections.append(
                    f"- {rel.join_condition} [{rel.relation_type.value}, confidence {rel.confidence:.2f}] "
                    f"{rel.evidence}; opportunities: {', '.join(rel.validation_opportunities)}"
                )

        if self.samples:
            sections.append("DATA SAMPLES:")
            for sample in self.samples:
                rows = [json.dumps(row, default=str) for row in sample.rows[:PROMPT_ROWS_PER_SAMPLE]]
                sections.append(f"- {sample.table_name} ({sample.strategy}, {len(sample.rows)} rows sampled):")
                sections.extend(f"    {row}" for row in rows)

        if self.business_context:
            sections.append(f"BUSINESS CONTEXT:\n{self.business_context}")

        return '\n'.join(sections)

    @staticmethod
    def _describe_table(table: TableInfo, limit: Optional[int]) -> str:
        columns = list(table.columns)
        shown = columns if limit is None else columns[:limit]
        lines = [f"  rows≈{table.estimated_row_count}, quality score {table.quality_score:.1f}"]
        for col in shown:
            flags = []
            if col.is_primary_key:
                flags.append('PK')
            if col.is_foreign_key:
                flags.append('FK')
            if not col.is_nullable:
                flags.append('NOT NULL')
            flag_text = f" [{', '.join(flags)}]" if flags else ''
            lines.append(f"  - {col.name}: {col.data_type} ({col.data_classification.value}){flag_text}")
        if limit is not None and len(columns) > limit:
            lines.append(f"  ... {len(columns) - limit} more columns")
        return '\n'.join(lines)


class ContextAgent:
    """Collect the analysis context around a focus table"""

    def __init__(self, config: Optional[PipelineConfig] = None, analyzer: Optional[SchemaAnalyzer] = None):
        self.config = config or PipelineConfig()
        self.analyzer = analyzer or SchemaAnalyzer()

    def collect_context(self, schema: SchemaModel, focus_table: str,
                        adapter: Optional[DatabaseAdapter] = None,
                        business_context: Optional[str] = None,
                        token: Optional[CancellationToken] = None) -> AnalysisContext:
        """Build the AnalysisContext; raises ContextError when the focus table is unknown"""
        focus = schema.find_table(focus_table)
        if focus is None:
            raise ContextError(f"Focus table '{focus_table}' not found in schema", reason='focus-table-absent')

        logger.info(f"🧭 Collecting context for {focus.full_name}")
        related = self._select_related_tables(schema, focus)

        names = {focus.full_name} | {r.table_name for r in related}
        relationships = tuple(
            rel for rel in schema.ranked_relations
            if rel.source_table in names and rel.target_table in names
        )

        samples: Tuple[CrossTableSample, ...] = ()
        if adapter is not None:
            samples = tuple(self._collect_samples(adapter, focus, related, token))

        total_rows = sum(len(sample.rows) for sample in samples)
        score = self._complexity_score(related, relationships, total_rows)
        level = self.complexity_level(score)

        logger.info(f"✅ Context ready: {len(related)} related tables, {total_rows} sampled rows, "
                    f"complexity {score:.1f} ({level})")

        return AnalysisContext(
            focus_table=focus,
            related_tables=tuple(related),
            relationships=relationships,
            samples=samples,
            complexity_score=round(score, 2),
            complexity_level=level,
            business_context=business_context,
        )

    def _select_related_tables(self, schema: SchemaModel, focus: TableInfo) -> List[RelatedTable]:
        """Walk the relation graph outward up to the hop limit, best first"""
        self.analyzer.build_relationship_graph(schema.tables, schema.ranked_relations)
        distances = self.analyzer.tables_within(focus.full_name, self.config.hop_limit)

        related = []
        for table_name, hops in distances.items():
            table = schema.find_table(table_name)
            path = self.analyzer.relation_path(focus.full_name, table_name)
            if table is None or not path:
                continue
            relation = path[-1]
            importance = max(1, min(rel.importance_score for rel in path) - 2 * (hops - 1))
            related.append(RelatedTable(table=table, relation=relation, importance_score=importance, hops=hops))

        related.sort(key=lambda r: (-r.importance_score, r.hops, r.table_name))
        return related[:self.config.max_related_tables]

    def _collect_samples(self, adapter: DatabaseAdapter, focus: TableInfo, related: List[RelatedTable],
                         token: Optional[CancellationToken]) -> List[CrossTableSample]:
        budget = self.config.max_total_sample_rows
        samples = []

        focus_sample = self._sample_table(adapter, focus, min(self.config.focus_sample_size, budget))
        if focus_sample is not None:
            samples.append(focus_sample)
            budget -= len(focus_sample.rows)

        for item in related[:self.config.max_relations_sampled]:
            if budget <= 0:
                break
            if token is not None:
                token.raise_if_cancelled('context')

            size = min(self.config.related_sample_size, budget)
            sample = None
            if item.hops == 1:
                sample = self._sample_joined(adapter, focus, item, size)
            if sample is None:
                sample = self._sample_table(adapter, item.table, size)
            if sample is not None:
                samples.append(sample)
                budget -= len(sample.rows)

        return samples

    @staticmethod
    def _ordering_key(table: TableInfo) -> Optional[str]:
        primary_keys = table.primary_key_columns
        if len(primary_keys) == 1:
            return primary_keys[0]
        for col in table.columns:
            if type_family(col.data_type) == 'temporal':
                return col.name
        return None

    def _run_sample(self, adapter: DatabaseAdapter, sql: str, size: int) -> Optional[List[ResultRow]]:
        try:
            result = adapter.execute_read_only(sql, self.config.statement_timeout_seconds, max_rows=size)
        except ExecutionError as e:
            logger.warning(f"⚠️ Sample query failed: {e}")
            return None
        return list(result.rows)

    def _sample_table(self, adapter: DatabaseAdapter, table: TableInfo, size: int) -> Optional[CrossTableSample]:
        """Stratified first/last/random sample when an ordering key exists, else uniform random"""
        if size <= 0:
            return None

        qualified = adapter.quote_table(table.full_name)
        key = self._ordering_key(table)

        if key is None or size < 3:
            rows = self._run_sample(
                adapter, f"SELECT * FROM {qualified} ORDER BY {adapter.random_function} LIMIT {size}", size)
            if rows is None:
                return None
            return CrossTableSample(table_name=table.full_name, rows=tuple(rows), strategy='random')

        quoted_key = adapter.quote_identifier(key)
        third = size // 3
        buckets = [
            (f"SELECT * FROM {qualified} ORDER BY {quoted_key} ASC LIMIT {third}", third),
            (f"SELECT * FROM {qualified} ORDER BY {quoted_key} DESC LIMIT {third}", third),
            (f"SELECT * FROM {qualified} ORDER BY {adapter.random_function} LIMIT {size - 2 * third}",
             size - 2 * third),
        ]

        rows: List[ResultRow] = []
        seen = set()
        for sql, limit in buckets:
            bucket = self._run_sample(adapter, sql, limit)
            if bucket is None:
                return None
            for row in bucket:
                marker = json.dumps(row, sort_keys=True, default=str)
                if marker not in seen:
                    seen.add(marker)
                    rows.append(row)

        return CrossTableSample(table_name=table.full_name, rows=tuple(rows[:size]), strategy='stratified')

    def _sample_joined(self, adapter: DatabaseAdapter, focus: TableInfo, item: RelatedTable,
                       size: int) -> Optional[CrossTableSample]:
        """Rows of the related table that actually connect to the focus table"""
        relation = item.relation
        if relation.source_table == focus.full_name:
            focus_column, related_column = relation.source_column, relation.target_column
        else:
            focus_column, related_column = relation.target_column, relation.source_column

        sql = (
            f"SELECT r.* FROM {adapter.quote_table(item.table_name)} r "
            f"WHERE EXISTS (SELECT 1 FROM {adapter.quote_table(focus.full_name)} f "
            f"WHERE f.{adapter.quote_identifier(focus_column)} = r.{adapter.quote_identifier(related_column)}) "
            f"LIMIT {size}"
        )
        rows = self._run_sample(adapter, sql, size)
        if not rows:
            return None
        return CrossTableSample(table_name=item.table_name, rows=tuple(rows), strategy='joined',
                                join_condition=item.join_condition)

    @staticmethod
    def _complexity_score(related: List[RelatedTable], relationships: Tuple[RankedRelation, ...],
                          total_rows: int) -> float:
        """Related-table count, relation count, sample size and relation diversity"""
        relation_types = {r.relation_type for r in related}
        opportunities = {opp for r in related for opp in r.relation.validation_opportunities}
        diversity = len(relation_types) + 0.5 * len(opportunities)
        return len(related) * 0.6 + len(relationships) * 0.3 + total_rows * 0.01 + diversity

    @staticmethod
    def complexity_level(score: float) -> str:
        for threshold, label in COMPLEXITY_LEVELS:
            if score < threshold:
                return label
        return 'HIGHLY_COMPLEX'

    @staticmethod
    def generation_budget(level: str) -> Dict[str, int]:
        """Number of proposals to request and the token budget for a complexity level"""
        budgets = {
            'SIMPLE': {'proposals': 6, 'max_tokens': 2000},
            'MODERATE': {'proposals': 10, 'max_tokens': 2000},
            'COMPLEX': {'proposals': 12, 'max_tokens': 3000},
            'HIGHLY_COMPLEX': {'proposals': 15, 'max_tokens': 4000},
        }
        return budgets.get(level, budgets['MODERATE'])
