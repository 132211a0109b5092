"""
Schema discovery agent: introspection, implicit relations, ranking and scoring
"""

import time
from dataclasses import replace
from typing import List, Optional, Sequence, Tuple

from ..config import PipelineConfig
from ..database.adapters import DatabaseAdapter
from ..database.models import DeclaredRelation, ImplicitRelation, SchemaModel, TableInfo
from ..errors import DiscoveryError
from ..utils.cancellation import CancellationToken, run_cancellable
from ..utils.logger import get_logger
from ..utils.schema_analyzer import SchemaAnalyzer

logger = get_logger("SchemaDiscovery")


class SchemaDiscoveryAgent:
    """Build a complete SchemaModel from a live connection"""

    def __init__(self, config: Optional[PipelineConfig] = None, analyzer: Optional[SchemaAnalyzer] = None):
        self.config = config or PipelineConfig()
        self.analyzer = analyzer or SchemaAnalyzer(candidate_cap=self.config.implicit_candidate_cap)

    def discover(self, adapter: DatabaseAdapter, token: Optional[CancellationToken] = None) -> SchemaModel:
        """Introspect the database; raises DiscoveryError when the schema cannot be read"""
        start_time = time.time()
        logger.info(f"🔍 Discovering schema of {adapter.descriptor.database} ({adapter.dialect})")

        try:
            tables, declared = run_cancellable(
                lambda: adapter.analyze_schema(self.config.introspection_timeout_seconds),
                timeout=self.config.introspection_timeout_seconds,
                token=token,
                stage='discovery',
            )
        except TimeoutError as e:
            logger.error(f"❌ Schema introspection exceeded {self.config.introspection_timeout_seconds}s")
            raise DiscoveryError(f"Schema introspection timed out: {e}", reason='timeout') from e
        declared = self._deduplicate(declared)
        tables = [replace(table, quality_breakdown=self.analyzer.score_table(table, declared)) for table in tables]

        implicit, degraded = self._detect_implicit(tables, declared, token)
        statistical = self.analyzer.detect_statistical_relationships(tables)
        join_patterns = self.analyzer.analyze_join_patterns(tables)
        ranked = self.analyzer.rank_relationships(tables, declared, list(implicit) + list(statistical))

        elapsed = time.time() - start_time
        metrics = self.analyzer.compute_metrics(tables, declared, implicit, ranked,
                                                discovery_seconds=elapsed, degraded=degraded)

        logger.info(f"✅ Discovered {len(tables)} tables, {len(declared)} declared and "
                    f"{len(implicit)} implicit relations in {elapsed:.2f}s")

        return SchemaModel(
            database_name=adapter.descriptor.database,
            dialect=adapter.dialect,
            tables=tuple(tables),
            declared_relations=tuple(declared),
            implicit_relations=tuple(implicit),
            statistical_relations=tuple(statistical),
            join_patterns=tuple(join_patterns),
            ranked_relations=tuple(ranked),
            metrics=metrics,
        )

    def _detect_implicit(self, tables: Sequence[TableInfo], declared: Sequence[DeclaredRelation],
                         token: Optional[CancellationToken]) -> Tuple[List[ImplicitRelation], bool]:
        """Bounded heuristic step; a timeout degrades to an empty result"""
        try:
            implicit = run_cancellable(
                lambda: self.analyzer.detect_implicit_relationships(tables, declared),
                timeout=self.config.implicit_detection_timeout_seconds,
                token=token,
                stage='implicit-detection',
            )
        except TimeoutError:
            logger.warning("⚠️ Implicit relationship detection timed out; continuing without implicit relations")
            return [], True
        return implicit, False

    @staticmethod
    def _deduplicate(declared: Sequence[DeclaredRelation]) -> List[DeclaredRelation]:
        seen = set()
        unique = []
        for rel in declared:
            key = (rel.source_full_name, rel.source_column, rel.target_full_name, rel.target_column)
            if key not in seen:
                seen.add(key)
                unique.append(rel)
        return unique
