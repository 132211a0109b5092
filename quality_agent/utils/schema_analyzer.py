"""
Schema analysis and relationship detection utilities
"""

import re
from typing import Dict, Iterable, List, Optional, Sequence, Set, Tuple

import networkx as nx

from ..database.models import (
    ColumnInfo,
    DeclaredRelation,
    DiscoveryMetrics,
    ImplicitRelation,
    QualityBreakdown,
    RankedRelation,
    RelationType,
    TableInfo,
    type_family,
    types_compatible,
)

DECLARED_IMPORTANCE = 10

DECLARED_OPPORTUNITIES = ('referential-integrity', 'orphan-detection', 'cascade-consistency')
IMPLICIT_OPPORTUNITIES = ('data-consistency', 'logical-integrity', 'orphan-detection')

KEY_SUFFIXES = ('_id', '_code', '_key', '_uuid', '_number', '_no')
AUDIT_COLUMNS = ('created_by', 'updated_by', 'modified_by', 'deleted_by', 'owner_id', 'assigned_to')
USER_TABLES = ('users', 'user', 'accounts', 'account', 'usuarios', 'usuario')
SHORT_PREFIX = re.compile(r'^([a-z]{1,3})_(.+)$')

NAMING_PATTERN = 'NAMING_PATTERN'
SHORT_PREFIX_PATTERN = 'SHORT_PREFIX_PATTERN'
COLUMN_NAME_MATCH = 'COLUMN_NAME_MATCH'


def name_variants(name: str) -> Set[str]:
    """Singular and plural spellings of a table or column stem"""
    base = name.lower()
    variants = {base}
    if base.endswith('ies') and len(base) > 3:
        variants.add(base[:-3] + 'y')
    elif base.endswith(('ses', 'xes', 'zes', 'ches', 'shes')):
        variants.add(base[:-2])
    elif base.endswith('s') and not base.endswith('ss'):
        variants.add(base[:-1])

    if base.endswith('y') and len(base) > 1 and base[-2] not in 'aeiou':
        variants.add(base[:-1] + 'ies')
    elif base.endswith(('s', 'x', 'z', 'ch', 'sh')):
        variants.add(base + 'es')
    else:
        variants.add(base + 's')
    return variants


def reference_stem(column_name: str) -> Optional[str]:
    """The table name a column appears to point at (customer_id → customer)"""
    name = column_name.lower()
    if name.endswith('_id') and len(name) > 3:
        return name[:-3]
    if name.startswith('id_') and len(name) > 3:
        return name[3:]
    if name.endswith('id') and len(name) > 4 and name != 'uuid':
        return name[:-2]
    return None


def is_identifier_column(column_name: str) -> bool:
    name = column_name.lower()
    return name == 'id' or name.endswith('_id') or name.startswith('id_')


def is_type_appropriate(column: ColumnInfo) -> bool:
    """Whether a column's declared type matches the role its name suggests"""
    name = column.name.lower()
    family = type_family(column.data_type)
    if is_identifier_column(name):
        return family in ('integer', 'uuid')
    if 'date' in name or name.endswith('_at'):
        return family == 'temporal'
    if 'email' in name:
        return family == 'text'
    return True


class SchemaAnalyzer:
    """Analyze database schema and detect relationships"""

    def __init__(self, candidate_cap: int = 1000):
        self.candidate_cap = candidate_cap
        self.relationship_graph = nx.Graph()

    def detect_implicit_relationships(self, tables: Sequence[TableInfo],
                                      declared: Sequence[DeclaredRelation]) -> List[ImplicitRelation]:
        """Infer undeclared relationships from naming conventions, one schema at a time"""
        declared_pairs = set()
        for rel in declared:
            declared_pairs.add(frozenset((rel.source_full_name, rel.target_full_name)))

        by_schema: Dict[str, List[TableInfo]] = {}
        for table in sorted(tables, key=lambda t: (t.schema_name, t.table_name)):
            by_schema.setdefault(table.schema_name, []).append(table)

        found: List[ImplicitRelation] = []
        seen: Set[Tuple[frozenset, str]] = set()

        for schema_tables in by_schema.values():
            for relation in self._detect_naming_patterns(schema_tables, declared_pairs, seen):
                if len(found) >= self.candidate_cap:
                    return found
                found.append(relation)

            for relation in self._detect_column_name_matches(schema_tables, declared_pairs, seen):
                if len(found) >= self.candidate_cap:
                    return found
                found.append(relation)

        return found

    def _detect_naming_patterns(self, tables: List[TableInfo], declared_pairs: Set[frozenset],
                                seen: Set[Tuple[frozenset, str]]) -> Iterable[ImplicitRelation]:
        """Columns like X_id / id_X / created_by pointing at a table named X"""
        for source in tables:
            for column in sorted(source.columns, key=lambda c: c.ordinal_position):
                if column.is_foreign_key:
                    continue

                for target, confidence, method, evidence in self._candidate_targets(column, source, tables):
                    pair = frozenset((source.full_name, target.full_name))
                    if pair in declared_pairs or (pair, column.name.lower()) in seen:
                        continue

                    target_column = self._target_key(target, column)
                    if target_column is None or not types_compatible(column.data_type, target_column.data_type):
                        continue

                    seen.add((pair, column.name.lower()))
                    yield ImplicitRelation(
                        source_table=source.full_name,
                        source_column=column.name,
                        target_table=target.full_name,
                        target_column=target_column.name,
                        confidence=confidence,
                        detection_method=method,
                        evidence=evidence,
                    )
                    break

    def _candidate_targets(self, column: ColumnInfo, source: TableInfo,
                           tables: List[TableInfo]) -> List[Tuple[TableInfo, float, str, str]]:
        name = column.name.lower()
        candidates = []

        if name in AUDIT_COLUMNS and name != 'owner_id':
            for target in tables:
                if target is not source and target.table_name.lower() in USER_TABLES:
                    candidates.append((target, 0.6, NAMING_PATTERN,
                                       f"Audit column {column.name} references user table {target.table_name}"))
            return candidates

        stem = reference_stem(name)
        if not stem:
            return candidates

        stem_variants = name_variants(stem)
        for target in tables:
            if target is source:
                continue
            table_name = target.table_name.lower()
            if table_name == stem:
                candidates.append((target, 0.85, NAMING_PATTERN,
                                   f"Column {column.name} matches table name {target.table_name}"))
            elif table_name in stem_variants:
                candidates.append((target, 0.8, NAMING_PATTERN,
                                   f"Column {column.name} matches singular/plural of table {target.table_name}"))
            else:
                prefixed = SHORT_PREFIX.match(table_name)
                if prefixed and prefixed.group(2) in stem_variants:
                    candidates.append((target, 0.65, SHORT_PREFIX_PATTERN,
                                       f"Column {column.name} matches table {target.table_name} "
                                       f"without its short prefix '{prefixed.group(1)}_'"))

        candidates.sort(key=lambda c: (-c[1], c[0].table_name))
        return candidates

    @staticmethod
    def _target_key(target: TableInfo, source_column: ColumnInfo) -> Optional[ColumnInfo]:
        """Column on the referenced table that the source column most likely points at"""
        primary_keys = [col for col in target.columns if col.is_primary_key]
        if len(primary_keys) == 1:
            return primary_keys[0]
        for candidate in ('id', source_column.name):
            col = target.get_column(candidate)
            if col is not None:
                return col
        return None

    def _detect_column_name_matches(self, tables: List[TableInfo], declared_pairs: Set[frozenset],
                                    seen: Set[Tuple[frozenset, str]]) -> Iterable[ImplicitRelation]:
        """Same key-like column name in two tables with compatible types"""
        for i, first in enumerate(tables):
            for second in tables[i + 1:]:
                pair = frozenset((first.full_name, second.full_name))
                if pair in declared_pairs:
                    continue

                for col_a in sorted(first.columns, key=lambda c: c.ordinal_position):
                    name = col_a.name.lower()
                    if name == 'id' or (pair, name) in seen:
                        continue
                    col_b = second.get_column(col_a.name)
                    if col_b is None or not types_compatible(col_a.data_type, col_b.data_type):
                        continue
                    if not (name.endswith(KEY_SUFFIXES) or col_a.is_primary_key or col_b.is_primary_key):
                        continue
                    if col_a.is_foreign_key or col_b.is_foreign_key:
                        continue

                    if col_b.is_primary_key and not col_a.is_primary_key:
                        source, target, confidence = first, second, 0.6
                    elif col_a.is_primary_key and not col_b.is_primary_key:
                        source, target, confidence = second, first, 0.6
                    else:
                        source, target = first, second
                        confidence = 0.5 if col_a.is_primary_key else 0.4

                    seen.add((pair, name))
                    yield ImplicitRelation(
                        source_table=source.full_name,
                        source_column=col_a.name,
                        target_table=target.full_name,
                        target_column=col_b.name,
                        confidence=confidence,
                        detection_method=COLUMN_NAME_MATCH,
                        evidence=(f"Column {col_a.name} appears in {first.table_name} and "
                                  f"{second.table_name} with compatible types"),
                    )

    def detect_statistical_relationships(self, tables: Sequence[TableInfo]) -> List[ImplicitRelation]:
        """Extension point for value-overlap detection; no algorithm by default"""
        return []

    def analyze_join_patterns(self, tables: Sequence[TableInfo]) -> List[Dict[str, str]]:
        """Extension point for query-log join mining; no algorithm by default"""
        return []

    def rank_relationships(self, tables: Sequence[TableInfo], declared: Sequence[DeclaredRelation],
                           implicit: Sequence[ImplicitRelation]) -> List[RankedRelation]:
        """Merge declared and implicit relations; declared always sort first"""
        known = {table.full_name for table in tables}
        ranked = []

        for rel in declared:
            if rel.source_full_name not in known or rel.target_full_name not in known:
                continue
            ranked.append(RankedRelation(
                source_table=rel.source_full_name,
                source_column=rel.source_column,
                target_table=rel.target_full_name,
                target_column=rel.target_column,
                relation_type=RelationType.DECLARED,
                importance_score=DECLARED_IMPORTANCE,
                confidence=1.0,
                evidence=f"Declared foreign key {rel.constraint_name}".strip(),
                validation_opportunities=DECLARED_OPPORTUNITIES,
            ))

        for rel in implicit:
            if rel.source_table not in known or rel.target_table not in known:
                continue
            ranked.append(RankedRelation(
                source_table=rel.source_table,
                source_column=rel.source_column,
                target_table=rel.target_table,
                target_column=rel.target_column,
                relation_type=RelationType.IMPLICIT,
                importance_score=int(round(rel.confidence * 8)) + 2,
                confidence=rel.confidence,
                evidence=rel.evidence,
                validation_opportunities=IMPLICIT_OPPORTUNITIES,
            ))

        ranked.sort(key=lambda r: (
            0 if r.relation_type == RelationType.DECLARED else 1,
            -r.importance_score,
            r.source_table,
            r.source_column,
            r.target_table,
        ))
        return ranked

    def score_table(self, table: TableInfo, declared: Sequence[DeclaredRelation]) -> QualityBreakdown:
        """Weighted composite: keys 30, completeness 20, statistics 20, foreign keys 15, types 15"""
        columns = table.columns
        has_fk = any(col.is_foreign_key for col in columns) or any(
            rel.source_full_name == table.full_name for rel in declared
        )

        if columns:
            mean_null = sum(col.null_fraction for col in columns) / len(columns)
            completeness = (1 - min(1.0, max(0.0, mean_null))) * 20
            statistics = sum(1 for col in columns if col.has_statistics) / len(columns) * 20
            types = sum(1 for col in columns if is_type_appropriate(col)) / len(columns) * 15
        else:
            completeness = statistics = types = 0.0

        return QualityBreakdown(
            primary_key_score=30.0 if table.has_primary_key else 0.0,
            completeness_score=round(completeness, 2),
            statistics_score=round(statistics, 2),
            foreign_key_score=15.0 if has_fk else 0.0,
            type_appropriateness_score=round(types, 2),
        )

    def compute_metrics(self, tables: Sequence[TableInfo], declared: Sequence[DeclaredRelation],
                        implicit: Sequence[ImplicitRelation], ranked: Sequence[RankedRelation],
                        discovery_seconds: float = 0.0, degraded: bool = False) -> DiscoveryMetrics:
        """Coverage and rating for a discovery run"""
        total = len(tables)
        covered = set()
        for rel in ranked:
            covered.update((rel.source_table, rel.target_table))

        average_quality = sum(t.quality_score for t in tables) / total if total else 0.0
        coverage = len(covered) / total if total else 0.0
        blend = 0.5 * coverage + 0.5 * (average_quality / 100)

        if blend >= 0.8:
            rating = 'EXCELLENT'
        elif blend >= 0.6:
            rating = 'GOOD'
        elif blend >= 0.4:
            rating = 'FAIR'
        elif blend >= 0.2:
            rating = 'POOR'
        else:
            rating = 'CRITICAL'

        return DiscoveryMetrics(
            total_tables=total,
            declared_relations=len(declared),
            implicit_relations=len(implicit),
            total_relations=len(ranked),
            average_quality_score=round(average_quality, 2),
            relationship_coverage=round(coverage, 4),
            quality_rating=rating,
            discovery_seconds=round(discovery_seconds, 3),
            implicit_detection_degraded=degraded,
        )

    def build_relationship_graph(self, tables: Sequence[TableInfo],
                                 ranked: Sequence[RankedRelation]) -> nx.Graph:
        """Undirected graph of tables; each edge keeps its most important relation"""
        self.relationship_graph.clear()
        for table in tables:
            self.relationship_graph.add_node(table.full_name)

        for rel in ranked:
            if rel.source_table == rel.target_table:
                continue
            current = self.relationship_graph.get_edge_data(rel.source_table, rel.target_table)
            if current is None or rel.importance_score > current['relation'].importance_score:
                self.relationship_graph.add_edge(rel.source_table, rel.target_table,
                                                 relation=rel, weight=rel.importance_score)
        return self.relationship_graph

    def tables_within(self, focus_table: str, hop_limit: int) -> Dict[str, int]:
        """Hop distance from the focus table to every table reachable within the limit"""
        if focus_table not in self.relationship_graph:
            return {}
        distances = nx.single_source_shortest_path_length(self.relationship_graph, focus_table, cutoff=hop_limit)
        distances.pop(focus_table, None)
        return distances

    def relation_path(self, source: str, target: str) -> List[RankedRelation]:
        """Relations along the shortest graph path between two tables"""
        try:
            path = nx.shortest_path(self.relationship_graph, source, target)
        except (nx.NetworkXNoPath, nx.NodeNotFound):
            return []
        return [self.relationship_graph.edges[a, b]['relation'] for a, b in zip(path, path[1:])]
