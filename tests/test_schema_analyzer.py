"""Tests for implicit relationship detection, ranking and table scoring."""

import pytest

from conftest import col, declared, make_table, pk
from quality_agent.database.models import ColumnInfo, ImplicitRelation, RelationType
from quality_agent.utils.schema_analyzer import (
    COLUMN_NAME_MATCH,
    NAMING_PATTERN,
    SHORT_PREFIX_PATTERN,
    SchemaAnalyzer,
    name_variants,
    reference_stem,
)


@pytest.fixture
def analyzer():
    return SchemaAnalyzer()


def test_name_variants_cover_singular_and_plural():
    """Plural and singular spellings are both produced."""
    assert name_variants('client') == {'client', 'clients'}
    assert 'category' in name_variants('categories')
    assert 'categories' in name_variants('category')
    assert 'address' in name_variants('addresses')


def test_reference_stem():
    """Key-like column names yield the referenced table stem."""
    assert reference_stem('customer_id') == 'customer'
    assert reference_stem('id_cliente') == 'cliente'
    assert reference_stem('userid') == 'user'
    assert reference_stem('uuid') is None
    assert reference_stem('name') is None


def test_naming_pattern_plural_table(analyzer):
    """invoices.client_id points at clients.id."""
    tables = [
        make_table('invoices', [pk(), col('client_id')]),
        make_table('clients', [pk()]),
    ]
    found = analyzer.detect_implicit_relationships(tables, [])

    assert len(found) == 1
    rel = found[0]
    assert rel.source_table == 'public.invoices'
    assert rel.source_column == 'client_id'
    assert rel.target_table == 'public.clients'
    assert rel.target_column == 'id'
    assert rel.detection_method == NAMING_PATTERN
    assert rel.confidence == pytest.approx(0.8)


def test_naming_pattern_exact_table_name(analyzer):
    """An exact table-name match scores higher than a plural match."""
    tables = [
        make_table('payment', [pk(), col('client_id')]),
        make_table('client', [pk()]),
    ]
    found = analyzer.detect_implicit_relationships(tables, [])

    assert [r.confidence for r in found] == [pytest.approx(0.85)]


def test_short_prefix_table(analyzer):
    """sales.product_id matches a table named tb_product."""
    tables = [
        make_table('sales', [pk(), col('product_id')]),
        make_table('tb_product', [pk()]),
    ]
    found = analyzer.detect_implicit_relationships(tables, [])

    assert len(found) == 1
    assert found[0].detection_method == SHORT_PREFIX_PATTERN
    assert found[0].target_table == 'public.tb_product'


def test_audit_column_points_at_users(analyzer):
    """created_by is linked to the users table."""
    tables = [
        make_table('documents', [pk(), col('created_by')]),
        make_table('users', [pk()]),
    ]
    found = analyzer.detect_implicit_relationships(tables, [])

    assert len(found) == 1
    assert found[0].source_column == 'created_by'
    assert found[0].target_table == 'public.users'
    assert found[0].confidence == pytest.approx(0.6)


def test_column_name_match_between_tables(analyzer):
    """The same key-like column in two tables is reported with low confidence."""
    tables = [
        make_table('shipments', [pk(), col('tracking_code', 'varchar(40)')]),
        make_table('parcels', [pk(), col('tracking_code', 'varchar(40)')]),
    ]
    found = analyzer.detect_implicit_relationships(tables, [])

    assert len(found) == 1
    assert found[0].detection_method == COLUMN_NAME_MATCH
    assert found[0].confidence == pytest.approx(0.4)


def test_declared_pair_is_never_duplicated(analyzer):
    """A pair that already has a declared relation produces no implicit relation."""
    tables = [
        make_table('orders', [pk(), col('customer_id', is_foreign_key=True)]),
        make_table('customers', [pk(), col('last_order_id', position=3)]),
    ]
    relations = [declared('orders', 'customer_id', 'customers')]

    found = analyzer.detect_implicit_relationships(tables, relations)

    pairs = {frozenset((r.source_table, r.target_table)) for r in found}
    assert frozenset(('public.orders', 'public.customers')) not in pairs


def test_incompatible_types_are_skipped(analyzer):
    """A text reference column cannot point at an integer key."""
    tables = [
        make_table('invoices', [pk(), col('client_id', 'varchar(10)')]),
        make_table('clients', [pk()]),
    ]
    assert analyzer.detect_implicit_relationships(tables, []) == []


def test_detection_stays_within_one_schema(analyzer):
    """Tables in different schemas are never paired."""
    tables = [
        make_table('invoices', [pk(), col('client_id')], schema='sales'),
        make_table('clients', [pk()], schema='crm'),
    ]
    assert analyzer.detect_implicit_relationships(tables, []) == []


def test_candidate_cap_bounds_output():
    """The detector never returns more than its candidate cap."""
    tables = [
        make_table('invoices', [pk(), col('client_id'), col('product_id', position=3)]),
        make_table('clients', [pk()]),
        make_table('products', [pk()]),
    ]
    assert len(SchemaAnalyzer(candidate_cap=1).detect_implicit_relationships(tables, [])) == 1
    assert len(SchemaAnalyzer(candidate_cap=10).detect_implicit_relationships(tables, [])) == 2


def test_detection_is_deterministic(analyzer):
    """Same input, same output."""
    tables = [
        make_table('invoices', [pk(), col('client_id'), col('product_id', position=3)]),
        make_table('products', [pk()]),
        make_table('clients', [pk()]),
    ]
    first = analyzer.detect_implicit_relationships(tables, [])
    second = analyzer.detect_implicit_relationships(list(reversed(tables)), [])
    assert first == second
    assert all(0.0 <= r.confidence <= 1.0 for r in first)


def test_implicit_confidence_is_validated():
    """Confidence outside [0, 1] is refused."""
    with pytest.raises(ValueError):
        ImplicitRelation('a.b', 'c', 'a.d', 'id', confidence=1.2, detection_method=NAMING_PATTERN, evidence='')


def test_declared_relations_rank_first_even_against_full_confidence(analyzer):
    """Declared relations sort before an implicit relation with confidence 1.0."""
    tables = [
        make_table('orders', [pk(), col('customer_id', is_foreign_key=True)]),
        make_table('customers', [pk()]),
        make_table('notes', [pk(), col('author_id')]),
        make_table('authors', [pk()]),
    ]
    implicit = [ImplicitRelation('public.notes', 'author_id', 'public.authors', 'id', confidence=1.0,
                                 detection_method=NAMING_PATTERN, evidence='test')]

    ranked = analyzer.rank_relationships(tables, [declared('orders', 'customer_id', 'customers')], implicit)

    assert [r.relation_type for r in ranked] == [RelationType.DECLARED, RelationType.IMPLICIT]
    assert ranked[0].importance_score == 10
    assert ranked[1].importance_score == 10
    assert 'referential-integrity' in ranked[0].validation_opportunities
    assert 'data-consistency' in ranked[1].validation_opportunities


@pytest.mark.parametrize('confidence,importance', [(0.8, 8), (0.65, 7), (0.4, 5), (0.0, 2)])
def test_implicit_importance_formula(analyzer, confidence, importance):
    """Implicit importance is round(confidence * 8) + 2."""
    tables = [make_table('a', [pk(), col('b_id')]), make_table('b', [pk()])]
    implicit = [ImplicitRelation('public.a', 'b_id', 'public.b', 'id', confidence=confidence,
                                 detection_method=NAMING_PATTERN, evidence='')]
    ranked = analyzer.rank_relationships(tables, [], implicit)
    assert ranked[0].importance_score == importance


def test_ranking_drops_relations_to_unknown_tables(analyzer):
    """Every ranked relation references tables of the same schema model."""
    tables = [make_table('orders', [pk(), col('customer_id', is_foreign_key=True)])]
    ranked = analyzer.rank_relationships(tables, [declared('orders', 'customer_id', 'customers')], [])
    assert ranked == []


def test_score_table_breakdown(analyzer):
    """Primary key, completeness, foreign key and types add up; no statistics scores zero."""
    table = make_table('orders', [
        pk(),
        col('customer_id', is_foreign_key=True),
        col('email', 'varchar(100)', position=3),
        col('created_at', 'timestamp', position=4),
    ])
    breakdown = analyzer.score_table(table, [])

    assert breakdown.primary_key_score == 30
    assert breakdown.completeness_score == 20
    assert breakdown.statistics_score == 0
    assert breakdown.foreign_key_score == 15
    assert breakdown.type_appropriateness_score == 15
    assert breakdown.total_score == 80


def test_score_table_stays_in_range(analyzer):
    """Poor tables still score within [0, 100]."""
    table = make_table('log', [
        ColumnInfo(name='created_at', data_type='text', null_fraction=0.9, distinct_values=-1),
        ColumnInfo(name='ref_id', data_type='text', null_fraction=0.5),
    ])
    breakdown = analyzer.score_table(table, [])

    assert breakdown.primary_key_score == 0
    assert 0 <= breakdown.total_score <= 100
    assert breakdown.type_appropriateness_score == 0


def test_metrics_rating_and_coverage(analyzer):
    """Coverage counts tables participating in at least one relation."""
    tables = [
        make_table('orders', [pk(), col('customer_id', is_foreign_key=True)]),
        make_table('customers', [pk()]),
        make_table('audit', [col('message', 'text')]),
    ]
    relations = [declared('orders', 'customer_id', 'customers')]
    ranked = analyzer.rank_relationships(tables, relations, [])
    metrics = analyzer.compute_metrics(tables, relations, [], ranked)

    assert metrics.total_tables == 3
    assert metrics.declared_relations == 1
    assert metrics.relationship_coverage == pytest.approx(2 / 3, abs=1e-4)
    assert metrics.quality_rating in ('EXCELLENT', 'GOOD', 'FAIR', 'POOR', 'CRITICAL')


def test_graph_neighbourhood_and_paths(analyzer):
    """Hop distances respect the limit; paths return the relations walked."""
    tables = [
        make_table('order_items', [pk(), col('order_id', is_foreign_key=True)]),
        make_table('orders', [pk(), col('customer_id', is_foreign_key=True)]),
        make_table('customers', [pk(), col('region_id', is_foreign_key=True)]),
        make_table('regions', [pk()]),
    ]
    relations = [
        declared('order_items', 'order_id', 'orders'),
        declared('orders', 'customer_id', 'customers'),
        declared('customers', 'region_id', 'regions'),
    ]
    ranked = analyzer.rank_relationships(tables, relations, [])
    analyzer.build_relationship_graph(tables, ranked)

    within = analyzer.tables_within('public.orders', 1)
    assert within == {'public.order_items': 1, 'public.customers': 1}
    assert analyzer.tables_within('public.orders', 2)['public.regions'] == 2

    path = analyzer.relation_path('public.orders', 'public.regions')
    assert [r.source_column for r in path] == ['customer_id', 'region_id']
    assert analyzer.relation_path('public.orders', 'public.missing') == []
