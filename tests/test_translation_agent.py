"""Proposal-to-SQL translation: templates, generated SQL, generic fallback and placeholders."""

import pytest

from conftest import FakeTextGenerator
from quality_agent.agents.discovery_agent import SchemaDiscoveryAgent
from quality_agent.agents.proposal_agent import InvolvedRelationship, ValidationProposal, ValidationType
from quality_agent.agents.sql_generation_agent import (
    SQLGenerationAgent,
    TranslationMethod,
    extract_sql,
    quote_qualified,
)
from quality_agent.errors import GenerationError
from quality_agent.utils.cancellation import CancellationToken

PLACEHOLDER_SQL = "SELECT 'translation unavailable' AS notes"


def make_proposal(description, validation_type, tables, relationships=(), priority=5, sequence=1):
    return ValidationProposal(
        description=description,
        validation_type=validation_type,
        priority=priority,
        complexity='MEDIUM',
        involved_tables=tuple(tables),
        involved_relationships=tuple(relationships),
        sequence=sequence,
    )


@pytest.fixture
def shop(scenario_a, sqlite_adapter_factory, fast_config):
    """Discovered schema of the orders/customers database plus its adapter."""
    adapter = sqlite_adapter_factory(scenario_a)
    return SchemaDiscoveryAgent(fast_config).discover(adapter), adapter


@pytest.fixture
def billing(scenario_b, sqlite_adapter_factory, fast_config):
    adapter = sqlite_adapter_factory(scenario_b)
    return SchemaDiscoveryAgent(fast_config).discover(adapter), adapter


def orders_relationship(schema):
    return InvolvedRelationship.from_ranked(schema.ranked_relations[0])


class TestTemplates:

    def test_referential_template(self, shop):
        schema, adapter = shop
        proposal = make_proposal('Orders must reference an existing customer',
                                 ValidationType.REFERENTIAL_INTEGRITY, ['main.orders', 'main.customers'],
                                 [orders_relationship(schema)])

        translated = SQLGenerationAgent().translate(proposal, schema)

        assert translated.is_valid_sql
        assert translated.translation_method == TranslationMethod.TEMPLATE
        assert translated.template_name == 'orphan_count'
        assert not translated.requires_manual_review
        assert translated.sql.startswith('-- Validation 1: referential-integrity | template: orphan_count')
        assert translated.sql.rstrip().endswith('LIMIT 10000')

        row = adapter.execute_read_only(translated.sql, 5).rows[0]
        assert row['total_records'] == 3
        assert row['invalid_records'] == 0

    def test_temporal_template_across_relation(self, shop):
        """An order placed before its customer was created is counted as invalid."""
        schema, adapter = shop
        proposal = make_proposal('Order date must not be before the customer creation date',
                                 ValidationType.TEMPORAL_CONSISTENCY, ['main.orders', 'main.customers'],
                                 [orders_relationship(schema)])

        translated = SQLGenerationAgent().translate(proposal, schema)

        assert translated.template_name == 'temporal_order'
        row = adapter.execute_read_only(translated.sql, 5).rows[0]
        assert row['total_records'] == 3
        assert row['invalid_records'] == 1
        assert row['valid_records'] == 2

    def test_status_template_single_table(self, shop):
        schema, adapter = shop
        proposal = make_proposal('Every order has a status', ValidationType.STATUS_CONSISTENCY, ['main.orders'])

        translated = SQLGenerationAgent().translate(proposal, schema)

        assert translated.template_name == 'status_consistency'
        row = adapter.execute_read_only(translated.sql, 5).rows[0]
        assert row['invalid_records'] == 0
        assert row['quality_percentage'] == 100.0

    def test_duplicate_template(self, billing):
        schema, adapter = billing
        proposal = make_proposal('Check for duplicate invoice numbers', ValidationType.UNIQUENESS,
                                 ['main.invoices'])

        translated = SQLGenerationAgent().translate(proposal, schema)

        assert translated.template_name == 'duplicate_detection'
        assert '"invoice_number"' in translated.sql
        row = adapter.execute_read_only(translated.sql, 5).rows[0]
        assert (row['total_records'], row['valid_records'], row['invalid_records']) == (5, 3, 2)
        assert row['quality_percentage'] == 60.0

    def test_lexical_cue_finds_template_for_business_rule(self, shop):
        """A business rule that talks about orphans still gets the orphan template."""
        schema, _ = shop
        proposal = make_proposal('No orphan orders', ValidationType.BUSINESS_RULE,
                                 ['main.orders'], [orders_relationship(schema)])

        agent = SQLGenerationAgent()
        assert agent.candidate_templates(proposal) == ['orphan_count']
        assert agent.translate(proposal, schema).template_name == 'orphan_count'


class TestFallbacks:

    def test_generic_when_no_template_and_no_credential(self, shop):
        schema, adapter = shop
        generator = FakeTextGenerator(['SELECT 1'])
        proposal = make_proposal('Order totals stay below the customer credit limit',
                                 ValidationType.BUSINESS_RULE, ['main.orders', 'main.customers'])

        translated = SQLGenerationAgent(generator).translate(proposal, schema, credential=None)

        assert translated.translation_method == TranslationMethod.GENERIC
        assert translated.is_valid_sql
        assert translated.requires_manual_review
        assert 'manual review required' in translated.sql
        assert generator.requests == []
        row = adapter.execute_read_only(translated.sql, 5).rows[0]
        assert row['total_records'] == 3
        assert row['issues_found'] == 0

    def test_generated_sql(self, shop):
        schema, _ = shop
        generator = FakeTextGenerator([
            "Here is the query:\n```sql\nSELECT COUNT(*) AS total_records, 0 AS invalid_records FROM orders\n```"
        ])
        proposal = make_proposal('Order totals stay below the customer credit limit',
                                 ValidationType.BUSINESS_RULE, ['main.orders'])

        translated = SQLGenerationAgent(generator).translate(proposal, schema, credential='key')

        assert translated.translation_method == TranslationMethod.GENERATED
        assert translated.is_valid_sql
        assert 'FROM orders' in translated.sql
        assert translated.sql.rstrip().endswith('LIMIT 10000')
        request = generator.requests[0]
        assert request.temperature == 0.1
        assert request.max_tokens == 1000
        assert 'main.orders(' in request.prompt

    def test_unsafe_generated_sql_is_rejected(self, shop):
        schema, _ = shop
        generator = FakeTextGenerator(['SELECT * FROM orders; DROP TABLE orders;'])
        proposal = make_proposal('Order totals stay below the customer credit limit',
                                 ValidationType.BUSINESS_RULE, ['main.orders'])

        translated = SQLGenerationAgent(generator).translate(proposal, schema, credential='key')

        assert translated.translation_method == TranslationMethod.GENERATED
        assert not translated.is_valid_sql
        assert translated.rejection_reason.startswith('mutation-keyword')

    def test_generation_failure_falls_back_to_generic(self, shop):
        schema, _ = shop
        generator = FakeTextGenerator(error=GenerationError('quota', reason='rate_limited'))
        proposal = make_proposal('Order totals stay below the customer credit limit',
                                 ValidationType.BUSINESS_RULE, ['main.orders'])

        translated = SQLGenerationAgent(generator).translate(proposal, schema, credential='key')

        assert translated.translation_method == TranslationMethod.GENERIC
        assert translated.is_valid_sql

    def test_unknown_tables_yield_placeholder(self, shop):
        schema, _ = shop
        proposal = make_proposal('Payments match invoices', ValidationType.BUSINESS_RULE, ['main.payments'])

        translated = SQLGenerationAgent().translate(proposal, schema)

        assert translated.sql == PLACEHOLDER_SQL
        assert not translated.is_valid_sql
        assert translated.requires_manual_review
        assert translated.rejection_reason

    def test_cancelled_token_yields_placeholder(self, shop):
        schema, _ = shop
        token = CancellationToken()
        token.cancel()
        proposal = make_proposal('Every order has a status', ValidationType.STATUS_CONSISTENCY, ['main.orders'])

        translated = SQLGenerationAgent().translate(proposal, schema, token=token)

        assert translated.sql == PLACEHOLDER_SQL
        assert translated.rejection_reason == 'cancelled before translation'


def test_translate_many_keeps_one_result_per_proposal(shop):
    """Template, generic and placeholder results come back in proposal order."""
    schema, _ = shop
    proposals = [
        make_proposal('Orders must reference an existing customer', ValidationType.REFERENTIAL_INTEGRITY,
                      ['main.orders', 'main.customers'], [orders_relationship(schema)], sequence=1),
        make_proposal('Order totals stay below the customer credit limit', ValidationType.BUSINESS_RULE,
                      ['main.orders'], sequence=2),
        make_proposal('Payments match invoices', ValidationType.BUSINESS_RULE, ['main.payments'], sequence=3),
    ]

    results = SQLGenerationAgent().translate_many(proposals, schema)

    assert [r.proposal.sequence for r in results] == [1, 2, 3]
    assert [r.translation_method for r in results] == [
        TranslationMethod.TEMPLATE, TranslationMethod.GENERIC, TranslationMethod.GENERIC,
    ]
    assert [r.is_valid_sql for r in results] == [True, True, False]


@pytest.mark.parametrize('text,expected', [
    ("```sql\nSELECT 1\n```", 'SELECT 1'),
    ("```\nSELECT 2\n```", 'SELECT 2'),
    ("```postgresql\nSELECT 3\nFROM t\n```", 'SELECT 3\nFROM t'),
    ("```PostgreSQL \n-- check\nSELECT 4\n```", '-- check\nSELECT 4'),
    ("```sql SELECT 5```", 'SELECT 5'),
    ("```SELECT 6```", 'SELECT 6'),
    ("Sure! Here it is:\nSELECT a\nFROM t;\nHope this helps", 'SELECT a\nFROM t;'),
    ("WITH x AS (SELECT 1) SELECT * FROM x", 'WITH x AS (SELECT 1) SELECT * FROM x'),
    ("I could not write a query.", ''),
])
def test_extract_sql(text, expected):
    assert extract_sql(text) == expected


def test_quote_qualified_per_dialect():
    assert quote_qualified('public.orders', 'postgresql') == '"public"."orders"'
    assert quote_qualified('shop.orders', 'mysql') == '`shop`.`orders`'
