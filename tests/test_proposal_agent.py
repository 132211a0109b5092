"""Proposal prompt, response parsing and relevance scoring."""

import json
import time

import pytest

from conftest import FakeTextGenerator, col, make_table, pk, proposals_json
from quality_agent.agents.context_agent import ContextAgent
from quality_agent.agents.proposal_agent import (
    ProposalAgent,
    ValidationProposal,
    ValidationType,
    classify_validation_type,
    parse_validation_type,
)
from quality_agent.config import PipelineConfig
from quality_agent.database.models import ImplicitRelation, SchemaModel
from quality_agent.errors import GenerationError
from quality_agent.utils.schema_analyzer import NAMING_PATTERN, SchemaAnalyzer


REFERENTIAL = {
    'description': 'Find invoices whose client_id has no matching client',
    'validation_type': 'referential-integrity',
    'priority': 9,
    'complexity': 'MEDIUM',
    'involved_tables': ['invoices', 'clients'],
}

UNIQUENESS = {
    'description': 'Check for duplicate invoice numbers',
    'validation_type': 'uniqueness',
    'priority': 6,
    'complexity': 'LOW',
    'involved_tables': ['invoices'],
}


@pytest.fixture
def context():
    tables = [
        make_table('invoices', [pk(), col('client_id'), col('invoice_number', 'varchar(20)', position=3)]),
        make_table('clients', [pk(), col('name', 'varchar(100)')]),
    ]
    implicit = [ImplicitRelation('public.invoices', 'client_id', 'public.clients', 'id', confidence=0.8,
                                 detection_method=NAMING_PATTERN, evidence='naming')]
    ranked = SchemaAnalyzer().rank_relationships(tables, [], implicit)
    schema = SchemaModel(database_name='billing', dialect='postgresql', tables=tuple(tables),
                         implicit_relations=tuple(implicit), ranked_relations=tuple(ranked))
    return ContextAgent().collect_context(schema, 'invoices')


class TestParsing:

    def test_json_array(self, context):
        result = ProposalAgent(FakeTextGenerator()).parse_response(proposals_json(REFERENTIAL, UNIQUENESS), context)

        assert result.focus_table == 'public.invoices'
        assert result.dropped_count == 0
        first, second = result.proposals
        assert first.validation_type == ValidationType.REFERENTIAL_INTEGRITY
        assert first.involved_tables == ('public.invoices', 'public.clients')
        assert first.involved_relationships[0].join_condition == 'public.invoices.client_id = public.clients.id'
        assert first.relevance_score == 71.0
        assert 'high-priority' in first.tags
        assert 'cross-table' in first.tags
        assert [p.sequence for p in result.proposals] == [1, 2]

        assert second.validation_type == ValidationType.UNIQUENESS
        assert second.involved_tables == ('public.invoices',)
        assert second.relevance_score == 6 * 4 + 0 + 10 + 5
        assert first.id != second.id

    def test_fenced_object_with_insights(self, context):
        text = ("Here you go:\n```json\n"
                + json.dumps({'validations': [REFERENTIAL], 'insights': 'Client references look fragile'})
                + "\n```")
        result = ProposalAgent(FakeTextGenerator()).parse_response(text, context)

        assert len(result.proposals) == 1
        assert 'Client references look fragile' in result.insights.key_insights

    def test_numbered_line_fallback(self, context):
        text = ("1. Find invoices without a matching clients record (orphans)\n"
                "2. Check for duplicate invoice numbers\n"
                "Some closing remark")
        result = ProposalAgent(FakeTextGenerator()).parse_response(text, context)

        first, second = result.proposals
        assert first.validation_type == ValidationType.REFERENTIAL_INTEGRITY
        assert first.priority == 9
        assert set(first.involved_tables) == {'public.invoices', 'public.clients'}
        assert second.validation_type == ValidationType.UNIQUENESS
        assert second.priority == 7
        assert second.involved_tables == ('public.invoices',)

    def test_incomplete_entries_are_dropped(self, context):
        entries = [
            REFERENTIAL,
            {'validation_type': 'uniqueness', 'involved_tables': ['invoices']},
            {'description': 'No type given', 'involved_tables': ['invoices']},
            {'description': 'Unknown table', 'validation_type': 'format', 'involved_tables': ['payments']},
        ]
        result = ProposalAgent(FakeTextGenerator()).parse_response(json.dumps(entries), context)

        assert len(result.proposals) == 1
        assert result.dropped_count == 3

    def test_priority_is_clamped(self, context):
        entries = [dict(UNIQUENESS, priority=15), dict(UNIQUENESS, priority='soon')]
        result = ProposalAgent(FakeTextGenerator()).parse_response(json.dumps(entries), context)
        assert [p.priority for p in result.proposals] == [10, 5]

    @pytest.mark.parametrize('text', ['', 'I cannot help with that.', '[]', json.dumps([{'priority': 3}])])
    def test_nothing_usable_is_malformed(self, context, text):
        with pytest.raises(GenerationError) as exc_info:
            ProposalAgent(FakeTextGenerator()).parse_response(text, context)
        assert exc_info.value.reason == 'malformed'


class TestPropose:

    def test_request_shape(self, context):
        """A SIMPLE context asks for six proposals at temperature 0.3 within 2000 tokens."""
        generator = FakeTextGenerator([proposals_json(REFERENTIAL)])
        result = ProposalAgent(generator).propose(context, 'secret-key')

        request = generator.requests[0]
        assert request.temperature == 0.3
        assert request.max_tokens == 2000
        assert 'propose 6 cross-table' in request.prompt
        assert 'FOCUS TABLE: public.invoices' in request.prompt
        assert generator.credentials == ['secret-key']
        assert len(result.proposals) == 1

    def test_generation_errors_propagate(self, context):
        generator = FakeTextGenerator(error=GenerationError('bad key', reason='credential'))
        with pytest.raises(GenerationError) as exc_info:
            ProposalAgent(generator).propose(context, None)
        assert exc_info.value.reason == 'credential'

    def test_slow_generator_times_out(self, context):
        class SlowGenerator(FakeTextGenerator):
            def generate(self, request, credential):
                time.sleep(1.0)
                return super().generate(request, credential)

        agent = ProposalAgent(SlowGenerator([proposals_json(REFERENTIAL)]),
                              PipelineConfig(generation_timeout_seconds=0.1))
        with pytest.raises(GenerationError) as exc_info:
            agent.propose(context, 'key')
        assert exc_info.value.reason == 'timeout'


@pytest.mark.parametrize('text,expected', [
    ('Orders without a matching customer', ValidationType.REFERENTIAL_INTEGRITY),
    ('Order date must not be before the customer signup date', ValidationType.TEMPORAL_CONSISTENCY),
    ('Order status disagrees with payment status', ValidationType.STATUS_CONSISTENCY),
    ('Duplicate customer emails', ValidationType.UNIQUENESS),
    ('Phone numbers follow the national format', ValidationType.FORMAT),
    ('Unusual spikes in refund amounts', ValidationType.ANOMALY),
    ('Discounts never exceed list price', ValidationType.BUSINESS_RULE),
])
def test_classify_validation_type(text, expected):
    assert classify_validation_type(text) == expected


def test_parse_validation_type_accepts_names():
    assert parse_validation_type('REFERENTIAL_INTEGRITY') == ValidationType.REFERENTIAL_INTEGRITY
    assert parse_validation_type('temporal consistency') == ValidationType.TEMPORAL_CONSISTENCY
    assert parse_validation_type('') is None
    assert parse_validation_type(7) is None


def test_priority_outside_range_is_refused():
    with pytest.raises(ValueError):
        ValidationProposal(description='x', validation_type=ValidationType.FORMAT, priority=0,
                           complexity='LOW', involved_tables=('public.t',))


def test_insights_summarise_proposals(context):
    result = ProposalAgent(FakeTextGenerator()).parse_response(proposals_json(REFERENTIAL, UNIQUENESS), context)
    insights = result.insights

    assert insights.type_distribution == {'referential-integrity': 1, 'uniqueness': 1}
    assert insights.high_priority == (REFERENTIAL['description'],)
    assert insights.most_involved_tables[0] == ('public.invoices', 2)
    assert insights.complexity_distribution == {'MEDIUM': 1, 'LOW': 1}
