"""Chart selection, payloads and dashboard layout."""

import json

import pytest

from quality_agent.agents.proposal_agent import ValidationProposal, ValidationType
from quality_agent.agents.sql_generation_agent import TranslatedValidation, TranslationMethod
from quality_agent.agents.verification_agent import (
    ExecutedValidation,
    ExecutionStatus,
    VerificationAgent,
    classify_result,
)
from quality_agent.agents.visualization_agent import (
    ChartType,
    VisualizationAgent,
    choose_chart_type,
    gauge_color,
)

GAUGE_ROW = {'total_records': 5, 'invalid_records': 1, 'quality_percentage': 80.0}


def executed(sequence, validation_type, rows, priority=5, description=None, columns=None):
    proposal = ValidationProposal(
        description=description or f"validation {sequence}",
        validation_type=validation_type,
        priority=priority,
        complexity='MEDIUM',
        involved_tables=('public.orders', 'public.customers'),
        sequence=sequence,
    )
    translated = TranslatedValidation(
        proposal=proposal,
        sql=f"SELECT {sequence}",
        is_valid_sql=True,
        translation_method=TranslationMethod.TEMPLATE,
    )
    if columns is None:
        columns = tuple(rows[0].keys()) if rows else ()
    return ExecutedValidation(
        translated=translated,
        execution_status=ExecutionStatus.SUCCESS,
        duration=0.02,
        row_count=len(rows),
        outcome=classify_result(rows),
        columns=tuple(columns),
    )


@pytest.mark.parametrize('validation_type,rows,description,expected', [
    (ValidationType.ANOMALY, [], None, ChartType.INFO_CARD),
    (ValidationType.ANOMALY, [GAUGE_ROW], None, ChartType.QUALITY_GAUGE),
    (ValidationType.ANOMALY, [{'order_date': '2024-01-01', 'n': 3}], None, ChartType.TIMELINE),
    (ValidationType.TEMPORAL_CONSISTENCY, [{'total_records': 3, 'invalid_records': 1}], None, ChartType.TIMELINE),
    (ValidationType.ANOMALY, [{'status': 'PAID', 'n': 3}], None, ChartType.PIE_CHART),
    (ValidationType.STATUS_CONSISTENCY, [{'total_records': 3, 'invalid_records': 0}], None, ChartType.PIE_CHART),
    (ValidationType.ANOMALY, [{'amount': i, 'n': 1} for i in range(6)], None, ChartType.HISTOGRAM),
    (ValidationType.REFERENTIAL_INTEGRITY, [{'total_records': 5, 'orphan_count': 1}], None,
     ChartType.NETWORK_GRAPH),
    (ValidationType.BUSINESS_RULE, [{'total_records': 5, 'invalid_records': 1}], 'Amounts agree after the join',
     ChartType.NETWORK_GRAPH),
    (ValidationType.ANOMALY, [{'total_records': 3, 'issues_found': 0, 'notes': 'manual review required'}], None,
     ChartType.BAR_CHART),
    (ValidationType.ANOMALY, [{'total_records': 3, 'invalid_records': 0}], None, ChartType.INFO_CARD),
])
def test_choose_chart_type(validation_type, rows, description, expected):
    assert choose_chart_type(executed(1, validation_type, rows, description=description)) == expected


def test_chart_choice_is_deterministic():
    item = executed(1, ValidationType.UNIQUENESS, [GAUGE_ROW])
    agent = VisualizationAgent()
    assert agent.create_visualization(item) == agent.create_visualization(item)


@pytest.mark.parametrize('value,color', [(None, 'gray'), (95, 'green'), (80, 'green'), (60, 'orange'),
                                         (50, 'orange'), (49.9, 'red')])
def test_gauge_color(value, color):
    assert gauge_color(value) == color


class TestPayloads:

    def test_gauge_payload(self):
        viz = VisualizationAgent().create_visualization(executed(2, ValidationType.UNIQUENESS, [GAUGE_ROW]))

        assert viz.chart_type == ChartType.QUALITY_GAUGE
        assert viz.data == {'value': 80.0, 'max': 100, 'color': 'green', 'issues': 1, 'total_records': 5}
        assert viz.config['thresholds'] == [50, 80, 100]
        assert viz.title == '#2 validation 2'
        assert viz.validation_sequence == 2
        assert viz.sql is None

    def test_pie_payload_from_counts(self):
        viz = VisualizationAgent().create_visualization(
            executed(1, ValidationType.STATUS_CONSISTENCY, [{'total_records': 10, 'invalid_records': 3}]))
        assert viz.data == {'slices': [{'label': 'valid', 'value': 7}, {'label': 'problems', 'value': 3}]}

    def test_pie_payload_from_categories(self):
        rows = [{'status': 'PAID'}, {'status': 'OPEN'}, {'status': 'PAID'}]
        viz = VisualizationAgent().create_visualization(executed(1, ValidationType.ANOMALY, rows))
        assert viz.data == {'slices': [{'label': 'PAID', 'value': 2}, {'label': 'OPEN', 'value': 1}]}

    def test_network_payload(self):
        viz = VisualizationAgent().create_visualization(
            executed(1, ValidationType.REFERENTIAL_INTEGRITY, [{'total_records': 5, 'orphan_count': 2}]))

        assert [node['id'] for node in viz.data['nodes']] == ['public.orders', 'public.customers']
        assert viz.data['nodes'][0]['issues'] == 2
        assert viz.data['issues'] == 2

    def test_info_card_payload(self):
        viz = VisualizationAgent().create_visualization(executed(1, ValidationType.ANOMALY, []))
        assert viz.data['status'] == 'no-data'
        assert viz.data['row_count'] == 0

    def test_sql_on_request(self):
        viz = VisualizationAgent(include_sql=True).create_visualization(
            executed(1, ValidationType.ANOMALY, [GAUGE_ROW]))
        assert viz.sql == 'SELECT 1'


class TestDashboard:

    @pytest.fixture
    def summary(self):
        items = [
            executed(1, ValidationType.REFERENTIAL_INTEGRITY, [GAUGE_ROW], priority=9),
            executed(2, ValidationType.UNIQUENESS, [GAUGE_ROW], priority=8),
            executed(3, ValidationType.UNIQUENESS, [GAUGE_ROW], priority=6),
            executed(4, ValidationType.ANOMALY, [], priority=3),
        ]
        translated = [item.translated for item in items]
        return VerificationAgent().summarize('public.orders', translated, items, stage_timings={'total': 2.5})

    def test_overview_comes_first(self, summary):
        dashboard = VisualizationAgent().create_dashboard(summary)
        overview = dashboard.visualizations[0]

        assert overview.id == 'overview'
        assert overview.chart_type == ChartType.DASHBOARD_OVERVIEW
        assert overview.priority == 10
        assert overview.data['total_validations'] == 4
        assert overview.data['total_issues'] == 3
        assert overview.validation_sequence is None

    def test_one_spec_per_validation_plus_aggregates(self, summary):
        dashboard = VisualizationAgent().create_dashboard(summary)
        per_validation = [v for v in dashboard.visualizations if v.validation_sequence is not None]

        assert [v.validation_sequence for v in per_validation] == [1, 2, 3, 4]
        aggregate = dashboard.get('type-uniqueness')
        assert aggregate.chart_type == ChartType.BAR_CHART
        assert aggregate.priority == 6
        assert [bar['label'] for bar in aggregate.data['bars']] == ['#2', '#3']
        assert dashboard.get('type-anomaly') is None
        assert len(dashboard.visualizations) == 6

    def test_layout(self, summary):
        dashboard = VisualizationAgent().create_dashboard(summary)
        ids = {v.validation_sequence: v.id for v in dashboard.visualizations if v.validation_sequence}

        assert dashboard.layout[0] == {'row': 1, 'columns': 1, 'items': ['overview']}
        assert dashboard.layout[1] == {'row': 2, 'columns': 2, 'items': [ids[1], ids[2]]}
        assert dashboard.layout[2] == {'row': 3, 'columns': 3, 'items': ['type-uniqueness', ids[3], ids[4]]}

    def test_insights(self, summary):
        insights = VisualizationAgent().create_dashboard(summary).insights

        assert any('3 data-quality issue(s)' in i for i in insights)
        assert any('completed quickly' in i for i in insights)

    def test_dashboard_is_deterministic(self, summary):
        agent = VisualizationAgent()
        first, second = agent.create_dashboard(summary), agent.create_dashboard(summary)

        assert first.visualizations == second.visualizations
        assert first.layout == second.layout

    def test_to_dict_is_json_serialisable(self, summary):
        data = VisualizationAgent().create_dashboard(summary).to_dict()

        json.dumps(data)
        assert data['visualizations'][0]['chart_type'] == 'dashboard-overview'
