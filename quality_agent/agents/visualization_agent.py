"""
Visualization agent: choose a chart type per validation and lay out the dashboard
"""

import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence, Tuple

from ..utils.logger import get_logger
from ..utils.serialization import to_jsonable
from .proposal_agent import ValidationType
from .verification_agent import ExecutedValidation, ExecutionSummary

logger = get_logger("VisualizationAgent")


class ChartType(Enum):
    INFO_CARD = "info-card"
    QUALITY_GAUGE = "quality-gauge"
    TIMELINE = "timeline"
    PIE_CHART = "pie-chart"
    HISTOGRAM = "histogram"
    NETWORK_GRAPH = "network-graph"
    BAR_CHART = "bar-chart"
    DASHBOARD_OVERVIEW = "dashboard-overview"


PERCENTAGE_COLUMN = re.compile(r'percent|pct|ratio', re.IGNORECASE)
TEMPORAL_COLUMN = re.compile(r'date|time|_at$|^at_|temporal|month|year|day', re.IGNORECASE)
CATEGORY_COLUMN = re.compile(r'status|category|type|state', re.IGNORECASE)
RELATIONSHIP_WORDS = re.compile(r'relationship|relation|foreign key|references?\b|join', re.IGNORECASE)

OVERVIEW_PRIORITY = 10
AGGREGATE_PRIORITY = 6
GAUGE_THRESHOLDS = (50, 80, 100)
MAX_SERIES_ROWS = 50
MAX_BAR_ROWS = 10


@dataclass(frozen=True)
class VisualizationSpec:
    """One chart: type, processed payload and rendering configuration"""
    id: str
    chart_type: ChartType
    title: str
    data: Dict[str, Any]
    config: Dict[str, Any]
    priority: int
    validation_sequence: Optional[int] = None
    sql: Optional[str] = None


@dataclass(frozen=True)
class DashboardSpec:
    """All visualizations of a run plus layout and narrative insights"""
    title: str
    description: str
    visualizations: Tuple[VisualizationSpec, ...]
    layout: Tuple[Dict[str, Any], ...]
    insights: Tuple[str, ...]
    generated_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def get(self, viz_id: str) -> Optional[VisualizationSpec]:
        for viz in self.visualizations:
            if viz.id == viz_id:
                return viz
        return None

    def to_dict(self) -> Dict[str, Any]:
        return to_jsonable({
            'title': self.title,
            'description': self.description,
            'visualizations': self.visualizations,
            'layout': self.layout,
            'insights': self.insights,
            'generated_at': self.generated_at,
        })


def _result_columns(executed: ExecutedValidation) -> Tuple[str, ...]:
    if executed.columns:
        return executed.columns
    rows = executed.outcome.rows
    return tuple(rows[0].keys()) if rows else ()


def choose_chart_type(executed: ExecutedValidation) -> ChartType:
    """First matching rule wins; depends only on result shape, type and description"""
    rows = executed.outcome.rows
    columns = _result_columns(executed)
    proposal = executed.proposal
    validation_type = proposal.validation_type

    if not rows:
        return ChartType.INFO_CARD
    if any(PERCENTAGE_COLUMN.search(col) for col in columns):
        return ChartType.QUALITY_GAUGE
    if any(TEMPORAL_COLUMN.search(col) for col in columns) or validation_type == ValidationType.TEMPORAL_CONSISTENCY:
        return ChartType.TIMELINE
    if any(CATEGORY_COLUMN.search(col) for col in columns) or validation_type == ValidationType.STATUS_CONSISTENCY:
        return ChartType.PIE_CHART
    if len(rows) > 5:
        return ChartType.HISTOGRAM
    if validation_type == ValidationType.REFERENTIAL_INTEGRITY or RELATIONSHIP_WORDS.search(proposal.description):
        return ChartType.NETWORK_GRAPH
    if len(columns) > 2:
        return ChartType.BAR_CHART
    return ChartType.INFO_CARD


def gauge_color(value: Optional[float]) -> str:
    if value is None:
        return 'gray'
    if value >= GAUGE_THRESHOLDS[1]:
        return 'green'
    if value >= GAUGE_THRESHOLDS[0]:
        return 'orange'
    return 'red'


class VisualizationAgent:
    """Map executed validations to visualization specs and a dashboard"""

    def __init__(self, include_sql: bool = False):
        self.include_sql = include_sql

    def create_visualization(self, executed: ExecutedValidation) -> VisualizationSpec:
        """Exactly one VisualizationSpec per executed validation"""
        chart_type = choose_chart_type(executed)
        proposal = executed.proposal
        title = f"#{proposal.sequence} {proposal.description}"

        return VisualizationSpec(
            id=f"viz-{proposal.id}",
            chart_type=chart_type,
            title=title,
            data=self._payload(chart_type, executed),
            config=self._config(chart_type, title, proposal.priority, proposal.validation_type.value),
            priority=proposal.priority,
            validation_sequence=proposal.sequence,
            sql=executed.translated.sql if self.include_sql else None,
        )

    def create_overview(self, summary: ExecutionSummary) -> VisualizationSpec:
        """Synthesized from the summary, never from a single validation"""
        title = f"Data quality overview: {summary.focus_table}"
        return VisualizationSpec(
            id='overview',
            chart_type=ChartType.DASHBOARD_OVERVIEW,
            title=title,
            data={
                'total_validations': summary.total_proposals,
                'executed': summary.executed_count,
                'successful': summary.successful_count,
                'failed': summary.failed_count,
                'rejected': summary.rejected_count,
                'total_issues': summary.total_issues,
                'average_quality': summary.average_quality,
                'status_counts': dict(summary.status_counts),
                'high_priority_issues': len(summary.high_priority_issues),
                'medium_priority_issues': len(summary.medium_priority_issues),
                'performance_rating': summary.performance_rating,
                'cancelled': summary.cancelled,
            },
            config={'responsive': True, 'title': title, 'layout': 'full-width',
                    'gauge': {'value': summary.average_quality, 'color': gauge_color(summary.average_quality)}},
            priority=OVERVIEW_PRIORITY,
        )

    def create_type_aggregates(self, executions: Sequence[ExecutedValidation]) -> List[VisualizationSpec]:
        """One extra bar chart per validation type shared by more than one validation"""
        by_type: Dict[str, List[ExecutedValidation]] = {}
        for executed in executions:
            by_type.setdefault(executed.proposal.validation_type.value, []).append(executed)

        aggregates = []
        for type_name in sorted(by_type):
            items = sorted(by_type[type_name], key=lambda e: e.proposal.sequence)
            if len(items) < 2:
                continue
            title = f"{type_name} validations"
            aggregates.append(VisualizationSpec(
                id=f"type-{type_name}",
                chart_type=ChartType.BAR_CHART,
                title=title,
                data={
                    'bars': [{
                        'label': f"#{e.proposal.sequence}",
                        'issues': e.outcome.issue_count,
                        'quality': e.outcome.quality_percentage,
                        'status': e.outcome.status.value,
                    } for e in items],
                    'total_issues': sum(e.outcome.issue_count for e in items),
                },
                config=self._config(ChartType.BAR_CHART, title, AGGREGATE_PRIORITY, type_name),
                priority=AGGREGATE_PRIORITY,
            ))
        return aggregates

    def create_dashboard(self, summary: ExecutionSummary) -> DashboardSpec:
        executions = sorted(summary.executions, key=lambda e: e.proposal.sequence)
        per_validation = [self.create_visualization(executed) for executed in executions]
        per_validation.sort(key=lambda v: (-v.priority, v.validation_sequence or 0))
        aggregates = self.create_type_aggregates(executions)

        overview = self.create_overview(summary)
        visualizations = [overview] + per_validation + aggregates

        dashboard = DashboardSpec(
            title=f"Cross-table data quality: {summary.focus_table}",
            description=(f"{summary.executed_count} validations executed against {summary.focus_table} "
                         f"and its related tables"),
            visualizations=tuple(visualizations),
            layout=tuple(self.build_layout(overview, per_validation + aggregates)),
            insights=tuple(self.generate_insights(summary)),
        )
        logger.info(f"📈 Dashboard ready with {len(visualizations)} visualizations")
        return dashboard

    @staticmethod
    def build_layout(overview: VisualizationSpec, others: Sequence[VisualizationSpec]) -> List[Dict[str, Any]]:
        """Overview full width, up to two priority >= 8 charts, then up to three more"""
        ordered = sorted(others, key=lambda v: (-v.priority, v.validation_sequence or 0, v.id))
        layout = [{'row': 1, 'columns': 1, 'items': [overview.id]}]

        featured = [v for v in ordered if v.priority >= 8][:2]
        if featured:
            layout.append({'row': len(layout) + 1, 'columns': 2, 'items': [v.id for v in featured]})

        featured_ids = {v.id for v in featured}
        following = [v for v in ordered if v.id not in featured_ids][:3]
        if following:
            layout.append({'row': len(layout) + 1, 'columns': 3, 'items': [v.id for v in following]})
        return layout

    @staticmethod
    def generate_insights(summary: ExecutionSummary) -> List[str]:
        insights = []
        if summary.total_issues:
            insights.append(f"🔍 {summary.total_issues} data-quality issue(s) found across "
                            f"{summary.executed_count} validations")
        else:
            insights.append("✅ No data-quality issues found")

        if summary.average_quality is not None:
            if summary.average_quality >= 90:
                insights.append(f"🌟 Average quality is excellent ({summary.average_quality:.1f}%)")
            elif summary.average_quality < 70:
                insights.append(f"⚠️ Average quality is low ({summary.average_quality:.1f}%)")

        if summary.high_priority_issues:
            insights.append(f"🚨 {len(summary.high_priority_issues)} high-priority issue(s) require attention")

        total_time = summary.total_execution_time
        if total_time and total_time < 10:
            insights.append(f"⚡ Analysis completed quickly ({total_time:.1f}s)")
        elif total_time > 60:
            insights.append(f"🐢 Analysis took {total_time:.1f}s; consider fewer related tables")

        if summary.cancelled:
            insights.append("⏹️ The run was cancelled; results are partial")
        return insights

    def _payload(self, chart_type: ChartType, executed: ExecutedValidation) -> Dict[str, Any]:
        """Processed data for the chosen chart type"""
        outcome = executed.outcome
        rows = list(outcome.rows)
        columns = list(_result_columns(executed))

        if chart_type == ChartType.QUALITY_GAUGE:
            value = outcome.quality_percentage
            if value is None:
                column = next(col for col in columns if PERCENTAGE_COLUMN.search(col))
                raw = rows[0].get(column)
                value = float(raw) if isinstance(raw, (int, float)) and not isinstance(raw, bool) else None
            return {'value': value, 'max': 100, 'color': gauge_color(value),
                    'issues': outcome.issue_count, 'total_records': outcome.total_records}

        if chart_type == ChartType.PIE_CHART:
            if outcome.total_records is not None:
                slices = [{'label': 'valid', 'value': max(0, outcome.total_records - outcome.issue_count)},
                          {'label': 'problems', 'value': outcome.issue_count}]
            else:
                category = next((col for col in columns if CATEGORY_COLUMN.search(col)), columns[0])
                counts: Dict[str, int] = {}
                for row in rows:
                    label = str(row.get(category))
                    counts[label] = counts.get(label, 0) + 1
                slices = [{'label': label, 'value': value} for label, value in counts.items()]
            return {'slices': slices}

        if chart_type == ChartType.TIMELINE:
            x_field = next((col for col in columns if TEMPORAL_COLUMN.search(col)), None)
            return {'series': rows[:MAX_SERIES_ROWS], 'x_field': x_field, 'issues': outcome.issue_count}

        if chart_type == ChartType.HISTOGRAM:
            return {'values': rows[:MAX_SERIES_ROWS], 'columns': columns, 'row_count': executed.row_count}

        if chart_type == ChartType.BAR_CHART:
            return {'rows': rows[:MAX_BAR_ROWS], 'columns': columns}

        if chart_type == ChartType.NETWORK_GRAPH:
            proposal = executed.proposal
            nodes = [{'id': table, 'issues': outcome.issue_count if i == 0 else 0}
                     for i, table in enumerate(proposal.involved_tables)]
            edges = [{'source': rel.source_table, 'target': rel.target_table, 'label': rel.join_condition,
                      'relation_type': rel.relation_type}
                     for rel in proposal.involved_relationships]
            return {'nodes': nodes, 'edges': edges, 'issues': outcome.issue_count}

        return {
            'status': outcome.status.value,
            'execution_status': executed.execution_status.value,
            'issue_count': outcome.issue_count,
            'total_records': outcome.total_records,
            'quality_percentage': outcome.quality_percentage,
            'duration': round(executed.duration, 3),
            'error_message': executed.error_message,
            'row_count': executed.row_count,
        }

    @staticmethod
    def _config(chart_type: ChartType, title: str, priority: int, type_name: str) -> Dict[str, Any]:
        config: Dict[str, Any] = {
            'responsive': True,
            'title': title,
            'subtitle': f"Priority {priority} | {type_name}",
        }
        if chart_type == ChartType.QUALITY_GAUGE:
            config['thresholds'] = list(GAUGE_THRESHOLDS)
        elif chart_type == ChartType.PIE_CHART:
            config['colors'] = ['#2e7d32', '#c62828', '#f9a825', '#1565c0']
        elif chart_type == ChartType.BAR_CHART:
            config['orientation'] = 'vertical'
        elif chart_type == ChartType.TIMELINE:
            config['show_points'] = True
            config['x_axis_type'] = 'time'
        elif chart_type == ChartType.NETWORK_GRAPH:
            config['physics'] = True
        return config
