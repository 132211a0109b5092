"""
Verification agent: classify validation results and build the run summary
"""

import math
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence, Tuple

from ..database.models import ResultRow
from ..utils.logger import get_logger
from ..utils.serialization import to_jsonable
from .proposal_agent import ValidationType
from .sql_generation_agent import TranslatedValidation, TranslationMethod

logger = get_logger("VerificationAgent")


class OutcomeStatus(Enum):
    PASS = "pass"
    ISSUES_FOUND = "issues-found"
    CRITICAL = "critical"
    ERROR = "error"
    NO_DATA = "no-data"


class TrustStatus(Enum):
    """Whether a validation's SQL can be trusted as a confirmed finding"""
    TRUSTED = "trusted"
    MANUAL_REVIEW = "manual-review"
    REJECTED = "rejected"


TOTAL_ALIASES = ('total_records', 'total', 'total_count', 'total_rows', 'record_count', 'records', 'count')
VALID_ALIASES = ('valid_records', 'valid', 'valid_count', 'valid_rows', 'matched_records', 'ok_records')
INVALID_ALIASES = (
    'invalid_records', 'invalid', 'invalid_count', 'invalid_rows', 'issues_found', 'issue_count', 'issues',
    'orphaned_records', 'orphan_records', 'orphan_count', 'orphans', 'duplicate_count', 'duplicates',
    'violations', 'violation_count', 'error_count', 'inconsistent_records',
)
QUALITY_ALIASES = ('quality_percentage', 'quality_pct', 'quality_score', 'percentage', 'pct_valid')

CRITICAL_QUALITY = 50.0


@dataclass(frozen=True)
class ValidationOutcome:
    """Classified result of one executed validation"""
    status: OutcomeStatus
    issue_count: int = 0
    total_records: Optional[int] = None
    quality_percentage: Optional[float] = None
    rows: Tuple[ResultRow, ...] = ()


def _number(value: Any) -> Optional[float]:
    """Numeric value of a result cell; NaN and infinities count as unparseable"""
    if isinstance(value, bool) or not isinstance(value, (int, float, str)):
        return None
    try:
        number = float(value)
    except (ValueError, OverflowError):
        return None
    return number if math.isfinite(number) else None


def _extract(rows: Sequence[ResultRow], aliases: Tuple[str, ...]) -> Optional[float]:
    """Sum the first alias column found across all rows"""
    if not rows:
        return None
    lowered = {key.lower(): key for key in rows[0]}
    for alias in aliases:
        key = lowered.get(alias)
        if key is None:
            continue
        values = [_number(row.get(key)) for row in rows]
        values = [v for v in values if v is not None]
        if values and math.isfinite(sum(values)):
            return sum(values)
    return None


def classify_result(rows: Sequence[ResultRow]) -> ValidationOutcome:
    """Best-effort extraction of total / valid / invalid counts from result rows"""
    rows = tuple(rows)
    if not rows:
        return ValidationOutcome(status=OutcomeStatus.NO_DATA)

    total = _extract(rows, TOTAL_ALIASES)
    valid = _extract(rows, VALID_ALIASES)
    invalid = _extract(rows, INVALID_ALIASES)
    quality = None

    if invalid is None and total is not None and valid is not None:
        invalid = max(0.0, total - valid)
    if total is None and valid is not None and invalid is not None:
        total = valid + invalid

    if invalid is None:
        return ValidationOutcome(status=OutcomeStatus.NO_DATA, rows=rows)

    if total is not None and total > 0:
        quality = round(max(0.0, min(100.0, (total - invalid) / total * 100)), 2)
    elif total == 0:
        quality = 100.0 if invalid == 0 else None
    else:
        reported = _extract(rows[:1], QUALITY_ALIASES)
        if reported is not None:
            quality = round(max(0.0, min(100.0, reported)), 2)

    issues = int(invalid)
    if issues == 0:
        status = OutcomeStatus.PASS
    elif quality is not None and quality < CRITICAL_QUALITY:
        status = OutcomeStatus.CRITICAL
    else:
        status = OutcomeStatus.ISSUES_FOUND

    return ValidationOutcome(
        status=status,
        issue_count=issues,
        total_records=int(total) if total is not None else None,
        quality_percentage=quality,
        rows=rows,
    )


class ExecutionStatus(Enum):
    SUCCESS = "success"
    ERROR = "error"


@dataclass(frozen=True)
class ExecutedValidation:
    """One translated validation after its execution attempt"""
    translated: TranslatedValidation
    execution_status: ExecutionStatus
    duration: float
    row_count: int
    outcome: ValidationOutcome
    error_message: Optional[str] = None
    columns: Tuple[str, ...] = ()
    executed_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def proposal(self):
        return self.translated.proposal


def trust_status(translated: TranslatedValidation) -> TrustStatus:
    if not translated.is_valid_sql:
        return TrustStatus.REJECTED
    if translated.requires_manual_review or translated.translation_method == TranslationMethod.GENERIC:
        return TrustStatus.MANUAL_REVIEW
    return TrustStatus.TRUSTED


@dataclass(frozen=True)
class ValidationReport:
    """Per-validation line of the summary as exposed to callers"""
    sequence: int
    proposal_id: str
    description: str
    validation_type: str
    priority: int
    involved_tables: Tuple[str, ...]
    translation_method: str
    template_name: Optional[str]
    trust_status: TrustStatus
    executed: bool
    execution_status: Optional[str] = None
    outcome_status: Optional[str] = None
    issue_count: int = 0
    total_records: Optional[int] = None
    quality_percentage: Optional[float] = None
    duration: float = 0.0
    rejection_reason: Optional[str] = None
    error_message: Optional[str] = None
    sql: Optional[str] = None


@dataclass(frozen=True)
class ExecutionSummary:
    """Everything one pipeline run produced"""
    focus_table: str
    total_proposals: int
    accepted_count: int
    rejected_count: int
    executed_count: int
    successful_count: int
    failed_count: int
    status_counts: Dict[str, int]
    total_issues: int
    average_quality: Optional[float]
    high_priority_issues: Tuple[ValidationReport, ...]
    medium_priority_issues: Tuple[ValidationReport, ...]
    recommendations: Tuple[str, ...]
    reports: Tuple[ValidationReport, ...]
    stage_timings: Dict[str, float]
    performance_rating: str
    llm_usage: Dict[str, Any]
    executions: Tuple[ExecutedValidation, ...] = ()
    cancelled: bool = False
    include_sql: bool = False
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def total_execution_time(self) -> float:
        return self.stage_timings.get('total', 0.0)

    def to_dict(self) -> Dict[str, Any]:
        data = {
            'focus_table': self.focus_table,
            'total_proposals': self.total_proposals,
            'accepted_count': self.accepted_count,
            'rejected_count': self.rejected_count,
            'executed_count': self.executed_count,
            'successful_count': self.successful_count,
            'failed_count': self.failed_count,
            'status_counts': self.status_counts,
            'total_issues': self.total_issues,
            'average_quality': self.average_quality,
            'high_priority_issues': [r.sequence for r in self.high_priority_issues],
            'medium_priority_issues': [r.sequence for r in self.medium_priority_issues],
            'recommendations': list(self.recommendations),
            'reports': self.reports,
            'stage_timings': self.stage_timings,
            'performance_rating': self.performance_rating,
            'llm_usage': self.llm_usage,
            'cancelled': self.cancelled,
            'created_at': self.created_at,
        }
        return to_jsonable(data)


def performance_rating(total_seconds: float) -> str:
    if total_seconds < 10:
        return 'EXCELLENT'
    if total_seconds < 30:
        return 'GOOD'
    if total_seconds < 60:
        return 'FAIR'
    return 'SLOW'


class VerificationAgent:
    """Turn executed validations into reports, priority buckets and recommendations"""

    def build_report(self, translated: TranslatedValidation, executed: Optional[ExecutedValidation],
                     include_sql: bool = False) -> ValidationReport:
        proposal = translated.proposal
        report = {
            'sequence': proposal.sequence,
            'proposal_id': proposal.id,
            'description': proposal.description,
            'validation_type': proposal.validation_type.value,
            'priority': proposal.priority,
            'involved_tables': proposal.involved_tables,
            'translation_method': translated.translation_method.value,
            'template_name': translated.template_name,
            'trust_status': trust_status(translated),
            'executed': executed is not None,
            'rejection_reason': translated.rejection_reason,
            'sql': translated.sql if include_sql else None,
        }
        if executed is not None:
            report.update(
                execution_status=executed.execution_status.value,
                outcome_status=executed.outcome.status.value,
                issue_count=executed.outcome.issue_count,
                total_records=executed.outcome.total_records,
                quality_percentage=executed.outcome.quality_percentage,
                duration=round(executed.duration, 3),
                error_message=executed.error_message,
            )
        return ValidationReport(**report)

    def summarize(self, focus_table: str, translated: Sequence[TranslatedValidation],
                  executed: Sequence[ExecutedValidation], stage_timings: Optional[Dict[str, float]] = None,
                  llm_usage: Optional[Dict[str, Any]] = None, cancelled: bool = False,
                  include_sql: bool = False) -> ExecutionSummary:
        """Aggregate one run's results"""
        by_proposal = {item.translated.proposal.id: item for item in executed}
        reports = [self.build_report(item, by_proposal.get(item.proposal.id), include_sql) for item in translated]

        successful = [item for item in executed if item.execution_status == ExecutionStatus.SUCCESS]
        qualities = [item.outcome.quality_percentage for item in successful
                     if item.outcome.quality_percentage is not None]
        average_quality = round(sum(qualities) / len(qualities), 2) if qualities else None

        status_counts = {status.value: 0 for status in OutcomeStatus}
        for item in executed:
            status_counts[item.outcome.status.value] += 1

        executed_reports = [r for r in reports if r.executed]
        high = tuple(
            r for r in executed_reports
            if r.outcome_status == OutcomeStatus.CRITICAL.value or (r.priority >= 8 and r.issue_count > 0)
        )
        high_ids = {r.proposal_id for r in high}
        medium = tuple(
            r for r in executed_reports
            if r.proposal_id not in high_ids
            and r.outcome_status == OutcomeStatus.ISSUES_FOUND.value and 5 <= r.priority < 8
        )

        timings = dict(stage_timings or {})
        total_issues = sum(item.outcome.issue_count for item in executed)
        summary = ExecutionSummary(
            focus_table=focus_table,
            total_proposals=len(translated),
            accepted_count=sum(1 for item in translated if item.is_valid_sql),
            rejected_count=sum(1 for item in translated if not item.is_valid_sql),
            executed_count=len(executed),
            successful_count=len(successful),
            failed_count=len(executed) - len(successful),
            status_counts=status_counts,
            total_issues=total_issues,
            average_quality=average_quality,
            high_priority_issues=high,
            medium_priority_issues=medium,
            recommendations=tuple(self.generate_recommendations(high, medium, reports, average_quality)),
            reports=tuple(reports),
            stage_timings=timings,
            performance_rating=performance_rating(timings.get('total', 0.0)),
            llm_usage=dict(llm_usage or {}),
            executions=tuple(executed),
            cancelled=cancelled,
            include_sql=include_sql,
        )

        logger.info(f"📊 Summary for {focus_table}: {summary.executed_count} executed, "
                    f"{total_issues} issues, average quality {average_quality}")
        return summary

    def generate_recommendations(self, high: Sequence[ValidationReport], medium: Sequence[ValidationReport],
                                 reports: Sequence[ValidationReport],
                                 average_quality: Optional[float]) -> List[str]:
        """Human-readable next steps derived from the priority buckets"""
        recommendations = []

        if high:
            recommendations.append(f"🚨 {len(high)} high-priority issue(s) need immediate attention")
            types = {r.validation_type for r in high}
            if ValidationType.REFERENTIAL_INTEGRITY.value in types:
                recommendations.append("🔗 Referential-integrity problems found: review orphaned records "
                                       "and consider declaring the missing foreign keys")
            if ValidationType.TEMPORAL_CONSISTENCY.value in types:
                recommendations.append("📅 Temporal inconsistencies found: check the processes that write "
                                       "dates across related tables")
            if ValidationType.STATUS_CONSISTENCY.value in types:
                recommendations.append("🔄 Status values disagree across related tables: align the status workflow")
            if ValidationType.UNIQUENESS.value in types:
                recommendations.append("🧬 Duplicate values found: consider a unique constraint")

        if medium:
            recommendations.append(f"⚠️ {len(medium)} medium-priority issue(s) should be scheduled for review")

        rejected = sum(1 for r in reports if r.trust_status == TrustStatus.REJECTED)
        manual = sum(1 for r in reports if r.trust_status == TrustStatus.MANUAL_REVIEW)
        if rejected:
            recommendations.append(f"🛡️ {rejected} validation(s) were rejected by the safety gate and not executed")
        if manual:
            recommendations.append(f"📝 {manual} validation(s) use placeholder SQL and require manual review")
        errors = sum(1 for r in reports if r.execution_status == ExecutionStatus.ERROR.value)
        if errors:
            recommendations.append(f"❌ {errors} validation(s) failed to execute; check the error messages")

        if average_quality is not None and average_quality >= 90 and not high:
            recommendations.append("✅ Data quality is high across the validated relationships")
        if not recommendations:
            recommendations.append("✅ No data-quality issues detected")
        return recommendations
