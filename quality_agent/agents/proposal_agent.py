"""
Validation proposal agent: ask the language model for cross-table quality checks
"""

import json
import re
import uuid
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from ..config import PipelineConfig
from ..database.models import RankedRelation
from ..errors import GenerationError
from ..utils.cancellation import CancellationToken, run_cancellable
from ..utils.llm_monitor import GenerationRequest, TextGenerator
from ..utils.logger import get_logger
from .context_agent import AnalysisContext, ContextAgent

logger = get_logger("ProposalAgent")


class ValidationType(Enum):
    """Kinds of data-quality checks the proposer may suggest"""
    REFERENTIAL_INTEGRITY = "referential-integrity"
    TEMPORAL_CONSISTENCY = "temporal-consistency"
    STATUS_CONSISTENCY = "status-consistency"
    UNIQUENESS = "uniqueness"
    FORMAT = "format"
    ANOMALY = "anomaly"
    BUSINESS_RULE = "business-rule"


TYPE_CUES: List[Tuple[ValidationType, re.Pattern]] = [
    (ValidationType.REFERENTIAL_INTEGRITY,
     re.compile(r'orphan|referential|foreign key|integrity|references?\b|without (a |an )?(matching|parent)',
                re.IGNORECASE)),
    (ValidationType.TEMPORAL_CONSISTENCY,
     re.compile(r'\bdates?\b|timestamp|chronolog|temporal|\bbefore\b|\bafter\b|_at\b', re.IGNORECASE)),
    (ValidationType.STATUS_CONSISTENCY, re.compile(r'\bstatus|\bstate\b|lifecycle', re.IGNORECASE)),
    (ValidationType.UNIQUENESS, re.compile(r'duplicat|unique', re.IGNORECASE)),
    (ValidationType.FORMAT, re.compile(r'format|pattern|regex|malformed|e-?mail', re.IGNORECASE)),
    (ValidationType.ANOMALY, re.compile(r'outlier|anomal|unusual|negative|spike', re.IGNORECASE)),
]

TYPE_WEIGHTS = {
    ValidationType.REFERENTIAL_INTEGRITY: 20,
    ValidationType.TEMPORAL_CONSISTENCY: 15,
    ValidationType.STATUS_CONSISTENCY: 15,
    ValidationType.UNIQUENESS: 10,
}

COMPLEXITY_WEIGHTS = {'HIGH': 20, 'MEDIUM': 10, 'LOW': 5}

NUMBERED_LINE = re.compile(r'^\s*(\d+)\.\s*(.+)$')

SYSTEM_INSTRUCTION = (
    "You are a senior data-quality engineer specialised in cross-table validation. "
    "You study relational schemas, their declared and inferred relationships and real data samples, "
    "and you propose precise, testable data-quality checks. You never write SQL."
)


def classify_validation_type(text: str) -> ValidationType:
    """Lexical classification of a free-text check description"""
    for validation_type, pattern in TYPE_CUES:
        if pattern.search(text):
            return validation_type
    return ValidationType.BUSINESS_RULE


def parse_validation_type(value: Any) -> Optional[ValidationType]:
    if not isinstance(value, str) or not value.strip():
        return None
    normalized = value.strip().lower().replace('_', '-').replace(' ', '-')
    for validation_type in ValidationType:
        if normalized == validation_type.value or normalized == validation_type.name.lower().replace('_', '-'):
            return validation_type
    return classify_validation_type(value)


@dataclass(frozen=True)
class InvolvedRelationship:
    """Relation a proposal relies on, with its join condition"""
    source_table: str
    source_column: str
    target_table: str
    target_column: str
    relation_type: str
    join_condition: str

    @classmethod
    def from_ranked(cls, relation: RankedRelation) -> 'InvolvedRelationship':
        return cls(
            source_table=relation.source_table,
            source_column=relation.source_column,
            target_table=relation.target_table,
            target_column=relation.target_column,
            relation_type=relation.relation_type.value,
            join_condition=relation.join_condition,
        )


@dataclass(frozen=True)
class ValidationProposal:
    """A natural-language data-quality check with structured metadata"""
    description: str
    validation_type: ValidationType
    priority: int
    complexity: str
    involved_tables: Tuple[str, ...]
    involved_relationships: Tuple[InvolvedRelationship, ...] = ()
    relevance_score: float = 0.0
    sequence: int = 0
    tags: Tuple[str, ...] = ()
    id: str = field(default_factory=lambda: str(uuid.uuid4()))

    def __post_init__(self):
        if not 1 <= self.priority <= 10:
            raise ValueError(f"priority must be within [1, 10], got {self.priority}")


@dataclass(frozen=True)
class ValidationInsights:
    type_distribution: Dict[str, int]
    high_priority: Tuple[str, ...]
    most_involved_tables: Tuple[Tuple[str, int], ...]
    complexity_distribution: Dict[str, int]
    key_insights: Tuple[str, ...]


@dataclass(frozen=True)
class CrossTableValidationResult:
    """Proposals for one focus table plus free-text insights"""
    focus_table: str
    proposals: Tuple[ValidationProposal, ...]
    insights: ValidationInsights
    dropped_count: int = 0
    generated_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class ProposalAgent:
    """Build the proposal prompt, call the generator and parse whatever comes back"""

    def __init__(self, generator: TextGenerator, config: Optional[PipelineConfig] = None):
        self.generator = generator
        self.config = config or PipelineConfig()

    def propose(self, context: AnalysisContext, credential: Optional[str],
                token: Optional[CancellationToken] = None) -> CrossTableValidationResult:
        """Return parsed proposals; raises GenerationError when none could be produced"""
        budget = ContextAgent.generation_budget(context.complexity_level)
        request = GenerationRequest(
            prompt=self.build_prompt(context, budget['proposals']),
            system_instruction=SYSTEM_INSTRUCTION,
            temperature=0.3,
            max_tokens=budget['max_tokens'],
            model=self.config.proposal_model,
        )

        logger.info(f"🧠 Requesting {budget['proposals']} validation proposals for {context.focus_table.full_name}")
        try:
            text = run_cancellable(
                lambda: self.generator.generate(request, credential),
                timeout=self.config.generation_timeout_seconds,
                token=token,
                stage='generation',
            )
        except TimeoutError as e:
            raise GenerationError(f"Proposal generation timed out: {e}", reason='timeout') from e

        return self.parse_response(text, context)

    def build_prompt(self, context: AnalysisContext, proposal_count: int) -> str:
        return f"""Analyse the database context below and propose {proposal_count} cross-table data-quality validations.

{context.build_prompt_sections()}

Focus on checks that need more than one table: orphaned references, dates that contradict related records,
statuses that disagree across tables, duplicates, malformed values and anomalies.

Answer ONLY with a JSON array. Each element must have:
  "description": one sentence describing the check,
  "validation_type": one of {', '.join(t.value for t in ValidationType)},
  "priority": integer 1-10 (10 = most important),
  "complexity": LOW, MEDIUM or HIGH,
  "involved_tables": list of table names taken from the context above.
"""

    def parse_response(self, text: str, context: AnalysisContext) -> CrossTableValidationResult:
        """JSON first, numbered lines second; incomplete entries are dropped"""
        entries, model_insights = self._parse_json(text)
        if entries is None:
            entries = self._parse_numbered_lines(text, context)

        proposals = []
        dropped = 0
        for entry in entries:
            proposal = self._build_proposal(entry, context, sequence=len(proposals) + 1)
            if proposal is None:
                dropped += 1
            else:
                proposals.append(proposal)

        if dropped:
            logger.warning(f"⚠️ Dropped {dropped} incomplete proposal(s)")
        if not proposals:
            raise GenerationError("The generation service returned no usable proposals", reason='malformed')

        logger.info(f"✅ Parsed {len(proposals)} validation proposals")
        return CrossTableValidationResult(
            focus_table=context.focus_table.full_name,
            proposals=tuple(proposals),
            insights=self.build_insights(proposals, model_insights),
            dropped_count=dropped,
        )

    @staticmethod
    def _parse_json(text: str) -> Tuple[Optional[List[Dict[str, Any]]], List[str]]:
        fenced = re.search(r'```(?:json)?\s*(.*?)```', text, re.DOTALL)
        candidate = fenced.group(1) if fenced else text

        data = None
        for opener, closer in (('[', ']'), ('{', '}')):
            start, end = candidate.find(opener), candidate.rfind(closer)
            if start == -1 or end <= start:
                continue
            try:
                data = json.loads(candidate[start:end + 1])
                break
            except ValueError:
                continue

        insights: List[str] = []
        if isinstance(data, dict):
            raw_insights = data.get('insights')
            if isinstance(raw_insights, str):
                insights = [raw_insights]
            elif isinstance(raw_insights, list):
                insights = [str(item) for item in raw_insights]
            data = data.get('validations') or data.get('proposals')

        if not isinstance(data, list):
            return None, insights
        return [item for item in data if isinstance(item, dict)], insights

    @staticmethod
    def _parse_numbered_lines(text: str, context: AnalysisContext) -> List[Dict[str, Any]]:
        entries = []
        known = context.known_tables()
        for line in text.splitlines():
            match = NUMBERED_LINE.match(line)
            if not match:
                continue
            description = match.group(2).strip().strip('*').strip()
            mentioned = [table.full_name for table in known
                         if re.search(rf'\b{re.escape(table.table_name)}\b', description, re.IGNORECASE)]
            lowered = description.lower()
            if any(word in lowered for word in ('critical', 'orphan', 'integrity')):
                priority = 9
            elif any(word in lowered for word in ('inconsisten', 'duplicat', 'invalid')):
                priority = 7
            else:
                priority = 5
            entries.append({
                'description': description,
                'validation_type': classify_validation_type(description).value,
                'priority': priority,
                'complexity': 'HIGH' if len(mentioned) > 2 else 'MEDIUM' if len(mentioned) == 2 else 'LOW',
                'involved_tables': mentioned or [context.focus_table.full_name],
            })
        return entries

    def _build_proposal(self, entry: Dict[str, Any], context: AnalysisContext,
                        sequence: int) -> Optional[ValidationProposal]:
        description = entry.get('description')
        if not isinstance(description, str) or not description.strip():
            return None

        validation_type = parse_validation_type(entry.get('validation_type') or entry.get('type'))
        if validation_type is None:
            return None

        raw_tables = entry.get('involved_tables') or entry.get('tables')
        if isinstance(raw_tables, str):
            raw_tables = [raw_tables]
        if not isinstance(raw_tables, list):
            return None

        tables = []
        for name in raw_tables:
            table = self._resolve_table(str(name), context)
            if table is not None and table not in tables:
                tables.append(table)
        if not tables:
            return None

        try:
            priority = int(entry.get('priority', 5))
        except (TypeError, ValueError):
            priority = 5
        priority = max(1, min(10, priority))

        complexity = str(entry.get('complexity', 'MEDIUM')).upper()
        if complexity not in COMPLEXITY_WEIGHTS:
            complexity = 'MEDIUM'

        relationships = self._involved_relationships(tables, validation_type, context)
        relevance = self.relevance_score(priority, len(relationships), validation_type, complexity)

        tags = [validation_type.value, complexity.lower(), 'cross-table' if len(tables) > 1 else 'single-table']
        if priority >= 8:
            tags.append('high-priority')

        return ValidationProposal(
            description=description.strip(),
            validation_type=validation_type,
            priority=priority,
            complexity=complexity,
            involved_tables=tuple(tables),
            involved_relationships=tuple(relationships),
            relevance_score=relevance,
            sequence=sequence,
            tags=tuple(tags),
        )

    @staticmethod
    def _resolve_table(name: str, context: AnalysisContext) -> Optional[str]:
        wanted = name.strip().strip('"`').lower()
        for table in context.known_tables():
            if wanted in (table.full_name.lower(), table.table_name.lower()):
                return table.full_name
        return None

    @staticmethod
    def _involved_relationships(tables: List[str], validation_type: ValidationType,
                                context: AnalysisContext) -> List[InvolvedRelationship]:
        names = set(tables)
        chosen = [rel for rel in context.relationships
                  if rel.source_table in names and rel.target_table in names]
        if not chosen and validation_type == ValidationType.REFERENTIAL_INTEGRITY:
            chosen = [rel for rel in context.relationships if rel.involves(tables[0])][:1]
        return [InvolvedRelationship.from_ranked(rel) for rel in chosen]

    @staticmethod
    def relevance_score(priority: int, relationship_count: int, validation_type: ValidationType,
                        complexity: str) -> float:
        score = (priority * 4
                 + min(20, relationship_count * 5)
                 + TYPE_WEIGHTS.get(validation_type, 5)
                 + COMPLEXITY_WEIGHTS.get(complexity, 10))
        return float(min(100, score))

    @staticmethod
    def build_insights(proposals: List[ValidationProposal],
                       model_insights: Optional[List[str]] = None) -> ValidationInsights:
        """Summarise a batch of proposals"""
        type_distribution = Counter(p.validation_type.value for p in proposals)
        complexity_distribution = Counter(p.complexity for p in proposals)
        table_counts = Counter(table for p in proposals for table in p.involved_tables)
        high_priority = tuple(p.description for p in proposals if p.priority >= 8)

        key_insights = list(model_insights or [])
        if type_distribution:
            dominant, count = type_distribution.most_common(1)[0]
            key_insights.append(f"Most proposed check type: {dominant} ({count} of {len(proposals)})")
        if high_priority:
            key_insights.append(f"{len(high_priority)} high-priority validation(s) proposed")
        cross_table = sum(1 for p in proposals if len(p.involved_tables) > 1)
        if cross_table:
            key_insights.append(f"{cross_table} validation(s) span more than one table")

        return ValidationInsights(
            type_distribution=dict(type_distribution),
            high_priority=high_priority,
            most_involved_tables=tuple(table_counts.most_common(5)),
            complexity_distribution=dict(complexity_distribution),
            key_insights=tuple(key_insights),
        )
