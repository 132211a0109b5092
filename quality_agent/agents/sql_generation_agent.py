"""
Translation agent: turn validation proposals into safe, executable SQL
"""

import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Callable, Dict, List, Optional, Tuple

from ..config import PipelineConfig
from ..database.models import ColumnInfo, SchemaModel, TableInfo, type_family
from ..errors import GenerationError, RunCancelled, SafetyRejection, TranslationFailure
from ..utils.cancellation import CancellationToken, run_cancellable
from ..utils.llm_monitor import GenerationRequest, TextGenerator
from ..utils.logger import get_logger
from ..utils.query_optimizer import QueryOptimizer
from ..utils.sql_safety import ensure_read_only
from .proposal_agent import InvolvedRelationship, ValidationProposal, ValidationType

logger = get_logger("TranslationAgent")


class TranslationMethod(Enum):
    TEMPLATE = "template"
    GENERATED = "generated"
    GENERIC = "generic"


@dataclass(frozen=True)
class TranslatedValidation:
    """A proposal paired with its SQL and the safety verdict"""
    proposal: ValidationProposal
    sql: str
    is_valid_sql: bool
    translation_method: TranslationMethod
    template_name: Optional[str] = None
    rejection_reason: Optional[str] = None
    requires_manual_review: bool = False
    translated_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


TEMPLATE_CUES = [
    ('orphan_count', re.compile(r'orphan|referential|integrity|foreign key|references?\b|missing (parent|reference)',
                                re.IGNORECASE)),
    ('temporal_order', re.compile(r'\bdates?\b|timestamp|chronolog|temporal|\bbefore\b|\bafter\b', re.IGNORECASE)),
    ('status_consistency', re.compile(r'\bstatus|\bstate\b', re.IGNORECASE)),
    ('duplicate_detection', re.compile(r'duplicat|unique', re.IGNORECASE)),
]

TYPE_TEMPLATES = {
    ValidationType.REFERENTIAL_INTEGRITY: 'orphan_count',
    ValidationType.TEMPORAL_CONSISTENCY: 'temporal_order',
    ValidationType.STATUS_CONSISTENCY: 'status_consistency',
    ValidationType.UNIQUENESS: 'duplicate_detection',
}

START_WORDS = ('created', 'start', 'begin', 'issued', 'opened', 'order', 'registered')
END_WORDS = ('updated', 'end', 'finish', 'closed', 'due', 'ship', 'deliver', 'paid', 'completed')

TRANSLATION_INSTRUCTION = (
    "You translate data-quality checks into a single read-only SQL query. "
    "Only SELECT or WITH statements are allowed; never modify data. "
    "Return the query in a ```sql fenced block with short -- comments."
)

SQL_START = re.compile(r'^\s*(with|select|--)\b', re.IGNORECASE)
FENCE_LANGUAGE = re.compile(r'^[ \t]*(?!(?:with|select|explain|show)\b)[a-z][\w+-]*(?:[ \t]*\n|[ \t]+)', re.IGNORECASE)


def quote_name(name: str, dialect: str) -> str:
    if dialect == 'mysql':
        return '`' + name.replace('`', '``') + '`'
    return '"' + name.replace('"', '""') + '"'


def quote_qualified(full_name: str, dialect: str) -> str:
    return '.'.join(quote_name(part, dialect) for part in full_name.split('.', 1))


def extract_sql(text: str) -> str:
    """Pull the SQL out of a model answer: fenced block first, else drop surrounding prose"""
    fenced = re.search(r'```(.*?)```', text, re.DOTALL)
    if fenced:
        return FENCE_LANGUAGE.sub('', fenced.group(1), count=1).strip()

    lines = text.strip().splitlines()
    collected = []
    for line in lines:
        if not collected and not SQL_START.match(line):
            continue
        collected.append(line)
        if line.rstrip().endswith(';'):
            break
    return '\n'.join(collected).strip()


def _quality_columns(valid_expr: str, invalid_expr: str, total_expr: str = 'COUNT(*)') -> str:
    return (
        f"SELECT {total_expr} AS total_records,\n"
        f"       COALESCE({valid_expr}, 0) AS valid_records,\n"
        f"       COALESCE({invalid_expr}, 0) AS invalid_records,\n"
        f"       ROUND(100.0 * COALESCE({valid_expr}, 0) / NULLIF({total_expr}, 0), 2) AS quality_percentage"
    )


class SQLGenerationAgent:
    """Template first, generated second, generic last; every candidate passes the safety gate"""

    def __init__(self, generator: Optional[TextGenerator] = None, config: Optional[PipelineConfig] = None,
                 optimizer: Optional[QueryOptimizer] = None):
        self.generator = generator
        self.config = config or PipelineConfig()
        self.optimizer = optimizer or QueryOptimizer(row_limit_cap=self.config.row_limit_cap)
        self.templates: Dict[str, Callable[[ValidationProposal, SchemaModel], Optional[str]]] = {
            'orphan_count': self._orphan_count,
            'temporal_order': self._temporal_order,
            'status_consistency': self._status_consistency,
            'duplicate_detection': self._duplicate_detection,
        }

    def translate_many(self, proposals: List[ValidationProposal], schema: SchemaModel,
                       credential: Optional[str] = None,
                       token: Optional[CancellationToken] = None) -> List[TranslatedValidation]:
        """Exactly one TranslatedValidation per proposal, in order"""
        return [self.translate(proposal, schema, credential, token) for proposal in proposals]

    def translate(self, proposal: ValidationProposal, schema: SchemaModel,
                  credential: Optional[str] = None,
                  token: Optional[CancellationToken] = None) -> TranslatedValidation:
        """Never raises; failures degrade to a flagged placeholder"""
        if token is not None and token.is_cancelled:
            return self._placeholder(proposal, 'cancelled before translation')

        try:
            return self._translate(proposal, schema, credential, token)
        except RunCancelled:
            return self._placeholder(proposal, 'cancelled before translation')
        except TranslationFailure as e:
            logger.warning(f"⚠️ Translation failed for proposal {proposal.sequence}: {e}")
            return self._placeholder(proposal, str(e))
        except Exception as e:
            logger.error(f"❌ Unexpected translation error for proposal {proposal.sequence}: {e}")
            return self._placeholder(proposal, f"translation failed: {e}")

    def _translate(self, proposal: ValidationProposal, schema: SchemaModel, credential: Optional[str],
                   token: Optional[CancellationToken]) -> TranslatedValidation:
        for template_name in self.candidate_templates(proposal):
            sql = self.templates[template_name](proposal, schema)
            if sql:
                return self._finalize(proposal, schema, sql, TranslationMethod.TEMPLATE, template_name)

        if credential and self.generator is not None:
            sql = self._generate(proposal, schema, credential, token)
            if sql:
                return self._finalize(proposal, schema, sql, TranslationMethod.GENERATED)

        return self._finalize(proposal, schema, self._generic_sql(proposal, schema),
                              TranslationMethod.GENERIC, manual_review=True)

    def candidate_templates(self, proposal: ValidationProposal) -> List[str]:
        """Templates to try, by validation type first and lexical cues second"""
        names = []
        by_type = TYPE_TEMPLATES.get(proposal.validation_type)
        if by_type:
            names.append(by_type)
        for name, pattern in TEMPLATE_CUES:
            if name not in names and pattern.search(proposal.description):
                names.append(name)
        return names

    def _finalize(self, proposal: ValidationProposal, schema: SchemaModel, sql: str,
                  method: TranslationMethod, template_name: Optional[str] = None,
                  manual_review: bool = False) -> TranslatedValidation:
        """Gate, optimize, gate again"""
        header = f"Validation {proposal.sequence}: {proposal.validation_type.value}"
        if template_name:
            header += f" | template: {template_name}"

        try:
            ensure_read_only(sql)
            optimized = self.optimizer.optimize(sql, schema, schema.dialect, header=header)
            ensure_read_only(optimized)
        except SafetyRejection as e:
            logger.warning(f"🛡️ Safety gate rejected proposal {proposal.sequence} ({method.value}): {e}")
            return TranslatedValidation(
                proposal=proposal,
                sql=sql,
                is_valid_sql=False,
                translation_method=method,
                template_name=template_name,
                rejection_reason=f"{e.reason}: {e}",
                requires_manual_review=manual_review,
            )

        return TranslatedValidation(
            proposal=proposal,
            sql=optimized,
            is_valid_sql=True,
            translation_method=method,
            template_name=template_name,
            requires_manual_review=manual_review,
        )

    def _placeholder(self, proposal: ValidationProposal, reason: str) -> TranslatedValidation:
        return TranslatedValidation(
            proposal=proposal,
            sql="SELECT 'translation unavailable' AS notes",
            is_valid_sql=False,
            translation_method=TranslationMethod.GENERIC,
            rejection_reason=reason,
            requires_manual_review=True,
        )

    def _generate(self, proposal: ValidationProposal, schema: SchemaModel, credential: str,
                  token: Optional[CancellationToken]) -> Optional[str]:
        request = GenerationRequest(
            prompt=self._generation_prompt(proposal, schema),
            system_instruction=TRANSLATION_INSTRUCTION,
            temperature=0.1,
            max_tokens=1000,
            model=self.config.translation_model,
        )
        try:
            text = run_cancellable(
                lambda: self.generator.generate(request, credential),
                timeout=self.config.generation_timeout_seconds,
                token=token,
                stage='translation',
            )
        except (GenerationError, TimeoutError) as e:
            logger.warning(f"⚠️ Generative translation failed for proposal {proposal.sequence}: {e}")
            return None

        sql = extract_sql(text)
        return sql or None

    def _generation_prompt(self, proposal: ValidationProposal, schema: SchemaModel) -> str:
        tables = []
        for name in proposal.involved_tables:
            table = schema.find_table(name)
            if table is None:
                continue
            columns = ', '.join(f"{col.name} {col.data_type}" for col in table.columns)
            tables.append(f"- {table.full_name}({columns})")
        joins = [f"- {rel.join_condition}" for rel in proposal.involved_relationships] or ['- none']

        return f"""Write one PostgreSQL-flavoured read-only query for this data-quality check.
The target database is {schema.dialect}; use portable functions.

Check: {proposal.description}
Type: {proposal.validation_type.value}

Tables:
{chr(10).join(tables)}

Join conditions:
{chr(10).join(joins)}

The query must return one row with the columns total_records, valid_records, invalid_records
and quality_percentage.
"""

    def _generic_sql(self, proposal: ValidationProposal, schema: SchemaModel) -> str:
        """Trivial count against the first involved table"""
        table = None
        for name in proposal.involved_tables:
            table = schema.find_table(name)
            if table is not None:
                break
        if table is None:
            raise TranslationFailure("None of the involved tables exist in the schema")

        return (
            "SELECT COUNT(*) AS total_records,\n"
            "       0 AS issues_found,\n"
            "       'manual review required' AS notes\n"
            f"FROM {quote_qualified(table.full_name, schema.dialect)}"
        )

    @staticmethod
    def _relation_tables(rel: InvolvedRelationship,
                         schema: SchemaModel) -> Tuple[Optional[TableInfo], Optional[TableInfo]]:
        return schema.find_table(rel.source_table), schema.find_table(rel.target_table)

    def _orphan_count(self, proposal: ValidationProposal, schema: SchemaModel) -> Optional[str]:
        """Child rows whose reference has no matching parent"""
        for rel in proposal.involved_relationships:
            source, target = self._relation_tables(rel, schema)
            if source is None or target is None:
                continue
            q = lambda name: quote_name(name, schema.dialect)
            child_key = f"c.{q(rel.source_column)}"
            return (
                _quality_columns(
                    valid_expr="SUM(CASE WHEN p.ref_key IS NOT NULL THEN 1 ELSE 0 END)",
                    invalid_expr="SUM(CASE WHEN p.ref_key IS NULL THEN 1 ELSE 0 END)",
                ) + "\n"
                f"FROM {quote_qualified(source.full_name, schema.dialect)} c\n"
                f"LEFT JOIN (SELECT DISTINCT {q(rel.target_column)} AS ref_key "
                f"FROM {quote_qualified(target.full_name, schema.dialect)}) p ON {child_key} = p.ref_key\n"
                f"WHERE {child_key} IS NOT NULL"
            )
        return None

    @staticmethod
    def _temporal_columns(table: TableInfo) -> List[ColumnInfo]:
        return sorted((col for col in table.columns if type_family(col.data_type) == 'temporal'),
                      key=lambda c: c.ordinal_position)

    @staticmethod
    def _pick(columns: List[ColumnInfo], words: Tuple[str, ...]) -> Optional[ColumnInfo]:
        for col in columns:
            if any(word in col.name.lower() for word in words):
                return col
        return None

    def _temporal_order(self, proposal: ValidationProposal, schema: SchemaModel) -> Optional[str]:
        """A child's date may not precede its parent's creation date; start may not follow end"""
        q = lambda name: quote_name(name, schema.dialect)

        for rel in proposal.involved_relationships:
            source, target = self._relation_tables(rel, schema)
            if source is None or target is None:
                continue
            child_dates, parent_dates = self._temporal_columns(source), self._temporal_columns(target)
            if not child_dates or not parent_dates:
                continue
            child_col = self._pick(child_dates, START_WORDS) or child_dates[0]
            parent_col = self._pick(parent_dates, ('created', 'registered', 'start')) or parent_dates[0]
            later, earlier = f"c.{q(child_col.name)}", f"p.{q(parent_col.name)}"
            return (
                _quality_columns(
                    valid_expr=f"SUM(CASE WHEN {later} >= {earlier} THEN 1 ELSE 0 END)",
                    invalid_expr=f"SUM(CASE WHEN {later} < {earlier} THEN 1 ELSE 0 END)",
                ) + "\n"
                f"FROM {quote_qualified(source.full_name, schema.dialect)} c\n"
                f"JOIN {quote_qualified(target.full_name, schema.dialect)} p "
                f"ON c.{q(rel.source_column)} = p.{q(rel.target_column)}\n"
                f"WHERE {later} IS NOT NULL AND {earlier} IS NOT NULL"
            )

        for name in proposal.involved_tables:
            table = schema.find_table(name)
            if table is None:
                continue
            dates = self._temporal_columns(table)
            start, end = self._pick(dates, START_WORDS), self._pick(dates, END_WORDS)
            if start is None or end is None or start.name == end.name:
                continue
            earlier, later = f"t.{q(start.name)}", f"t.{q(end.name)}"
            return (
                _quality_columns(
                    valid_expr=f"SUM(CASE WHEN {earlier} <= {later} THEN 1 ELSE 0 END)",
                    invalid_expr=f"SUM(CASE WHEN {earlier} > {later} THEN 1 ELSE 0 END)",
                ) + "\n"
                f"FROM {quote_qualified(table.full_name, schema.dialect)} t\n"
                f"WHERE {earlier} IS NOT NULL AND {later} IS NOT NULL"
            )
        return None

    @staticmethod
    def _status_column(table: TableInfo) -> Optional[ColumnInfo]:
        for col in sorted(table.columns, key=lambda c: c.ordinal_position):
            name = col.name.lower()
            if ('status' in name or name == 'state') and type_family(col.data_type) == 'text':
                return col
        return None

    def _status_consistency(self, proposal: ValidationProposal, schema: SchemaModel) -> Optional[str]:
        """Joined statuses must agree; a lone status column must be filled in"""
        q = lambda name: quote_name(name, schema.dialect)

        for rel in proposal.involved_relationships:
            source, target = self._relation_tables(rel, schema)
            if source is None or target is None:
                continue
            child_status, parent_status = self._status_column(source), self._status_column(target)
            if child_status is None or parent_status is None:
                continue
            child, parent = f"c.{q(child_status.name)}", f"p.{q(parent_status.name)}"
            return (
                _quality_columns(
                    valid_expr=f"SUM(CASE WHEN UPPER({child}) = UPPER({parent}) THEN 1 ELSE 0 END)",
                    invalid_expr=f"SUM(CASE WHEN UPPER({child}) <> UPPER({parent}) THEN 1 ELSE 0 END)",
                ) + "\n"
                f"FROM {quote_qualified(source.full_name, schema.dialect)} c\n"
                f"JOIN {quote_qualified(target.full_name, schema.dialect)} p "
                f"ON c.{q(rel.source_column)} = p.{q(rel.target_column)}\n"
                f"WHERE {child} IS NOT NULL AND {parent} IS NOT NULL"
            )

        for name in proposal.involved_tables:
            table = schema.find_table(name)
            status = self._status_column(table) if table is not None else None
            if status is None:
                continue
            column = f"t.{q(status.name)}"
            return (
                _quality_columns(
                    valid_expr=f"SUM(CASE WHEN {column} IS NOT NULL AND TRIM({column}) <> '' THEN 1 ELSE 0 END)",
                    invalid_expr=f"SUM(CASE WHEN {column} IS NULL OR TRIM({column}) = '' THEN 1 ELSE 0 END)",
                ) + "\n"
                f"FROM {quote_qualified(table.full_name, schema.dialect)} t"
            )
        return None

    @staticmethod
    def _duplicate_candidate(table: TableInfo, description: str) -> Optional[ColumnInfo]:
        columns = sorted(table.columns, key=lambda c: c.ordinal_position)
        for col in columns:
            if not col.is_primary_key and re.search(rf'\b{re.escape(col.name)}\b', description, re.IGNORECASE):
                return col
        for col in columns:
            if not col.is_primary_key and 'email' in col.name.lower():
                return col
        for col in columns:
            name = col.name.lower()
            if not col.is_primary_key and not col.is_foreign_key and name.endswith(('_code', '_number', '_no')):
                return col
        return None

    def _duplicate_detection(self, proposal: ValidationProposal, schema: SchemaModel) -> Optional[str]:
        """Rows sharing a value that should be unique"""
        for name in proposal.involved_tables:
            table = schema.find_table(name)
            column = self._duplicate_candidate(table, proposal.description) if table is not None else None
            if column is None:
                continue
            quoted = quote_name(column.name, schema.dialect)
            return (
                _quality_columns(
                    valid_expr="SUM(CASE WHEN g.group_size = 1 THEN 1 ELSE 0 END)",
                    invalid_expr="SUM(CASE WHEN g.group_size > 1 THEN g.group_size ELSE 0 END)",
                    total_expr="COALESCE(SUM(g.group_size), 0)",
                ) + "\n"
                f"FROM (SELECT {quoted} AS dup_key, COUNT(*) AS group_size\n"
                f"      FROM {quote_qualified(table.full_name, schema.dialect)}\n"
                f"      WHERE {quoted} IS NOT NULL\n"
                f"      GROUP BY {quoted}) g"
            )
        return None
