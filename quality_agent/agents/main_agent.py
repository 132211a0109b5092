"""
Main data-quality pipeline: discovery → context → proposals → translation → execution → visualization
"""

import time
from dataclasses import dataclass, replace
from typing import Any, Callable, Dict, List, Optional, Tuple

from ..config import ConnectionDescriptor, PipelineConfig
from ..database import DatabaseAdapter, DatabaseFactory
from ..database.models import SchemaModel
from ..errors import DiscoveryError
from ..utils.cancellation import CancellationToken
from ..utils.llm_monitor import LLMMonitor, TextGenerator, create_text_generator
from ..utils.logger import get_logger
from ..utils.schema_analyzer import SchemaAnalyzer
from .context_agent import AnalysisContext, ContextAgent
from .discovery_agent import SchemaDiscoveryAgent
from .execution_agent import ExecutionAgent
from .proposal_agent import CrossTableValidationResult, ProposalAgent
from .sql_generation_agent import SQLGenerationAgent, TranslatedValidation
from .verification_agent import ExecutedValidation, ExecutionSummary, VerificationAgent, performance_rating
from .visualization_agent import DashboardSpec, VisualizationAgent

logger = get_logger("DataQualityPipeline")

AdapterFactory = Callable[[ConnectionDescriptor], DatabaseAdapter]


@dataclass(frozen=True)
class PipelineResult:
    """Everything a run produced"""
    summary: ExecutionSummary
    dashboard: DashboardSpec
    schema: SchemaModel
    context: AnalysisContext
    proposals: CrossTableValidationResult
    translated: Tuple[TranslatedValidation, ...]
    executed: Tuple[ExecutedValidation, ...]

    def to_dict(self) -> Dict[str, Any]:
        return {
            'summary': self.summary.to_dict(),
            'dashboard': self.dashboard.to_dict(),
        }


class DataQualityPipeline:
    """Run the validation pipeline for one focus table; runs share no mutable state"""

    def __init__(self, config: Optional[PipelineConfig] = None,
                 generator: Optional[TextGenerator] = None,
                 adapter_factory: Optional[AdapterFactory] = None,
                 fallback_generators: Optional[List[TextGenerator]] = None):
        self.config = config or PipelineConfig()
        self.generator = generator
        self.fallback_generators = list(fallback_generators or [])
        self.adapter_factory = adapter_factory or (
            lambda descriptor: DatabaseFactory.create_connector(
                descriptor, pool_size=self.config.max_concurrency,
                connect_timeout=self.config.connect_timeout_seconds)
        )

    def _open_adapter(self, connection: ConnectionDescriptor) -> DatabaseAdapter:
        try:
            return self.adapter_factory(connection)
        except ValueError as e:
            raise DiscoveryError(str(e), reason='unsupported') from e

    def _new_monitor(self) -> LLMMonitor:
        """Fresh usage monitor per run"""
        primary = self.generator or create_text_generator(
            self.config.llm_provider, self.config.proposal_model, self.config.llm_base_url)
        return LLMMonitor(primary, self.fallback_generators)

    def _discovery_agent(self) -> SchemaDiscoveryAgent:
        return SchemaDiscoveryAgent(self.config, SchemaAnalyzer(candidate_cap=self.config.implicit_candidate_cap))

    def discover(self, connection: ConnectionDescriptor,
                 token: Optional[CancellationToken] = None) -> SchemaModel:
        """Discovery only"""
        adapter = self._open_adapter(connection)
        try:
            return self._discovery_agent().discover(adapter, token)
        finally:
            adapter.dispose()

    def collect_context(self, connection: ConnectionDescriptor, focus_table: str,
                        business_context: Optional[str] = None,
                        token: Optional[CancellationToken] = None) -> Tuple[SchemaModel, AnalysisContext]:
        """Discovery and context collection without calling the generation service"""
        adapter = self._open_adapter(connection)
        try:
            schema = self._discovery_agent().discover(adapter, token)
            context = ContextAgent(self.config).collect_context(schema, focus_table, adapter,
                                                                business_context, token)
            return schema, context
        finally:
            adapter.dispose()

    def run_pipeline(self, connection: ConnectionDescriptor, focus_table: str,
                     business_context: Optional[str] = None, credential: Optional[str] = None,
                     include_sql: bool = False, token: Optional[CancellationToken] = None) -> PipelineResult:
        """Run every stage; cancellation after proposals yields a partial, flagged result"""
        token = token or CancellationToken()
        timings: Dict[str, float] = {}
        run_start = time.time()
        logger.info(f"🚀 Starting data-quality run for {focus_table} on {connection.db_type}:{connection.database}")

        adapter = self._open_adapter(connection)
        try:
            stage_start = time.time()
            schema = self._discovery_agent().discover(adapter, token)
            timings['discovery'] = round(time.time() - stage_start, 3)

            token.raise_if_cancelled('context')
            stage_start = time.time()
            context = ContextAgent(self.config).collect_context(schema, focus_table, adapter,
                                                                business_context, token)
            timings['context'] = round(time.time() - stage_start, 3)

            token.raise_if_cancelled('generation')
            monitor = self._new_monitor()
            stage_start = time.time()
            proposals = ProposalAgent(monitor, self.config).propose(context, credential, token)
            timings['generation'] = round(time.time() - stage_start, 3)

            stage_start = time.time()
            translated = SQLGenerationAgent(monitor, self.config).translate_many(
                list(proposals.proposals), schema, credential, token)
            timings['translation'] = round(time.time() - stage_start, 3)

            stage_start = time.time()
            executed = ExecutionAgent(self.config).execute_validations(adapter, translated, token)
            timings['execution'] = round(time.time() - stage_start, 3)
        finally:
            adapter.dispose()

        timings['total'] = round(time.time() - run_start, 3)
        summary = VerificationAgent().summarize(
            context.focus_table.full_name, translated, executed,
            stage_timings=timings,
            llm_usage=monitor.get_usage_summary(),
            cancelled=token.is_cancelled,
            include_sql=include_sql,
        )

        stage_start = time.time()
        dashboard = VisualizationAgent(include_sql=include_sql).create_dashboard(summary)
        timings['visualization'] = round(time.time() - stage_start, 3)
        timings['total'] = round(time.time() - run_start, 3)
        summary = replace(summary, stage_timings=dict(timings),
                          performance_rating=performance_rating(timings['total']))

        if summary.cancelled:
            logger.warning(f"⏹️ Run for {focus_table} cancelled; returning {summary.executed_count} partial results")
        logger.info(f"🏁 Run finished in {timings['total']:.2f}s ({summary.performance_rating})")

        return PipelineResult(
            summary=summary,
            dashboard=dashboard,
            schema=schema,
            context=context,
            proposals=proposals,
            translated=tuple(translated),
            executed=tuple(executed),
        )
