"""
Pipeline agents for cross-table data-quality validation
"""

from .context_agent import AnalysisContext, ContextAgent
from .discovery_agent import SchemaDiscoveryAgent
from .execution_agent import ExecutionAgent
from .main_agent import DataQualityPipeline, PipelineResult
from .proposal_agent import ProposalAgent, ValidationProposal, ValidationType
from .sql_generation_agent import SQLGenerationAgent, TranslatedValidation, TranslationMethod
from .verification_agent import ExecutedValidation, ExecutionSummary, OutcomeStatus, VerificationAgent
from .visualization_agent import ChartType, DashboardSpec, VisualizationAgent, VisualizationSpec

__all__ = [
    'AnalysisContext',
    'ContextAgent',
    'SchemaDiscoveryAgent',
    'ExecutionAgent',
    'DataQualityPipeline',
    'PipelineResult',
    'ProposalAgent',
    'ValidationProposal',
    'ValidationType',
    'SQLGenerationAgent',
    'TranslatedValidation',
    'TranslationMethod',
    'ExecutedValidation',
    'ExecutionSummary',
    'OutcomeStatus',
    'VerificationAgent',
    'ChartType',
    'DashboardSpec',
    'VisualizationAgent',
    'VisualizationSpec',
]
