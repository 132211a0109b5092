"""
Utility functions and helper classes
"""

from .cancellation import CancellationToken, run_cancellable
from .llm_monitor import GenerationRequest, LLMMonitor, TextGenerator, create_text_generator
from .query_optimizer import QueryOptimizer
from .schema_analyzer import SchemaAnalyzer
from .sql_safety import ensure_read_only, validate_sql_safety

__all__ = [
    'CancellationToken',
    'run_cancellable',
    'GenerationRequest',
    'LLMMonitor',
    'TextGenerator',
    'create_text_generator',
    'QueryOptimizer',
    'SchemaAnalyzer',
    'ensure_read_only',
    'validate_sql_safety',
]
