"""
Error taxonomy for the validation pipeline
"""

from typing import Optional


class PipelineError(Exception):
    """Base class for every pipeline failure"""

    def __init__(self, message: str, reason: Optional[str] = None):
        super().__init__(message)
        self.reason = reason


class DiscoveryError(PipelineError):
    """Schema introspection failed (unreachable, privileges, timeout)"""


class ContextError(PipelineError):
    """Focus table is not present in the discovered schema"""


class GenerationError(PipelineError):
    """External text-generation service failed or returned garbage"""


class TranslationFailure(PipelineError):
    """A proposal could not be translated; always degraded to a placeholder"""


class SafetyRejection(PipelineError):
    """A SQL statement was refused by the safety gate"""


class ExecutionError(PipelineError):
    """A single validation statement failed while executing"""


class RunCancelled(PipelineError):
    """The run was cancelled; carries the stage where it was observed"""

    def __init__(self, stage: str):
        super().__init__(f"Run cancelled during {stage}", reason="cancelled")
        self.stage = stage
