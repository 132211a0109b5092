"""
Execution agent: run gate-passed validations under bounded concurrency
"""

import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import List, Optional, Sequence

from ..config import PipelineConfig
from ..database.adapters import DatabaseAdapter
from ..errors import ExecutionError, RunCancelled
from ..utils.cancellation import CancellationToken, run_cancellable
from ..utils.logger import get_logger
from .sql_generation_agent import TranslatedValidation
from .verification_agent import (
    ExecutedValidation,
    ExecutionStatus,
    OutcomeStatus,
    ValidationOutcome,
    classify_result,
)

logger = get_logger("ExecutionAgent")

CANCELLED_MESSAGE = "cancelled before execution"
STATEMENT_GRACE_SECONDS = 5.0


class ExecutionAgent:
    """Fixed-size worker pool; every accepted statement yields exactly one ExecutedValidation"""

    def __init__(self, config: Optional[PipelineConfig] = None):
        self.config = config or PipelineConfig()

    def execute_validations(self, adapter: DatabaseAdapter, translated: Sequence[TranslatedValidation],
                            token: Optional[CancellationToken] = None) -> List[ExecutedValidation]:
        """Execute every statement that passed the safety gate; order follows completion"""
        accepted = [item for item in translated if item.is_valid_sql]
        skipped = len(translated) - len(accepted)
        if skipped:
            logger.info(f"🛡️ {skipped} validation(s) excluded from execution by the safety gate")
        if not accepted:
            return []

        logger.info(f"⚡ Executing {len(accepted)} validations with {self.config.max_concurrency} workers")
        start_time = time.time()
        results: List[ExecutedValidation] = []

        with ThreadPoolExecutor(max_workers=self.config.max_concurrency,
                                thread_name_prefix="dq-exec") as executor:
            futures = {executor.submit(self._execute_one, adapter, item, token): item for item in accepted}
            for future in as_completed(futures):
                results.append(future.result())

        elapsed = time.time() - start_time
        failed = sum(1 for r in results if r.execution_status == ExecutionStatus.ERROR)
        logger.info(f"✅ Executed {len(results)} validations in {elapsed:.2f}s ({failed} failed)")
        return results

    def _execute_one(self, adapter: DatabaseAdapter, item: TranslatedValidation,
                     token: Optional[CancellationToken]) -> ExecutedValidation:
        """Protected unit: any exception becomes an error outcome"""
        if token is not None and token.is_cancelled:
            return self._error(item, CANCELLED_MESSAGE, 0.0)

        start_time = time.time()
        timeout = self.config.statement_timeout_seconds
        try:
            result = run_cancellable(
                lambda: adapter.execute_read_only(item.sql, timeout, max_rows=self.config.row_limit_cap),
                timeout=timeout + STATEMENT_GRACE_SECONDS,
                token=token,
                stage='execution',
            )
            outcome = classify_result(result.rows)
        except RunCancelled:
            return self._error(item, "cancelled during execution", time.time() - start_time)
        except TimeoutError:
            logger.warning(f"⚠️ Validation {item.proposal.sequence} exceeded {timeout}s")
            return self._error(item, f"statement timed out after {timeout}s", time.time() - start_time)
        except ExecutionError as e:
            logger.warning(f"⚠️ Validation {item.proposal.sequence} failed ({e.reason}): {e}")
            return self._error(item, str(e), time.time() - start_time)
        except Exception as e:
            logger.error(f"❌ Validation {item.proposal.sequence} raised unexpectedly: {e}")
            return self._error(item, str(e), time.time() - start_time)

        return ExecutedValidation(
            translated=item,
            execution_status=ExecutionStatus.SUCCESS,
            duration=time.time() - start_time,
            row_count=result.row_count,
            outcome=outcome,
            columns=result.columns,
        )

    @staticmethod
    def _error(item: TranslatedValidation, message: str, duration: float) -> ExecutedValidation:
        return ExecutedValidation(
            translated=item,
            execution_status=ExecutionStatus.ERROR,
            duration=duration,
            row_count=0,
            outcome=ValidationOutcome(status=OutcomeStatus.ERROR),
            error_message=message,
        )
