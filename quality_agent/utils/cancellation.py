"""
Run-level cancellation and bounded blocking calls
"""

import threading
import time
from concurrent.futures import FIRST_COMPLETED, ThreadPoolExecutor, wait
from typing import Callable, Optional, TypeVar

from ..errors import RunCancelled

T = TypeVar('T')


class CancellationToken:
    """Cooperative cancellation signal shared by every stage of one run"""

    def __init__(self):
        self._event = threading.Event()

    def cancel(self):
        self._event.set()

    @property
    def is_cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self, stage: str):
        if self._event.is_set():
            raise RunCancelled(stage)

    def wait(self, timeout: float) -> bool:
        return self._event.wait(timeout)


def run_cancellable(func: Callable[[], T], timeout: Optional[float] = None,
                    token: Optional[CancellationToken] = None, stage: str = 'call',
                    poll_interval: float = 0.1) -> T:
    """Run a blocking call on a helper thread, abandoning it on timeout or cancellation.

    Raises TimeoutError when the deadline passes and RunCancelled when the token
    fires first. Exceptions raised by the call itself propagate unchanged.
    """
    executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix=f"dq-{stage}")
    future = executor.submit(func)
    deadline = None if timeout is None else time.monotonic() + timeout

    try:
        while True:
            if token is not None and token.is_cancelled:
                future.cancel()
                raise RunCancelled(stage)

            wait_for = poll_interval
            if deadline is not None:
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    future.cancel()
                    raise TimeoutError(f"{stage} exceeded {timeout}s")
                wait_for = min(wait_for, remaining)

            done, _ = wait([future], timeout=wait_for, return_when=FIRST_COMPLETED)
            if done:
                return future.result()
    finally:
        executor.shutdown(wait=False)
