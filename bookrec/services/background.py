"""
Background worker pool.

Cover resolution, S3 write-back and persistence-after-fetch run here so
request threads can return as soon as they have an answer.
"""

import logging
from collections.abc import Callable
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Any

logger = logging.getLogger(__name__)


class BackgroundTasks:
    """
    Thin wrapper over ThreadPoolExecutor.

    submit() logs failures of the submitted callable when its future
    completes, so fire-and-forget callers still see errors in the log.
    """

    def __init__(self, max_workers: int = 4, executor: Any = None):
        self._executor = executor or ThreadPoolExecutor(
            max_workers=max_workers, thread_name_prefix="bookrec-worker"
        )

    def submit(self, fn: Callable[..., Any], *args, **kwargs) -> Future:
        future = self._executor.submit(fn, *args, **kwargs)
        future.add_done_callback(self._log_failure)
        return future

    @staticmethod
    def _log_failure(future: Future) -> None:
        if future.cancelled():
            return
        error = future.exception()
        if error is not None:
            logger.error("Background task failed", exc_info=error)

    def shutdown(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)
