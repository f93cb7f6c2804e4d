from __future__ import annotations

from concurrent.futures import Future, ThreadPoolExecutor
import logging
from threading import Lock
from typing import Any, Callable

LOGGER = logging.getLogger(__name__)


class BackgroundTaskRunner:
    """Bounded worker pool for submission processing.

    ``submit`` returns the future so callers (and tests) can wait on
    completion; failures are logged from a done callback.
    """

    def __init__(self, *, max_workers: int, thread_name_prefix: str = "asbuilt-processing") -> None:
        if max_workers < 1:
            raise ValueError("max_workers must be >= 1")
        self._executor = ThreadPoolExecutor(
            max_workers=max_workers,
            thread_name_prefix=thread_name_prefix,
        )
        self._lock = Lock()
        self._pending: set[Future[Any]] = set()

    def submit(self, task_name: str, fn: Callable[..., Any], *args: Any, **kwargs: Any) -> Future[Any]:
        future = self._executor.submit(fn, *args, **kwargs)
        with self._lock:
            self._pending.add(future)

        def _on_done(done: Future[Any]) -> None:
            with self._lock:
                self._pending.discard(done)
            if done.cancelled():
                LOGGER.info("Background task cancelled", extra={"task_name": task_name})
                return
            exc = done.exception()
            if exc is not None:
                LOGGER.error(
                    "Background task failed",
                    exc_info=(type(exc), exc, exc.__traceback__),
                    extra={"task_name": task_name},
                )

        future.add_done_callback(_on_done)
        return future

    def pending_count(self) -> int:
        with self._lock:
            return len(self._pending)

    def shutdown(self, *, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)


__all__ = ["BackgroundTaskRunner"]
