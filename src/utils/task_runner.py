"""
Background task runner: a small process-wide thread pool for detached work
(sort-cache prewarm, concurrent index rebuilds).

Work submitted here is never awaited by the request that scheduled it.
Failures are logged with the task name and never re-raised into callers.
"""

from __future__ import annotations

import threading
from concurrent.futures import Future, ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from typing import Any, Callable, Optional

from config.settings import settings
from src.log import get_logger

logger = get_logger(__name__)


class BackgroundRunner:
    """ThreadPoolExecutor wrapper that tracks in-flight tasks by name."""

    def __init__(self, max_workers: Optional[int] = None, name: str = "grid-bg"):
        self._max_workers = max_workers or settings.background.max_workers
        self._name = name
        self._executor: ThreadPoolExecutor | None = None
        self._lock = threading.Lock()
        self._active: dict[Future, str] = {}

    def _get_executor(self) -> ThreadPoolExecutor:
        with self._lock:
            if self._executor is None:
                self._executor = ThreadPoolExecutor(
                    max_workers=self._max_workers, thread_name_prefix=self._name
                )
            return self._executor

    def submit(self, task_name: str, fn: Callable[..., Any], *args, **kwargs) -> Future:
        """Schedule fn(*args, **kwargs); exceptions are logged, not propagated."""

        def _run() -> Any:
            try:
                return fn(*args, **kwargs)
            except Exception as e:
                logger.error("[task_runner] task %s failed: %s", task_name, e, exc_info=True)
                return None

        future = self._get_executor().submit(_run)
        with self._lock:
            self._active[future] = task_name
        future.add_done_callback(self._forget)
        logger.debug("[task_runner] scheduled %s", task_name)
        return future

    def _forget(self, future: Future) -> None:
        with self._lock:
            self._active.pop(future, None)

    def active_tasks(self) -> list[str]:
        with self._lock:
            return list(self._active.values())

    def wait_idle(self, timeout: Optional[float] = None) -> bool:
        """Block until every task scheduled so far has finished (tests, scripts)."""
        with self._lock:
            pending = list(self._active)
        for future in pending:
            try:
                future.result(timeout=timeout)
            except FutureTimeoutError:
                return False
        return True

    def shutdown(self, wait: bool = True) -> None:
        with self._lock:
            executor, self._executor = self._executor, None
        if executor is not None:
            executor.shutdown(wait=wait)
            logger.info("[task_runner] background runner stopped")


# ── Process-wide instance ─────────────────────────────────────────────────────

_runner: BackgroundRunner | None = None
_runner_lock = threading.Lock()


def get_background_runner() -> BackgroundRunner:
    global _runner
    with _runner_lock:
        if _runner is None:
            _runner = BackgroundRunner()
        return _runner


def submit_background(task_name: str, fn: Callable[..., Any], *args, **kwargs) -> Future:
    return get_background_runner().submit(task_name, fn, *args, **kwargs)


def shutdown_background_runner(wait: bool = True) -> None:
    global _runner
    with _runner_lock:
        runner, _runner = _runner, None
    if runner is not None:
        runner.shutdown(wait=wait)
