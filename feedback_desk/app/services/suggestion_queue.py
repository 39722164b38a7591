from __future__ import annotations

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor, wait
from typing import Any, Callable, Dict, Optional, Set

from tenacity import Retrying, before_sleep_log, retry_if_exception_type, stop_after_attempt, wait_exponential

from feedback_desk.core.services.errors import UpstreamFailure


logger = logging.getLogger(__name__)

Handler = Callable[[str], Any]


class SuggestionQueue:
    """Runs suggestion generation for new feedback off the request path.

    Jobs retry on ``UpstreamFailure`` with exponential backoff. A job that
    still fails is logged and counted; nothing is raised to the submitter.
    """

    def __init__(
        self,
        handler: Handler,
        *,
        max_workers: int = 2,
        max_attempts: int = 3,
        wait_seconds: float = 1.0,
        max_wait_seconds: float = 30.0,
    ) -> None:
        self._handler = handler
        self.max_workers = max_workers
        self.max_attempts = max(1, int(max_attempts))
        self.wait_seconds = wait_seconds
        self.max_wait_seconds = max_wait_seconds
        self._executor: Optional[ThreadPoolExecutor] = None
        self._inflight: Set[Future] = set()
        self._lock = threading.RLock()
        self.counters: Dict[str, int] = {"submitted": 0, "succeeded": 0, "skipped": 0, "failed": 0}

    @property
    def running(self) -> bool:
        return self._executor is not None

    def start(self) -> None:
        with self._lock:
            if self._executor is not None:
                return
            self._executor = ThreadPoolExecutor(max_workers=self.max_workers, thread_name_prefix="suggestions")
            logger.info(
                "suggestions.queue started workers=%s max_attempts=%s", self.max_workers, self.max_attempts
            )

    def submit(self, feedback_id: str) -> Future:
        with self._lock:
            if self._executor is None:
                raise RuntimeError("suggestion queue is not running")
            future = self._executor.submit(self._run, feedback_id)
            self.counters["submitted"] += 1
            self._inflight.add(future)
        future.add_done_callback(self._discard)
        logger.debug("suggestions.queue submit feedback_id=%s", feedback_id)
        return future

    def _discard(self, future: Future) -> None:
        with self._lock:
            self._inflight.discard(future)

    def _retrying(self) -> Retrying:
        return Retrying(
            retry=retry_if_exception_type(UpstreamFailure),
            stop=stop_after_attempt(self.max_attempts),
            wait=wait_exponential(multiplier=self.wait_seconds, max=self.max_wait_seconds),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            reraise=True,
        )

    def _run(self, feedback_id: str) -> bool:
        try:
            stored = self._retrying()(self._handler, feedback_id)
        except Exception as exc:  # noqa: BLE001 - failures are counted, never propagated
            self._count("failed")
            logger.error(
                "suggestions.queue failed feedback_id=%s attempts=%s (%s: %s)",
                feedback_id,
                self.max_attempts,
                exc.__class__.__name__,
                exc,
            )
            return False
        self._count("succeeded" if stored is not False else "skipped")
        return stored is not False

    def _count(self, key: str) -> None:
        with self._lock:
            self.counters[key] += 1

    def stats(self) -> Dict[str, int]:
        with self._lock:
            return {**self.counters, "pending": sum(1 for f in self._inflight if not f.done())}

    def drain(self, timeout: Optional[float] = None) -> bool:
        """Wait for in-flight jobs; returns False if some are still running after ``timeout``."""
        with self._lock:
            pending = {f for f in self._inflight if not f.done()}
        if not pending:
            return True
        _, not_done = wait(pending, timeout=timeout)
        return not not_done

    def shutdown(self, timeout: Optional[float] = None) -> None:
        with self._lock:
            executor = self._executor
            self._executor = None
        if executor is None:
            return
        drained = self.drain(timeout)
        if not drained:
            logger.warning("suggestions.queue shutdown with pending=%s", self.stats()["pending"])
        executor.shutdown(wait=drained, cancel_futures=not drained)
        logger.info("suggestions.queue stopped stats=%s", self.stats())
