"""Bounded-concurrency batch execution under a shared request-rate ceiling."""

from __future__ import annotations

import logging
import queue
import random
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Any, Callable, Generic, List, Optional, Sequence, Tuple, TypeVar

from geogrid.core.config import ConfigError, Settings, get_settings

logger = logging.getLogger(__name__)

T = TypeVar("T")
R = TypeVar("R")

ProgressCallback = Callable[[int, int, Optional[str]], None]


@dataclass(frozen=True)
class RateLimiterConfig:
    """Provider limits are not published; every value here is a tunable guess."""

    max_concurrent: int = 3
    requests_per_second: float = 2.0
    max_retries: int = 2
    base_delay: float = 1.0
    max_delay: float = 30.0

    def __post_init__(self) -> None:
        if self.max_concurrent < 1:
            raise ConfigError("max_concurrent must be at least 1")
        if self.requests_per_second <= 0:
            raise ConfigError("requests_per_second must be positive")
        if self.max_retries < 0:
            raise ConfigError("max_retries must not be negative")

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None, **overrides: Any) -> "RateLimiterConfig":
        settings = settings or get_settings()
        values = {
            "max_concurrent": settings.max_concurrent,
            "requests_per_second": settings.requests_per_second,
            "max_retries": settings.max_retries,
        }
        values.update({key: value for key, value in overrides.items() if value is not None})
        return cls(**values)


class RateLimiter:
    """Spaces request starts at least ``1 / requests_per_second`` apart across all threads."""

    def __init__(
        self,
        requests_per_second: float,
        *,
        clock: Optional[Callable[[], float]] = None,
        sleep: Optional[Callable[[float], None]] = None,
    ) -> None:
        if requests_per_second <= 0:
            raise ValueError("requests_per_second must be positive")
        self.min_interval = 1.0 / requests_per_second
        self._clock = clock or time.monotonic
        self._sleep = sleep or time.sleep
        self._lock = threading.Lock()
        self._next_slot: Optional[float] = None

    def acquire(self) -> float:
        """Block until this caller may send; returns the seconds waited."""
        with self._lock:
            now = self._clock()
            slot = now if self._next_slot is None else max(now, self._next_slot)
            self._next_slot = slot + self.min_interval
        # Sleep outside the lock so other workers can reserve later slots meanwhile.
        wait = slot - now
        if wait > 0:
            self._sleep(wait)
        return wait


@dataclass
class BatchOutcome(Generic[R]):
    results: List[Optional[R]]
    errors: List[Tuple[int, BaseException]] = field(default_factory=list)
    completed: int = 0
    cancelled: bool = False

    @property
    def skipped(self) -> int:
        return len(self.results) - self.completed


class BatchExecutor(Generic[T, R]):
    """Runs one task per item on a fixed pool of workers pulling from a shared queue.

    A failing item is recorded in ``BatchOutcome.errors`` and never aborts the
    batch. ``cancel()`` stops workers from taking new items; requests already
    in flight finish normally.
    """

    def __init__(
        self,
        config: Optional[RateLimiterConfig] = None,
        *,
        limiter: Optional[RateLimiter] = None,
        should_retry: Optional[Callable[[BaseException], bool]] = None,
        cancel_event: Optional[threading.Event] = None,
        sleep: Optional[Callable[[float], None]] = None,
    ) -> None:
        self.config = config or RateLimiterConfig()
        self._sleep = sleep or time.sleep
        self.limiter = limiter or RateLimiter(self.config.requests_per_second, sleep=self._sleep)
        self._should_retry = should_retry or (lambda exc: False)
        self._cancel_event = cancel_event or threading.Event()
        self._state_lock = threading.Lock()
        self._progress_lock = threading.Lock()
        self._active = 0
        self._queue: "queue.Queue[Tuple[int, T]]" = queue.Queue()

    def cancel(self) -> None:
        logger.info("Batch cancellation requested; %d queued items will not start", self._queue.qsize())
        self._cancel_event.set()

    @property
    def cancelled(self) -> bool:
        return self._cancel_event.is_set()

    def get_stats(self) -> dict:
        with self._state_lock:
            return {"active_requests": self._active, "queue_length": self._queue.qsize()}

    def execute_batch(
        self,
        items: Sequence[T],
        task: Callable[[T], R],
        *,
        label: Optional[Callable[[T], str]] = None,
        on_progress: Optional[ProgressCallback] = None,
    ) -> BatchOutcome[R]:
        """Run ``task`` for every item; results keep the input order, ``None`` where an item never ran."""
        total = len(items)
        outcome: BatchOutcome[R] = BatchOutcome(results=[None] * total)
        if total == 0:
            return outcome

        self._queue = queue.Queue()
        for index, item in enumerate(items):
            self._queue.put((index, item))

        def worker() -> None:
            while not self._cancel_event.is_set():
                try:
                    index, item = self._queue.get_nowait()
                except queue.Empty:
                    return
                with self._state_lock:
                    self._active += 1
                try:
                    outcome.results[index] = self._run_with_retries(task, item)
                except Exception as exc:  # noqa: BLE001
                    logger.warning("Batch item %s failed: %s", label(item) if label else index, exc)
                    with self._state_lock:
                        outcome.errors.append((index, exc))
                finally:
                    # Reports go out in completion order without blocking get_stats().
                    with self._progress_lock:
                        with self._state_lock:
                            self._active -= 1
                            outcome.completed += 1
                            completed = outcome.completed
                        if on_progress is not None:
                            self._report_progress(on_progress, completed, total, label(item) if label else None)

        workers = min(self.config.max_concurrent, total)
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="geogrid-batch") as pool:
            futures = [pool.submit(worker) for _ in range(workers)]
            for future in futures:
                future.result()

        outcome.cancelled = self._cancel_event.is_set() and outcome.skipped > 0
        logger.info(
            "Batch finished: completed=%d/%d errors=%d cancelled=%s",
            outcome.completed,
            total,
            len(outcome.errors),
            outcome.cancelled,
        )
        return outcome

    def _run_with_retries(self, task: Callable[[T], R], item: T) -> R:
        attempt = 0
        while True:
            self.limiter.acquire()
            try:
                return task(item)
            except Exception as exc:
                if attempt >= self.config.max_retries or not self._should_retry(exc) or self._cancel_event.is_set():
                    raise
                delay = self._backoff_delay(attempt)
                attempt += 1
                logger.info(
                    "Retrying request (attempt %d/%d) after %.2fs: %s",
                    attempt,
                    self.config.max_retries,
                    delay,
                    exc,
                )
                self._sleep(delay)

    def _backoff_delay(self, attempt: int) -> float:
        delay = self.config.base_delay * (2 ** attempt) + random.uniform(0, 1.0)
        return min(delay, self.config.max_delay)

    @staticmethod
    def _report_progress(callback: ProgressCallback, completed: int, total: int, label: Optional[str]) -> None:
        try:
            callback(completed, total, label)
        except Exception:  # noqa: BLE001
            logger.exception("Progress callback failed at %d/%d", completed, total)
