"""Background workers. Each one is a daemon thread ticking on a fixed interval."""
from __future__ import annotations
import threading
from datetime import datetime, timedelta
from typing import Any, Callable, List
from loguru import logger

from .models import ReminderCandidate, utcnow
from .ports import CandidateRepository, EventRepository
from .routines import RoutineLearningService
from .transitions import TransitionLearner


class IntervalWorker:
    name = "worker"

    def __init__(self, interval_seconds: float):
        self.interval_seconds = interval_seconds
        self._thread: threading.Thread | None = None
        self._stop = threading.Event()

    def tick(self, now: datetime | None = None) -> Any:
        raise NotImplementedError

    def start(self):
        if self._thread and self._thread.is_alive():
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._loop, name=self.name, daemon=True)
        self._thread.start()
        logger.info(f"{self.name} started (every {self.interval_seconds:g}s)")

    def stop(self, timeout: float = 2.0):
        if self._thread and self._thread.is_alive():
            self._stop.set()
            self._thread.join(timeout=timeout)
            logger.info(f"{self.name} stopped")

    @property
    def is_running(self) -> bool:
        return bool(self._thread and self._thread.is_alive())

    def _loop(self):
        while not self._stop.is_set():
            try:
                self.tick()
            except Exception:
                logger.exception(f"{self.name} tick failed")
            self._stop.wait(self.interval_seconds)


class CandidateSchedulerWorker(IntervalWorker):
    """Processes due reminder candidates in small batches."""

    name = "candidate-scheduler"

    def __init__(
        self,
        candidates: CandidateRepository,
        process: Callable[..., Any],
        interval_seconds: float = 30,
        batch_size: int = 10,
        min_probability: float = 0.7,
    ):
        super().__init__(interval_seconds)
        self.candidates = candidates
        self.process = process
        self.batch_size = batch_size
        self.min_probability = min_probability

    def select_batch(self, now: datetime) -> List[ReminderCandidate]:
        # routine candidates carry their own learned timing and skip the threshold
        due = self.candidates.due_candidates(now, self.batch_size, min_confidence=self.min_probability)
        return sorted(due, key=lambda c: (not c.is_routine, -c.confidence))

    def tick(self, now: datetime | None = None) -> List[str]:
        now = now or utcnow()
        processed: List[str] = []
        for candidate in self.select_batch(now):
            try:
                self.process(candidate.id, now=now)
                processed.append(candidate.id)
            except Exception:
                logger.exception(f"Failed processing candidate {candidate.id}")
        if processed:
            logger.debug(f"Processed {len(processed)} candidate(s)")
        return processed


class TransitionDecayWorker(IntervalWorker):
    name = "transition-decay"

    def __init__(self, learner: TransitionLearner, decay_rate: float = 0.01, interval_hours: float = 24):
        super().__init__(interval_hours * 3600)
        self.learner = learner
        self.decay_rate = decay_rate

    def tick(self, now: datetime | None = None) -> int:
        count = self.learner.decay_all(self.decay_rate)
        logger.info(f"Decayed {count} transition(s) by {self.decay_rate}")
        return count


class WindowCloserWorker(IntervalWorker):
    name = "window-closer"

    def __init__(self, routines: RoutineLearningService, interval_seconds: float = 30):
        super().__init__(max(5, interval_seconds))
        self.routines = routines

    def tick(self, now: datetime | None = None) -> int:
        return self.routines.close_expired_windows(now or utcnow())


class EventCleanupWorker(IntervalWorker):
    name = "event-cleanup"

    def __init__(self, events: EventRepository, retention_days: int = 30, interval_hours: float = 24):
        super().__init__(interval_hours * 3600)
        self.events = events
        self.retention_days = retention_days

    def tick(self, now: datetime | None = None) -> int:
        cutoff = (now or utcnow()) - timedelta(days=self.retention_days)
        deleted = self.events.delete_events_before(cutoff)
        if deleted:
            logger.info(f"Deleted {deleted} event(s) older than {self.retention_days} days")
        return deleted
