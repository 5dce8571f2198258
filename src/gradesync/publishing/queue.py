"""Background task queues for publishing work.

``publish()`` must return as soon as enrollments are marked pending, so the
posting runs as a job on a queue.  Two implementations:

``ThreadPoolTaskQueue``
    Runs jobs on a ``ThreadPoolExecutor``; deferred jobs are armed with a
    ``threading.Timer``.
``DeferredTaskQueue``
    Records jobs and runs them only when ``run_pending()`` is called.  Used
    by the CLI (one process, one shot) and by tests.
"""

from __future__ import annotations

import itertools
import logging
import threading
from abc import ABC, abstractmethod
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable

from ..models import utcnow

logger = logging.getLogger(__name__)

_job_ids = itertools.count(1)


@dataclass
class Job:
    """A unit of background work and its outcome."""
    fn: Callable[..., Any]
    args: tuple = ()
    kwargs: dict = field(default_factory=dict)
    run_at: datetime | None = None
    id: int = field(default_factory=lambda: next(_job_ids))
    status: str = "queued"  # "queued", "running", "done", "failed", "cancelled"
    result: Any = None
    error: BaseException | None = None
    _done: threading.Event = field(default_factory=threading.Event, repr=False)

    @property
    def name(self) -> str:
        return getattr(self.fn, "__qualname__", repr(self.fn))

    def is_due(self, now: datetime) -> bool:
        return self.run_at is None or self.run_at <= now

    def run(self) -> None:
        """Execute the job, keeping its error on the job."""
        self.status = "running"
        try:
            self.result = self.fn(*self.args, **self.kwargs)
            self.status = "done"
        except Exception as e:
            self.error = e
            self.status = "failed"
            logger.error("Job %s (%s) failed: %s", self.id, self.name, e)
        finally:
            self._done.set()

    def cancel(self) -> None:
        if self.status == "queued":
            self.status = "cancelled"
            self._done.set()

    def wait(self, timeout: float | None = None) -> Any:
        """Block until the job finishes; re-raise its error if it failed."""
        if not self._done.wait(timeout):
            raise TimeoutError(f"job {self.id} ({self.name}) still running after {timeout}s")
        if self.error is not None:
            raise self.error
        return self.result


class TaskQueue(ABC):
    """Where the orchestrator sends work that must not block the caller."""

    @abstractmethod
    def submit(self, fn: Callable[..., Any], *args: Any, **kwargs: Any) -> Job:
        """Run *fn* as soon as a worker is free."""
        ...

    @abstractmethod
    def submit_at(self, run_at: datetime, fn: Callable[..., Any], *args: Any, **kwargs: Any) -> Job:
        """Run *fn* no earlier than *run_at*."""
        ...

    def shutdown(self, wait: bool = True) -> None:
        pass

    def __enter__(self) -> "TaskQueue":
        return self

    def __exit__(self, *args) -> None:
        self.shutdown()


class ThreadPoolTaskQueue(TaskQueue):
    """Thread-pool backed queue with timer-armed deferred jobs."""

    def __init__(
        self,
        max_workers: int = 4,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.clock = clock
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="gradesync")
        self._timers: dict[int, tuple[threading.Timer, Job]] = {}
        self._lock = threading.Lock()
        self._closed = False

    def submit(self, fn, *args, **kwargs) -> Job:
        job = Job(fn=fn, args=args, kwargs=kwargs)
        self._executor.submit(job.run)
        return job

    def submit_at(self, run_at, fn, *args, **kwargs) -> Job:
        job = Job(fn=fn, args=args, kwargs=kwargs, run_at=run_at)
        delay = max(0.0, (run_at - self.clock()).total_seconds())
        timer = threading.Timer(delay, self._fire, args=(job,))
        timer.daemon = True
        with self._lock:
            self._timers[job.id] = (timer, job)
        timer.start()
        return job

    def _fire(self, job: Job) -> None:
        with self._lock:
            self._timers.pop(job.id, None)
            if self._closed:
                job.cancel()
                return
        self._executor.submit(job.run)

    def shutdown(self, wait: bool = True) -> None:
        """Stop accepting timers and wait for running jobs.

        Deferred jobs that have not fired yet are cancelled.
        """
        with self._lock:
            self._closed = True
            armed = list(self._timers.values())
            self._timers.clear()
        for timer, job in armed:
            timer.cancel()
            job.cancel()
        self._executor.shutdown(wait=wait)


class DeferredTaskQueue(TaskQueue):
    """Collects jobs and runs them on demand, in submission order."""

    def __init__(self):
        self.jobs: list[Job] = []

    def submit(self, fn, *args, **kwargs) -> Job:
        job = Job(fn=fn, args=args, kwargs=kwargs)
        self.jobs.append(job)
        return job

    def submit_at(self, run_at, fn, *args, **kwargs) -> Job:
        job = Job(fn=fn, args=args, kwargs=kwargs, run_at=run_at)
        self.jobs.append(job)
        return job

    @property
    def pending(self) -> list[Job]:
        return [j for j in self.jobs if j.status == "queued"]

    def run_pending(self, now: datetime | None = None) -> list[Job]:
        """Run every queued job due at *now* (default: run immediate jobs only).

        Jobs submitted by a running job are picked up in the same call if
        they are due.  Returns the jobs that ran.
        """
        ran = []
        while True:
            due = [
                j for j in self.pending
                if (j.run_at is None if now is None else j.is_due(now))
            ]
            if not due:
                return ran
            for job in due:
                job.run()
                ran.append(job)
