"""Background job handles for clone and schema export runs.

Every run executes on its own worker thread. The caller gets a Job back
immediately and can wait on it, inspect its state or request cancellation.
Cancellation is cooperative: the run checks the token between stages and
never interrupts a client tool that is already running.

The active-destination tracker records which destinations have a run in
flight. It does not block anything; overlapping runs against one
destination are logged as a warning.
"""

from __future__ import annotations

import threading
import uuid
from collections import Counter
from contextlib import contextmanager
from typing import Any, Callable, Generator, Optional

from pg_cloner.domain import JobState
from pg_cloner.logging import get_logger
from pg_cloner.storage.exceptions import CloneCancelledError

log = get_logger(source=__name__, tags=["jobs"])


class CancellationToken:
    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self, stage: str = "") -> None:
        if self._event.is_set():
            raise CloneCancelledError(stage)


class Job:
    """Handle of one background run."""

    def __init__(self, kind: str, job_id: Optional[str] = None):
        self.id = job_id or str(uuid.uuid4())
        self.kind = kind
        self.state = JobState.PENDING
        self.token = CancellationToken()
        self.result: Any = None
        self.error: Optional[BaseException] = None
        self._done = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def start(self, target: Callable[["Job"], Any]) -> "Job":
        def _run() -> None:
            self.state = JobState.RUNNING
            try:
                self.result = target(self)
                self.state = JobState.COMPLETED
            except CloneCancelledError as error:
                self.error = error
                self.state = JobState.CANCELLED
            except Exception as error:
                self.error = error
                self.state = JobState.FAILED
                log.opt(exception=error).debug(f"{self.kind} job {self.id} failed")
            finally:
                self._done.set()

        self._thread = threading.Thread(
            target=_run, name=f"{self.kind}-{self.id[:8]}", daemon=True
        )
        self._thread.start()
        return self

    def cancel(self) -> None:
        log.info(f"Cancellation requested for {self.kind} job {self.id}")
        self.token.cancel()

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Block until the run finishes; False if the timeout elapsed first."""
        return self._done.wait(timeout)

    @property
    def done(self) -> bool:
        return self._done.is_set()


class JobRegistry:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._jobs: dict[str, Job] = {}

    def add(self, job: Job) -> Job:
        with self._lock:
            self._jobs[job.id] = job
        return job

    def get(self, job_id: str) -> Optional[Job]:
        with self._lock:
            return self._jobs.get(job_id)

    def active(self) -> list[Job]:
        with self._lock:
            return [job for job in self._jobs.values() if not job.state.is_terminal]

    def prune(self) -> int:
        """Forget finished jobs; returns how many were removed."""
        with self._lock:
            finished = [job_id for job_id, job in self._jobs.items() if job.done]
            for job_id in finished:
                del self._jobs[job_id]
        return len(finished)


default_registry = JobRegistry()

# Lock for thread-safe access to the active destination counts
_destinations_lock = threading.Lock()
_active_destinations: Counter = Counter()


@contextmanager
def destination_operation(destination_id: str) -> Generator[int, None, None]:
    """Mark a destination as being written to for the duration of a run.

    Yields the number of other runs already targeting the destination.
    """
    with _destinations_lock:
        concurrent = _active_destinations[destination_id]
        _active_destinations[destination_id] += 1
    if concurrent:
        log.warning(
            f"{concurrent} other run(s) already target destination {destination_id}"
        )
    try:
        yield concurrent
    finally:
        with _destinations_lock:
            _active_destinations[destination_id] -= 1
            if _active_destinations[destination_id] <= 0:
                del _active_destinations[destination_id]
