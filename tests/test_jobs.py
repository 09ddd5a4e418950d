"""Tests for background job handles."""

import threading

import pytest

from pg_cloner import jobs
from pg_cloner.domain import JobState
from pg_cloner.jobs import (
    CancellationToken,
    Job,
    JobRegistry,
    destination_operation,
)
from pg_cloner.storage.exceptions import CloneCancelledError


class TestCancellationToken:
    def test_not_cancelled_by_default(self):
        token = CancellationToken()
        assert token.cancelled is False
        token.raise_if_cancelled("dumping")

    def test_cancel_raises_with_stage(self):
        token = CancellationToken()
        token.cancel()
        with pytest.raises(CloneCancelledError, match="before dumping"):
            token.raise_if_cancelled("dumping")


class TestJob:
    def test_completed_job_keeps_result(self):
        job = Job("clone").start(lambda _job: "done")

        assert job.wait(5)
        assert job.state is JobState.COMPLETED
        assert job.result == "done"
        assert job.error is None

    def test_failed_job_keeps_error(self):
        def _fail(_job):
            raise RuntimeError("boom")

        job = Job("clone").start(_fail)

        assert job.wait(5)
        assert job.state is JobState.FAILED
        assert str(job.error) == "boom"

    def test_cancellation_between_steps(self):
        started = threading.Event()
        proceed = threading.Event()

        def _target(job):
            started.set()
            proceed.wait(5)
            job.token.raise_if_cancelled("restoring")
            return "unreachable"

        job = Job("clone").start(_target)
        started.wait(5)
        assert job.state is JobState.RUNNING
        job.cancel()
        proceed.set()

        assert job.wait(5)
        assert job.state is JobState.CANCELLED
        assert isinstance(job.error, CloneCancelledError)

    def test_start_returns_immediately(self):
        release = threading.Event()
        job = Job("clone").start(lambda _job: release.wait(5))

        assert job.done is False
        release.set()
        assert job.wait(5)

    def test_custom_id(self):
        assert Job("clone", job_id="abc").id == "abc"


class TestJobRegistry:
    def test_add_get_active_prune(self):
        registry = JobRegistry()
        release = threading.Event()
        running = registry.add(Job("clone").start(lambda _job: release.wait(5)))
        finished = registry.add(Job("schema").start(lambda _job: None))
        finished.wait(5)

        assert registry.get(running.id) is running
        assert registry.active() == [running]
        assert registry.prune() == 1
        assert registry.get(finished.id) is None

        release.set()
        running.wait(5)


def others_on(destination_id):
    with destination_operation(destination_id) as others:
        return others


class TestDestinationTracker:
    def test_tracks_and_releases(self):
        with destination_operation("dest-1") as others:
            assert others == 0
            assert others_on("dest-1") == 1
        assert others_on("dest-1") == 0

    def test_overlap_warns_but_never_blocks(self, mocker):
        log = mocker.patch.object(jobs, "log")

        with destination_operation("dest-2"):
            with destination_operation("dest-2") as others:
                assert others == 1
        log.warning.assert_called_once()
        assert others_on("dest-2") == 0

    def test_released_on_error(self):
        with pytest.raises(ValueError):
            with destination_operation("dest-3"):
                raise ValueError("failed")
        assert others_on("dest-3") == 0
