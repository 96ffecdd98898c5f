"""
Tests for grading jobs, status channels and the job status stream.
"""

import asyncio

import pytest

from gradeflow.config import Settings
from gradeflow.jobs import GradingJobManager, JobNotFoundError, JobStatusStream, StatusChannelRegistry
from gradeflow.jobs.stream import CONNECTED_MESSAGE, PollBackoff
from gradeflow.models import EventType, GradingJob, JobEventData, JobStatus, JobStatusEvent
from gradeflow.store import InMemoryDataStore, StoreError


@pytest.fixture
def manager(store: InMemoryDataStore, test_settings: Settings) -> GradingJobManager:
    """Job manager over the in-memory store."""
    return GradingJobManager(store, settings=test_settings)


def update_event(percentage: int) -> JobStatusEvent:
    return JobStatusEvent(
        type=EventType.UPDATE,
        data=JobEventData(status=JobStatus.PROCESSING, progress="stale", percentage=percentage),
    )



class SlowReadStore(InMemoryDataStore):
    """Store whose job reads return a snapshot after a round-trip delay."""

    async def find_job(self, job_id: int) -> GradingJob | None:
        job = await super().find_job(job_id)
        await asyncio.sleep(0.01)
        return job


class FlakyPollStore(InMemoryDataStore):
    """
    Store whose job reads follow a script of failures and successes.

    Each read records the stream's backoff state as seen before it. Once the
    script is used up the job is marked completed.
    """

    def __init__(self, script: list[bool]):
        super().__init__()
        self.script = list(script)
        self.stream: JobStatusStream | None = None
        self.seen: list[tuple[int, float]] = []

    async def find_job(self, job_id: int) -> GradingJob | None:
        self.seen.append((self.stream.backoff.errors, self.stream.backoff.delay))
        if not self.script:
            return await self.update_job(job_id, {"status": JobStatus.COMPLETED, "percentage": 100})
        if not self.script.pop(0):
            raise StoreError("connection reset")
        return await super().find_job(job_id)


# ==============================================================================
# Channels
# ==============================================================================


class TestStatusChannels:
    """Tests for StatusChannelRegistry."""

    def test_publish_reaches_every_subscriber(self) -> None:
        """Test each subscriber queue receives the event."""
        channels = StatusChannelRegistry()
        first = channels.subscribe(1)
        second = channels.subscribe(1)

        delivered = channels.publish(1, update_event(10))

        assert delivered == 2
        assert first.get_nowait() is not None
        assert second.get_nowait() is not None

    def test_publish_without_subscribers(self) -> None:
        """Test publishing to an unknown job is a no-op."""
        assert StatusChannelRegistry().publish(9, update_event(10)) == 0

    def test_last_unsubscribe_drops_channel(self) -> None:
        """Test a channel disappears with its last subscriber."""
        channels = StatusChannelRegistry()
        queue = channels.subscribe(1)

        channels.unsubscribe(1, queue)

        assert 1 not in channels
        assert len(channels) == 0

    def test_release_ends_subscriptions(self) -> None:
        """Test release delivers the end marker."""
        channels = StatusChannelRegistry()
        queue = channels.subscribe(1)

        channels.release(1)

        assert queue.get_nowait() is None
        assert 1 not in channels


# ==============================================================================
# Job Manager
# ==============================================================================


class TestJobManager:
    """Tests for GradingJobManager."""

    @pytest.mark.asyncio
    async def test_create_job(self, manager: GradingJobManager) -> None:
        """Test new jobs start as pending."""
        job = await manager.create_job(100, "learner-1", attempt_id=7)

        assert job.id is not None
        assert job.status == JobStatus.PENDING
        assert job.progress == "Job created"
        assert job.percentage == 0

    @pytest.mark.asyncio
    async def test_get_missing_job(self, manager: GradingJobManager) -> None:
        """Test an unknown job id raises JobNotFoundError."""
        with pytest.raises(JobNotFoundError, match="999"):
            await manager.get_job(999)

    @pytest.mark.asyncio
    async def test_progress_truncated_and_percentage_clamped(self, manager: GradingJobManager) -> None:
        """Test long messages are cut and percentages kept within 0..100."""
        job = await manager.create_job(100, "learner-1")

        updated = await manager.update_job_status(job.id, JobStatus.PROCESSING, "x" * 300, 150)
        assert len(updated.progress) == 255
        assert updated.percentage == 100

        updated = await manager.update_job_status(job.id, JobStatus.PROCESSING, "back", -5)
        assert updated.percentage == 0

    @pytest.mark.asyncio
    async def test_terminal_job_refuses_updates(self, manager: GradingJobManager) -> None:
        """Test a completed job cannot move back to processing."""
        job = await manager.create_job(100, "learner-1")
        await manager.update_job_status(job.id, JobStatus.COMPLETED, "Grading completed", 100)

        again = await manager.update_job_status(job.id, JobStatus.PROCESSING, "late update", 50)

        assert again.status == JobStatus.COMPLETED
        assert again.progress == "Grading completed"

    @pytest.mark.asyncio
    async def test_late_progress_cannot_reopen_completed_job(self, test_settings: Settings) -> None:
        """Test a progress update racing completion does not overwrite it."""
        store = SlowReadStore()
        manager = GradingJobManager(store, settings=test_settings)
        job = await manager.create_job(100, "learner-1")
        await manager.update_job_status(job.id, JobStatus.PROCESSING, "Grading", 40)

        async def late_progress() -> GradingJob:
            await asyncio.sleep(0.005)
            return await manager.update_job_status(job.id, JobStatus.PROCESSING, "late progress", 50)

        completed, late = await asyncio.gather(
            manager.update_job_status(job.id, JobStatus.COMPLETED, "Grading completed", 100),
            late_progress(),
        )

        final = store.jobs[job.id]
        assert completed.status == JobStatus.COMPLETED
        assert late.status == JobStatus.COMPLETED
        assert final.status == JobStatus.COMPLETED
        assert final.progress == "Grading completed"
        assert final.percentage == 100

    @pytest.mark.asyncio
    async def test_update_published_to_channel(self, manager: GradingJobManager) -> None:
        """Test status writes are pushed to subscribers."""
        job = await manager.create_job(100, "learner-1")
        queue = manager.channels.subscribe(job.id)

        await manager.update_job_status(job.id, JobStatus.PROCESSING, "Working", 20)

        event = queue.get_nowait()
        assert event.type == EventType.UPDATE
        assert event.data.percentage == 20

    @pytest.mark.asyncio
    async def test_terminal_update_releases_channel(self, manager: GradingJobManager) -> None:
        """Test the channel is closed shortly after a terminal status."""
        job = await manager.create_job(100, "learner-1")
        queue = manager.channels.subscribe(job.id)

        await manager.update_job_status(job.id, JobStatus.FAILED, "Error: boom")
        await asyncio.sleep(0.05)

        assert queue.get_nowait().type == EventType.FINALIZE
        assert queue.get_nowait() is None
        assert job.id not in manager.channels

    @pytest.mark.asyncio
    async def test_write_retried(
        self, manager: GradingJobManager, store: InMemoryDataStore, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        """Test transient write failures are retried."""
        job = await manager.create_job(100, "learner-1")
        original = store.update_job
        calls = []

        async def flaky(job_id: int, fields: dict) -> GradingJob:
            calls.append(job_id)
            if len(calls) < 3:
                raise StoreError("deadlock")
            return await original(job_id, fields)

        monkeypatch.setattr(store, "update_job", flaky)

        updated = await manager.update_job_status(job.id, JobStatus.PROCESSING, "Working", 30)

        assert len(calls) == 3
        assert store.jobs[job.id].percentage == 30
        assert updated.percentage == 30

    @pytest.mark.asyncio
    async def test_write_failure_still_published(
        self, manager: GradingJobManager, store: InMemoryDataStore, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        """Test an update that cannot be stored is still pushed."""
        job = await manager.create_job(100, "learner-1")
        queue = manager.channels.subscribe(job.id)

        async def broken(job_id: int, fields: dict) -> GradingJob:
            raise StoreError("database down")

        monkeypatch.setattr(store, "update_job", broken)

        updated = await manager.update_job_status(job.id, JobStatus.PROCESSING, "Working", 40)

        assert updated.percentage == 40
        assert store.jobs[job.id].percentage == 0
        assert queue.get_nowait().data.percentage == 40

    @pytest.mark.asyncio
    async def test_run_job_success(self, manager: GradingJobManager) -> None:
        """Test a successful run completes with the work's result."""
        job = await manager.create_job(100, "learner-1")

        async def work(progress) -> dict:  # type: ignore[no-untyped-def]
            await progress("Halfway", 50)
            return {"grade": 0.9}

        finished = await manager.run_job(job, work)

        assert finished.status == JobStatus.COMPLETED
        assert finished.progress == "Grading completed"
        assert finished.percentage == 100
        assert finished.result == {"grade": 0.9}

    @pytest.mark.asyncio
    async def test_run_job_failure(self, manager: GradingJobManager) -> None:
        """Test an exception fails the job without propagating."""
        job = await manager.create_job(100, "learner-1")

        async def work(progress) -> None:  # type: ignore[no-untyped-def]
            raise RuntimeError("boom")

        finished = await manager.run_job(job, work)

        assert finished.status == JobStatus.FAILED
        assert finished.progress == "Error: boom"
        assert finished.result == {"error": "boom"}

    @pytest.mark.asyncio
    async def test_unsaved_job_rejected(self, manager: GradingJobManager) -> None:
        """Test a job without an id cannot run."""

        async def work(progress) -> None:  # type: ignore[no-untyped-def]
            return None

        with pytest.raises(ValueError):
            await manager.run_job(GradingJob(assignment_id=100, user_id="x"), work)

    @pytest.mark.asyncio
    async def test_background_jobs_tracked(self, manager: GradingJobManager) -> None:
        """Test started jobs are kept until they finish."""
        job = await manager.create_job(100, "learner-1")

        async def work(progress) -> str:  # type: ignore[no-untyped-def]
            await asyncio.sleep(0.01)
            return "done"

        manager.start_job(job, work)
        assert manager.running == 1

        await manager.wait_for_all()

        assert manager.running == 0
        assert (await manager.get_job(job.id)).status == JobStatus.COMPLETED


# ==============================================================================
# Status Stream
# ==============================================================================


class TestPollBackoff:
    """Tests for PollBackoff."""

    def test_failures_double_up_to_max(self) -> None:
        """Test each failure doubles the delay until the upper bound."""
        backoff = PollBackoff(2.0, 15.0)

        delays = [backoff.failure() for _ in range(4)]

        assert delays == [4.0, 8.0, 15.0, 15.0]
        assert backoff.errors == 4

    def test_success_halves_down_to_min_and_resets_errors(self) -> None:
        """Test a success halves the delay and clears the error count."""
        backoff = PollBackoff(2.0, 15.0)
        backoff.failure()
        backoff.failure()
        backoff.failure()

        assert backoff.success() == 7.5
        assert backoff.errors == 0
        assert [backoff.success() for _ in range(3)] == [3.75, 2.0, 2.0]


class TestJobStatusStream:
    """Tests for JobStatusStream."""

    @pytest.mark.asyncio
    async def test_progress_then_single_finalize(
        self, manager: GradingJobManager, store: InMemoryDataStore, test_settings: Settings
    ) -> None:
        """Test updates arrive in non-decreasing order and the stream ends after one finalize."""
        job = await manager.create_job(100, "learner-1")
        stream = aiter(JobStatusStream(job.id, store, manager.channels, test_settings))

        connected = await anext(stream)
        assert connected.type == EventType.UPDATE
        assert connected.data.progress == CONNECTED_MESSAGE
        assert connected.data.status is None

        async def drive() -> None:
            for percentage in (0, 20, 70):
                await manager.update_job_status(job.id, JobStatus.PROCESSING, "Grading", percentage)
                await asyncio.sleep(0.01)
            manager.channels.publish(job.id, update_event(10))
            await manager.update_job_status(job.id, JobStatus.PROCESSING, "Saving", 90)
            await asyncio.sleep(0.01)
            await manager.update_job_status(job.id, JobStatus.COMPLETED, "Grading completed", 100, {"ok": True})

        async def collect() -> list[JobStatusEvent]:
            return [event async for event in stream]

        driver = asyncio.create_task(drive())
        events = await asyncio.wait_for(collect(), timeout=5)
        await driver

        updates = [e.data.percentage for e in events if e.type == EventType.UPDATE]
        assert updates == sorted(updates)
        assert 10 not in updates
        assert [e.type for e in events].count(EventType.FINALIZE) == 1
        assert events[-1].type == EventType.FINALIZE
        assert events[-1].data.done is True
        assert events[-1].data.result == {"ok": True}

    @pytest.mark.asyncio
    async def test_already_finished_job(
        self, manager: GradingJobManager, store: InMemoryDataStore, test_settings: Settings
    ) -> None:
        """Test a stream on a finished job yields connected then finalize."""
        job = await manager.create_job(100, "learner-1")
        await manager.update_job_status(job.id, JobStatus.FAILED, "Error: boom", result={"error": "boom"})

        events = await asyncio.wait_for(
            _collect(JobStatusStream(job.id, store, manager.channels, test_settings)), timeout=5
        )

        assert [e.type for e in events] == [EventType.UPDATE, EventType.FINALIZE]
        assert events[-1].data.status == JobStatus.FAILED

    @pytest.mark.asyncio
    async def test_missing_job_ends_with_error(
        self, store: InMemoryDataStore, test_settings: Settings
    ) -> None:
        """Test consecutive failed polls end the stream with an error event."""
        events = await asyncio.wait_for(
            _collect(JobStatusStream(999, store, StatusChannelRegistry(), test_settings)), timeout=5
        )

        assert events[-1].type == EventType.ERROR
        assert events[-1].data.done is True
        assert "3 consecutive errors" in events[-1].data.progress
        assert [e.type for e in events].count(EventType.ERROR) == 1

    @pytest.mark.asyncio
    async def test_poll_backoff_recovers_after_errors(self, test_settings: Settings) -> None:
        """Test poll delays grow on errors, shrink after a success and the error count resets."""
        store = FlakyPollStore([False, False, True, False, False, True])
        job = await store.create_job(GradingJob(assignment_id=100, user_id="learner-1"))
        stream = JobStatusStream(job.id, store, StatusChannelRegistry(), test_settings)
        store.stream = stream

        events = await asyncio.wait_for(_collect(stream), timeout=5)

        assert store.seen == [
            (0, pytest.approx(0.01)),
            (1, pytest.approx(0.02)),
            (2, pytest.approx(0.04)),
            (0, pytest.approx(0.02)),
            (1, pytest.approx(0.04)),
            (2, pytest.approx(0.05)),
            (0, pytest.approx(0.025)),
        ]
        assert EventType.ERROR not in [e.type for e in events]
        assert events[-1].type == EventType.FINALIZE
        assert events[-1].data.status == JobStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_heartbeat_while_idle(
        self, manager: GradingJobManager, store: InMemoryDataStore, test_settings: Settings
    ) -> None:
        """Test an idle stream emits heartbeats carrying the last known state."""
        settings = test_settings.model_copy(
            update={"poll_min_delay_seconds": 5.0, "poll_max_delay_seconds": 5.0}
        )
        job = await manager.create_job(100, "learner-1")
        stream = aiter(JobStatusStream(job.id, store, manager.channels, settings))

        async def first_heartbeat() -> JobStatusEvent:
            async for event in stream:
                if event.type == EventType.HEARTBEAT:
                    return event
            raise AssertionError("stream ended without a heartbeat")

        try:
            heartbeat = await asyncio.wait_for(first_heartbeat(), timeout=5)
        finally:
            await stream.aclose()

        assert heartbeat.data.progress == "heartbeat"
        assert heartbeat.data.status == JobStatus.PENDING
        assert heartbeat.data.percentage == 0
        assert job.id not in manager.channels


async def _collect(stream: JobStatusStream) -> list[JobStatusEvent]:
    return [event async for event in stream]
