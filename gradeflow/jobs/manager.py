"""
Grading job manager.

A grading job moves Pending -> Processing -> Completed | Failed. Completed
and Failed are terminal: once a job reaches either, further writes are
refused. Every status write is republished on the job's status channel.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import Any

from pydantic_core import to_jsonable_python

from gradeflow.config import Settings, get_settings
from gradeflow.jobs.channels import StatusChannelRegistry
from gradeflow.locks import KeyedLock
from gradeflow.logging_setup import set_correlation_id
from gradeflow.models import GradingJob, JobStatus, JobStatusEvent
from gradeflow.store.base import DataStore

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[str, int | None], Awaitable[None]]
JobWork = Callable[[ProgressCallback], Awaitable[Any]]


class JobNotFoundError(Exception):
    """No grading job exists with the given id."""

    def __init__(self, job_id: int):
        self.job_id = job_id
        super().__init__(f"Grading job {job_id} not found")


class GradingJobManager:
    """Creates grading jobs, drives their state machine and runs their work."""

    def __init__(
        self,
        store: DataStore,
        channels: StatusChannelRegistry | None = None,
        settings: Settings | None = None,
    ):
        self._store = store
        self.channels = channels or StatusChannelRegistry()
        self._settings = settings or get_settings()
        self._tasks: set[asyncio.Task[GradingJob]] = set()
        self._locks = KeyedLock()

    async def create_job(
        self, assignment_id: int, user_id: str, attempt_id: int | None = None
    ) -> GradingJob:
        job = await self._store.create_job(
            GradingJob(
                assignment_id=assignment_id,
                user_id=user_id,
                attempt_id=attempt_id,
                status=JobStatus.PENDING,
                progress="Job created",
            )
        )
        logger.info(
            "Created grading job",
            extra={"context": {"job_id": job.id, "assignment_id": assignment_id, "attempt_id": attempt_id}},
        )
        return job

    async def get_job(self, job_id: int) -> GradingJob:
        job = await self._store.find_job(job_id)
        if job is None:
            raise JobNotFoundError(job_id)
        return job

    async def update_job_status(
        self,
        job_id: int,
        status: JobStatus,
        progress: str,
        percentage: int | None = None,
        result: Any = None,
    ) -> GradingJob:
        """
        Write a status change and publish it.

        The progress message is truncated and the percentage clamped to
        0..100. The write is retried with exponential backoff; when every
        attempt fails the update is still published. Updates to one job
        run one at a time, so the terminal check always sees the last write.

        Raises:
            JobNotFoundError: If the job does not exist.
        """
        async with self._locks.hold(f"job_{job_id}"):
            return await self._apply_update(job_id, status, progress, percentage, result)

    async def _apply_update(
        self,
        job_id: int,
        status: JobStatus,
        progress: str,
        percentage: int | None,
        result: Any,
    ) -> GradingJob:
        current = await self.get_job(job_id)
        if current.status.is_terminal:
            logger.warning(
                "Refusing to update job %s: already %s", job_id, current.status.value,
                extra={"context": {"requested_status": status.value, "progress": progress}},
            )
            return current

        fields: dict[str, Any] = {
            "status": status,
            "progress": (progress or "Status update")[: self._settings.progress_message_max_length],
        }
        if percentage is not None:
            fields["percentage"] = max(0, min(100, int(percentage)))
        if result is not None:
            fields["result"] = to_jsonable_python(result, by_alias=True)

        logger.info(
            "Updating job %s: %s - %s (%s%%)",
            job_id, status.value, fields["progress"], fields.get("percentage", current.percentage),
        )

        job = await self._write(job_id, fields)
        if job is None:
            job = current.model_copy(update=fields)

        self.channels.publish(job_id, JobStatusEvent.from_job(job))
        if job.status.is_terminal:
            self.channels.schedule_release(job_id, self._settings.channel_cleanup_delay_seconds)
        return job

    async def _write(self, job_id: int, fields: dict[str, Any]) -> GradingJob | None:
        max_retries = self._settings.job_update_max_retries
        for attempt in range(1, max_retries + 1):
            try:
                return await self._store.update_job(job_id, fields)
            except Exception as e:
                if attempt >= max_retries:
                    logger.error(
                        "Failed to update job %s after %d attempts: %s", job_id, max_retries, e
                    )
                    return None
                logger.warning(
                    "Failed to update job %s (attempt %d/%d): %s", job_id, attempt, max_retries, e
                )
                await asyncio.sleep(self._settings.job_update_retry_base_seconds * 2**attempt)
        return None

    def progress_callback(self, job_id: int) -> ProgressCallback:
        """A callback that records intermediate progress as Processing."""

        async def report(message: str, percentage: int | None = None) -> None:
            await self.update_job_status(job_id, JobStatus.PROCESSING, message, percentage)

        return report

    async def run_job(self, job: GradingJob, work: JobWork) -> GradingJob:
        """
        Run `work` under a job and record its outcome.

        The work receives a progress callback. Its return value becomes
        the job result; an exception fails the job and is not re-raised.
        """
        if job.id is None:
            raise ValueError("Job must be persisted before it can run")
        set_correlation_id(f"job-{job.id}")

        await self.update_job_status(job.id, JobStatus.PROCESSING, "Starting grading...", 0)
        try:
            result = await work(self.progress_callback(job.id))
        except Exception as e:
            logger.exception("Grading job %s failed", job.id)
            return await self.update_job_status(
                job.id, JobStatus.FAILED, f"Error: {e}", result={"error": str(e)}
            )

        return await self.update_job_status(
            job.id, JobStatus.COMPLETED, "Grading completed", 100, result=result
        )

    def start_job(self, job: GradingJob, work: JobWork) -> asyncio.Task[GradingJob]:
        """Run a job in the background; the manager keeps the task alive."""
        task = asyncio.create_task(self.run_job(job, work))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    @property
    def running(self) -> int:
        return len(self._tasks)

    async def wait_for_all(self) -> None:
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
