"""
Live status stream for one grading job.

Merges three sources into a single ordered event sequence: pushes from
the job's status channel, periodic polls of the job row with adaptive
backoff, and heartbeats while nothing else is happening. The stream ends
after the first terminal event, or with an error event once polling has
failed too many times in a row.
"""

import asyncio
import logging
from collections.abc import AsyncIterator

from gradeflow.config import Settings, get_settings
from gradeflow.jobs.channels import StatusChannelRegistry, Subscription
from gradeflow.models import EventType, JobEventData, JobStatus, JobStatusEvent
from gradeflow.store.base import DataStore

logger = logging.getLogger(__name__)

CONNECTED_MESSAGE = "Connected to job status stream"


class PollBackoff:
    """Poll delay that halves on success and doubles on error, within bounds."""

    def __init__(self, min_delay: float, max_delay: float):
        self.min_delay = min_delay
        self.max_delay = max_delay
        self.delay = min_delay
        self.errors = 0

    def success(self) -> float:
        self.errors = 0
        self.delay = max(self.min_delay, self.delay / 2)
        return self.delay

    def failure(self) -> float:
        self.errors += 1
        self.delay = min(self.max_delay, self.delay * 2)
        return self.delay


class JobStatusStream:
    """
    Async iterator of `JobStatusEvent` for one job.

    Events are delivered at most once per terminal state: after a finalize
    or error event nothing else is emitted. Update snapshots whose
    percentage is lower than one already delivered are dropped, so a
    subscriber sees non-decreasing progress.

    Example:
        async for event in JobStatusStream(job_id, store, channels):
            print(event.type, event.data.progress)
    """

    def __init__(
        self,
        job_id: int,
        store: DataStore,
        channels: StatusChannelRegistry,
        settings: Settings | None = None,
    ):
        self.job_id = job_id
        self._store = store
        self._channels = channels
        self._settings = settings or get_settings()

        self._events: asyncio.Queue[JobStatusEvent] = asyncio.Queue()
        self._last_percentage: int | None = None
        self._last_status: JobStatus | None = None
        self._last_activity = 0.0
        self._finished = False
        self.backoff = PollBackoff(self._settings.poll_min_delay_seconds, self._settings.poll_max_delay_seconds)

    def __aiter__(self) -> AsyncIterator[JobStatusEvent]:
        return self._run()

    async def _run(self) -> AsyncIterator[JobStatusEvent]:
        loop = asyncio.get_running_loop()
        subscription = self._channels.subscribe(self.job_id)
        self._last_activity = loop.time()

        tasks = [
            asyncio.create_task(self._forward(subscription)),
            asyncio.create_task(self._poll()),
            asyncio.create_task(self._heartbeat()),
        ]
        logger.info("Status stream opened for job %s", self.job_id)

        try:
            yield JobStatusEvent(
                type=EventType.UPDATE,
                data=JobEventData(progress=CONNECTED_MESSAGE),
            )

            while True:
                event = await self._events.get()
                if not self._accept(event):
                    continue
                yield event

                if event.type == EventType.ERROR:
                    return
                if event.data.done:
                    await asyncio.sleep(self._settings.finalize_grace_seconds)
                    return
        finally:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            self._channels.unsubscribe(self.job_id, subscription)
            logger.info("Status stream closed for job %s", self.job_id)

    def _accept(self, event: JobStatusEvent) -> bool:
        """Decide whether an event may be delivered, and record it if so."""
        if self._finished:
            return False

        data = event.data
        if event.type == EventType.HEARTBEAT:
            return True

        if event.type == EventType.ERROR or data.done:
            self._finished = True
        elif (
            data.percentage is not None
            and self._last_percentage is not None
            and data.percentage < self._last_percentage
        ):
            return False

        if data.percentage is not None:
            self._last_percentage = max(data.percentage, self._last_percentage or 0)
        if data.status is not None:
            self._last_status = data.status
        self._last_activity = asyncio.get_running_loop().time()
        return True

    # --------------------------------------------------------------------------
    # Sources
    # --------------------------------------------------------------------------

    async def _forward(self, subscription: Subscription) -> None:
        """Relay pushes from the job's channel until it is released."""
        while True:
            event = await subscription.get()
            if event is None:
                return
            self._events.put_nowait(event)

    async def _poll(self) -> None:
        """Read the job row with backoff: halve the delay on success, double on error."""
        settings = self._settings
        backoff = self.backoff

        while True:
            try:
                job = await self._store.find_job(self.job_id)
                if job is None:
                    raise LookupError(f"Job {self.job_id} not found")
            except Exception as e:
                delay = backoff.failure()
                logger.warning(
                    "Polling job %s failed (%d/%d): %s",
                    self.job_id, backoff.errors, settings.max_consecutive_poll_errors, e,
                )
                if backoff.errors >= settings.max_consecutive_poll_errors:
                    self._events.put_nowait(
                        JobStatusEvent(
                            type=EventType.ERROR,
                            data=JobEventData(
                                progress=f"Stopped polling job {self.job_id} after {backoff.errors} consecutive errors: {e}",
                                done=True,
                            ),
                        )
                    )
                    return
            else:
                delay = backoff.success()
                self._events.put_nowait(JobStatusEvent.from_job(job))
                if job.status.is_terminal:
                    return

            await asyncio.sleep(delay)

    async def _heartbeat(self) -> None:
        """Emit a heartbeat when no real event was delivered for a while."""
        loop = asyncio.get_running_loop()
        while True:
            await asyncio.sleep(self._settings.heartbeat_interval_seconds)
            if loop.time() - self._last_activity < self._settings.heartbeat_idle_seconds:
                continue
            self._events.put_nowait(
                JobStatusEvent(
                    type=EventType.HEARTBEAT,
                    data=JobEventData(
                        status=self._last_status,
                        progress="heartbeat",
                        percentage=self._last_percentage,
                    ),
                )
            )
