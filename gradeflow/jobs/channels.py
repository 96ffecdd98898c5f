"""
Per-job status channels.

The job manager publishes every status change of a job to its channel;
status streams subscribe to receive them without waiting for a poll.
"""

import asyncio
import logging

from gradeflow.models import JobStatusEvent

logger = logging.getLogger(__name__)

Subscription = asyncio.Queue[JobStatusEvent | None]


class StatusChannelRegistry:
    """
    Process-wide map from job id to its subscribers.

    A channel exists while it has subscribers. Releasing a channel ends
    every subscription on it by delivering `None`.
    """

    def __init__(self) -> None:
        self._channels: dict[int, list[Subscription]] = {}
        self._pending_releases: set[asyncio.Task[None]] = set()

    def subscribe(self, job_id: int) -> Subscription:
        queue: Subscription = asyncio.Queue()
        self._channels.setdefault(job_id, []).append(queue)
        return queue

    def unsubscribe(self, job_id: int, queue: Subscription) -> None:
        subscribers = self._channels.get(job_id)
        if subscribers is None:
            return
        if queue in subscribers:
            subscribers.remove(queue)
        if not subscribers:
            del self._channels[job_id]

    def publish(self, job_id: int, event: JobStatusEvent) -> int:
        """Deliver an event to every subscriber of a job; returns how many."""
        subscribers = self._channels.get(job_id, [])
        for queue in subscribers:
            queue.put_nowait(event)
        return len(subscribers)

    def release(self, job_id: int) -> None:
        """Close a job's channel and drop it from the registry."""
        subscribers = self._channels.pop(job_id, [])
        for queue in subscribers:
            queue.put_nowait(None)
        if subscribers:
            logger.debug("Released status channel for job %s", job_id)

    def schedule_release(self, job_id: int, delay: float) -> None:
        """Release a job's channel after `delay` seconds."""

        async def release_later() -> None:
            await asyncio.sleep(delay)
            self.release(job_id)

        task = asyncio.create_task(release_later())
        self._pending_releases.add(task)
        task.add_done_callback(self._pending_releases.discard)

    def __contains__(self, job_id: int) -> bool:
        return job_id in self._channels

    def __len__(self) -> int:
        return len(self._channels)
