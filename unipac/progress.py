"""
Per-job progress channels.

A channel carries progress events from one backend job to the display
loop. The job only ever sees the sending half; the orchestrator closes the
channel with a terminal :class:`JobOutcome` once the job resolves, and that
outcome travels through the same queue so it is always read after every
event sent before it.
"""

import asyncio
from dataclasses import dataclass
from typing import Optional, Union

from unipac.models import Backend, ProgressEvent


@dataclass(frozen=True)
class JobOutcome:
    """Terminal state of a job as seen by the display"""

    ok: bool
    summary: str = ""


class ProgressSender:
    """Sending half of a progress channel, handed to a backend instance"""

    def __init__(self, channel: "ProgressChannel"):
        self._channel = channel

    async def send(self, event: ProgressEvent) -> None:
        """Publish an event. Never blocks the job.

        When the display has not consumed the previous event yet, it is
        replaced: only the latest status matters.
        """
        self._channel._publish(event)
        # Give the display loop a chance to run between bursts of events
        await asyncio.sleep(0)


class ProgressChannel:
    """Bounded single-producer single-consumer queue for one job"""

    def __init__(self, backend: Backend, capacity: int = 1):
        if capacity < 1:
            raise ValueError("capacity must be at least 1")
        self.backend = backend
        self._queue: asyncio.Queue[Union[ProgressEvent, JobOutcome]] = asyncio.Queue(
            maxsize=capacity
        )
        self._closed = False
        self.sender = ProgressSender(self)

    @property
    def closed(self) -> bool:
        return self._closed

    def _publish(self, event: ProgressEvent) -> None:
        if self._closed:
            return
        if self._queue.full():
            self._queue.get_nowait()
        self._queue.put_nowait(event)

    async def close(self, outcome: JobOutcome) -> None:
        """Mark the job resolved; waits until the display has room for it"""
        self._closed = True
        await self._queue.put(outcome)

    def drain(self) -> tuple[Optional[ProgressEvent], Optional[JobOutcome]]:
        """Take everything currently queued.

        Returns the latest event (if any) and the terminal outcome (if it
        has arrived).
        """
        latest: Optional[ProgressEvent] = None
        outcome: Optional[JobOutcome] = None
        while not self._queue.empty():
            item = self._queue.get_nowait()
            if isinstance(item, JobOutcome):
                outcome = item
            else:
                latest = item
        return latest, outcome
