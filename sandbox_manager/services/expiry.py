"""Per-container expiry timers.

Each provisioned container gets one asyncio task keyed by its id that waits
until the container's expiry deadline and then invokes the expiry callback.
The deadline is measured against the injected clock, re-read at least every
``check_interval`` seconds, so a clock that jumps forward fires due timers on
the next check. Tasks can be cancelled individually (manual deletion) or all
at once (shutdown). Scheduling an id that already has a timer replaces the
old one.
"""

import asyncio
from datetime import datetime, timedelta, timezone
from typing import Awaitable, Callable, Dict, Optional

import structlog

logger = structlog.get_logger(__name__)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class ExpiryScheduler:
    """Independently addressable, cancellable expiry timers."""

    def __init__(
        self,
        callback: Callable[[str], Awaitable[None]],
        clock: Optional[Callable[[], datetime]] = None,
        check_interval: float = 5.0,
    ):
        """Initialize the scheduler.

        Args:
            callback: Coroutine function invoked with the container id on expiry
            clock: Returns the current aware datetime, defaults to UTC wall time
            check_interval: Longest single sleep before the clock is re-read
        """
        self._callback = callback
        self._clock = clock or utc_now
        self._check_interval = check_interval
        self._tasks: Dict[str, asyncio.Task] = {}

    @property
    def pending_count(self) -> int:
        """Number of timers not yet finished."""
        return sum(1 for task in self._tasks.values() if not task.done())

    def is_scheduled(self, container_id: str) -> bool:
        task = self._tasks.get(container_id)
        return task is not None and not task.done()

    def schedule(self, container_id: str, delay_seconds: float) -> asyncio.Task:
        """Schedule (or reschedule) the expiry of a container ``delay_seconds`` from now."""
        deadline = self._clock() + timedelta(seconds=max(0.0, delay_seconds))
        return self.schedule_at(container_id, deadline)

    def schedule_at(self, container_id: str, deadline: datetime) -> asyncio.Task:
        """Schedule (or reschedule) the expiry of a container at ``deadline``."""
        existing = self._tasks.pop(container_id, None)
        if existing is not None and not existing.done() and existing is not _current_task():
            existing.cancel()

        task = asyncio.create_task(
            self._run(container_id, deadline), name=f"expiry-{container_id[:12]}"
        )
        self._tasks[container_id] = task
        task.add_done_callback(lambda t, cid=container_id: self._discard(cid, t))

        logger.debug(
            "Expiry scheduled",
            container_id=container_id,
            deadline=deadline.isoformat(),
        )
        return task

    def cancel(self, container_id: str) -> bool:
        """Cancel a pending timer.

        Best-effort: a timer that is the caller itself is left alone, and a
        timer that already fired finishes on its own.

        Returns:
            True if a pending timer was cancelled
        """
        task = self._tasks.get(container_id)
        if task is None or task.done() or task is _current_task():
            return False

        del self._tasks[container_id]
        task.cancel()
        logger.debug("Expiry cancelled", container_id=container_id)
        return True

    async def stop(self) -> None:
        """Cancel every pending timer and wait for them to finish."""
        tasks = [task for task in self._tasks.values() if not task.done()]
        self._tasks.clear()
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        logger.info("Expiry scheduler stopped", cancelled=len(tasks))

    async def _run(self, container_id: str, deadline: datetime) -> None:
        while True:
            remaining = (deadline - self._clock()).total_seconds()
            if remaining <= 0:
                break
            await asyncio.sleep(min(remaining, self._check_interval))

        try:
            await self._callback(container_id)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(
                "Expiry callback failed",
                container_id=container_id,
                error=str(e),
                exc_info=True,
            )

    def _discard(self, container_id: str, task: asyncio.Task) -> None:
        if self._tasks.get(container_id) is task:
            del self._tasks[container_id]


def _current_task() -> Optional[asyncio.Task]:
    try:
        return asyncio.current_task()
    except RuntimeError:
        return None
