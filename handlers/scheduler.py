import itertools
from typing import Awaitable, Callable

from apscheduler.job import Job
from apscheduler.jobstores.base import JobLookupError
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from loguru import logger

from handlers.shared_state import SessionKey

TickFunc = Callable[[SessionKey], Awaitable[None]]

# Several clients may share one scheduler, so job ids must not collide
_job_numbers = itertools.count(1)


class SessionScheduledTask:
    """
    An interval job on the shared AsyncIOScheduler that belongs to one session.

    Each tick is handed the session key the task was started with. Ticks that
    were already queued when the task was stopped or re-bound see a key that is
    no longer current and return without calling `func`. Errors raised by
    `func` are logged and the job keeps its schedule.
    """

    def __init__(self, scheduler: AsyncIOScheduler, name: str, func: TickFunc, interval: float):
        self.name = name
        self.job_id = f"{name}-{next(_job_numbers)}"
        self.interval = interval
        self._scheduler = scheduler
        self._func = func
        self._job: Job | None = None
        self._session_key: SessionKey | None = None

    @property
    def running(self) -> bool:
        return self._job is not None

    @property
    def session_key(self) -> SessionKey | None:
        return self._session_key

    def start(self, session_key: SessionKey) -> None:
        if self._job is not None and self._session_key == session_key:
            return
        self.stop()
        self._session_key = session_key
        self._job = self._scheduler.add_job(
            self._tick,
            trigger='interval',
            seconds=self.interval,
            id=self.job_id,
            kwargs={'session_key': session_key},
            max_instances=1,
            coalesce=True,
            replace_existing=True,
        )
        logger.info(f"Task '{self.name}' started (every {self.interval}s)")

    def stop(self) -> None:
        if self._job is None:
            return
        try:
            self._job.remove()
        except JobLookupError:
            # Already gone, e.g. after scheduler.shutdown()
            pass
        self._job = None
        self._session_key = None
        logger.info(f"Task '{self.name}' stopped")

    async def run_once(self) -> None:
        """Runs one tick right away for the bound session, outside the schedule."""
        if self._session_key is not None:
            await self._tick(self._session_key)

    async def _tick(self, session_key: SessionKey) -> None:
        if session_key != self._session_key:
            logger.debug(f"Task '{self.name}': skipping tick for a session that has ended")
            return
        try:
            await self._func(session_key)
        except Exception as e:
            logger.error(f"Task '{self.name}' tick failed: {e}")
