"""Owned periodic background jobs with an explicit start/stop lifecycle."""

import asyncio
import logging
from dataclasses import dataclass
from typing import Callable

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PeriodicJob:
    """Callback invoked every `interval` seconds."""

    name: str
    interval: float
    callback: Callable[[], None]


class PeriodicScheduler:
    """Runs registered jobs on the event loop until stopped.

    Jobs can also be fired directly with `run_job`/`run_all`, which is how
    tests advance the background state without waiting on real timers.
    """

    def __init__(self) -> None:
        self._jobs: dict[str, PeriodicJob] = {}
        self._tasks: dict[str, asyncio.Task] = {}

    def register(self, name: str, interval: float, callback: Callable[[], None]) -> None:
        """Register a job. Must be called before start()."""
        if not name:
            raise ValueError("name is required")
        if interval <= 0:
            raise ValueError("interval must be positive")
        if callback is None:
            raise ValueError("callback is required")
        if name in self._jobs:
            raise ValueError(f"Job already registered: {name}")
        self._jobs[name] = PeriodicJob(name=name, interval=interval, callback=callback)

    @property
    def job_names(self) -> list[str]:
        return list(self._jobs)

    @property
    def is_running(self) -> bool:
        return bool(self._tasks)

    def start(self) -> None:
        """Start a background loop per job on the running event loop."""
        if self._tasks:
            return
        for job in self._jobs.values():
            self._tasks[job.name] = asyncio.create_task(
                self._loop(job), name=f"periodic:{job.name}"
            )
        logger.info(f"Started {len(self._tasks)} periodic jobs")

    async def stop(self) -> None:
        """Cancel all job loops and wait for them to finish."""
        tasks = list(self._tasks.values())
        self._tasks.clear()
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
            logger.info(f"Stopped {len(tasks)} periodic jobs")

    def run_job(self, name: str) -> None:
        """Invoke one job immediately."""
        if name not in self._jobs:
            raise KeyError(f"Unknown job: {name}")
        self._invoke(self._jobs[name])

    def run_all(self) -> None:
        """Invoke every job once, in registration order."""
        for job in self._jobs.values():
            self._invoke(job)

    async def _loop(self, job: PeriodicJob) -> None:
        while True:
            await asyncio.sleep(job.interval)
            self._invoke(job)

    def _invoke(self, job: PeriodicJob) -> None:
        try:
            job.callback()
        except Exception:
            logger.exception(f"Periodic job {job.name} failed")
