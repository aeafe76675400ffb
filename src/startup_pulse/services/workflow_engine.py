"""Engine that starts, tracks and cancels analysis and monitoring runs."""

import asyncio
import logging
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Awaitable, Callable

from redis.exceptions import RedisError

from startup_pulse.models.analysis import AnalysisRequest, AnalysisResult
from startup_pulse.models.state import WorkflowEvent, WorkflowStatus
from startup_pulse.services.durations import parse_duration
from startup_pulse.services.state_store import RedisStateStore, WorkflowNotFoundError
from startup_pulse.services.workflow import AnalysisWorkflow, new_workflow_id

logger = logging.getLogger(__name__)


@dataclass
class RunHandle:
    """Background task and cancellation signal of a run started here."""

    workflow_id: str
    task: asyncio.Task
    cancel: asyncio.Event

    @property
    def is_running(self) -> bool:
        return not self.task.done()


@dataclass(frozen=True)
class RunStatus:
    workflow_id: str
    subject: str
    status: WorkflowStatus
    event_count: int
    is_running: bool
    created_at: datetime
    updated_at: datetime
    completed_at: datetime | None = None
    error: str | None = None


class WorkflowEngine:
    """Runs analyses in the background and exposes their state."""

    def __init__(
        self,
        workflow: AnalysisWorkflow,
        state_store: RedisStateStore,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        if workflow is None:
            raise ValueError("workflow is required")
        if state_store is None:
            raise ValueError("state_store is required")

        self._workflow = workflow
        self._state_store = state_store
        self._clock = clock
        self._sleep = sleep
        self._runs: dict[str, RunHandle] = {}

    def _track(self, workflow_id: str, coro, cancel: asyncio.Event) -> RunHandle:
        task = asyncio.create_task(coro, name=workflow_id)
        task.add_done_callback(self._log_outcome)
        task.add_done_callback(lambda _: self._forget(workflow_id))
        handle = RunHandle(workflow_id=workflow_id, task=task, cancel=cancel)
        self._runs[workflow_id] = handle
        return handle

    def _forget(self, workflow_id: str) -> None:
        """Finished runs are served from the state store only."""
        self._runs.pop(workflow_id, None)

    @staticmethod
    def _log_outcome(task: asyncio.Task) -> None:
        if task.cancelled():
            logger.warning(f"Run {task.get_name()} was interrupted")
            return
        error = task.exception()
        if error is not None:
            logger.error(f"Run {task.get_name()} crashed: {error}")

    async def start_analysis(self, request: AnalysisRequest) -> str:
        """Create a run and execute it in the background. Returns the run id."""
        if request is None:
            raise ValueError("request is required")

        workflow_id = new_workflow_id("startup-analysis", request.subject_name)
        await self._state_store.create_workflow(workflow_id, request.subject_name)

        cancel = asyncio.Event()
        self._track(workflow_id, self._execute_analysis(workflow_id, request, cancel), cancel)
        logger.info(f"Started analysis workflow: {workflow_id}")
        return workflow_id

    async def start_monitoring(
        self,
        subject_name: str,
        interval: str = "1h",
        duration: str = "24h",
    ) -> str:
        """Repeat the analysis every interval until duration elapses.

        Durations are validated before anything is scheduled.
        """
        interval_seconds = parse_duration(interval)
        duration_seconds = parse_duration(duration)
        request = AnalysisRequest(subject_name=subject_name)

        workflow_id = new_workflow_id("startup-monitoring", request.subject_name)
        await self._state_store.create_workflow(workflow_id, request.subject_name)

        cancel = asyncio.Event()
        self._track(
            workflow_id,
            self._monitor(workflow_id, request, interval_seconds, duration_seconds, cancel),
            cancel,
        )
        logger.info(
            f"Started monitoring workflow: {workflow_id} "
            f"(every {interval}, for {duration})"
        )
        return workflow_id

    async def _execute_analysis(
        self, workflow_id: str, request: AnalysisRequest, cancel: asyncio.Event
    ) -> AnalysisResult:
        result = await self._workflow.run(request, workflow_id=workflow_id, cancel_event=cancel)
        await self._state_store.save_result(result)
        state = await self._state_store.get_workflow(workflow_id)
        if not state.status.is_terminal:
            # Workflows built without a recorder never checkpoint their status
            await self._state_store.update_workflow_status(workflow_id, result.status)
        return result

    async def _monitor(
        self,
        workflow_id: str,
        request: AnalysisRequest,
        interval_seconds: int,
        duration_seconds: int,
        cancel: asyncio.Event,
    ) -> None:
        await self._state_store.update_workflow_status(workflow_id, WorkflowStatus.RUNNING)
        end = self._clock() + duration_seconds
        iteration = 0
        latest: AnalysisResult | None = None

        try:
            while self._clock() < end and not cancel.is_set():
                iteration += 1
                child_id = f"{workflow_id}-run-{iteration}"
                await self._state_store.create_workflow(child_id, request.subject_name)
                latest = await self._execute_analysis(child_id, request, cancel)
                await self._append_event(
                    workflow_id, "monitoring_iteration", detail=f"{child_id}: {latest.status.value}"
                )
                logger.info(f"Monitoring {request.subject_name}: iteration {iteration} done")

                if cancel.is_set() or self._clock() >= end:
                    break
                await self._wait(cancel, interval_seconds)
        except Exception as e:
            logger.exception(f"Monitoring workflow {workflow_id} failed")
            await self._state_store.update_workflow_status(
                workflow_id, WorkflowStatus.FAILED, error=str(e)
            )
            raise

        if latest is not None:
            await self._state_store.save_result(
                latest.model_copy(update={"workflow_id": workflow_id})
            )
        status = WorkflowStatus.CANCELLED if cancel.is_set() else WorkflowStatus.COMPLETED
        await self._state_store.update_workflow_status(workflow_id, status)
        logger.info(f"Monitoring workflow {workflow_id} finished after {iteration} iterations")

    async def _wait(self, cancel: asyncio.Event, seconds: float) -> None:
        """Sleep for the interval, waking early on cancellation."""
        sleeper = asyncio.ensure_future(self._sleep(seconds))
        waiter = asyncio.ensure_future(cancel.wait())
        try:
            await asyncio.wait({sleeper, waiter}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            for pending in (sleeper, waiter):
                if not pending.done():
                    pending.cancel()

    async def _append_event(self, workflow_id: str, kind: str, detail: str | None = None) -> None:
        event = WorkflowEvent(
            workflow_id=workflow_id,
            kind=kind,
            timestamp=datetime.now(timezone.utc),
            detail=detail,
        )
        try:
            await self._state_store.append_event(event)
        except RedisError as e:
            logger.error(f"Could not record {kind} for {workflow_id}: {e}")

    async def get_status(self, workflow_id: str) -> RunStatus:
        state = await self._state_store.get_workflow(workflow_id)
        handle = self._runs.get(workflow_id)
        return RunStatus(
            workflow_id=state.workflow_id,
            subject=state.subject,
            status=state.status,
            event_count=state.event_count,
            is_running=handle is not None and handle.is_running,
            created_at=state.created_at,
            updated_at=state.updated_at,
            completed_at=state.completed_at,
            error=state.error,
        )

    async def get_result(self, workflow_id: str) -> AnalysisResult | None:
        """Stored result, or None while the run has not produced one."""
        result = await self._state_store.get_result(workflow_id)
        if result is None:
            # Raises WorkflowNotFoundError for unknown runs
            await self._state_store.get_workflow(workflow_id)
        return result

    async def wait(self, workflow_id: str, timeout: float | None = None) -> AnalysisResult | None:
        """Wait for a run to finish and return its stored result."""
        handle = self._runs.get(workflow_id)
        if handle is None:
            # Not active here: raises WorkflowNotFoundError for unknown runs
            await self._state_store.get_workflow(workflow_id)
        else:
            await asyncio.wait_for(asyncio.shield(handle.task), timeout=timeout)
        return await self._state_store.get_result(workflow_id)

    async def cancel(self, workflow_id: str) -> bool:
        """Request cancellation. Returns False when the run is not active here."""
        handle = self._runs.get(workflow_id)
        if handle is None:
            # Raises WorkflowNotFoundError for unknown runs
            await self._state_store.get_workflow(workflow_id)
            return False
        if not handle.is_running or handle.cancel.is_set():
            return False

        handle.cancel.set()
        await self._append_event(workflow_id, "cancel_requested")
        logger.info(f"Cancellation requested for {workflow_id}")
        return True

    def active_runs(self) -> list[str]:
        return [wid for wid, handle in self._runs.items() if handle.is_running]

    async def shutdown(self) -> None:
        """Signal every active run to stop and wait for them."""
        handles = [h for h in self._runs.values() if h.is_running]
        for handle in handles:
            handle.cancel.set()
        if handles:
            await asyncio.gather(*(h.task for h in handles), return_exceptions=True)
