"""FastAPI REST API for startup analysis runs."""

from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException

from startup_pulse.api.models import (
    CancelResponse,
    ErrorResponse,
    HealthResponse,
    MonitorSubmitRequest,
    RunStatusResponse,
    RunSubmitResponse,
)
from startup_pulse.models.analysis import AnalysisRequest, AnalysisResult
from startup_pulse.services.scheduler import PeriodicScheduler
from startup_pulse.services.state_store import WorkflowNotFoundError
from startup_pulse.services.workflow_engine import WorkflowEngine


class StartupPulseAPI:
    """REST API over the workflow engine."""

    def __init__(
        self,
        engine: WorkflowEngine,
        scheduler: PeriodicScheduler | None = None,
    ):
        if engine is None:
            raise ValueError("engine is required")

        self._engine = engine
        self._scheduler = scheduler

    @asynccontextmanager
    async def _lifespan(self, app: FastAPI):
        if self._scheduler is not None:
            self._scheduler.start()
        try:
            yield
        finally:
            await self._engine.shutdown()
            if self._scheduler is not None:
                await self._scheduler.stop()

    def create_app(self) -> FastAPI:
        """Create FastAPI application."""
        app = FastAPI(
            title="Startup Pulse API",
            description="Market and sentiment analysis runs for startups",
            version="0.1.0",
            lifespan=self._lifespan,
        )

        @app.post(
            "/analyses",
            response_model=RunSubmitResponse,
            status_code=202,
            responses={400: {"model": ErrorResponse}},
        )
        async def submit_analysis(request: AnalysisRequest) -> RunSubmitResponse:
            """Start a one-off analysis run."""
            try:
                workflow_id = await self._engine.start_analysis(request)
            except ValueError as e:
                raise HTTPException(status_code=400, detail=str(e))
            return RunSubmitResponse(workflow_id=workflow_id, status="running")

        @app.post(
            "/monitors",
            response_model=RunSubmitResponse,
            status_code=202,
            responses={400: {"model": ErrorResponse}},
        )
        async def submit_monitor(request: MonitorSubmitRequest) -> RunSubmitResponse:
            """Start periodic monitoring."""
            try:
                workflow_id = await self._engine.start_monitoring(
                    request.subject_name, request.interval, request.duration
                )
            except ValueError as e:
                raise HTTPException(status_code=400, detail=str(e))
            return RunSubmitResponse(workflow_id=workflow_id, status="running")

        @app.get(
            "/runs/{workflow_id}",
            response_model=RunStatusResponse,
            responses={404: {"model": ErrorResponse}},
        )
        async def get_run_status(workflow_id: str) -> RunStatusResponse:
            """Get run status."""
            try:
                status = await self._engine.get_status(workflow_id)
            except WorkflowNotFoundError:
                raise HTTPException(status_code=404, detail="Workflow not found")

            return RunStatusResponse(
                workflow_id=status.workflow_id,
                subject=status.subject,
                status=status.status.value,
                event_count=status.event_count,
                is_running=status.is_running,
                created_at=status.created_at,
                updated_at=status.updated_at,
                completed_at=status.completed_at,
                error=status.error,
            )

        @app.get(
            "/runs/{workflow_id}/result",
            response_model=AnalysisResult,
            responses={404: {"model": ErrorResponse}, 409: {"model": ErrorResponse}},
        )
        async def get_run_result(workflow_id: str) -> AnalysisResult:
            """Get the merged result of a finished run."""
            try:
                result = await self._engine.get_result(workflow_id)
            except WorkflowNotFoundError:
                raise HTTPException(status_code=404, detail="Workflow not found")
            if result is None:
                raise HTTPException(status_code=409, detail="Result not available yet")
            return result

        @app.post(
            "/runs/{workflow_id}/cancel",
            response_model=CancelResponse,
            responses={404: {"model": ErrorResponse}},
        )
        async def cancel_run(workflow_id: str) -> CancelResponse:
            """Request cancellation of an active run."""
            try:
                cancelled = await self._engine.cancel(workflow_id)
            except WorkflowNotFoundError:
                raise HTTPException(status_code=404, detail="Workflow not found")
            return CancelResponse(workflow_id=workflow_id, cancelled=cancelled)

        @app.get("/health", response_model=HealthResponse)
        async def health_check() -> HealthResponse:
            """Health check endpoint."""
            return HealthResponse(status="ok", active_runs=len(self._engine.active_runs()))

        return app
