"""Redis-based store for analysis run state, history and results."""

from datetime import datetime, timezone

from redis.asyncio import Redis

from startup_pulse.models.analysis import AnalysisResult
from startup_pulse.models.state import WorkflowEvent, WorkflowState, WorkflowStatus


class WorkflowNotFoundError(Exception):
    """Raised when a run is not found."""

    def __init__(self, workflow_id: str):
        self.workflow_id = workflow_id
        super().__init__(f"Workflow not found: {workflow_id}")


class RedisStateStore:
    """Manages run state and event history in Redis."""

    def __init__(self, redis_client: Redis):
        if redis_client is None:
            raise ValueError("redis_client is required")
        self._redis = redis_client

    def _workflow_key(self, workflow_id: str) -> str:
        return f"workflow:{workflow_id}"

    def _events_key(self, workflow_id: str) -> str:
        return f"workflow:{workflow_id}:events"

    def _result_key(self, workflow_id: str) -> str:
        return f"workflow:{workflow_id}:result"

    def _utc_now(self) -> datetime:
        return datetime.now(timezone.utc)

    async def create_workflow(self, workflow_id: str, subject: str) -> WorkflowState:
        """Create a new run in pending state."""
        if not workflow_id:
            raise ValueError("workflow_id is required")
        if not subject:
            raise ValueError("subject is required")

        key = self._workflow_key(workflow_id)
        if await self._redis.exists(key):
            raise ValueError(f"Workflow already exists: {workflow_id}")

        now = self._utc_now()
        state = WorkflowState(
            workflow_id=workflow_id,
            subject=subject,
            status=WorkflowStatus.PENDING,
            created_at=now,
            updated_at=now,
        )
        await self._redis.set(key, state.model_dump_json())
        return state

    async def get_workflow(self, workflow_id: str) -> WorkflowState:
        """Get run state by ID, with the current history length."""
        if not workflow_id:
            raise ValueError("workflow_id is required")

        data = await self._redis.get(self._workflow_key(workflow_id))
        if data is None:
            raise WorkflowNotFoundError(workflow_id)

        state = WorkflowState.model_validate_json(data)
        event_count = await self._redis.llen(self._events_key(workflow_id))
        return state.model_copy(update={"event_count": event_count})

    async def save_workflow(self, state: WorkflowState) -> WorkflowState:
        """Overwrite the stored snapshot of a run."""
        if state is None:
            raise ValueError("state is required")

        updated = state.model_copy(update={"updated_at": self._utc_now()})
        await self._redis.set(self._workflow_key(state.workflow_id), updated.model_dump_json())
        return updated

    async def update_workflow_status(
        self,
        workflow_id: str,
        status: WorkflowStatus,
        error: str | None = None,
    ) -> WorkflowState:
        """Update run status; terminal states also stamp completed_at."""
        state = await self.get_workflow(workflow_id)
        if state.status.is_terminal:
            raise ValueError(f"Workflow {workflow_id} is already {state.status.value}")

        now = self._utc_now()
        updated = state.model_copy(
            update={
                "status": status,
                "updated_at": now,
                "completed_at": now if status.is_terminal else None,
                "error": error,
            }
        )
        await self._redis.set(self._workflow_key(workflow_id), updated.model_dump_json())
        return updated

    async def append_event(self, event: WorkflowEvent) -> int:
        """Append to run history. Returns the new history length."""
        if event is None:
            raise ValueError("event is required")
        return await self._redis.rpush(
            self._events_key(event.workflow_id), event.model_dump_json()
        )

    async def get_events(self, workflow_id: str) -> list[WorkflowEvent]:
        if not workflow_id:
            raise ValueError("workflow_id is required")
        items = await self._redis.lrange(self._events_key(workflow_id), 0, -1)
        return [WorkflowEvent.model_validate_json(item) for item in items]

    async def save_result(self, result: AnalysisResult) -> None:
        if result is None:
            raise ValueError("result is required")
        await self._redis.set(self._result_key(result.workflow_id), result.model_dump_json())

    async def get_result(self, workflow_id: str) -> AnalysisResult | None:
        if not workflow_id:
            raise ValueError("workflow_id is required")
        data = await self._redis.get(self._result_key(workflow_id))
        if data is None:
            return None
        return AnalysisResult.model_validate_json(data)

    async def delete_workflow(self, workflow_id: str) -> None:
        """Delete run state, history and result."""
        if not workflow_id:
            raise ValueError("workflow_id is required")
        await self._redis.delete(
            self._workflow_key(workflow_id),
            self._events_key(workflow_id),
            self._result_key(workflow_id),
        )
