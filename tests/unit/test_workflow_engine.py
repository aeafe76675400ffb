"""Unit tests for WorkflowEngine."""

import asyncio
from unittest.mock import AsyncMock

import fakeredis
import pytest

from startup_pulse.models.analysis import AnalysisRequest
from startup_pulse.models.state import RetryPolicy, WorkflowStatus
from startup_pulse.services.durations import ConfigurationError
from startup_pulse.services.sentiment_aggregator import aggregate_records
from startup_pulse.services.state_store import RedisStateStore, WorkflowNotFoundError
from startup_pulse.services.workflow import AnalysisWorkflow, WorkflowConfig
from startup_pulse.services.workflow_engine import WorkflowEngine


class GatedConnector:
    """Returns one record, optionally waiting for a gate first."""

    def __init__(self, gate: asyncio.Event | None = None):
        self.gate = gate
        self.calls = 0

    async def __call__(self, query, limit, options):
        self.calls += 1
        if self.gate is not None:
            await self.gate.wait()
        return [{"content": f"{query} post"}]


@pytest.fixture
def redis_client():
    return fakeredis.FakeAsyncRedis(decode_responses=True)


@pytest.fixture
def state_store(redis_client):
    return RedisStateStore(redis_client)


@pytest.fixture
def aggregator():
    mock = AsyncMock()
    mock.analyze.return_value = aggregate_records([])
    return mock


@pytest.fixture
def document_store():
    mock = AsyncMock()
    mock.save.return_value = True
    mock.query.return_value = []
    return mock


def make_engine(clock, state_store, aggregator, document_store, connector=None, recorder=True):
    connector = connector or GatedConnector()
    workflow = AnalysisWorkflow(
        {"twitter": connector, "news": connector},
        aggregator,
        document_store,
        recorder=state_store if recorder else None,
        config=WorkflowConfig(retry_policy=RetryPolicy(max_attempts=2), deep_analysis=False),
        sleep=clock.sleep,
    )
    return WorkflowEngine(workflow, state_store, clock=clock, sleep=clock.sleep)


class TestWorkflowEngineInit:
    """Tests for WorkflowEngine initialization."""

    def test_workflow_required(self, state_store):
        with pytest.raises(ValueError, match="workflow is required"):
            WorkflowEngine(None, state_store)

    def test_state_store_required(self, clock, state_store, aggregator, document_store):
        workflow = make_engine(clock, state_store, aggregator, document_store)._workflow
        with pytest.raises(ValueError, match="state_store is required"):
            WorkflowEngine(workflow, None)


class TestStartAnalysis:
    """Tests for one-off analysis runs."""

    @pytest.mark.asyncio
    async def test_run_to_completion(self, clock, state_store, aggregator, document_store):
        engine = make_engine(clock, state_store, aggregator, document_store)

        workflow_id = await engine.start_analysis(AnalysisRequest(subject_name="Acme Labs"))
        result = await engine.wait(workflow_id)

        assert workflow_id.startswith("startup-analysis-acme-labs-")
        assert result.status == WorkflowStatus.COMPLETED
        assert set(result.data_sources) == {"twitter", "news"}

        status = await engine.get_status(workflow_id)
        assert status.status == WorkflowStatus.COMPLETED
        assert not status.is_running
        assert status.event_count > 0
        assert (await engine.get_result(workflow_id)).report == result.report

    @pytest.mark.asyncio
    async def test_status_recorded_without_recorder(self, clock, state_store, aggregator, document_store):
        engine = make_engine(clock, state_store, aggregator, document_store, recorder=False)

        workflow_id = await engine.start_analysis(AnalysisRequest(subject_name="Acme"))
        await engine.wait(workflow_id)

        assert (await engine.get_status(workflow_id)).status == WorkflowStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_result_pending_while_running(self, clock, state_store, aggregator, document_store):
        gate = asyncio.Event()
        engine = make_engine(clock, state_store, aggregator, document_store, GatedConnector(gate))

        workflow_id = await engine.start_analysis(AnalysisRequest(subject_name="Acme"))
        await asyncio.sleep(0)

        assert await engine.get_result(workflow_id) is None
        assert (await engine.get_status(workflow_id)).is_running
        assert engine.active_runs() == [workflow_id]

        gate.set()
        await engine.wait(workflow_id)
        assert engine.active_runs() == []

    @pytest.mark.asyncio
    async def test_finished_runs_are_released(self, clock, state_store, aggregator, document_store):
        engine = make_engine(clock, state_store, aggregator, document_store)

        workflow_id = await engine.start_analysis(AnalysisRequest(subject_name="Acme"))
        first = await engine.wait(workflow_id)
        await asyncio.sleep(0)

        assert workflow_id not in engine._runs
        again = await engine.wait(workflow_id)
        assert again.workflow_id == first.workflow_id
        assert again.status == WorkflowStatus.COMPLETED
        assert not (await engine.get_status(workflow_id)).is_running
        assert await engine.cancel(workflow_id) is False

    @pytest.mark.asyncio
    async def test_unknown_run(self, clock, state_store, aggregator, document_store):
        engine = make_engine(clock, state_store, aggregator, document_store)
        with pytest.raises(WorkflowNotFoundError):
            await engine.get_status("nope")
        with pytest.raises(WorkflowNotFoundError):
            await engine.get_result("nope")
        with pytest.raises(WorkflowNotFoundError):
            await engine.wait("nope")


class TestCancel:
    """Tests for cancellation."""

    @pytest.mark.asyncio
    async def test_cancel_active_run(self, clock, state_store, aggregator, document_store):
        gate = asyncio.Event()
        connector = GatedConnector(gate)
        engine = make_engine(clock, state_store, aggregator, document_store, connector)

        workflow_id = await engine.start_analysis(AnalysisRequest(subject_name="Acme"))
        while connector.calls == 0:
            await asyncio.sleep(0)

        assert await engine.cancel(workflow_id) is True
        assert await engine.cancel(workflow_id) is False

        gate.set()
        result = await engine.wait(workflow_id)

        assert result.status == WorkflowStatus.CANCELLED
        assert (await engine.get_status(workflow_id)).status == WorkflowStatus.CANCELLED
        aggregator.analyze.assert_not_awaited()
        kinds = [e.kind for e in await state_store.get_events(workflow_id)]
        assert "cancel_requested" in kinds

    @pytest.mark.asyncio
    async def test_cancel_finished_run(self, clock, state_store, aggregator, document_store):
        engine = make_engine(clock, state_store, aggregator, document_store)
        workflow_id = await engine.start_analysis(AnalysisRequest(subject_name="Acme"))
        await engine.wait(workflow_id)
        assert await engine.cancel(workflow_id) is False

    @pytest.mark.asyncio
    async def test_cancel_unknown_run(self, clock, state_store, aggregator, document_store):
        engine = make_engine(clock, state_store, aggregator, document_store)
        with pytest.raises(WorkflowNotFoundError):
            await engine.cancel("nope")

    @pytest.mark.asyncio
    async def test_shutdown_cancels_active_runs(self, clock, state_store, aggregator, document_store):
        gate = asyncio.Event()
        connector = GatedConnector(gate)
        engine = make_engine(clock, state_store, aggregator, document_store, connector)
        workflow_id = await engine.start_analysis(AnalysisRequest(subject_name="Acme"))
        while connector.calls == 0:
            await asyncio.sleep(0)

        shutdown = asyncio.create_task(engine.shutdown())
        await asyncio.sleep(0)
        gate.set()
        await shutdown

        assert (await engine.get_status(workflow_id)).status == WorkflowStatus.CANCELLED


class TestMonitoring:
    """Tests for periodic monitoring."""

    @pytest.mark.asyncio
    async def test_invalid_interval_rejected_before_scheduling(
        self, clock, state_store, aggregator, document_store, redis_client
    ):
        engine = make_engine(clock, state_store, aggregator, document_store)

        with pytest.raises(ConfigurationError, match="Invalid interval format: 45x"):
            await engine.start_monitoring("Acme", interval="45x")

        assert await redis_client.keys("*") == []
        assert engine.active_runs() == []

    @pytest.mark.asyncio
    async def test_invalid_duration_rejected(self, clock, state_store, aggregator, document_store):
        engine = make_engine(clock, state_store, aggregator, document_store)
        with pytest.raises(ConfigurationError):
            await engine.start_monitoring("Acme", duration="forever")

    @pytest.mark.asyncio
    async def test_repeats_until_duration_elapses(self, clock, state_store, aggregator, document_store):
        engine = make_engine(clock, state_store, aggregator, document_store)

        workflow_id = await engine.start_monitoring("Acme", interval="1h", duration="2h")
        await engine.wait(workflow_id)

        assert workflow_id.startswith("startup-monitoring-acme-")
        status = await engine.get_status(workflow_id)
        assert status.status == WorkflowStatus.COMPLETED
        assert (await state_store.get_workflow(f"{workflow_id}-run-1")).status == WorkflowStatus.COMPLETED
        assert (await state_store.get_workflow(f"{workflow_id}-run-2")).status == WorkflowStatus.COMPLETED
        with pytest.raises(WorkflowNotFoundError):
            await state_store.get_workflow(f"{workflow_id}-run-3")
        assert (await engine.get_result(workflow_id)).workflow_id == workflow_id
        assert 3600 in clock.sleeps

    @pytest.mark.asyncio
    async def test_cancel_monitoring(self, clock, state_store, aggregator, document_store):
        gate = asyncio.Event()
        connector = GatedConnector(gate)
        engine = make_engine(clock, state_store, aggregator, document_store, connector)

        workflow_id = await engine.start_monitoring("Acme", interval="1h", duration="24h")
        while connector.calls == 0:
            await asyncio.sleep(0)
        assert await engine.cancel(workflow_id)
        gate.set()
        await engine.wait(workflow_id)

        assert (await engine.get_status(workflow_id)).status == WorkflowStatus.CANCELLED
        with pytest.raises(WorkflowNotFoundError):
            await state_store.get_workflow(f"{workflow_id}-run-2")
