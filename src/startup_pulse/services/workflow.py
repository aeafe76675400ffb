"""Phased fan-out/fan-in analysis workflow."""

import asyncio
import logging
import re
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Mapping, Sequence

from redis.exceptions import RedisError

from startup_pulse.models.analysis import (
    AnalysisRequest,
    AnalysisResult,
    error_payload,
    is_error_payload,
)
from startup_pulse.models.sentiment import AggregatedSentiment, TextItem
from startup_pulse.models.state import (
    PhaseState,
    RetryPolicy,
    TaskState,
    TaskStatus,
    WorkflowEvent,
    WorkflowState,
    WorkflowStatus,
    begin_attempt,
    complete_attempt,
    fail_attempt,
)
from startup_pulse.services.connectors import (
    COMPETITOR_SOURCE,
    FOUNDER_SOURCE,
    PRIMARY_SOURCES,
    SECONDARY_SOURCES,
    Connector,
    SourceSpec,
)
from startup_pulse.services.document_store import DocumentStore
from startup_pulse.services.report import generate_report
from startup_pulse.services.sentiment_aggregator import SentimentAggregator
from startup_pulse.services.state_store import RedisStateStore

logger = logging.getLogger(__name__)

ANALYSES_COLLECTION = "startup_analyses"
POSTS_COLLECTION = "social_posts"
SENTIMENT_TASK = "sentiment"
PERSIST_TASK = "persist"

_PARAGRAPH_BREAK = re.compile(r"\n\s*\n")


class PersistenceError(Exception):
    """Raised inside the persistence task when the store rejects a write."""

    pass


@dataclass(frozen=True)
class WorkflowConfig:
    """Timing and policy knobs for analysis runs."""

    retry_policy: RetryPolicy = field(default_factory=RetryPolicy)
    primary_pause: float = 2.0
    entity_pause: float = 1.0
    sentiment_pause: float = 2.0
    task_timeout: float = 300.0
    deep_analysis: bool = True
    max_sentiment_items: int = 100


@dataclass(frozen=True)
class TaskSpec:
    name: str
    operation: Callable[[], Awaitable[Any]]
    writes_slot: bool = True


@dataclass(frozen=True)
class TaskOutcome:
    name: str
    value: Any = None
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


def new_workflow_id(kind: str, subject: str) -> str:
    slug = re.sub(r"[^A-Za-z0-9]+", "-", subject).strip("-").lower() or "subject"
    return f"{kind}-{slug}-{uuid.uuid4().hex[:12]}"


def collect_sentiment_items(slots: Mapping[str, Any], limit: int) -> list[TextItem]:
    """Texts from successful slot payloads, in slot order."""
    items: list[TextItem] = []
    for value in slots.values():
        if is_error_payload(value):
            continue
        if isinstance(value, list):
            candidates = [TextItem.from_record(r) for r in value if isinstance(r, dict)]
        elif isinstance(value, str):
            candidates = [
                TextItem(text=p.strip()) for p in _PARAGRAPH_BREAK.split(value) if p.strip()
            ]
        else:
            continue
        for item in candidates:
            if item is None:
                continue
            items.append(item)
            if len(items) >= limit:
                return items
    return items


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class _Run:
    """Mutable bookkeeping for one execution. Only the workflow touches it."""

    def __init__(
        self,
        workflow_id: str,
        request: AnalysisRequest,
        cancel: asyncio.Event,
        prior_slots: Mapping[str, Any] | None,
    ):
        now = _utc_now()
        self.request = request
        self.cancel = cancel
        self.state = WorkflowState(
            workflow_id=workflow_id,
            subject=request.subject_name,
            status=WorkflowStatus.PENDING,
            created_at=now,
            updated_at=now,
            slots=dict(prior_slots or {}),
        )
        self.sentiment: AggregatedSentiment | None = None
        self.sentiment_error: str | None = None
        self.persisted = False

    @property
    def workflow_id(self) -> str:
        return self.state.workflow_id

    def has_slot(self, key: str) -> bool:
        return key in self.state.slots

    def write_slot(self, key: str, value: Any) -> None:
        if key in self.state.slots:
            logger.warning(f"Slot {key} already written for {self.workflow_id}, keeping first value")
            return
        self.state.slots[key] = value

    def add_phase(self, phase: PhaseState) -> None:
        self.state.phases = [*self.state.phases, phase]

    def update_task(self, phase_name: str, task: TaskState) -> None:
        self.state.phases = [
            p.with_task(task) if p.name == phase_name else p for p in self.state.phases
        ]


class AnalysisWorkflow:
    """Collects data from every connector, scores sentiment and reports.

    Phases run strictly in sequence; tasks inside a phase run concurrently
    and each retries on its own. A failed task becomes an error string in
    its slot and never fails the run.
    """

    def __init__(
        self,
        connectors: Mapping[str, Connector],
        aggregator: SentimentAggregator,
        store: DocumentStore,
        recorder: RedisStateStore | None = None,
        config: WorkflowConfig = WorkflowConfig(),
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        primary_sources: Sequence[SourceSpec] = PRIMARY_SOURCES,
        secondary_sources: Sequence[SourceSpec] = SECONDARY_SOURCES,
    ):
        if connectors is None:
            raise ValueError("connectors is required")
        if aggregator is None:
            raise ValueError("aggregator is required")
        if store is None:
            raise ValueError("store is required")

        self._connectors = dict(connectors)
        self._aggregator = aggregator
        self._store = store
        self._recorder = recorder
        self._config = config
        self._sleep = sleep
        self._primary_sources = tuple(primary_sources)
        self._secondary_sources = tuple(secondary_sources)

    @property
    def config(self) -> WorkflowConfig:
        return self._config

    async def run(
        self,
        request: AnalysisRequest,
        workflow_id: str | None = None,
        cancel_event: asyncio.Event | None = None,
        prior_slots: Mapping[str, Any] | None = None,
    ) -> AnalysisResult:
        """Execute every phase and return the merged result.

        prior_slots seeds slots from an earlier attempt at the same run;
        tasks whose slot is already written are not executed again.
        """
        if request is None:
            raise ValueError("request is required")

        run = _Run(
            workflow_id or new_workflow_id("startup-analysis", request.subject_name),
            request,
            cancel_event or asyncio.Event(),
            prior_slots,
        )
        logger.info(f"Starting comprehensive analysis for: {request.subject_name} ({run.workflow_id})")
        await self._set_status(run, WorkflowStatus.RUNNING)

        try:
            status = await self._run_phases(run)
        except Exception as e:
            logger.exception(f"Workflow {run.workflow_id} failed")
            run.state.error = str(e) or type(e).__name__
            status = WorkflowStatus.FAILED

        return await self._finish(run, status)

    async def _run_phases(self, run: _Run) -> WorkflowStatus:
        request = run.request
        cfg = self._config

        phases: list[tuple[str, float, list[TaskSpec]]] = [
            ("primary_sources", 0.0, self._source_tasks(request, self._primary_sources)),
            ("secondary_sources", cfg.primary_pause, self._source_tasks(request, self._secondary_sources)),
            ("entities", cfg.entity_pause, self._entity_tasks(request)),
        ]

        for name, pause, specs in phases:
            if not specs:
                continue
            if run.cancel.is_set():
                return WorkflowStatus.CANCELLED
            if pause:
                await self._sleep(pause)
            await self._run_phase(run, name, specs)

        if run.cancel.is_set():
            return WorkflowStatus.CANCELLED
        await self._sleep(cfg.sentiment_pause)
        outcomes = await self._run_phase(
            run, "sentiment", [TaskSpec(SENTIMENT_TASK, lambda: self._analyze_sentiment(run), writes_slot=False)]
        )
        outcome = outcomes[SENTIMENT_TASK]
        if outcome.ok:
            run.sentiment = outcome.value
        else:
            run.sentiment_error = error_payload(outcome.error)

        if run.cancel.is_set():
            return WorkflowStatus.CANCELLED
        document = self._build_result(run, WorkflowStatus.RUNNING).model_dump(
            mode="json", exclude={"report", "status", "persisted"}
        )
        outcomes = await self._run_phase(
            run, "persistence", [TaskSpec(PERSIST_TASK, lambda: self._persist(document), writes_slot=False)]
        )
        run.persisted = outcomes[PERSIST_TASK].ok
        if not run.persisted:
            logger.error(f"Could not save analysis {run.workflow_id}: {outcomes[PERSIST_TASK].error}")

        return WorkflowStatus.COMPLETED

    def _source_tasks(self, request: AnalysisRequest, sources: Sequence[SourceSpec]) -> list[TaskSpec]:
        specs = []
        for source in sources:
            connector = self._connectors.get(source.connector)
            if connector is None:
                continue
            specs.append(
                TaskSpec(
                    source.slot,
                    self._fetch_operation(
                        connector,
                        source.render_query(request.subject_name),
                        source.limit,
                        source.options(request.website),
                    ),
                )
            )
        return specs

    def _entity_tasks(self, request: AnalysisRequest) -> list[TaskSpec]:
        specs = []
        founder_connector = self._connectors.get(FOUNDER_SOURCE.connector)
        if founder_connector is not None:
            for founder in request.founders:
                specs.append(
                    TaskSpec(
                        FOUNDER_SOURCE.slot.format(founder=founder.name),
                        self._fetch_operation(
                            founder_connector,
                            FOUNDER_SOURCE.render_query(request.subject_name, founder=founder.name),
                            FOUNDER_SOURCE.limit,
                            {},
                        ),
                    )
                )

        competitor_connector = self._connectors.get(COMPETITOR_SOURCE.connector)
        if competitor_connector is not None:
            for competitor in request.competitors:
                specs.append(
                    TaskSpec(
                        COMPETITOR_SOURCE.slot.format(competitor=competitor),
                        self._fetch_operation(
                            competitor_connector,
                            COMPETITOR_SOURCE.render_query(request.subject_name, competitor=competitor),
                            COMPETITOR_SOURCE.limit,
                            {},
                        ),
                    )
                )
        return specs

    @staticmethod
    def _fetch_operation(
        connector: Connector, query: str, limit: int, options: dict
    ) -> Callable[[], Awaitable[Any]]:
        return lambda: connector(query, limit, options)

    async def _run_phase(self, run: _Run, name: str, specs: list[TaskSpec]) -> dict[str, TaskOutcome]:
        """Fan out every task, join on all of them, then commit slots in order."""
        pending = [s for s in specs if not (s.writes_slot and run.has_slot(s.name))]
        run.add_phase(PhaseState(name=name, tasks=[TaskState(name=s.name) for s in pending]))
        await self._record(run, "phase_started", phase=name, detail=f"{len(pending)} tasks")
        logger.info(f"{run.workflow_id}: phase {name} started with {len(pending)} tasks")

        results = await asyncio.gather(
            *(self._run_task(run, name, spec) for spec in pending), return_exceptions=True
        )

        outcomes: dict[str, TaskOutcome] = {}
        for spec, result in zip(pending, results):
            if isinstance(result, BaseException):
                if isinstance(result, asyncio.CancelledError):
                    raise result
                result = TaskOutcome(spec.name, error=str(result) or type(result).__name__)
            outcomes[spec.name] = result
            if spec.writes_slot:
                run.write_slot(spec.name, result.value if result.ok else error_payload(result.error))

        failed = sum(1 for o in outcomes.values() if not o.ok)
        await self._record(run, "phase_completed", phase=name, detail=f"{failed} failed")
        logger.info(f"{run.workflow_id}: phase {name} completed ({failed} of {len(pending)} failed)")
        await self._checkpoint(run)
        return outcomes

    async def _run_task(self, run: _Run, phase: str, spec: TaskSpec) -> TaskOutcome:
        """Execute one task under the retry policy."""
        policy = self._config.retry_policy
        task = TaskState(name=spec.name)

        while True:
            task = begin_attempt(task, _utc_now())
            run.update_task(phase, task)
            try:
                value = await asyncio.wait_for(spec.operation(), timeout=self._config.task_timeout)
            except asyncio.TimeoutError:
                error = f"Timed out after {self._config.task_timeout}s"
            except Exception as e:
                error = str(e) or type(e).__name__
            else:
                task = complete_attempt(task, _utc_now())
                run.update_task(phase, task)
                await self._record(run, "task_completed", phase=phase, task=spec.name)
                return TaskOutcome(spec.name, value=value)

            # Cancellation is honoured at the retry boundary
            task = fail_attempt(task, error, policy, _utc_now(), allow_retry=not run.cancel.is_set())
            run.update_task(phase, task)

            if task.status == TaskStatus.FAILED:
                logger.warning(f"{run.workflow_id}: task {spec.name} failed after {task.attempts} attempts: {error}")
                await self._record(run, "task_failed", phase=phase, task=spec.name, detail=error)
                return TaskOutcome(spec.name, error=error)

            delay = policy.delay_for(task.attempts)
            await self._record(
                run, "task_retrying", phase=phase, task=spec.name,
                detail=f"attempt {task.attempts} failed: {error}; retrying in {delay:.0f}s",
            )
            await self._sleep(delay)

    async def _analyze_sentiment(self, run: _Run) -> AggregatedSentiment:
        items = collect_sentiment_items(run.state.slots, self._config.max_sentiment_items)
        if not items:
            posts = await self._store.query(
                POSTS_COLLECTION,
                {"query": run.request.subject_name},
                limit=self._config.max_sentiment_items,
            )
            items = [i for i in (TextItem.from_record(p) for p in posts) if i is not None]
        return await self._aggregator.analyze(
            items, deep_analysis=self._config.deep_analysis, subject=run.request.subject_name
        )

    async def _persist(self, document: dict) -> bool:
        if not await self._store.save(ANALYSES_COLLECTION, document):
            raise PersistenceError("Document store rejected the analysis record")
        return True

    def _build_result(self, run: _Run, status: WorkflowStatus) -> AnalysisResult:
        request = run.request
        return AnalysisResult(
            workflow_id=run.workflow_id,
            subject_name=request.subject_name,
            website=request.website,
            social_accounts=request.social_accounts,
            founders=request.founders,
            analyzed_at=run.state.created_at,
            status=status,
            data_sources=dict(run.state.slots),
            sentiment=run.sentiment,
            sentiment_error=run.sentiment_error,
            persisted=run.persisted,
        )

    async def _finish(self, run: _Run, status: WorkflowStatus) -> AnalysisResult:
        result = self._build_result(run, status)
        result.report = generate_report(result)
        await self._set_status(run, status)
        logger.info(f"Workflow {run.workflow_id} finished: {status.value}")
        return result

    async def _set_status(self, run: _Run, status: WorkflowStatus) -> None:
        now = _utc_now()
        run.state.status = status
        run.state.updated_at = now
        if status.is_terminal:
            run.state.completed_at = now
        await self._record(run, f"workflow_{status.value}")
        await self._checkpoint(run)

    async def _record(
        self,
        run: _Run,
        kind: str,
        phase: str | None = None,
        task: str | None = None,
        detail: str | None = None,
    ) -> None:
        run.state.event_count += 1
        if self._recorder is None:
            return
        event = WorkflowEvent(
            workflow_id=run.workflow_id,
            kind=kind,
            timestamp=_utc_now(),
            phase=phase,
            task=task,
            detail=detail,
        )
        try:
            await self._recorder.append_event(event)
        except RedisError as e:
            logger.error(f"Could not record {kind} for {run.workflow_id}: {e}")

    async def _checkpoint(self, run: _Run) -> None:
        if self._recorder is None:
            return
        try:
            await self._recorder.save_workflow(run.state)
        except RedisError as e:
            logger.error(f"Could not save state for {run.workflow_id}: {e}")
