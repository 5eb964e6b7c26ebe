"""Orchestrator: drives jobs through the pipeline graph.

The orchestrator owns the job state machine::

    created -> running(node) -> running(next) | pending_approval | escalated
                                | failed | published

It asks the Router for the next target after every successful node, hands
failures to the FailureClassifier, and opens HITL requests through the
HITLGate for checkpoints and escalations.

Suspension is explicit and persisted. A scheduled retry stores
``next_attempt_at`` before sleeping; a human wait stores the pending request
on the job and returns, holding no task. ``resolve``, ``check_timeouts`` and
``recover`` pick jobs up again from their persisted state.

A job that reaches a terminal state is archived: its session closes, its
HITL requests are dropped, and the orchestrator stops holding it. ``get_job``
reads it back from the job store.

Example:
    ```python
    orchestrator = Orchestrator(nodes=[research, writer, editor, publisher])
    job = await orchestrator.submit({"headline": "...", "body": "..."})

    if job.state == JobState.PENDING_APPROVAL:
        job = await orchestrator.resolve(job.pending_request.id, HITLDecision.approve())
    ```
"""

import asyncio
from datetime import datetime, timedelta
from functools import partial
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional

from pydantic import BaseModel, Field

from inkgraph.core.config import FallbackMode, PipelineConfig
from inkgraph.core.errors import (
    ConfigError,
    DuplicateJobError,
    DuplicateResolutionError,
    HumanRejection,
    JobNotFoundError,
)
from inkgraph.core.failures import Escalate, Fail, FailureClassifier, FailureEvent, Retry, Revise
from inkgraph.core.graph.nodes.base.node import Node, NodeRunner
from inkgraph.core.graph.router import Checkpoint, Halt, Router, content_policy
from inkgraph.core.graph.state import Job, JobState, NodeRecord, NodeResult, NodeResultStatus
from inkgraph.core.hitl import HITLAction, HITLDecision, HITLGate, HITLRequest
from inkgraph.core.logging import InkLoggingConfig, LogComponent, get_logger, log_state, log_transition
from inkgraph.core.memory import MemoryStore, MemoryTier, SessionHandle
from inkgraph.core.memory.records import utcnow
from inkgraph.core.storage import InMemoryJobStore, JobStore

logger = get_logger(LogComponent.ORCHESTRATOR)

PUBLISH_CAPABILITY = "publish"

FAILURES_CATEGORY = "failures"
FEEDBACK_CATEGORY = "feedback"
JOBS_CATEGORY = "jobs"


class JobSummary(BaseModel):
    """User-visible view of a job."""
    job_id: str
    state: JobState
    current_node: Optional[str] = None
    reason: Optional[str] = None
    failure_node: Optional[str] = None
    failures: List[FailureEvent] = Field(default_factory=list)
    request_id: Optional[str] = None
    pending_reason: Optional[str] = None
    deadline: Optional[datetime] = None
    published_url: Optional[str] = None


class Orchestrator:
    """Runs content-pipeline jobs.

    Attributes:
        nodes: Pipeline nodes by id
        router: Next-node decisions
        memory: Tiered memory shared by all jobs
        store: Durable job records
        hitl: Human checkpoint registry
        classifier: Failure classification and recovery decisions
        runner: Node execution wrapper
    """

    def __init__(
        self,
        nodes: Iterable[Node],
        router: Optional[Router] = None,
        memory: Optional[MemoryStore] = None,
        config: Optional[PipelineConfig] = None,
        job_store: Optional[JobStore] = None,
        hitl: Optional[HITLGate] = None,
        classifier: Optional[FailureClassifier] = None,
        runner: Optional[NodeRunner] = None,
        clock: Callable[[], datetime] = utcnow,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        logging_config: Optional[InkLoggingConfig] = None,
    ):
        self.config = config or PipelineConfig()
        self.nodes: Dict[str, Node] = {}
        for node in nodes:
            if node.id in self.nodes:
                raise ConfigError(f"duplicate node id '{node.id}'")
            self.nodes[node.id] = node
        if not self.nodes:
            raise ConfigError("orchestrator needs at least one node")

        self.router = router or Router(
            order=self.config.linear_order,
            policy=content_policy(self.config.confidence_threshold),
        )
        missing = self.router.nodes - set(self.nodes)
        if missing:
            raise ConfigError(f"router references nodes with no implementation: {sorted(missing)}")

        self._clock = clock
        self._sleep = sleep
        self.memory = memory or MemoryStore(clock=clock)
        self.store = job_store or InMemoryJobStore()
        self.hitl = hitl or HITLGate(self.config, clock=clock)
        self.classifier = classifier or FailureClassifier(self.config)
        self.logging_config = logging_config or InkLoggingConfig()
        self.runner = runner or NodeRunner(self.memory, self.config, logging_config=self.logging_config)

        self._jobs: Dict[str, Job] = {}
        self._locks: Dict[str, asyncio.Lock] = {}

    # Public API

    async def submit(self, item: Dict[str, Any], session_id: Optional[str] = None, job_id: Optional[str] = None) -> Job:
        """Create a job for a news item and run it until it suspends or ends."""
        now = self._clock()
        fields: Dict[str, Any] = {
            "context": {"item": dict(item)},
            "session_id": session_id or "",
            "created_at": now,
            "updated_at": now,
        }
        if job_id is not None:
            fields["id"] = job_id
        job = Job(**fields)
        if job.id in self._jobs or self.store.load(job.id) is not None:
            raise DuplicateJobError(f"job '{job.id}' already exists")
        self._jobs[job.id] = job
        logger.info(f"Submitted job {job.id} (session {job.session_id})")

        async with self._lock(job.id):
            self._move(job, JobState.RUNNING, self.router.entry, "start")
            self._save(job)
            await self._drive(job)
        return job

    async def resolve(self, request_id: str, decision: HITLDecision) -> Job:
        """Apply a human decision to a suspended job and continue it."""
        request = self.hitl.get(request_id)
        job = self.get_job(request.job_id)

        async with self._lock(job.id):
            if job.pending_request is None or job.pending_request.id != request_id:
                raise DuplicateResolutionError(f"job {job.id} is not waiting on request '{request_id}'")
            request = self.hitl.resolve(request_id, decision)
            job.pending_request = None

            try:
                if decision.action == HITLAction.APPROVE:
                    self._approve(job, request, decision)
                elif decision.action == HITLAction.REJECT:
                    self._reject(job, request, decision)
                else:
                    reason = decision.feedback.content if decision.feedback else "aborted by operator"
                    self._fail(job, request.origin_node, f"aborted by operator: {reason}")
            except Exception as e:
                self._fail_unexpected(job, request.origin_node, e)

            self._save(job)
            await self._drive(job)
        return job

    async def check_timeouts(self, drive: bool = True) -> List[Job]:
        """Apply fallbacks to HITL requests past their deadline.

        Args:
            drive: Continue jobs that re-entered running; when False they are
                left running for a later ``resume``.

        Returns:
            Jobs whose request timed out
        """
        handled = await asyncio.gather(*(
            self._time_out(request, drive) for request in self.hitl.expired(self._clock())
        ))
        return [job for job in handled if job is not None]

    async def resume(self, job_id: str) -> Job:
        """Continue a job left running (after recovery or an undriven timeout)."""
        job = self.get_job(job_id)
        async with self._lock(job.id):
            if job.state == JobState.CREATED:
                self._move(job, JobState.RUNNING, self.router.entry, "start")
                self._save(job)
            await self._drive(job)
        return job

    async def recover(self) -> List[Job]:
        """Reload unfinished jobs from the store and continue the running ones."""
        self.memory.load()
        recovered = [job for job in self.store.list() if not job.state.is_terminal]
        for job in recovered:
            self._jobs[job.id] = job
            if job.pending_request is not None:
                self.hitl.restore(job.pending_request)
        logger.info(f"Recovered {len(recovered)} unfinished jobs")

        await asyncio.gather(*(
            self.resume(job.id) for job in recovered
            if job.state in (JobState.CREATED, JobState.RUNNING)
        ))
        return recovered

    async def watch_timeouts(self, interval: float = 1.0) -> None:
        """Check HITL deadlines every ``interval`` seconds until cancelled."""
        while True:
            await self.check_timeouts()
            await self._sleep(interval)

    def get_job(self, job_id: str) -> Job:
        job = self._jobs.get(job_id)
        if job is None:
            job = self.store.load(job_id)
            if job is None:
                raise JobNotFoundError(f"no job '{job_id}'")
            if not job.state.is_terminal:
                self._jobs[job_id] = job
        return job

    def describe(self, job_id: str) -> JobSummary:
        job = self.get_job(job_id)
        summary = JobSummary(job_id=job.id, state=job.state, current_node=job.current_node)
        if job.state == JobState.FAILED:
            summary.reason = job.failure_reason
            summary.failure_node = job.failure_node
            summary.failures = list(job.failures)
        elif job.pending_request is not None:
            summary.request_id = job.pending_request.id
            summary.pending_reason = job.pending_request.reason
            summary.deadline = job.pending_request.deadline
            summary.failures = list(job.failures)
        elif job.state == JobState.PUBLISHED:
            receipt = job.context.get(job.current_node) or {}
            summary.published_url = receipt.get("url")
        return summary

    async def shutdown(self) -> None:
        for job in self._jobs.values():
            self._save(job)
        self.memory.flush()
        logger.info("Orchestrator shut down")

    # Execution loop

    def _lock(self, job_id: str) -> asyncio.Lock:
        lock = self._locks.get(job_id)
        if lock is None:
            lock = self._locks[job_id] = asyncio.Lock()
        return lock

    def _session(self, job: Job) -> SessionHandle:
        return self.memory.open_session(job.session_id)

    async def _drive(self, job: Job) -> None:
        """Run nodes while the job is running. Caller holds the job lock."""
        while job.state == JobState.RUNNING:
            node = self.nodes[job.current_node]

            if job.transitions >= self.config.max_transitions:
                self._fail(job, node.id, f"transition limit {self.config.max_transitions} exceeded")
                self._save(job)
                break

            if job.next_attempt_at is not None:
                delay = (job.next_attempt_at - self._clock()).total_seconds()
                if delay > 0:
                    logger.info(f"Job {job.id} backing off {delay:.2f}s before retrying '{node.id}'")
                    await self._sleep(delay)
                job.next_attempt_at = None

            job.transitions += 1
            attempt = job.retries.get(node.id, 0) + 1
            started = self._clock()
            result = await self.runner.run(node, job, self._session(job), persist=partial(self._persist, job))
            job.history.append(NodeRecord(
                node_id=node.id,
                status=result.status,
                attempt=attempt,
                output=result.output,
                error=None if result.error is None else f"{type(result.error).__name__}: {result.error}",
                latency_ms=result.latency_ms,
                started_at=started,
            ))

            try:
                if result.status == NodeResultStatus.OK:
                    self._on_ok(job, node, result)
                elif result.status == NodeResultStatus.NEEDS_HUMAN:
                    self._on_needs_human(job, node, result)
                else:
                    self._on_failure(job, node, result.error)
            except Exception as e:
                self._fail_unexpected(job, node.id, e)
            self._save(job)

    def _on_ok(self, job: Job, node: Node, result: NodeResult) -> None:
        job.retries[node.id] = 0
        job.context[node.id] = result.output
        self.memory.set(MemoryTier.SESSION, node.id, result.output, session=self._session(job))

        target = self.router.route(node.id, result, job.context)
        if isinstance(target, Checkpoint):
            self._suspend(job, target.reason, node.id, target.resume_at, target.revise_at)
        elif isinstance(target, Halt):
            self._halt(job, node.id, target.reason)
        else:
            self._move(job, JobState.RUNNING, target)

    def _on_needs_human(self, job: Job, node: Node, result: NodeResult) -> None:
        output = result.output or {}
        if output:
            job.context[node.id] = output
        reason = output.get("reason", "node_requested_review")
        # The last node has no successor; approval re-runs it
        resume_at = self.router.successor(node.id) or node.id
        self._suspend(job, reason, node.id, resume_at, node.id)

    def _on_failure(self, job: Job, node: Node, error: Any) -> None:
        event = self.classifier.classify(error, node, job)
        self._record_failure(job, event)

        attempts = job.retries.get(node.id, 0) + 1
        decision = self.classifier.decide(event, attempts)
        if isinstance(decision, Retry):
            job.retries[node.id] = attempts
            job.next_attempt_at = self._clock() + timedelta(seconds=decision.delay)
            logger.warning(
                f"Job {job.id}: retrying '{node.id}' in {decision.delay:.2f}s "
                f"(attempt {attempts + 1}, {event.signal.value})"
            )
            self._move(job, JobState.RUNNING, node.id, "retry")
        elif isinstance(decision, Escalate):
            self._escalate(job, node.id, decision.reason)
        elif isinstance(decision, Fail):
            self._fail(job, node.id, decision.reason)
        else:
            self._fail(job, node.id, f"unexpected decision {decision!r} for {event.signal.value}")

    # Transitions

    def _move(self, job: Job, target: JobState, node_id: Optional[str] = None, detail: str = "") -> None:
        previous = job.transition(target, node_id, now=self._clock())
        if not self.logging_config.show_transitions:
            return
        source = f"{previous.value}" + (f"({node_id})" if previous == JobState.RUNNING and node_id else "")
        log_transition(logger, job.id, source, f"{target.value}({job.current_node})", detail)

    def _halt(self, job: Job, node_id: str, reason: str = "") -> None:
        if self.nodes[node_id].capability == PUBLISH_CAPABILITY:
            self._move(job, JobState.PUBLISHED, node_id)
            self._archive(job)
        else:
            detail = f" ({reason})" if reason else ""
            self._fail(job, node_id, f"routing halted at '{node_id}' without a checkpoint path{detail}")

    def _suspend(self, job: Job, reason: str, origin: str, resume_at: Optional[str], revise_at: Optional[str]) -> None:
        request = self.hitl.request_approval(
            job, reason, origin_node=origin, resume_at=resume_at, revise_at=revise_at,
        )
        job.pending_request = request
        self._move(job, JobState.PENDING_APPROVAL, origin, reason)

    def _escalate(self, job: Job, node_id: str, reason: str) -> None:
        job.escalations += 1
        if job.escalations > self.config.max_escalations:
            self._fail(job, node_id, f"escalation limit {self.config.max_escalations} reached: {reason}")
            return
        request = self.hitl.request_approval(
            job, reason, origin_node=node_id, resume_at=node_id, revise_at=node_id, escalation=True,
        )
        job.pending_request = request
        self._move(job, JobState.ESCALATED, node_id, reason)

    def _fail(self, job: Job, node_id: Optional[str], reason: str) -> None:
        job.failure_reason = reason
        job.failure_node = node_id
        job.pending_request = None
        job.next_attempt_at = None
        self._move(job, JobState.FAILED, node_id, reason)
        logger.error(f"Job {job.id} failed at '{node_id}': {reason}")
        log_state(logger, {"retries": job.retries, "revisions": job.revisions, "escalations": job.escalations})
        self._archive(job)

    def _fail_unexpected(self, job: Job, node_id: Optional[str], error: Exception) -> None:
        """Fail a job whose transition raised, so it never stays running or suspended."""
        logger.error(f"Job {job.id}: unexpected error at '{node_id}': {type(error).__name__}: {error}", exc_info=error)
        if job.state.is_terminal:
            raise error
        self._fail(job, node_id, f"internal error: {type(error).__name__}: {error}")

    def _archive(self, job: Job) -> None:
        self.memory.append(JOBS_CATEGORY, {
            "job_id": job.id,
            "state": job.state.value,
            "node_id": job.current_node,
            "reason": job.failure_reason,
            "failures": len(job.failures),
            "transitions": job.transitions,
        })
        self.memory.close_session(self._session(job))
        self.hitl.forget(job.id)
        self._jobs.pop(job.id, None)
        self._locks.pop(job.id, None)

    # Human decisions

    def _resume_at(self, job: Job, target: Optional[str], origin: str) -> None:
        if target is None:
            # Routing ended at a checkpoint after ``origin`` completed
            self._move(job, JobState.RUNNING, origin, "resume")
            self._halt(job, origin)
        elif target not in self.nodes:
            self._fail(job, origin, f"resume target '{target}' is not a pipeline node")
        else:
            self._move(job, JobState.RUNNING, target, "resume")

    def _approve(self, job: Job, request: HITLRequest, decision: HITLDecision) -> None:
        if request.escalation:
            job.retries[request.origin_node] = 0
        if decision.feedback is not None:
            self._record_feedback(job, request, decision, request.origin_node)
        self._resume_at(job, decision.resume_at or request.resume_at, request.origin_node)

    def _reject(self, job: Job, request: HITLRequest, decision: HITLDecision) -> None:
        revise_at = decision.resume_at or request.revise_at or request.origin_node
        feedback = self._record_feedback(job, request, decision, revise_at)
        if revise_at not in self.nodes:
            self._fail(job, request.origin_node, f"revision target '{revise_at}' is not a pipeline node")
            return

        rejection = HumanRejection(revise_at, feedback.get("content", ""), feedback.get("notes"))
        event = self.classifier.classify(rejection, revise_at, job)
        self._record_failure(job, event)

        job.revisions[revise_at] = job.revisions.get(revise_at, 0) + 1
        outcome = self.classifier.decide(event, job.revisions[revise_at])
        if isinstance(outcome, Revise):
            job.retries[outcome.node_id] = 0
            job.context.setdefault("feedback", []).append(feedback)
            self._move(job, JobState.RUNNING, outcome.node_id, "revision")
        else:
            self._escalate(job, revise_at, outcome.reason)

    async def _time_out(self, request: HITLRequest, drive: bool) -> Optional[Job]:
        job = self.get_job(request.job_id)
        async with self._lock(job.id):
            if job.pending_request is None or job.pending_request.id != request.id:
                return None
            request = self.hitl.time_out(request.id)
            node_id = request.origin_node

            if request.fallback == FallbackMode.PAUSE:
                job.pending_request = request
                job.touch(self._clock())
                logger.warning(f"Job {job.id} paused at '{node_id}' awaiting manual resolution")
            elif request.fallback == FallbackMode.FAIL_SAFE_HALT:
                self._fail(job, node_id, "timeout, fail-safe")
            else:
                job.pending_request = None
                if request.escalation:
                    job.retries[node_id] = 0
                job.retries[node_id] = job.retries.get(node_id, 0) + 1
                cap = self.config.retry_cap_for(node_id)
                if job.retries[node_id] >= cap:
                    self._escalate(job, node_id, f"auto-retry exhausted retry cap {cap} for '{node_id}'")
                else:
                    self._move(job, JobState.RUNNING, node_id, "timeout, auto-retry")

            self._save(job)
            if drive:
                await self._drive(job)
        return job

    # Records

    def _record_failure(self, job: Job, event: FailureEvent) -> None:
        self.memory.append(FAILURES_CATEGORY, event.model_dump(mode="json"))
        job.failures.append(event)
        self._save(job)

    def _record_feedback(self, job: Job, request: HITLRequest, decision: HITLDecision, node_id: str) -> Dict[str, Any]:
        feedback = decision.feedback
        if feedback is None:
            return {"content": "", "notes": {}}
        feedback = feedback.model_copy(update={
            "node_id": feedback.node_id or node_id,
            "job_id": job.id,
        })
        record = feedback.model_dump(mode="json")
        if decision.reviewer:
            record["reviewer"] = decision.reviewer
        self.memory.append(FEEDBACK_CATEGORY, record)
        return record

    def _persist(self, job: Job, key: str, value: Any) -> None:
        job.context[key] = value
        self._save(job)

    def _save(self, job: Job) -> None:
        self.store.save(job)
