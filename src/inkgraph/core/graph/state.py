"""Job state for the orchestration engine.

This module provides:
1. JobState: the job state machine and its allowed transitions
2. NodeResultStatus / NodeResult: what a node execution returns
3. NodeRecord: the serializable history entry kept per execution
4. Job: the persisted record of one content-pipeline run
"""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Set
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field

from inkgraph.core.errors import StateTransitionError
from inkgraph.core.failures import FailureEvent
from inkgraph.core.hitl import HITLRequest
from inkgraph.core.memory.records import utcnow


class JobState(str, Enum):
    """Job lifecycle states."""
    CREATED = "created"
    RUNNING = "running"
    PENDING_APPROVAL = "pending_approval"
    ESCALATED = "escalated"
    FAILED = "failed"
    PUBLISHED = "published"

    @property
    def is_terminal(self) -> bool:
        return self in (JobState.FAILED, JobState.PUBLISHED)

    @property
    def is_suspended(self) -> bool:
        """Suspended states only an external actor can resume."""
        return self in (JobState.PENDING_APPROVAL, JobState.ESCALATED)


TRANSITIONS: Dict[JobState, Set[JobState]] = {
    JobState.CREATED: {JobState.RUNNING},
    JobState.RUNNING: {
        JobState.RUNNING,
        JobState.PENDING_APPROVAL,
        JobState.ESCALATED,
        JobState.FAILED,
        JobState.PUBLISHED,
    },
    JobState.PENDING_APPROVAL: {JobState.RUNNING, JobState.ESCALATED, JobState.FAILED},
    JobState.ESCALATED: {JobState.RUNNING, JobState.ESCALATED, JobState.FAILED},
    JobState.FAILED: set(),
    JobState.PUBLISHED: set(),
}


class NodeResultStatus(str, Enum):
    OK = "ok"
    FAILED = "failed"
    NEEDS_HUMAN = "needs_human"


class NodeResult(BaseModel):
    """Outcome of one node execution as returned by its executable."""
    model_config = ConfigDict(arbitrary_types_allowed=True)

    status: NodeResultStatus
    output: Optional[Dict[str, Any]] = None
    error: Optional[Any] = None
    usage: Dict[str, float] = Field(default_factory=dict)
    latency_ms: float = 0.0

    @property
    def ok(self) -> bool:
        return self.status == NodeResultStatus.OK


class NodeRecord(BaseModel):
    """History entry for one node execution."""
    node_id: str
    status: NodeResultStatus
    attempt: int
    output: Optional[Dict[str, Any]] = None
    error: Optional[str] = None
    latency_ms: float = 0.0
    started_at: datetime = Field(default_factory=utcnow)


class Job(BaseModel):
    """One content-pipeline run.

    Attributes:
        id: Job identifier
        session_id: Session memory namespace of this run
        state: Current state machine state
        current_node: Node the job is at (running, or suspended at)
        history: Ordered node execution records
        retries: Consecutive failed attempts per node in the current cycle
        revisions: Human-requested revisions per node
        escalations: Number of escalations so far
        transitions: Node executions so far
        pending_request: Open HITL request while suspended
        failures: FailureEvents raised by this job, oldest first
        context: Item payload plus the latest output of each node
        usage: Cumulative token/cost usage per node
        next_attempt_at: When a scheduled retry becomes due
        failure_reason: Why the job failed (terminal failures only)
        failure_node: Node the job failed at
    """
    id: str = Field(default_factory=lambda: uuid4().hex)
    session_id: str = ""
    state: JobState = JobState.CREATED
    current_node: Optional[str] = None
    history: List[NodeRecord] = Field(default_factory=list)
    retries: Dict[str, int] = Field(default_factory=dict)
    revisions: Dict[str, int] = Field(default_factory=dict)
    escalations: int = 0
    transitions: int = 0
    pending_request: Optional[HITLRequest] = None
    failures: List[FailureEvent] = Field(default_factory=list)
    context: Dict[str, Any] = Field(default_factory=dict)
    usage: Dict[str, Dict[str, float]] = Field(default_factory=dict)
    next_attempt_at: Optional[datetime] = None
    failure_reason: Optional[str] = None
    failure_node: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    def model_post_init(self, __context: Any) -> None:
        if not self.session_id:
            self.session_id = self.id

    def transition(self, target: JobState, node_id: Optional[str] = None, now: Optional[datetime] = None) -> JobState:
        """Move to ``target`` if the state machine allows it; returns the previous state."""
        target = JobState(target)
        if target not in TRANSITIONS[self.state]:
            raise StateTransitionError(
                f"job {self.id}: illegal transition {self.state.value} -> {target.value}"
            )
        previous = self.state
        self.state = target
        if node_id is not None:
            self.current_node = node_id
        self.touch(now)
        return previous

    def touch(self, now: Optional[datetime] = None) -> None:
        self.updated_at = now or utcnow()

    def add_usage(self, node_id: str, usage: Dict[str, float]) -> Dict[str, float]:
        totals = self.usage.setdefault(node_id, {})
        for key, value in usage.items():
            totals[key] = totals.get(key, 0) + value
        return totals
