"""Human-in-the-loop checkpoints.

The gate tracks approval requests; it never moves jobs itself. The
Orchestrator opens a request, suspends the job, and applies the outcome
returned by ``resolve`` or ``time_out``.

A request is resolved at most once. A request whose fallback is ``pause``
stays resolvable after its deadline passes. Requests of a finished job are
dropped by ``forget``; only their ids and final status are kept, in a bounded
record, so a late resolution still reads as a duplicate.
"""

import threading
from collections import OrderedDict
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Callable, Dict, List, Optional
from uuid import uuid4

from pydantic import BaseModel, Field

from inkgraph.core.config import FallbackMode, PipelineConfig
from inkgraph.core.errors import DuplicateResolutionError, JobNotFoundError
from inkgraph.core.logging import LogComponent, get_logger
from inkgraph.core.memory.records import utcnow

logger = get_logger(LogComponent.HITL)


class HITLStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    TIMED_OUT = "timed_out"


class FeedbackSource(str, Enum):
    HUMAN = "human"
    AUTOMATED = "automated"


class Feedback(BaseModel):
    """Reviewer or checker feedback on a node's output."""
    source: FeedbackSource = FeedbackSource.HUMAN
    content: str = ""
    notes: Dict[str, Any] = Field(default_factory=dict)
    node_id: Optional[str] = None
    job_id: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)


class HITLAction(str, Enum):
    APPROVE = "approve"
    REJECT = "reject"
    ABORT = "abort"


class HITLDecision(BaseModel):
    """A reviewer's answer to a HITL request.

    ``resume_at`` overrides the request's target node, e.g. to send a job
    back to research instead of forward.
    """
    action: HITLAction
    reviewer: Optional[str] = None
    feedback: Optional[Feedback] = None
    resume_at: Optional[str] = None

    @classmethod
    def approve(cls, resume_at: Optional[str] = None, reviewer: Optional[str] = None) -> "HITLDecision":
        return cls(action=HITLAction.APPROVE, resume_at=resume_at, reviewer=reviewer)

    @classmethod
    def reject(cls, content: str, notes: Optional[Dict[str, Any]] = None,
               resume_at: Optional[str] = None, reviewer: Optional[str] = None) -> "HITLDecision":
        return cls(
            action=HITLAction.REJECT,
            feedback=Feedback(content=content, notes=notes or {}),
            resume_at=resume_at,
            reviewer=reviewer,
        )

    @classmethod
    def abort(cls, reason: str = "aborted by operator", reviewer: Optional[str] = None) -> "HITLDecision":
        return cls(action=HITLAction.ABORT, feedback=Feedback(content=reason), reviewer=reviewer)


class HITLRequest(BaseModel):
    """An open (or settled) human checkpoint.

    Attributes:
        id: Request identifier
        job_id: Job suspended by this request
        reason: Reason code (e.g. ``pre_publish``, ``low_confidence``)
        origin_node: Node the job was at when suspended
        resume_at: Node to resume at on approval
        revise_at: Node to revise on rejection
        escalation: Whether this request escalates a failure
        deadline: When the fallback applies
        fallback: Fallback applied on timeout
        status: Pending until resolved or timed out
    """
    id: str = Field(default_factory=lambda: uuid4().hex)
    job_id: str
    reason: str
    origin_node: str
    resume_at: Optional[str] = None
    revise_at: Optional[str] = None
    escalation: bool = False
    deadline: datetime
    fallback: FallbackMode = FallbackMode.PAUSE
    status: HITLStatus = HITLStatus.PENDING
    decision: Optional[HITLDecision] = None
    created_at: datetime = Field(default_factory=utcnow)
    resolved_at: Optional[datetime] = None

    @property
    def resolvable(self) -> bool:
        if self.status == HITLStatus.PENDING:
            return True
        return self.status == HITLStatus.TIMED_OUT and self.fallback == FallbackMode.PAUSE


class HITLGate:
    """Registry of HITL requests with deadlines and fallbacks."""

    def __init__(
        self,
        config: Optional[PipelineConfig] = None,
        clock: Callable[[], datetime] = utcnow,
        notifier: Optional[Callable[[HITLRequest], None]] = None,
        settled_limit: int = 10000,
    ):
        self.config = config or PipelineConfig()
        self._clock = clock
        self._notifier = notifier
        self._requests: Dict[str, HITLRequest] = {}
        self._settled: "OrderedDict[str, HITLStatus]" = OrderedDict()
        self._settled_limit = settled_limit
        self._lock = threading.Lock()

    def request_approval(
        self,
        job: Any,
        reason: str,
        timeout: Optional[float] = None,
        fallback: Optional[FallbackMode] = None,
        *,
        origin_node: Optional[str] = None,
        resume_at: Optional[str] = None,
        revise_at: Optional[str] = None,
        escalation: bool = False,
    ) -> HITLRequest:
        """Open a request for ``job``. The caller suspends the job."""
        timeout = self.config.hitl_timeout if timeout is None else timeout
        origin = origin_node or job.current_node
        request = HITLRequest(
            job_id=job.id,
            reason=reason,
            origin_node=origin,
            resume_at=resume_at,
            revise_at=revise_at or origin,
            escalation=escalation,
            deadline=self._clock() + timedelta(seconds=timeout),
            fallback=FallbackMode(fallback or self.config.hitl_fallback),
            created_at=self._clock(),
        )
        with self._lock:
            self._requests[request.id] = request
        kind = "Escalation" if escalation else "Approval"
        logger.warning(
            f"{kind} requested for job {job.id} at '{origin}': {reason} "
            f"(deadline {request.deadline.isoformat()}, fallback {request.fallback.value})"
        )
        if self._notifier:
            self._notifier(request)
        return request

    def restore(self, request: HITLRequest) -> None:
        """Re-register a persisted request after restart."""
        with self._lock:
            self._requests[request.id] = request

    def get(self, request_id: str) -> HITLRequest:
        request = self._requests.get(request_id)
        if request is None:
            status = self._settled.get(request_id)
            if status is not None:
                raise DuplicateResolutionError(f"HITL request '{request_id}' already {status.value}")
            raise JobNotFoundError(f"no HITL request '{request_id}'")
        return request

    def resolve(self, request_id: str, decision: HITLDecision) -> HITLRequest:
        """Settle a request with a reviewer decision. Raises on a second resolution."""
        with self._lock:
            request = self.get(request_id)
            if not request.resolvable:
                raise DuplicateResolutionError(
                    f"HITL request '{request_id}' already {request.status.value}"
                )
            request.status = (
                HITLStatus.APPROVED if decision.action == HITLAction.APPROVE else HITLStatus.REJECTED
            )
            request.decision = decision
            request.resolved_at = self._clock()
        logger.info(f"Request {request_id} for job {request.job_id} {request.status.value}")
        return request

    def expired(self, now: Optional[datetime] = None) -> List[HITLRequest]:
        """Pending requests whose deadline has passed."""
        now = now or self._clock()
        with self._lock:
            return [
                r for r in self._requests.values()
                if r.status == HITLStatus.PENDING and r.deadline <= now
            ]

    def time_out(self, request_id: str) -> HITLRequest:
        """Mark a pending request as timed out; the caller applies its fallback."""
        with self._lock:
            request = self.get(request_id)
            if request.status != HITLStatus.PENDING:
                raise DuplicateResolutionError(
                    f"HITL request '{request_id}' already {request.status.value}"
                )
            request.status = HITLStatus.TIMED_OUT
            request.resolved_at = self._clock()
        logger.warning(
            f"Request {request_id} for job {request.job_id} timed out; "
            f"applying {request.fallback.value}"
        )
        return request

    def pending(self) -> List[HITLRequest]:
        with self._lock:
            return [r for r in self._requests.values() if r.resolvable]

    def forget(self, job_id: str) -> None:
        """Drop every request of a finished job."""
        with self._lock:
            ids = [r.id for r in self._requests.values() if r.job_id == job_id]
            for request_id in ids:
                self._settled[request_id] = self._requests.pop(request_id).status
            while len(self._settled) > self._settled_limit:
                self._settled.popitem(last=False)
        if ids:
            logger.debug(f"Forgot {len(ids)} requests of job {job_id}")
