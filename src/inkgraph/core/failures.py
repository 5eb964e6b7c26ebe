"""Failure classification and recovery decisions.

The taxonomy is fixed:

| Signal                                   | Kind           | Decision                          |
|------------------------------------------|----------------|-----------------------------------|
| rate limit, service unavailable          | LLM            | Retry with backoff, then Escalate |
| content filter, hallucination flag       | LLM            | Escalate                          |
| budget exceeded                          | LLM            | Escalate or Fail (per budget)     |
| tool timeout / unreachable, CMS timeout  | Tool           | Retry with backoff, then Escalate |
| CMS rejection                            | Tool           | Escalate                          |
| schema mismatch, malformed output,       | Logic          | Fail                              |
| access/config violation, anything else   |                |                                   |
| reviewer rejection                       | HumanRejection | Revise, then Escalate             |

``decide`` enforces the caps before another attempt is issued, so a node
can never retry without bound.
"""

import json
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional, Union

from pydantic import BaseModel, ConfigDict, Field
from tenacity import RetryCallState, wait_exponential, wait_fixed

from inkgraph.core.config import BackoffStrategy, PipelineConfig
from inkgraph.core.errors import (
    AccessError,
    BudgetExceeded,
    ConfigError,
    ContentFiltered,
    HallucinationFlagged,
    HumanRejection,
    PublishRejected,
    PublishTimeout,
    RateLimited,
    SchemaError,
    ToolError,
    Unavailable,
)
from inkgraph.core.logging import LogComponent, get_logger
from inkgraph.core.memory.records import utcnow

logger = get_logger(LogComponent.FAILURES)


class FailureKind(str, Enum):
    LLM = "llm"
    TOOL = "tool"
    LOGIC = "logic"
    HUMAN_REJECTION = "human_rejection"


class FailureSignal(str, Enum):
    """The concrete condition behind a failure."""
    RATE_LIMIT = "rate_limit"
    SERVICE_UNAVAILABLE = "service_unavailable"
    CONTENT_FILTER = "content_filter"
    HALLUCINATION = "hallucination"
    BUDGET_EXCEEDED = "budget_exceeded"
    TOOL_TIMEOUT = "tool_timeout"
    TOOL_UNREACHABLE = "tool_unreachable"
    PUBLISH_REJECTED = "publish_rejected"
    MALFORMED_OUTPUT = "malformed_output"
    SCHEMA_MISMATCH = "schema_mismatch"
    ACCESS_VIOLATION = "access_violation"
    CONFIG_INVALID = "config_invalid"
    UNRECOGNIZED = "unrecognized"
    HUMAN_REJECTION = "human_rejection"


SIGNAL_KINDS: Dict[FailureSignal, FailureKind] = {
    FailureSignal.RATE_LIMIT: FailureKind.LLM,
    FailureSignal.SERVICE_UNAVAILABLE: FailureKind.LLM,
    FailureSignal.CONTENT_FILTER: FailureKind.LLM,
    FailureSignal.HALLUCINATION: FailureKind.LLM,
    FailureSignal.BUDGET_EXCEEDED: FailureKind.LLM,
    FailureSignal.TOOL_TIMEOUT: FailureKind.TOOL,
    FailureSignal.TOOL_UNREACHABLE: FailureKind.TOOL,
    FailureSignal.PUBLISH_REJECTED: FailureKind.TOOL,
    FailureSignal.MALFORMED_OUTPUT: FailureKind.LOGIC,
    FailureSignal.SCHEMA_MISMATCH: FailureKind.LOGIC,
    FailureSignal.ACCESS_VIOLATION: FailureKind.LOGIC,
    FailureSignal.CONFIG_INVALID: FailureKind.LOGIC,
    FailureSignal.UNRECOGNIZED: FailureKind.LOGIC,
    FailureSignal.HUMAN_REJECTION: FailureKind.HUMAN_REJECTION,
}

TRANSIENT_SIGNALS = {
    FailureSignal.RATE_LIMIT,
    FailureSignal.SERVICE_UNAVAILABLE,
    FailureSignal.TOOL_TIMEOUT,
    FailureSignal.TOOL_UNREACHABLE,
}

ESCALATING_SIGNALS = {
    FailureSignal.CONTENT_FILTER,
    FailureSignal.HALLUCINATION,
    FailureSignal.PUBLISH_REJECTED,
}


class FailureEvent(BaseModel):
    """Immutable record of one classified failure."""
    model_config = ConfigDict(frozen=True)

    kind: FailureKind
    signal: FailureSignal
    node_id: str
    job_id: str
    error_type: str
    detail: str
    retry_count: int = 0
    context: Dict[str, Any] = Field(default_factory=dict)
    details: Dict[str, Any] = Field(default_factory=dict)
    occurred_at: datetime = Field(default_factory=utcnow)


class Retry(BaseModel):
    model_config = ConfigDict(frozen=True)
    delay: float


class Escalate(BaseModel):
    model_config = ConfigDict(frozen=True)
    reason: str


class Fail(BaseModel):
    model_config = ConfigDict(frozen=True)
    reason: str


class Revise(BaseModel):
    model_config = ConfigDict(frozen=True)
    node_id: str


Decision = Union[Retry, Escalate, Fail, Revise]


def _signal_for(error: Any) -> FailureSignal:
    if isinstance(error, RateLimited):
        return FailureSignal.RATE_LIMIT
    if isinstance(error, Unavailable):
        return FailureSignal.SERVICE_UNAVAILABLE
    if isinstance(error, ContentFiltered):
        return FailureSignal.CONTENT_FILTER
    if isinstance(error, HallucinationFlagged):
        return FailureSignal.HALLUCINATION
    if isinstance(error, BudgetExceeded):
        return FailureSignal.BUDGET_EXCEEDED
    if isinstance(error, PublishTimeout):
        return FailureSignal.TOOL_TIMEOUT
    if isinstance(error, PublishRejected):
        return FailureSignal.PUBLISH_REJECTED
    if isinstance(error, ToolError):
        if error.transient:
            return FailureSignal.TOOL_TIMEOUT if error.kind.value == "timeout" else FailureSignal.TOOL_UNREACHABLE
        return FailureSignal.MALFORMED_OUTPUT
    if isinstance(error, SchemaError):
        return FailureSignal.SCHEMA_MISMATCH
    if isinstance(error, AccessError):
        return FailureSignal.ACCESS_VIOLATION
    if isinstance(error, ConfigError):
        return FailureSignal.CONFIG_INVALID
    if isinstance(error, HumanRejection):
        return FailureSignal.HUMAN_REJECTION
    # Executables may report a failure as data instead of raising
    if isinstance(error, dict):
        try:
            return FailureSignal(error.get("signal"))
        except ValueError:
            return FailureSignal.UNRECOGNIZED
    return FailureSignal.UNRECOGNIZED


def _details_for(error: Any) -> Dict[str, Any]:
    if isinstance(error, RateLimited) and error.retry_after is not None:
        return {"retry_after": error.retry_after}
    if isinstance(error, BudgetExceeded):
        return {"usage": error.usage, "limit": error.limit, "escalate": error.escalate}
    if isinstance(error, ToolError):
        return {"tool": error.tool, "tool_error": error.kind.value}
    if isinstance(error, HumanRejection):
        return {"content": error.content, "notes": error.notes}
    if isinstance(error, PublishRejected):
        return {"cms": error.details}
    return {}


def _json_safe(value: Any) -> Any:
    return json.loads(json.dumps(value, default=str))


class FailureClassifier:
    """Maps errors to FailureEvents and FailureEvents to recovery decisions."""

    def __init__(self, config: Optional[PipelineConfig] = None):
        self.config = config or PipelineConfig()
        if self.config.backoff_strategy == BackoffStrategy.FIXED:
            self._wait = wait_fixed(self.config.backoff_base)
        else:
            self._wait = wait_exponential(
                multiplier=self.config.backoff_base,
                max=self.config.backoff_ceiling,
            )

    def classify(self, error: Any, node: Any, job: Any) -> FailureEvent:
        """Build the FailureEvent for ``error`` raised while ``job`` ran ``node``."""
        node_id = getattr(node, "id", node)
        signal = _signal_for(error)
        if isinstance(error, BaseException):
            error_type, detail = type(error).__name__, str(error)
        elif isinstance(error, dict):
            error_type, detail = str(error.get("type", "error")), str(error.get("message", error))
        else:
            error_type, detail = "error", str(error)

        event = FailureEvent(
            kind=SIGNAL_KINDS[signal],
            signal=signal,
            node_id=node_id,
            job_id=job.id,
            error_type=error_type,
            detail=detail,
            retry_count=job.retries.get(node_id, 0),
            context=_json_safe({
                "state": job.state.value,
                "current_node": job.current_node,
                "retries": job.retries,
                "revisions": job.revisions,
                "context": job.context,
            }),
            details=_json_safe(_details_for(error)),
        )
        logger.info(
            f"Classified failure in node '{node_id}' of job {job.id}: "
            f"{event.kind.value}/{event.signal.value} ({error_type})"
        )
        return event

    def backoff_delay(self, attempts: int) -> float:
        """Delay before the next attempt after ``attempts`` failed ones."""
        state = RetryCallState(retry_object=None, fn=None, args=(), kwargs={})
        state.attempt_number = max(1, attempts)
        return min(float(self._wait(state)), self.config.backoff_ceiling)

    def decide(self, event: FailureEvent, attempts: int) -> Decision:
        """Choose the reaction to ``event``.

        Args:
            event: The classified failure
            attempts: Consecutive failed attempts of the node including this
                one; for reviewer rejections, the revision count including
                this one

        Returns:
            Retry, Escalate, Fail or Revise
        """
        if attempts < 1:
            raise ValueError("attempts must be at least 1")

        signal = event.signal
        if event.kind == FailureKind.LOGIC:
            return Fail(reason=f"{signal.value}: {event.detail}")

        if signal == FailureSignal.HUMAN_REJECTION:
            cap = self.config.revision_cap_for(event.node_id)
            if attempts <= cap:
                return Revise(node_id=event.node_id)
            return Escalate(reason=f"revision cap {cap} exhausted for '{event.node_id}'")

        if signal == FailureSignal.BUDGET_EXCEEDED:
            if event.details.get("escalate", True):
                return Escalate(reason=f"budget exceeded in '{event.node_id}'")
            return Fail(reason=f"budget exceeded in '{event.node_id}'")

        if signal in ESCALATING_SIGNALS:
            return Escalate(reason=f"{signal.value}: {event.detail}")

        if signal in TRANSIENT_SIGNALS:
            cap = self.config.retry_cap_for(event.node_id)
            if attempts < cap:
                delay = self.backoff_delay(attempts)
                retry_after = event.details.get("retry_after")
                if retry_after is not None:
                    delay = min(max(delay, float(retry_after)), self.config.backoff_ceiling)
                return Retry(delay=delay)
            return Escalate(reason=f"retry cap {cap} exhausted for '{event.node_id}' ({signal.value})")

        return Fail(reason=f"{signal.value}: {event.detail}")
