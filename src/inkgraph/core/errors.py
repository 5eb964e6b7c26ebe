"""Exception hierarchy for inkgraph.

Errors fall in two groups:

1. Contract violations raised to the caller: memory isolation (AccessError),
   bad configuration (ConfigError), illegal job transitions, duplicate
   job ids and duplicate human resolutions.
2. Errors raised by external collaborators (generation service, tools, CMS)
   while a node runs. The NodeRunner captures these as failed node results
   and the FailureClassifier maps them to a failure kind.
"""

from enum import Enum
from typing import Any, Dict, Optional


class InkgraphError(Exception):
    """Base class for all inkgraph errors."""


class AccessError(InkgraphError):
    """A memory operation violated tier or session isolation rules."""


class ConfigError(InkgraphError):
    """Invalid or missing pipeline configuration."""


class SchemaError(InkgraphError):
    """Node input or output did not match the node's declared schema."""

    def __init__(self, node_id: str, direction: str, detail: str):
        super().__init__(f"{direction} schema mismatch in node '{node_id}': {detail}")
        self.node_id = node_id
        self.direction = direction
        self.detail = detail


class StateTransitionError(InkgraphError):
    """A job transition not allowed by the state machine was attempted."""


class DuplicateResolutionError(InkgraphError):
    """A HITL request was resolved more than once."""


class JobNotFoundError(InkgraphError):
    """No job or HITL request exists for the given id."""


class DuplicateJobError(InkgraphError):
    """A job was submitted with an id that is already taken."""


class HumanRejection(InkgraphError):
    """A reviewer rejected a node's output (off-brand, factually wrong, unclear CTA)."""

    def __init__(self, node_id: str, content: str = "", notes: Optional[Dict[str, Any]] = None):
        super().__init__(f"output of node '{node_id}' rejected by reviewer: {content}")
        self.node_id = node_id
        self.content = content
        self.notes = notes or {}


class BudgetExceeded(InkgraphError):
    """A node's cumulative token or cost usage exceeded its budget."""

    def __init__(self, node_id: str, usage: Dict[str, float], limit: Dict[str, Optional[float]], escalate: bool):
        super().__init__(f"budget exceeded in node '{node_id}': usage={usage} limit={limit}")
        self.node_id = node_id
        self.usage = usage
        self.limit = limit
        self.escalate = escalate


# Generation service

class GenerationError(InkgraphError):
    """Base class for generation service failures."""


class RateLimited(GenerationError):
    """The generation service asked the caller to slow down."""

    def __init__(self, message: str = "rate limited", retry_after: Optional[float] = None):
        super().__init__(message)
        self.retry_after = retry_after


class ContentFiltered(GenerationError):
    """The generation service refused or filtered the content."""


class HallucinationFlagged(GenerationError):
    """A checker flagged generated text as unsupported by sources."""


class Unavailable(GenerationError):
    """The generation service could not be reached."""


# Tools

class ToolErrorKind(str, Enum):
    TIMEOUT = "timeout"
    INVALID_RESPONSE = "invalid_response"
    UNREACHABLE = "unreachable"


class ToolError(InkgraphError):
    """A tool invocation failed."""

    def __init__(self, tool: str, kind: ToolErrorKind, message: str = ""):
        super().__init__(f"tool '{tool}' failed ({kind.value}){': ' + message if message else ''}")
        self.tool = tool
        self.kind = ToolErrorKind(kind)

    @property
    def transient(self) -> bool:
        return self.kind in (ToolErrorKind.TIMEOUT, ToolErrorKind.UNREACHABLE)


# Publishing

class PublishError(InkgraphError):
    """Base class for CMS publish failures."""


class PublishTimeout(PublishError, TimeoutError):
    """The CMS did not answer in time; safe to retry."""


class PublishRejected(PublishError):
    """The CMS permanently rejected the article."""

    def __init__(self, message: str = "rejected", details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.details = details or {}
