"""Pipeline configuration.

Every tunable the orchestration engine recognizes lives in ``PipelineConfig``.
Per-node settings fall back to the pipeline-wide defaults when a node has no
entry of its own. Validation failures surface as ``ConfigError`` so callers
never have to handle raw pydantic errors.
"""

import json
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Union

from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator

from inkgraph.core.errors import ConfigError


class FallbackMode(str, Enum):
    """What happens to a suspended job when its HITL request times out."""
    PAUSE = "pause"
    AUTO_RETRY = "auto_retry"
    FAIL_SAFE_HALT = "fail_safe_halt"


class BackoffStrategy(str, Enum):
    EXPONENTIAL = "exponential"
    FIXED = "fixed"


class BudgetConfig(BaseModel):
    """Token and cost budget for one agent node."""
    max_tokens: Optional[int] = Field(default=None, gt=0)
    max_cost: Optional[float] = Field(default=None, gt=0)
    escalate_on_exceed: bool = True


class NodeConfig(BaseModel):
    """Per-node overrides. ``None`` means use the pipeline default."""
    retry_cap: Optional[int] = None
    revision_cap: Optional[int] = None
    budget: Optional[BudgetConfig] = None

    @field_validator("retry_cap", "revision_cap")
    @classmethod
    def _positive(cls, value: Optional[int]) -> Optional[int]:
        if value is not None and value <= 0:
            raise ValueError("caps must be greater than zero")
        return value


class PipelineConfig(BaseModel):
    """Configuration surface of the orchestration engine.

    Attributes:
        retry_cap: Attempts allowed for a transient failure before escalation
        revision_cap: Human rejections allowed per node before escalation
        hitl_timeout: Seconds a HITL request waits before its fallback applies
        hitl_fallback: Fallback applied on timeout
        backoff_base: Base delay in seconds between retries
        backoff_ceiling: Maximum delay in seconds between retries
        backoff_strategy: Exponential or fixed backoff
        confidence_threshold: Research confidence below which a human must look
        max_transitions: Node executions allowed per job before it is failed
        max_escalations: Escalations allowed per job before it is failed
        nodes: Per-node overrides keyed by node id
    """
    retry_cap: int = 3
    revision_cap: int = 2
    hitl_timeout: float = 3600.0
    hitl_fallback: FallbackMode = FallbackMode.PAUSE
    backoff_base: float = 1.0
    backoff_ceiling: float = 30.0
    backoff_strategy: BackoffStrategy = BackoffStrategy.EXPONENTIAL
    confidence_threshold: float = 0.6
    max_transitions: int = 50
    max_escalations: int = 3
    linear_order: List[str] = Field(
        default_factory=lambda: ["research", "writer", "editor", "human_approval", "publisher"]
    )
    nodes: Dict[str, NodeConfig] = Field(default_factory=dict)

    @field_validator("retry_cap", "revision_cap", "max_transitions", "max_escalations")
    @classmethod
    def _positive_int(cls, value: int) -> int:
        if value <= 0:
            raise ValueError("must be greater than zero")
        return value

    @field_validator("hitl_timeout", "backoff_ceiling")
    @classmethod
    def _positive_float(cls, value: float) -> float:
        if value <= 0:
            raise ValueError("must be greater than zero")
        return value

    @field_validator("backoff_base")
    @classmethod
    def _non_negative(cls, value: float) -> float:
        if value < 0:
            raise ValueError("must not be negative")
        return value

    @field_validator("confidence_threshold")
    @classmethod
    def _unit_interval(cls, value: float) -> float:
        if not 0.0 <= value <= 1.0:
            raise ValueError("must be between 0 and 1")
        return value

    @model_validator(mode="after")
    def _check_backoff(self) -> "PipelineConfig":
        if self.backoff_base > self.backoff_ceiling:
            raise ValueError("backoff_base must not exceed backoff_ceiling")
        if len(set(self.linear_order)) != len(self.linear_order):
            raise ValueError("linear_order contains duplicate node ids")
        return self

    def __init__(self, **data: Any):
        try:
            super().__init__(**data)
        except ValidationError as e:
            raise ConfigError(str(e)) from e

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "PipelineConfig":
        """Build a config from a plain mapping (e.g. parsed JSON)."""
        if not isinstance(data, Mapping):
            raise ConfigError(f"configuration must be a mapping, got {type(data).__name__}")
        return cls(**dict(data))

    @classmethod
    def from_file(cls, path: Union[str, Path]) -> "PipelineConfig":
        """Load a config from a JSON file."""
        p = Path(path)
        if not p.exists():
            raise ConfigError(f"configuration file not found: {p}")
        try:
            data = json.loads(p.read_text(encoding="utf-8"))
        except json.JSONDecodeError as e:
            raise ConfigError(f"invalid JSON in {p}: {e}") from e
        return cls.from_mapping(data)

    def _node(self, node_id: str) -> NodeConfig:
        return self.nodes.get(node_id) or NodeConfig()

    def retry_cap_for(self, node_id: str) -> int:
        return self._node(node_id).retry_cap or self.retry_cap

    def revision_cap_for(self, node_id: str) -> int:
        return self._node(node_id).revision_cap or self.revision_cap

    def budget_for(self, node_id: str) -> Optional[BudgetConfig]:
        return self._node(node_id).budget
