"""Base node and node runner for the pipeline graph.

A Node is one executable pipeline stage (research, write, edit, publish).
Every node has the same shape: an id, a capability tag, declared input and
output schemas (Pydantic models), and an executable that does the actual
work against external services. Nodes are dispatched by id; there are no
per-role node subclasses.

The NodeRunner is the uniform wrapper around a node execution:
    - validates the job context against the input schema
    - invokes the executable and captures any exception as a failed result
    - validates the output against the output schema
    - records latency and token/cost usage, enforcing budgets
    - emits trace events

Typical Usage:
    ```python
    writer = Node(
        id="writer",
        capability="write",
        input_schema=WriterInput,
        output_schema=Draft,
        executable=WriterAgent(generation=service),
    )
    result = await runner.run(writer, job, session)
    ```
"""

import time
from collections import deque
from datetime import datetime
from typing import Any, Awaitable, Callable, Deque, Dict, Optional, Protocol, Type, Union, runtime_checkable

from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator

from inkgraph.core.config import PipelineConfig
from inkgraph.core.errors import BudgetExceeded, SchemaError
from inkgraph.core.graph.state import Job, NodeResult, NodeResultStatus
from inkgraph.core.logging import Colors, InkLoggingConfig, LogComponent, get_logger
from inkgraph.core.memory import MemoryStore, NodeMemory, SessionHandle
from inkgraph.core.memory.records import utcnow

logger = get_logger(LogComponent.NODES)


class NodeContext(BaseModel):
    """What an executable may touch besides its input.

    Attributes:
        memory: Shared state, the job's own session and the long-term log
        persist: Writes a value onto the durable job record right away, for
            side effects that must not be repeated after a restart
    """
    model_config = ConfigDict(arbitrary_types_allowed=True)

    job_id: str
    node_id: str
    attempt: int
    memory: NodeMemory
    persist: Optional[Callable[[str, Any], None]] = None


@runtime_checkable
class NodeExecutable(Protocol):
    """Contract of the external work a node wraps."""

    async def execute(self, input: Dict[str, Any], ctx: NodeContext) -> Union[NodeResult, Dict[str, Any]]: ...


class FunctionExecutable:
    """Adapts a plain coroutine function to the executable contract."""

    def __init__(self, fn: Callable[[Dict[str, Any], NodeContext], Awaitable[Any]]):
        self.fn = fn

    async def execute(self, input: Dict[str, Any], ctx: NodeContext) -> Union[NodeResult, Dict[str, Any]]:
        return await self.fn(input, ctx)


class Node(BaseModel):
    """
    A pipeline stage.

    Attributes:
        id: Unique node identifier
        capability: Capability tag, e.g. "research", "write", "edit", "publish"
        input_schema: Model the job context must satisfy before execution
        output_schema: Model the executable's output must satisfy
        executable: The external work this node wraps
        metadata: Optional node metadata
    """
    model_config = ConfigDict(arbitrary_types_allowed=True)

    id: str = Field(..., description="Unique identifier for this node")
    capability: str = Field(..., description="Capability tag")
    input_schema: Optional[Type[BaseModel]] = None
    output_schema: Optional[Type[BaseModel]] = None
    executable: Any = Field(..., description="Object implementing NodeExecutable")
    metadata: Dict[str, Any] = Field(default_factory=dict)

    @model_validator(mode='after')
    def validate_node(self) -> 'Node':
        if not self.id:
            raise ValueError("Node must have an ID")
        if not isinstance(self.executable, NodeExecutable):
            raise ValueError(f"Node {self.id}: executable must define an async execute(input, ctx)")
        return self


class TraceEvent(BaseModel):
    """Observable step of a node execution."""
    job_id: str
    node_id: str
    event: str
    attempt: int
    latency_ms: Optional[float] = None
    detail: Optional[str] = None
    at: datetime = Field(default_factory=utcnow)


class NodeRunner:
    """Uniform execution wrapper around any node."""

    def __init__(
        self,
        memory: MemoryStore,
        config: Optional[PipelineConfig] = None,
        on_trace: Optional[Callable[[TraceEvent], None]] = None,
        logging_config: Optional[InkLoggingConfig] = None,
        trace_limit: int = 1000,
    ):
        self.memory = memory
        self.config = config or PipelineConfig()
        self.logging_config = logging_config or InkLoggingConfig()
        # Most recent events only; on_trace sees every one
        self.traces: Deque[TraceEvent] = deque(maxlen=trace_limit)
        self._on_trace = on_trace

    def _emit(self, event: TraceEvent) -> None:
        self.traces.append(event)
        logger.debug(f"trace {event.job_id}/{event.node_id}: {event.event} (attempt {event.attempt})")
        if self._on_trace:
            self._on_trace(event)

    def _failed(self, error: Exception, latency_ms: float = 0.0, usage: Optional[Dict[str, float]] = None) -> NodeResult:
        return NodeResult(
            status=NodeResultStatus.FAILED,
            error=error,
            usage=usage or {},
            latency_ms=latency_ms,
        )

    def _validate_input(self, node: Node, job: Job) -> Dict[str, Any]:
        data = dict(job.context)
        if node.input_schema is None:
            return data
        try:
            node.input_schema.model_validate(data)
        except ValidationError as e:
            raise SchemaError(node.id, "input", str(e)) from e
        return data

    def _normalize(self, node: Node, raw: Any) -> NodeResult:
        if isinstance(raw, NodeResult):
            return raw
        if isinstance(raw, dict):
            try:
                return NodeResult.model_validate(raw)
            except ValidationError as e:
                raise SchemaError(node.id, "result", str(e)) from e
        raise SchemaError(node.id, "result", f"unexpected result type {type(raw).__name__}")

    def _validate_output(self, node: Node, result: NodeResult) -> NodeResult:
        if node.output_schema is None or result.status != NodeResultStatus.OK:
            return result
        try:
            validated = node.output_schema.model_validate(result.output or {})
        except ValidationError as e:
            raise SchemaError(node.id, "output", str(e)) from e
        return result.model_copy(update={"output": validated.model_dump(mode="json")})

    def _check_budget(self, node: Node, job: Job, usage: Dict[str, float]) -> None:
        budget = self.config.budget_for(node.id)
        if budget is None or not usage:
            return
        totals = job.add_usage(node.id, usage)
        over_tokens = budget.max_tokens is not None and totals.get("tokens", 0) > budget.max_tokens
        over_cost = budget.max_cost is not None and totals.get("cost", 0) > budget.max_cost
        if over_tokens or over_cost:
            raise BudgetExceeded(
                node.id,
                usage=dict(totals),
                limit={"tokens": budget.max_tokens, "cost": budget.max_cost},
                escalate=budget.escalate_on_exceed,
            )

    async def run(
        self,
        node: Node,
        job: Job,
        session: SessionHandle,
        persist: Optional[Callable[[str, Any], None]] = None,
    ) -> NodeResult:
        """Execute ``node`` for ``job``. Never raises for node-side failures."""
        attempt = job.retries.get(node.id, 0) + 1
        self._emit(TraceEvent(job_id=job.id, node_id=node.id, event="started", attempt=attempt))

        try:
            data = self._validate_input(node, job)
        except SchemaError as e:
            logger.error(f"Node {node.id}: {e}")
            self._emit(TraceEvent(job_id=job.id, node_id=node.id, event="failed", attempt=attempt, detail=str(e)))
            return self._failed(e)

        ctx = NodeContext(
            job_id=job.id,
            node_id=node.id,
            attempt=attempt,
            memory=NodeMemory(self.memory, session),
            persist=persist,
        )
        started = time.perf_counter()
        try:
            raw = await node.executable.execute(data, ctx)
            latency_ms = (time.perf_counter() - started) * 1000
            result = self._validate_output(node, self._normalize(node, raw))
            result = result.model_copy(update={"latency_ms": latency_ms})
            self._check_budget(node, job, result.usage)
        except Exception as e:
            latency_ms = (time.perf_counter() - started) * 1000
            logger.error(f"Error in node {node.id}: {type(e).__name__}: {e}")
            self._emit(TraceEvent(
                job_id=job.id, node_id=node.id, event="failed", attempt=attempt,
                latency_ms=latency_ms, detail=f"{type(e).__name__}: {e}",
            ))
            return self._failed(e, latency_ms)

        event = "completed" if result.ok else result.status.value
        self._emit(TraceEvent(
            job_id=job.id, node_id=node.id, event=event, attempt=attempt, latency_ms=latency_ms,
        ))
        if result.ok and self.logging_config.show_node_outputs:
            logger.info(
                f"\n{Colors.BOLD}Node {node.id} Output:{Colors.RESET}\n"
                f"{Colors.INFO}{result.output}{Colors.RESET}\n"
                f"{Colors.DIM}{'─' * 50}{Colors.RESET}"
            )
        else:
            logger.info(f"Node {node.id} finished with {result.status.value} in {latency_ms:.1f} ms")
        return result
