"""Routing between pipeline nodes.

Routing is a pure decision over ``(current node, result, job context)``.
A declarative default table covers the common linear path; an optional
policy function overrides it for exceptional context and returns ``None``
to defer to the table.

Targets:
    - a node id: run that node next
    - ``Checkpoint``: suspend for human approval, then resume at
      ``resume_at`` (approve) or revise ``revise_at`` (reject)
    - ``Halt``: stop routing; the orchestrator decides between published
      and failed

Example:
    ```python
    router = Router(
        order=["research", "writer", "editor", "human_approval", "publisher"],
        policy=content_policy(confidence_threshold=0.6),
    )
    router.route("editor", result, job.context)
    # Checkpoint(reason='pre_publish', resume_at='publisher', revise_at=None)
    ```
"""

from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Union

from pydantic import BaseModel, ConfigDict

from inkgraph.core.errors import ConfigError
from inkgraph.core.graph.state import NodeResult, NodeResultStatus
from inkgraph.core.logging import LogComponent, get_logger

logger = get_logger(LogComponent.ROUTER)

CHECKPOINT_ID = "human_approval"


class Halt(BaseModel):
    model_config = ConfigDict(frozen=True)
    reason: str = ""


class Checkpoint(BaseModel):
    model_config = ConfigDict(frozen=True)
    reason: str
    resume_at: Optional[str] = None
    revise_at: Optional[str] = None


HALT = Halt()

Target = Union[str, Halt, Checkpoint]
Policy = Callable[[str, NodeResult, Mapping[str, Any]], Optional[Target]]


def linear_table(order: List[str], checkpoint_id: str = CHECKPOINT_ID) -> Dict[str, Target]:
    """Build the default table for a linear order.

    A ``checkpoint_id`` entry in the order is not a node; the node before
    it routes to a Checkpoint resuming at the node after it.
    """
    table: Dict[str, Target] = {}
    for i, node_id in enumerate(order):
        if node_id == checkpoint_id:
            continue
        following = order[i + 1] if i + 1 < len(order) else None
        if following is None:
            table[node_id] = HALT
        elif following == checkpoint_id:
            resume_at = order[i + 2] if i + 2 < len(order) else None
            table[node_id] = Checkpoint(reason="pre_publish", resume_at=resume_at)
        else:
            table[node_id] = following
    return table


class Router:
    """Computes the next target for a job after a node result."""

    def __init__(
        self,
        order: Optional[List[str]] = None,
        table: Optional[Mapping[str, Target]] = None,
        policy: Optional[Policy] = None,
        nodes: Optional[Iterable[str]] = None,
        checkpoint_id: str = CHECKPOINT_ID,
    ):
        if order is None and table is None:
            raise ConfigError("router needs a linear order or an explicit table")
        self.order = list(order or [])
        self.table: Dict[str, Target] = dict(table) if table is not None else linear_table(self.order, checkpoint_id)
        self.policy = policy
        self.checkpoint_id = checkpoint_id
        self.nodes = set(nodes) if nodes is not None else (
            {n for n in self.order if n != checkpoint_id} | set(self.table)
        )

        for source, target in self.table.items():
            if source not in self.nodes:
                raise ConfigError(f"routing table references unknown node '{source}'")
            if not self._known(target):
                raise ConfigError(f"routing table entry '{source}' targets unknown node: {target}")

    @property
    def entry(self) -> str:
        """First node of the pipeline."""
        for node_id in self.order:
            if node_id != self.checkpoint_id:
                return node_id
        if self.table:
            return next(iter(self.table))
        raise ConfigError("router has no entry node")

    def _known(self, target: Target) -> bool:
        if isinstance(target, Halt):
            return True
        if isinstance(target, Checkpoint):
            return all(n is None or n in self.nodes for n in (target.resume_at, target.revise_at))
        return target in self.nodes

    def successor(self, node_id: str) -> Optional[str]:
        """Forward node after ``node_id`` on the default path, skipping checkpoints."""
        target = self.table.get(node_id, HALT)
        if isinstance(target, Checkpoint):
            return target.resume_at
        if isinstance(target, Halt):
            return None
        return target

    def route(self, current_node_id: str, result: Union[NodeResult, NodeResultStatus, str], context: Mapping[str, Any]) -> Target:
        """Return the next target. Undeclared combinations and policy errors fail closed to ``Halt``."""
        if current_node_id not in self.nodes:
            logger.warning(f"Route requested from undeclared node '{current_node_id}'")
            return Halt(reason=f"undeclared node '{current_node_id}'")

        if not isinstance(result, NodeResult):
            result = NodeResult(status=NodeResultStatus(result))
        if result.status != NodeResultStatus.OK:
            return Halt(reason=f"no route for status '{result.status.value}' from '{current_node_id}'")

        if self.policy is not None:
            try:
                target = self.policy(current_node_id, result, context)
            except Exception as e:
                logger.error(f"Policy raised routing from '{current_node_id}': {type(e).__name__}: {e}")
                return Halt(reason=f"policy error: {type(e).__name__}: {e}")
            if target is not None:
                if not self._known(target):
                    logger.error(f"Policy routed '{current_node_id}' to unknown target {target}")
                    return Halt(reason=f"policy target unknown: {target}")
                logger.info(f"Policy override: {current_node_id} -> {target}")
                return target

        return self.table.get(current_node_id, HALT)


def content_policy(
    confidence_threshold: float = 0.6,
    research: str = "research",
    writer: str = "writer",
    editor: str = "editor",
    publisher: str = "publisher",
) -> Policy:
    """Routing policy for the news pipeline.

    - research confidence below threshold, or a knowledge-base conflict:
      human checkpoint before writing
    - editor found a factual error: back to research
    - brand-risk flag from the editor or on the item: human checkpoint
    """

    def policy(current: str, result: NodeResult, context: Mapping[str, Any]) -> Optional[Target]:
        output = result.output or {}
        if current == research:
            if output.get("conflicts"):
                return Checkpoint(reason="knowledge_base_conflict", resume_at=writer, revise_at=research)
            confidence = output.get("confidence")
            if confidence is not None and confidence < confidence_threshold:
                return Checkpoint(reason="low_confidence", resume_at=writer, revise_at=research)
        elif current == editor:
            if output.get("factual_error"):
                return research
            item = context.get("item") or {}
            if output.get("brand_risk") or item.get("brand_risk"):
                return Checkpoint(reason="brand_risk", resume_at=publisher, revise_at=writer)
        return None

    return policy
