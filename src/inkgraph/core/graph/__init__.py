"""Graph package initialization.

Exposes job state, routing and node components.
"""

from inkgraph.core.graph.state import Job, JobState, NodeRecord, NodeResult, NodeResultStatus
from inkgraph.core.graph.router import HALT, Checkpoint, Halt, Router, content_policy, linear_table
from inkgraph.core.graph.nodes.base.node import Node, NodeRunner

__all__ = [
    # State
    "Job",
    "JobState",
    "NodeRecord",
    "NodeResult",
    "NodeResultStatus",

    # Routing
    "Router",
    "Checkpoint",
    "Halt",
    "HALT",
    "content_policy",
    "linear_table",

    # Nodes
    "Node",
    "NodeRunner",
]
