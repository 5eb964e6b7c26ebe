"""Node package initialization.

Exposes the node model, the runner and the news pipeline agents.
"""

from inkgraph.core.graph.nodes.base.node import (
    FunctionExecutable,
    Node,
    NodeContext,
    NodeExecutable,
    NodeRunner,
    TraceEvent,
)
from inkgraph.core.graph.nodes.agent import (
    EditorAgent,
    PublisherAgent,
    ResearchAgent,
    WriterAgent,
    news_pipeline_nodes,
)

__all__ = [
    # Node model and execution
    "Node",
    "NodeContext",
    "NodeExecutable",
    "FunctionExecutable",
    "NodeRunner",
    "TraceEvent",

    # News pipeline agents
    "ResearchAgent",
    "WriterAgent",
    "EditorAgent",
    "PublisherAgent",
    "news_pipeline_nodes",
]
