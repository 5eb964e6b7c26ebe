"""Contracts for external collaborators: generation, tools, CMS."""

from inkgraph.services.generation import (
    GenerationService,
    MirascopeGeneration,
    build_messages,
    estimate_tokens,
    openai_generation,
)
from inkgraph.services.publishing import PublishReceipt, Publisher
from inkgraph.services.tools import ToolRegistry

__all__ = [
    "GenerationService",
    "MirascopeGeneration",
    "build_messages",
    "estimate_tokens",
    "openai_generation",
    "PublishReceipt",
    "Publisher",
    "ToolRegistry",
]
