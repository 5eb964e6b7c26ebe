"""inkgraph - orchestration engine for multi-agent content pipelines."""

from inkgraph.core import (
    FallbackMode,
    HITLDecision,
    MemoryStore,
    MemoryTier,
    Orchestrator,
    PipelineConfig,
    configure_logging,
    LogLevel,
    LogComponent,
)
from inkgraph.core.graph import JobState, Node, Router

__all__ = [
    'Orchestrator',
    'PipelineConfig',
    'FallbackMode',
    'HITLDecision',
    'MemoryStore',
    'MemoryTier',
    'JobState',
    'Node',
    'Router',
    'configure_logging',
    'LogLevel',
    'LogComponent',
]
