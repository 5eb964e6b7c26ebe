"""Core modules for inkgraph."""

from inkgraph.core.config import BackoffStrategy, BudgetConfig, FallbackMode, NodeConfig, PipelineConfig
from inkgraph.core.failures import FailureClassifier, FailureEvent, FailureKind, FailureSignal
from inkgraph.core.hitl import Feedback, HITLDecision, HITLGate, HITLRequest, HITLStatus
from inkgraph.core.logging import LogComponent, LogLevel, configure_logging
from inkgraph.core.memory import MemoryStore, MemoryTier, SessionHandle
from inkgraph.core.orchestrator import JobSummary, Orchestrator
from inkgraph.core.storage import InMemoryJobStore, JobStore, JsonFileJobStore

__all__ = [
    'PipelineConfig',
    'NodeConfig',
    'BudgetConfig',
    'FallbackMode',
    'BackoffStrategy',
    'FailureClassifier',
    'FailureEvent',
    'FailureKind',
    'FailureSignal',
    'Feedback',
    'HITLDecision',
    'HITLGate',
    'HITLRequest',
    'HITLStatus',
    'MemoryStore',
    'MemoryTier',
    'SessionHandle',
    'Orchestrator',
    'JobSummary',
    'JobStore',
    'InMemoryJobStore',
    'JsonFileJobStore',
    'configure_logging',
    'LogComponent',
    'LogLevel',
]
