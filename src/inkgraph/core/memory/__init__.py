"""Tiered memory: Shared, Session and LongTerm."""

from inkgraph.core.memory.records import AuditEntry, MemoryRecord, MemoryTier
from inkgraph.core.memory.backends import (
    InMemoryLongTermBackend,
    JsonlLongTermBackend,
    LongTermBackend,
)
from inkgraph.core.memory.store import MemoryStore, NodeMemory, SessionHandle

__all__ = [
    "AuditEntry",
    "MemoryRecord",
    "MemoryTier",
    "LongTermBackend",
    "InMemoryLongTermBackend",
    "JsonlLongTermBackend",
    "MemoryStore",
    "NodeMemory",
    "SessionHandle",
]
