"""Memory record types."""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class MemoryTier(str, Enum):
    SHARED = "shared"
    SESSION = "session"
    LONG_TERM = "long_term"


class MemoryRecord(BaseModel):
    """A single stored value.

    For LongTerm records ``key`` is the category and ``seq`` the insertion
    order within it; LongTerm records are never mutated once written.
    """
    model_config = ConfigDict(frozen=True)

    tier: MemoryTier
    key: str
    value: Any = None
    session_id: Optional[str] = None
    seq: int = 0
    created_at: datetime = Field(default_factory=utcnow)


class AuditEntry(BaseModel):
    """One observed memory write."""
    model_config = ConfigDict(frozen=True)

    timestamp: datetime
    tier: MemoryTier
    operation: str
    key: str
    session_id: Optional[str] = None
