"""Three-tier memory store.

Tiers:
1. Shared: process-wide key/value state, last writer wins
2. Session (STM): per-run working memory, reachable only through a
   ``SessionHandle`` issued by the store
3. LongTerm (LTM): append-only log of failures, feedback and learned
   patterns, ordered per category and written through to a backend

Example:
    ```python
    memory = MemoryStore()
    memory.load()

    session = memory.open_session("job-42")
    memory.set(MemoryTier.SESSION, "draft", {"title": "..."}, session=session)
    memory.promote(session, "draft", MemoryTier.SHARED)
    memory.append("feedback", {"content": "unclear CTA"})

    memory.flush()
    ```
"""

import copy
import secrets
import threading
from typing import Any, Callable, Dict, List, Optional

from pydantic import BaseModel, ConfigDict

from inkgraph.core.errors import AccessError
from inkgraph.core.logging import LogComponent, get_logger
from inkgraph.core.memory.backends import InMemoryLongTermBackend, LongTermBackend
from inkgraph.core.memory.records import AuditEntry, MemoryRecord, MemoryTier, utcnow

logger = get_logger(LogComponent.MEMORY)


class SessionHandle(BaseModel):
    """Handle for one session namespace.

    Only handles created by ``MemoryStore.open_session`` carry a token the
    store recognizes; constructing one by hand does not grant access. The
    store owner can always re-open a live session, so node code never sees
    the store itself, only a ``NodeMemory`` bound to its own handle.
    """
    model_config = ConfigDict(frozen=True)

    session_id: str
    token: str


class MemoryStore:
    """Tiered memory with session isolation and an append-only long-term log."""

    def __init__(
        self,
        backend: Optional[LongTermBackend] = None,
        clock: Callable = utcnow,
    ):
        self._backend = backend or InMemoryLongTermBackend()
        self._clock = clock
        self._shared: Dict[str, MemoryRecord] = {}
        self._sessions: Dict[str, Dict[str, MemoryRecord]] = {}
        self._tokens: Dict[str, str] = {}
        self._long_term: Dict[str, List[MemoryRecord]] = {}
        self._audit: List[AuditEntry] = []

        self._lock = threading.Lock()
        self._category_locks: Dict[str, threading.Lock] = {}

    # Lifecycle

    def load(self) -> None:
        """Fill LongTerm from the backend. Shared and Session start empty."""
        loaded = self._backend.load()
        with self._lock:
            self._long_term = {category: list(records) for category, records in loaded.items()}
        logger.info(f"Memory loaded: {len(self._long_term)} long-term categories")

    def flush(self) -> None:
        self._backend.flush()
        logger.info("Memory flushed")

    # Sessions

    def open_session(self, session_id: str) -> SessionHandle:
        """Create (or re-open) a session namespace and return its handle."""
        if not session_id:
            raise AccessError("session id must be a non-empty string")
        with self._lock:
            token = self._tokens.get(session_id)
            if token is None:
                token = secrets.token_hex(16)
                self._tokens[session_id] = token
                self._sessions[session_id] = {}
        return SessionHandle(session_id=session_id, token=token)

    def close_session(self, session: SessionHandle) -> None:
        """Drop a session namespace. Its handle stops working."""
        self._check_session(session)
        with self._lock:
            self._sessions.pop(session.session_id, None)
            self._tokens.pop(session.session_id, None)
        logger.debug(f"Closed session {session.session_id}")

    def _check_session(self, session: Any) -> str:
        if not isinstance(session, SessionHandle):
            raise AccessError("session tier requires a SessionHandle issued by this store")
        expected = self._tokens.get(session.session_id)
        if expected is None or not secrets.compare_digest(expected, session.token):
            raise AccessError(f"invalid or closed handle for session '{session.session_id}'")
        return session.session_id

    # Key/value access

    def get(self, tier: MemoryTier, key: str, session: Optional[SessionHandle] = None, default: Any = None) -> Any:
        """Read a value.

        For LongTerm, ``key`` is a category and the result is the ordered
        list of its record values.
        """
        tier = MemoryTier(tier)
        if tier is MemoryTier.LONG_TERM:
            return [record.value for record in self.read_log(key)]

        if tier is MemoryTier.SESSION:
            session_id = self._check_session(session)
            record = self._sessions.get(session_id, {}).get(key)
        else:
            record = self._shared.get(key)
        return copy.deepcopy(record.value) if record is not None else default

    def set(self, tier: MemoryTier, key: str, value: Any, session: Optional[SessionHandle] = None) -> MemoryRecord:
        """Write (overwrite) a Shared or Session value."""
        tier = MemoryTier(tier)
        if tier is MemoryTier.LONG_TERM:
            raise AccessError("long-term memory is append-only; use append()")

        session_id = self._check_session(session) if tier is MemoryTier.SESSION else None
        record = MemoryRecord(
            tier=tier,
            key=key,
            value=copy.deepcopy(value),
            session_id=session_id,
            created_at=self._clock(),
        )
        with self._lock:
            if tier is MemoryTier.SESSION:
                self._sessions.setdefault(session_id, {})[key] = record
            else:
                self._shared[key] = record
            self._record_audit(tier, "set", key, session_id)
        return record

    # Long-term log

    def _lock_for(self, category: str) -> threading.Lock:
        with self._lock:
            lock = self._category_locks.get(category)
            if lock is None:
                lock = self._category_locks[category] = threading.Lock()
            return lock

    def append(self, category: str, record: Any, tier: MemoryTier = MemoryTier.LONG_TERM) -> MemoryRecord:
        """Append a record to a LongTerm category.

        Appends to the same category are serialized, so the stored order is
        the order in which calls completed.
        """
        if MemoryTier(tier) is not MemoryTier.LONG_TERM:
            raise AccessError("append() only writes to the long-term tier")
        if not category:
            raise ValueError("category must be a non-empty string")

        with self._lock_for(category):
            log = self._long_term.setdefault(category, [])
            stored = MemoryRecord(
                tier=MemoryTier.LONG_TERM,
                key=category,
                value=copy.deepcopy(record),
                seq=log[-1].seq + 1 if log else 1,
                created_at=self._clock(),
            )
            self._backend.append(stored)
            log.append(stored)
            with self._lock:
                self._record_audit(MemoryTier.LONG_TERM, "append", category, None)
        logger.debug(f"Appended record #{stored.seq} to long-term '{category}'")
        return stored

    def read_log(self, category: str) -> List[MemoryRecord]:
        """Snapshot of a LongTerm category in insertion order."""
        with self._lock_for(category):
            return [record.model_copy(deep=True) for record in self._long_term.get(category, [])]

    def categories(self) -> List[str]:
        return sorted(self._long_term)

    # Promotion

    def promote(self, session: SessionHandle, key: str, target_tier: MemoryTier) -> MemoryRecord:
        """Copy a Session value into Shared or LongTerm. The session keeps its copy."""
        session_id = self._check_session(session)
        target_tier = MemoryTier(target_tier)
        record = self._sessions.get(session_id, {}).get(key)
        if record is None:
            raise KeyError(f"'{key}' not found in session '{session_id}'")

        if target_tier is MemoryTier.SHARED:
            promoted = self.set(MemoryTier.SHARED, key, record.value)
        elif target_tier is MemoryTier.LONG_TERM:
            promoted = self.append(key, record.value)
        else:
            raise AccessError("promotion target must be shared or long-term memory")

        with self._lock:
            self._record_audit(target_tier, "promote", key, session_id)
        logger.info(f"Promoted '{key}' from session '{session_id}' to {target_tier.value}")
        return promoted

    # Audit

    def _record_audit(self, tier: MemoryTier, operation: str, key: str, session_id: Optional[str]) -> None:
        self._audit.append(AuditEntry(
            timestamp=self._clock(),
            tier=tier,
            operation=operation,
            key=key,
            session_id=session_id,
        ))

    def audit_trail(self) -> List[AuditEntry]:
        with self._lock:
            return list(self._audit)


class NodeMemory:
    """The memory a node execution may touch.

    Bound to one session by the orchestrator, so a node reads and writes its
    own job's session and cannot open or address any other. Shared state and
    the long-term log stay reachable.
    """

    def __init__(self, store: MemoryStore, session: SessionHandle):
        self._store = store
        self._session = session

    @property
    def session_id(self) -> str:
        return self._session.session_id

    def get(self, tier: MemoryTier, key: str, default: Any = None) -> Any:
        session = self._session if MemoryTier(tier) is MemoryTier.SESSION else None
        return self._store.get(tier, key, session=session, default=default)

    def set(self, tier: MemoryTier, key: str, value: Any) -> MemoryRecord:
        session = self._session if MemoryTier(tier) is MemoryTier.SESSION else None
        return self._store.set(tier, key, value, session=session)

    def append(self, category: str, record: Any) -> MemoryRecord:
        return self._store.append(category, record)

    def read_log(self, category: str) -> List[MemoryRecord]:
        return self._store.read_log(category)

    def promote(self, key: str, target_tier: MemoryTier) -> MemoryRecord:
        return self._store.promote(self._session, key, target_tier)
