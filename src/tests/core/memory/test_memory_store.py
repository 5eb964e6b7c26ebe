"""Tests for the three-tier memory store.

This module tests:
- Session isolation and handle validation
- Shared key/value access
- The append-only long-term log and its ordering
- Promotion between tiers and the audit trail
- The session-bound view handed to nodes
- Durability through the JSONL backend
"""

import threading

import pytest

from inkgraph.core.errors import AccessError
from inkgraph.core.memory import (
    JsonlLongTermBackend,
    MemoryStore,
    MemoryTier,
    NodeMemory,
    SessionHandle,
)


@pytest.fixture
def memory(clock) -> MemoryStore:
    return MemoryStore(clock=clock)


class TestSessionIsolation:
    """Session values are reachable only through their own handle."""

    @pytest.mark.parametrize("s1,s2", [("job-a", "job-b"), ("x", "y"), ("a", "a-1")])
    def test_value_not_visible_in_other_session(self, memory, s1, s2):
        h1 = memory.open_session(s1)
        h2 = memory.open_session(s2)
        memory.set(MemoryTier.SESSION, "draft", {"title": "one"}, session=h1)
        assert memory.get(MemoryTier.SESSION, "draft", session=h1) == {"title": "one"}
        assert memory.get(MemoryTier.SESSION, "draft", session=h2) is None

    def test_forged_handle_is_rejected(self, memory):
        memory.open_session("job-a")
        forged = SessionHandle(session_id="job-a", token="0" * 32)
        with pytest.raises(AccessError):
            memory.get(MemoryTier.SESSION, "draft", session=forged)

    def test_session_tier_requires_handle(self, memory):
        with pytest.raises(AccessError):
            memory.set(MemoryTier.SESSION, "draft", "x")
        with pytest.raises(AccessError):
            memory.get(MemoryTier.SESSION, "draft", session="job-a")

    def test_reopen_returns_same_handle(self, memory):
        assert memory.open_session("job-a") == memory.open_session("job-a")

    def test_closed_handle_stops_working(self, memory):
        handle = memory.open_session("job-a")
        memory.set(MemoryTier.SESSION, "draft", "x", session=handle)
        memory.close_session(handle)
        with pytest.raises(AccessError):
            memory.get(MemoryTier.SESSION, "draft", session=handle)
        reopened = memory.open_session("job-a")
        assert memory.get(MemoryTier.SESSION, "draft", session=reopened) is None

    def test_empty_session_id(self, memory):
        with pytest.raises(AccessError):
            memory.open_session("")


class TestSharedTier:
    def test_last_writer_wins(self, memory):
        memory.set(MemoryTier.SHARED, "knowledge_base", {"mayor": "A. Smith"})
        memory.set(MemoryTier.SHARED, "knowledge_base", {"mayor": "B. Jones"})
        assert memory.get(MemoryTier.SHARED, "knowledge_base") == {"mayor": "B. Jones"}

    def test_default(self, memory):
        assert memory.get(MemoryTier.SHARED, "missing", default=42) == 42

    def test_values_are_copied(self, memory):
        value = {"sources": ["a"]}
        memory.set(MemoryTier.SHARED, "brief", value)
        value["sources"].append("b")
        read = memory.get(MemoryTier.SHARED, "brief")
        read["sources"].append("c")
        assert memory.get(MemoryTier.SHARED, "brief") == {"sources": ["a"]}


class TestLongTermLog:
    """LongTerm is append-only and ordered per category."""

    def test_set_is_refused(self, memory):
        with pytest.raises(AccessError):
            memory.set(MemoryTier.LONG_TERM, "failures", {"x": 1})

    def test_append_only_to_long_term(self, memory):
        with pytest.raises(AccessError):
            memory.append("failures", {"x": 1}, tier=MemoryTier.SHARED)

    def test_sequence_numbers(self, memory):
        records = [memory.append("feedback", {"n": n}) for n in range(3)]
        assert [r.seq for r in records] == [1, 2, 3]
        assert memory.get(MemoryTier.LONG_TERM, "feedback") == [{"n": 0}, {"n": 1}, {"n": 2}]

    def test_reads_are_growing_prefixes(self, memory):
        snapshots = []
        for n in range(5):
            memory.append("failures", {"n": n})
            snapshots.append([r.value for r in memory.read_log("failures")])
        for earlier, later in zip(snapshots, snapshots[1:]):
            assert later[:len(earlier)] == earlier
            assert len(later) == len(earlier) + 1

    def test_read_snapshot_cannot_change_log(self, memory):
        memory.append("failures", {"detail": "timeout"})
        snapshot = memory.read_log("failures")
        snapshot.clear()
        assert len(memory.read_log("failures")) == 1

    def test_concurrent_appends_keep_order(self, memory):
        def writer(worker: int):
            for n in range(50):
                memory.append("failures", {"worker": worker, "n": n})

        threads = [threading.Thread(target=writer, args=(w,)) for w in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        log = memory.read_log("failures")
        assert [r.seq for r in log] == list(range(1, 201))
        for worker in range(4):
            ns = [r.value["n"] for r in log if r.value["worker"] == worker]
            assert ns == list(range(50))

    def test_categories(self, memory):
        memory.append("jobs", {})
        memory.append("failures", {})
        assert memory.categories() == ["failures", "jobs"]


class TestPromotion:
    """Session values can be copied into Shared or LongTerm."""

    def test_promote_to_shared(self, memory):
        handle = memory.open_session("job-a")
        memory.set(MemoryTier.SESSION, "pattern", {"cta": "subscribe"}, session=handle)
        memory.promote(handle, "pattern", MemoryTier.SHARED)
        assert memory.get(MemoryTier.SHARED, "pattern") == {"cta": "subscribe"}
        assert memory.get(MemoryTier.SESSION, "pattern", session=handle) == {"cta": "subscribe"}

    def test_promote_to_long_term(self, memory):
        handle = memory.open_session("job-a")
        memory.set(MemoryTier.SESSION, "patterns", "short headlines", session=handle)
        record = memory.promote(handle, "patterns", MemoryTier.LONG_TERM)
        assert record.seq == 1
        assert memory.get(MemoryTier.LONG_TERM, "patterns") == ["short headlines"]

    def test_promote_missing_key(self, memory):
        handle = memory.open_session("job-a")
        with pytest.raises(KeyError):
            memory.promote(handle, "nothing", MemoryTier.SHARED)

    def test_promote_to_session_is_refused(self, memory):
        handle = memory.open_session("job-a")
        memory.set(MemoryTier.SESSION, "k", 1, session=handle)
        with pytest.raises(AccessError):
            memory.promote(handle, "k", MemoryTier.SESSION)

    def test_audit_trail(self, memory, clock):
        handle = memory.open_session("job-a")
        memory.set(MemoryTier.SESSION, "k", 1, session=handle)
        memory.promote(handle, "k", MemoryTier.SHARED)
        trail = [(e.tier, e.operation, e.key, e.session_id) for e in memory.audit_trail()]
        assert trail == [
            (MemoryTier.SESSION, "set", "k", "job-a"),
            (MemoryTier.SHARED, "set", "k", None),
            (MemoryTier.SHARED, "promote", "k", "job-a"),
        ]
        assert all(e.timestamp == clock() for e in memory.audit_trail())


class TestNodeMemory:
    """A node's view reaches its own session and nothing else."""

    def test_session_reads_and_writes_own_namespace(self, memory):
        own = memory.open_session("job-a")
        other = memory.open_session("job-b")
        view = NodeMemory(memory, own)

        view.set(MemoryTier.SESSION, "draft", "mine")
        memory.set(MemoryTier.SESSION, "notes", "theirs", session=other)

        assert view.get(MemoryTier.SESSION, "draft") == "mine"
        assert view.get(MemoryTier.SESSION, "notes") is None
        assert memory.get(MemoryTier.SESSION, "draft", session=other) is None

    def test_no_way_to_open_sessions(self, memory):
        view = NodeMemory(memory, memory.open_session("job-a"))
        assert not hasattr(view, "open_session")
        assert not hasattr(view, "close_session")

    def test_shared_and_long_term_reachable(self, memory):
        view = NodeMemory(memory, memory.open_session("job-a"))
        memory.set(MemoryTier.SHARED, "knowledge_base", {"council_size": 9})
        view.append("patterns", "short headlines")

        assert view.get(MemoryTier.SHARED, "knowledge_base") == {"council_size": 9}
        assert [r.value for r in view.read_log("patterns")] == ["short headlines"]
        with pytest.raises(AccessError):
            view.set(MemoryTier.LONG_TERM, "patterns", "overwrite")

    def test_promote_from_own_session(self, memory):
        handle = memory.open_session("job-a")
        view = NodeMemory(memory, handle)
        view.set(MemoryTier.SESSION, "pattern", "subscribe CTA")
        view.promote("pattern", MemoryTier.SHARED)
        assert memory.get(MemoryTier.SHARED, "pattern") == "subscribe CTA"

    def test_closed_session_stops_view(self, memory):
        handle = memory.open_session("job-a")
        view = NodeMemory(memory, handle)
        memory.close_session(handle)
        with pytest.raises(AccessError):
            view.get(MemoryTier.SESSION, "draft")


class TestDurability:
    """LongTerm records survive a restart through the JSONL backend."""

    def test_reload(self, tmp_path, clock):
        first = MemoryStore(backend=JsonlLongTermBackend(tmp_path), clock=clock)
        first.append("failures", {"signal": "rate_limit"})
        first.append("failures", {"signal": "tool_timeout"})
        first.append("feedback", {"content": "off-brand"})
        first.set(MemoryTier.SHARED, "knowledge_base", {"k": "v"})
        first.flush()

        second = MemoryStore(backend=JsonlLongTermBackend(tmp_path), clock=clock)
        second.load()
        assert second.get(MemoryTier.LONG_TERM, "failures") == [
            {"signal": "rate_limit"},
            {"signal": "tool_timeout"},
        ]
        assert second.get(MemoryTier.LONG_TERM, "feedback") == [{"content": "off-brand"}]
        assert second.get(MemoryTier.SHARED, "knowledge_base") is None
        assert second.append("failures", {"signal": "x"}).seq == 3

    def test_unsafe_category_names(self, tmp_path):
        backend = JsonlLongTermBackend(tmp_path)
        store = MemoryStore(backend=backend)
        store.append("../escape", {"n": 1})
        assert all(p.parent == tmp_path for p in tmp_path.iterdir())
        reloaded = MemoryStore(backend=JsonlLongTermBackend(tmp_path))
        reloaded.load()
        assert reloaded.get(MemoryTier.LONG_TERM, "../escape") == [{"n": 1}]
