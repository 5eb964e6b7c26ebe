"""Tests for routing.

Routing is pure: the same (node, result, context) always gives the same
target, the default table covers the linear path, the content policy
overrides it, and anything undeclared fails closed.
"""

import pytest

from inkgraph.core.errors import ConfigError
from inkgraph.core.graph.router import HALT, Checkpoint, Halt, Router, content_policy, linear_table
from inkgraph.core.graph.state import NodeResult, NodeResultStatus

ORDER = ["research", "writer", "editor", "human_approval", "publisher"]


def ok(**output) -> NodeResult:
    return NodeResult(status=NodeResultStatus.OK, output=output)


@pytest.fixture
def router() -> Router:
    return Router(order=ORDER, policy=content_policy(confidence_threshold=0.6))


class TestLinearTable:
    def test_default_path(self):
        table = linear_table(ORDER)
        assert table == {
            "research": "writer",
            "writer": "editor",
            "editor": Checkpoint(reason="pre_publish", resume_at="publisher"),
            "publisher": HALT,
        }

    def test_without_checkpoint(self):
        assert linear_table(["a", "b"]) == {"a": "b", "b": HALT}


class TestRouter:
    """Default routing and fail-closed behavior."""

    def test_entry(self, router):
        assert router.entry == "research"
        assert router.nodes == {"research", "writer", "editor", "publisher"}

    def test_linear_path(self, router):
        assert router.route("research", ok(summary="s", confidence=0.9, conflicts=[]), {}) == "writer"
        assert router.route("writer", ok(title="t", body="b"), {}) == "editor"
        assert router.route("editor", ok(title="t", body="b"), {"item": {}}) == Checkpoint(
            reason="pre_publish", resume_at="publisher",
        )
        assert router.route("publisher", ok(status="published"), {}) == HALT

    def test_successor_skips_checkpoint(self, router):
        assert router.successor("writer") == "editor"
        assert router.successor("editor") == "publisher"
        assert router.successor("publisher") is None

    def test_undeclared_node_halts(self, router):
        target = router.route("translator", ok(), {})
        assert isinstance(target, Halt)
        assert "undeclared" in target.reason

    @pytest.mark.parametrize("status", ["failed", "needs_human"])
    def test_non_ok_status_halts(self, router, status):
        assert isinstance(router.route("writer", status, {}), Halt)

    def test_unknown_policy_target_halts(self):
        router = Router(order=ORDER, policy=lambda current, result, context: "nowhere")
        target = router.route("writer", ok(), {})
        assert isinstance(target, Halt)
        assert "nowhere" in target.reason

    def test_raising_policy_halts(self):
        def policy(current, result, context):
            return Checkpoint(reason="low", resume_at="writer") if result.output["confidence"] < 0.5 else None

        router = Router(order=ORDER, policy=policy)
        target = router.route("writer", ok(title="t", body="b"), {})
        assert isinstance(target, Halt)
        assert target.reason == "policy error: KeyError: 'confidence'"

    def test_policy_none_defers_to_table(self):
        router = Router(order=ORDER, policy=lambda current, result, context: None)
        assert router.route("writer", ok(), {}) == "editor"

    def test_table_must_reference_known_nodes(self):
        with pytest.raises(ConfigError):
            Router(table={"research": "writer"}, nodes=["research"])
        with pytest.raises(ConfigError):
            Router(table={"research": Checkpoint(reason="x", resume_at="ghost")}, nodes=["research"])

    def test_needs_order_or_table(self):
        with pytest.raises(ConfigError):
            Router()

    def test_explicit_table(self):
        router = Router(table={"draft": "review", "review": HALT})
        assert router.entry == "draft"
        assert router.route("draft", ok(), {}) == "review"


class TestContentPolicy:
    """Context-dependent overrides for the news pipeline."""

    def test_low_confidence(self, router):
        target = router.route("research", ok(summary="s", confidence=0.3, conflicts=[]), {})
        assert target == Checkpoint(reason="low_confidence", resume_at="writer", revise_at="research")

    def test_knowledge_base_conflict(self, router):
        target = router.route("research", ok(summary="s", confidence=0.9, conflicts=["budget was 5-4"]), {})
        assert target.reason == "knowledge_base_conflict"

    def test_factual_error_goes_back_to_research(self, router):
        assert router.route("editor", ok(title="t", body="b", factual_error=True), {"item": {}}) == "research"

    def test_factual_error_wins_over_brand_risk(self, router):
        target = router.route("editor", ok(factual_error=True, brand_risk=True), {"item": {}})
        assert target == "research"

    def test_brand_risk_from_editor(self, router):
        target = router.route("editor", ok(title="t", body="b", brand_risk=True), {"item": {}})
        assert target == Checkpoint(reason="brand_risk", resume_at="publisher", revise_at="writer")

    def test_brand_risk_from_item(self, router):
        target = router.route("editor", ok(title="t", body="b"), {"item": {"brand_risk": True}})
        assert target.reason == "brand_risk"

    @pytest.mark.parametrize("node,output,context", [
        ("research", {"summary": "s", "confidence": 0.4, "conflicts": []}, {}),
        ("research", {"summary": "s", "confidence": 0.9, "conflicts": []}, {}),
        ("editor", {"factual_error": True}, {"item": {}}),
        ("editor", {"brand_risk": False}, {"item": {"brand_risk": True}}),
        ("writer", {"title": "t", "body": "b"}, {}),
    ])
    def test_routing_is_deterministic(self, router, node, output, context):
        first = router.route(node, ok(**output), context)
        for _ in range(5):
            assert router.route(node, ok(**output), context) == first
