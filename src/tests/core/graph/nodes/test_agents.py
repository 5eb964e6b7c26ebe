"""Tests for the news pipeline agents against fake services."""

from typing import Any, Dict

import pytest

from inkgraph.core.errors import ToolError
from inkgraph.core.graph.nodes import EditorAgent, NodeContext, PublisherAgent, ResearchAgent, WriterAgent
from inkgraph.core.graph.nodes import news_pipeline_nodes
from inkgraph.core.graph.nodes.agent import RECEIPT_KEY
from inkgraph.core.graph.state import NodeResultStatus
from inkgraph.core.memory import MemoryStore, MemoryTier, NodeMemory, SessionHandle
from inkgraph.services.tools import ToolRegistry


@pytest.fixture
def memory() -> MemoryStore:
    return MemoryStore()


@pytest.fixture
def session(memory) -> SessionHandle:
    return memory.open_session("job-1")


@pytest.fixture
def persisted() -> Dict[str, Any]:
    """Stands in for the durable job record."""
    return {}


@pytest.fixture
def ctx(memory, session, persisted) -> NodeContext:
    return NodeContext(
        job_id="job-1",
        node_id="x",
        attempt=1,
        memory=NodeMemory(memory, session),
        persist=persisted.__setitem__,
    )


@pytest.fixture
def tools(fakes):
    registry = ToolRegistry(timeout=1.0)
    registry.register("search", fakes.Search())
    return registry


DRAFT = {"title": "Council Approves Budget", "body": "The vote was 7-2.", "tags": ["local"]}


class TestResearchAgent:
    async def test_brief(self, fakes, tools, ctx, memory, item):
        checker = fakes.FactChecker(research=[{"confidence": 0.8, "conflicts": []}])
        tools.register("fact_check", checker)
        memory.set(MemoryTier.SHARED, "knowledge_base", {"council_size": 9})

        result = await ResearchAgent(fakes.Generation(), tools).execute({"item": item}, ctx)
        assert result.status == NodeResultStatus.OK
        assert result.output["confidence"] == 0.8
        assert len(result.output["sources"]) == 2
        assert checker.calls[0]["knowledge_base"] == {"council_size": 9}
        assert result.usage["tokens"] > 0

    async def test_tool_failure_propagates(self, fakes, ctx, item):
        registry = ToolRegistry()
        with pytest.raises(ToolError):
            await ResearchAgent(fakes.Generation(), registry).execute({"item": item}, ctx)


class TestWriterAgent:
    async def test_draft(self, fakes, ctx, memory, session, item):
        research = {"summary": "Approved 7-2.", "sources": [], "confidence": 0.9, "conflicts": []}
        result = await WriterAgent(fakes.Generation()).execute({"item": item, "research": research}, ctx)
        assert result.output["title"] == "Council Approves Transit Budget"
        assert result.output["body"].startswith("The city council")
        assert result.output["tags"] == ["local", "transit"]
        assert memory.get(MemoryTier.SESSION, "last_draft", session=session) == result.output

    async def test_feedback_reaches_prompt(self, fakes, ctx, item):
        generation = fakes.Generation()
        research = {"summary": "Approved 7-2.", "sources": [], "confidence": 0.9, "conflicts": []}
        feedback = [{"content": "unclear CTA"}]
        await WriterAgent(generation).execute({"item": item, "research": research, "feedback": feedback}, ctx)
        assert "unclear CTA" in generation.prompts[0][-1].content


class TestEditorAgent:
    async def test_flags(self, fakes, tools, ctx, item):
        tools.register("fact_check", fakes.FactChecker(editor=[{"conflicts": ["vote was 6-3"], "brand_risk": True}]))
        result = await EditorAgent(fakes.Generation(), tools).execute({"item": item, "writer": DRAFT}, ctx)
        assert result.output["factual_error"] is True
        assert result.output["brand_risk"] is True
        assert result.output["notes"] == ["vote was 6-3"]

    async def test_needs_review(self, fakes, tools, ctx, item):
        tools.register("fact_check", fakes.FactChecker(editor=[{"needs_review": True}]))
        result = await EditorAgent(fakes.Generation(), tools).execute({"item": item, "writer": DRAFT}, ctx)
        assert result.status == NodeResultStatus.NEEDS_HUMAN
        assert result.output["reason"] == "editorial_review"


class TestPublisherAgent:
    async def test_receipt_persisted_on_publish(self, fakes, ctx, persisted):
        cms = fakes.CMS()
        article = {"editor": dict(DRAFT, factual_error=False, brand_risk=False, notes=[])}

        result = await PublisherAgent(cms).execute(article, ctx)
        assert result.output["url"] == "https://cms.example/articles/1"
        assert persisted[RECEIPT_KEY] == result.output

    async def test_persisted_receipt_is_reused(self, fakes, ctx, persisted):
        cms = fakes.CMS()
        agent = PublisherAgent(cms)
        article = {"editor": dict(DRAFT, factual_error=False, brand_risk=False, notes=[])}

        first = await agent.execute(article, ctx)
        second = await agent.execute(dict(article, **persisted), ctx)
        assert first.output == second.output
        assert len(cms.published) == 1


def test_news_pipeline_nodes(fakes, tools):
    nodes = news_pipeline_nodes(fakes.Generation(), tools, fakes.CMS())
    assert [(n.id, n.capability) for n in nodes] == [
        ("research", "research"),
        ("writer", "write"),
        ("editor", "edit"),
        ("publisher", "publish"),
    ]
