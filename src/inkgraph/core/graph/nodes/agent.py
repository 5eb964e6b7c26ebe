"""
Agent executables for the news pipeline.

Thin adapters from the uniform node contract to the external services:
- ResearchAgent: search + fact-check tools, generation for the summary
- WriterAgent: generation of a draft from the research brief and feedback
- EditorAgent: fact-check of the draft, generation of the edited copy
- PublisherAgent: CMS publish, at most once per job; the receipt is
  persisted on the job record as soon as the CMS returns it

Errors raised by the services propagate; the NodeRunner captures them as
failed results for the FailureClassifier.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from inkgraph.core.graph.nodes.base.node import Node, NodeContext
from inkgraph.core.graph.nodes.schemas import (
    Draft,
    EditorInput,
    EditReview,
    PublisherInput,
    Receipt,
    ResearchBrief,
    ResearchInput,
    WriterInput,
)
from inkgraph.core.graph.state import NodeResult, NodeResultStatus
from inkgraph.core.logging import LogComponent, get_logger
from inkgraph.core.memory import MemoryTier
from inkgraph.services.generation import GenerationService, build_messages, estimate_tokens
from inkgraph.services.publishing import Publisher
from inkgraph.services.tools import ToolRegistry

logger = get_logger(LogComponent.NODES)

RECEIPT_KEY = "publish_receipt"

RESEARCH_SYSTEM = "Summarize the verified facts behind a news item. Cite only the given sources."
WRITER_SYSTEM = "Write a news article. First line is the title, the rest is the body."
EDITOR_SYSTEM = "Edit the article for clarity and house style. Return only the edited body."


def _split_draft(text: str) -> Dict[str, str]:
    lines = text.strip().splitlines()
    title = lines[0].strip().lstrip("#").strip() if lines else ""
    body = "\n".join(lines[1:]).strip()
    return {"title": title, "body": body}


class ResearchAgent:
    """Gathers sources and checks the item against them and the knowledge base."""

    def __init__(
        self,
        generation: GenerationService,
        tools: ToolRegistry,
        search_tool: str = "search",
        fact_check_tool: str = "fact_check",
    ):
        self.generation = generation
        self.tools = tools
        self.search_tool = search_tool
        self.fact_check_tool = fact_check_tool

    async def execute(self, input: Dict[str, Any], ctx: NodeContext) -> NodeResult:
        item = ResearchInput.model_validate(input).item
        search = await self.tools.invoke_json(self.search_tool, {"query": item.headline})
        sources: List[str] = list(search.get("sources", []))

        knowledge = ctx.memory.get(MemoryTier.SHARED, "knowledge_base", default={}) or {}
        check = await self.tools.invoke_json(self.fact_check_tool, {
            "claims": [item.headline, item.body],
            "sources": sources,
            "knowledge_base": knowledge,
        })

        summary = await self.generation.generate(build_messages(
            RESEARCH_SYSTEM,
            f"Item: {item.headline}\n{item.body}\n\nSources:\n" + "\n".join(sources),
        ))
        return NodeResult(
            status=NodeResultStatus.OK,
            output={
                "summary": summary,
                "sources": sources,
                "confidence": check.get("confidence", 0.0),
                "conflicts": check.get("conflicts", []),
            },
            usage={"tokens": estimate_tokens(summary)},
        )


class WriterAgent:
    """Drafts the article; reviewer feedback from earlier rounds is included."""

    def __init__(self, generation: GenerationService):
        self.generation = generation

    async def execute(self, input: Dict[str, Any], ctx: NodeContext) -> NodeResult:
        data = WriterInput.model_validate(input)
        prompt = f"Headline: {data.item.headline}\n\nResearch:\n{data.research.summary}"
        if data.feedback:
            notes = "\n".join(f"- {f.get('content', '')}" for f in data.feedback)
            prompt += f"\n\nAddress this reviewer feedback:\n{notes}"

        text = await self.generation.generate(build_messages(WRITER_SYSTEM, prompt))
        draft = _split_draft(text)
        draft["tags"] = list(data.item.tags)
        ctx.memory.set(MemoryTier.SESSION, "last_draft", draft)
        return NodeResult(status=NodeResultStatus.OK, output=draft, usage={"tokens": estimate_tokens(text)})


class EditorAgent:
    """Fact-checks the draft and returns the edited copy with review flags."""

    def __init__(self, generation: GenerationService, tools: ToolRegistry, fact_check_tool: str = "fact_check"):
        self.generation = generation
        self.tools = tools
        self.fact_check_tool = fact_check_tool

    async def execute(self, input: Dict[str, Any], ctx: NodeContext) -> NodeResult:
        data = EditorInput.model_validate(input)
        draft = data.writer
        check = await self.tools.invoke_json(self.fact_check_tool, {
            "claims": [draft.title, draft.body],
            "sources": [],
        })
        edited = await self.generation.generate(build_messages(EDITOR_SYSTEM, draft.body))
        output = {
            "title": draft.title,
            "body": edited.strip() or draft.body,
            "tags": draft.tags,
            "factual_error": bool(check.get("conflicts")),
            "brand_risk": bool(check.get("brand_risk") or data.item.brand_risk),
            "notes": list(check.get("conflicts", [])) + list(check.get("notes", [])),
        }
        usage = {"tokens": estimate_tokens(edited)}

        # The edited copy travels with the review request so approval can publish it
        if check.get("needs_review"):
            output["reason"] = "editorial_review"
            return NodeResult(status=NodeResultStatus.NEEDS_HUMAN, output=output, usage=usage)
        return NodeResult(status=NodeResultStatus.OK, output=output, usage=usage)


class PublisherAgent:
    """Publishes the edited article once per job."""

    def __init__(self, publisher: Publisher, schedule_time: Optional[datetime] = None):
        self.publisher = publisher
        self.schedule_time = schedule_time

    async def execute(self, input: Dict[str, Any], ctx: NodeContext) -> NodeResult:
        article = PublisherInput.model_validate(input).editor
        previous = input.get(RECEIPT_KEY)
        if previous is not None:
            logger.warning(f"Job {ctx.job_id} already published; reusing receipt")
            return NodeResult(status=NodeResultStatus.OK, output=previous)

        receipt = await self.publisher.publish(article.title, article.body, article.tags, self.schedule_time)
        output = Receipt.model_validate(receipt.model_dump() if hasattr(receipt, "model_dump") else receipt).model_dump()
        if ctx.persist is not None:
            ctx.persist(RECEIPT_KEY, output)
        return NodeResult(status=NodeResultStatus.OK, output=output)


def news_pipeline_nodes(
    generation: GenerationService,
    tools: ToolRegistry,
    publisher: Publisher,
    schedule_time: Optional[datetime] = None,
) -> List[Node]:
    """The four nodes of the default Research -> Writer -> Editor -> Publisher pipeline."""
    return [
        Node(id="research", capability="research", input_schema=ResearchInput, output_schema=ResearchBrief,
             executable=ResearchAgent(generation, tools)),
        Node(id="writer", capability="write", input_schema=WriterInput, output_schema=Draft,
             executable=WriterAgent(generation)),
        Node(id="editor", capability="edit", input_schema=EditorInput, output_schema=EditReview,
             executable=EditorAgent(generation, tools)),
        Node(id="publisher", capability="publish", input_schema=PublisherInput, output_schema=Receipt,
             executable=PublisherAgent(publisher, schedule_time)),
    ]
