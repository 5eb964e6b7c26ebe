"""
News Pipeline Example

This example demonstrates:
1. Running a news item through Research -> Writer -> Editor -> Publisher
2. The pre-publish human checkpoint and a reviewer rejection round-trip
3. A flaky CMS that times out once and is retried with backoff

Services are local stand-ins so the example runs without API keys. Swap
``StubGeneration`` for ``openai_generation()`` to use a real model.
"""

import asyncio
from datetime import datetime
from typing import Any, Dict, List, Optional

from inkgraph import HITLDecision, JobState, Orchestrator, PipelineConfig
from inkgraph.core.errors import PublishTimeout
from inkgraph.core.graph.nodes import news_pipeline_nodes
from inkgraph.core.logging import Colors, LogComponent, LogLevel, configure_logging, get_logger
from inkgraph.core.memory import MemoryTier
from inkgraph.services import PublishReceipt, ToolRegistry

configure_logging(
    default_level=LogLevel.INFO,
    component_levels={
        LogComponent.ORCHESTRATOR: LogLevel.TRANSITION,
        LogComponent.HITL: LogLevel.INFO,
        LogComponent.FAILURES: LogLevel.INFO,
    },
)
logger = get_logger(LogComponent.ORCHESTRATOR)


class StubGeneration:
    """Echoes a canned article; feedback changes the headline."""

    async def generate(self, prompt) -> str:
        user = prompt[-1].content
        if "Write a news article" in prompt[0].content:
            title = "Transit Budget Passes: Two New Bus Lines" if "feedback" in user else "Council Approves Budget"
            return f"{title}\nThe city council voted 7-2 on Tuesday to fund two new bus lines."
        return user.splitlines()[0] if user else "ok"


async def search(query: str) -> Dict[str, Any]:
    return {"sources": ["https://city.example/minutes/2026-03-02"]}


async def fact_check(claims: List[str], sources: List[str], knowledge_base: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    return {"confidence": 0.85, "conflicts": []}


class FlakyCMS:
    """Times out on the first publish, then succeeds."""

    def __init__(self):
        self.calls = 0

    async def publish(self, title: str, body: str, tags: List[str], schedule_time: Optional[datetime] = None) -> PublishReceipt:
        self.calls += 1
        if self.calls == 1:
            raise PublishTimeout("CMS did not answer within 10s")
        return PublishReceipt(status="published", url="https://news.example/transit-budget")


async def main():
    tools = ToolRegistry(timeout=10)
    tools.register("search", search)
    tools.register("fact_check", fact_check)

    orchestrator = Orchestrator(
        nodes=news_pipeline_nodes(StubGeneration(), tools, FlakyCMS()),
        config=PipelineConfig(retry_cap=3, backoff_base=0.1, backoff_ceiling=1.0, hitl_timeout=1800),
    )
    orchestrator.memory.set(MemoryTier.SHARED, "knowledge_base", {"council_members": 9})

    job = await orchestrator.submit({
        "headline": "City council approves transit budget",
        "body": "The council voted 7-2 to fund two new bus lines.",
        "tags": ["local", "transit"],
    })
    print(f"\n{Colors.BOLD}Waiting for review:{Colors.RESET} {job.context['writer']['title']}")

    # Reviewer sends the draft back to the writer once, then approves
    job = await orchestrator.resolve(
        job.pending_request.id,
        HITLDecision.reject("Headline should mention the bus lines", resume_at="writer", reviewer="desk"),
    )
    print(f"{Colors.BOLD}Revised draft:{Colors.RESET} {job.context['writer']['title']}")

    job = await orchestrator.resolve(job.pending_request.id, HITLDecision.approve(reviewer="desk"))

    summary = orchestrator.describe(job.id)
    if summary.state == JobState.PUBLISHED:
        print(f"\n{Colors.SUCCESS}Published:{Colors.RESET} {summary.published_url}")
    else:
        print(f"\n{Colors.WARNING}Job ended {summary.state.value}:{Colors.RESET} {summary.reason or summary.pending_reason}")

    for record in orchestrator.memory.read_log("failures"):
        print(f"  failure #{record.seq}: {record.value['signal']} in {record.value['node_id']}")

    await orchestrator.shutdown()


if __name__ == "__main__":
    asyncio.run(main())
