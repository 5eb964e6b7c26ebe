"""Shared test fixtures.

Fakes for the external collaborators of the pipeline (generation service,
tools, CMS) plus a controllable clock, so every test runs without network
access or real waiting.
"""

import asyncio
from types import SimpleNamespace
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional

import pytest

from inkgraph.core.config import PipelineConfig
from inkgraph.core.graph.nodes import Node
from inkgraph.core.graph.nodes.agent import EDITOR_SYSTEM, RESEARCH_SYSTEM, WRITER_SYSTEM, news_pipeline_nodes
from inkgraph.core.graph.router import Router
from inkgraph.core.graph.state import Job, JobState
from inkgraph.core.hitl import HITLGate
from inkgraph.core.memory import MemoryStore
from inkgraph.core.orchestrator import Orchestrator
from inkgraph.services.publishing import PublishReceipt
from inkgraph.services.tools import ToolRegistry

ITEM = {
    "headline": "City council approves transit budget",
    "body": "The council voted 7-2 on Tuesday to fund two new bus lines.",
    "tags": ["local", "transit"],
}

DEFAULT_TEXT = {
    "research": "The council approved the transit budget 7-2.",
    "writer": "Council Approves Transit Budget\nThe city council voted 7-2 to fund two new bus lines.",
    "editor": "The city council voted 7-2 on Tuesday to fund two new bus lines.",
    "other": "ok",
}

ROLES = {RESEARCH_SYSTEM: "research", WRITER_SYSTEM: "writer", EDITOR_SYSTEM: "editor"}


class FakeClock:
    """Clock that only moves when told to."""

    def __init__(self, start: Optional[datetime] = None):
        self.now = start or datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


class FakeSleep:
    """Records requested delays and advances the clock instead of waiting.

    Still yields to the event loop, so other jobs run while one backs off.
    """

    def __init__(self, clock: FakeClock):
        self.clock = clock
        self.delays: List[float] = []
        self.on_sleep = None

    async def __call__(self, delay: float) -> None:
        if self.on_sleep is not None:
            self.on_sleep(delay)
        self.delays.append(delay)
        self.clock.advance(delay)
        await asyncio.sleep(0)


class FakeGeneration:
    """Generation service scripted per agent role.

    Each script entry is either the text to return or an exception to raise;
    once a script runs out the role's default text is returned.
    """

    def __init__(self, **scripts: List[Any]):
        self.scripts = {role: list(steps) for role, steps in scripts.items()}
        self.calls: List[str] = []
        self.prompts: List[Any] = []

    async def generate(self, prompt: Any) -> str:
        system = prompt[0].content if isinstance(prompt, list) else ""
        role = ROLES.get(system, "other")
        self.calls.append(role)
        self.prompts.append(prompt)
        script = self.scripts.get(role)
        if script:
            step = script.pop(0)
            if isinstance(step, Exception):
                raise step
            return step
        return DEFAULT_TEXT[role]


class FakeFactChecker:
    """Fact-check tool with separate scripted answers for research and editing."""

    def __init__(self, research: Optional[List[Dict[str, Any]]] = None, editor: Optional[List[Dict[str, Any]]] = None):
        self.research = list(research or [])
        self.editor = list(editor or [])
        self.calls: List[Dict[str, Any]] = []

    async def __call__(self, claims: List[str], sources: List[str], knowledge_base: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        self.calls.append({"claims": claims, "sources": sources, "knowledge_base": knowledge_base})
        if knowledge_base is not None:
            return self.research.pop(0) if self.research else {"confidence": 0.9, "conflicts": []}
        return self.editor.pop(0) if self.editor else {"conflicts": []}


class FakeSearch:
    """Search tool that times out a given number of times first."""

    def __init__(self, timeouts: int = 0):
        self.timeouts = timeouts
        self.calls = 0

    async def __call__(self, query: str) -> Dict[str, Any]:
        self.calls += 1
        if self.calls <= self.timeouts:
            raise asyncio.TimeoutError()
        return {"sources": ["https://city.example/minutes", "https://news.example/budget"]}


class FakeCMS:
    """CMS publisher; ``failures`` are raised in order before publishing succeeds."""

    def __init__(self, failures: Optional[List[Exception]] = None):
        self.failures = list(failures or [])
        self.attempts = 0
        self.published: List[Dict[str, Any]] = []

    async def publish(self, title: str, body: str, tags: List[str], schedule_time: Optional[datetime] = None) -> PublishReceipt:
        self.attempts += 1
        if self.failures:
            raise self.failures.pop(0)
        self.published.append({"title": title, "body": body, "tags": tags})
        return PublishReceipt(status="published", url=f"https://cms.example/articles/{len(self.published)}")


class Pipeline:
    """Bundle of an orchestrator and the fakes behind it.

    ``nodes`` rewrites the default node list, e.g. to wrap one executable.
    """

    def __init__(
        self,
        config: Optional[PipelineConfig] = None,
        generation: Optional[FakeGeneration] = None,
        fact_checker: Optional[FakeFactChecker] = None,
        search: Optional[FakeSearch] = None,
        cms: Optional[FakeCMS] = None,
        memory: Optional[MemoryStore] = None,
        job_store: Any = None,
        clock: Optional[FakeClock] = None,
        sleep: Any = None,
        router: Optional[Router] = None,
        hitl: Optional[HITLGate] = None,
        nodes: Optional[Callable[[List[Node]], List[Node]]] = None,
    ):
        self.clock = clock or FakeClock()
        self.sleep = sleep or FakeSleep(self.clock)
        self.generation = generation or FakeGeneration()
        self.fact_checker = fact_checker or FakeFactChecker()
        self.search = search or FakeSearch()
        self.cms = cms or FakeCMS()

        self.tools = ToolRegistry(timeout=5.0)
        self.tools.register("search", self.search)
        self.tools.register("fact_check", self.fact_checker)

        default_nodes = news_pipeline_nodes(self.generation, self.tools, self.cms)
        self.orchestrator = Orchestrator(
            nodes=nodes(default_nodes) if nodes else default_nodes,
            router=router,
            hitl=hitl,
            config=config or PipelineConfig(),
            memory=memory or MemoryStore(clock=self.clock),
            job_store=job_store,
            clock=self.clock,
            sleep=self.sleep,
        )

    @property
    def memory(self) -> MemoryStore:
        return self.orchestrator.memory


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def item() -> Dict[str, Any]:
    return dict(ITEM)


@pytest.fixture
def make_pipeline():
    """Factory fixture building a Pipeline with overridable fakes."""
    return Pipeline


@pytest.fixture
def pipeline() -> Pipeline:
    return Pipeline()


@pytest.fixture
def running_job() -> Job:
    """A job mid-run at the writer node."""
    return Job(
        id="job-1",
        state=JobState.RUNNING,
        current_node="writer",
        context={"item": dict(ITEM)},
    )


@pytest.fixture
def fakes() -> SimpleNamespace:
    """The fake collaborator classes, for tests that script their own."""
    return SimpleNamespace(
        Clock=FakeClock,
        Generation=FakeGeneration,
        FactChecker=FakeFactChecker,
        Search=FakeSearch,
        CMS=FakeCMS,
    )
