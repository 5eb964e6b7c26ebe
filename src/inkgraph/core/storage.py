"""Durable job records.

- InMemoryJobStore: testing/dev
- JsonFileJobStore: one JSON checkpoint per job, survives restart
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from pathlib import Path
from typing import Dict, List, Optional, Union

from inkgraph.core.graph.state import Job
from inkgraph.core.logging import LogComponent, get_logger

logger = get_logger(LogComponent.STORAGE)


class JobStore(ABC):
    @abstractmethod
    def save(self, job: Job) -> None: ...

    @abstractmethod
    def load(self, job_id: str) -> Optional[Job]: ...

    @abstractmethod
    def list(self) -> List[Job]: ...


class InMemoryJobStore(JobStore):
    def __init__(self):
        self._jobs: Dict[str, str] = {}

    def save(self, job: Job) -> None:
        # Stored serialized so later mutation of the live job is not visible
        self._jobs[job.id] = job.model_dump_json()

    def load(self, job_id: str) -> Optional[Job]:
        raw = self._jobs.get(job_id)
        return Job.model_validate_json(raw) if raw is not None else None

    def list(self) -> List[Job]:
        return [Job.model_validate_json(raw) for raw in self._jobs.values()]


class JsonFileJobStore(JobStore):
    def __init__(self, base_dir: Union[str, Path]):
        self._base = Path(base_dir)
        self._base.mkdir(parents=True, exist_ok=True)

    def _path(self, job_id: str) -> Path:
        return self._base / f"job_{job_id}.json"

    def save(self, job: Job) -> None:
        p = self._path(job.id)
        tmp = p.with_suffix(".json.tmp")
        tmp.write_text(job.model_dump_json(indent=2), encoding="utf-8")
        tmp.replace(p)

    def load(self, job_id: str) -> Optional[Job]:
        p = self._path(job_id)
        if not p.exists():
            return None
        return Job.model_validate_json(p.read_text(encoding="utf-8"))

    def list(self) -> List[Job]:
        jobs = [Job.model_validate_json(p.read_text(encoding="utf-8")) for p in sorted(self._base.glob("job_*.json"))]
        logger.debug(f"Listed {len(jobs)} jobs from {self._base}")
        return jobs
