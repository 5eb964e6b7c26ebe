"""Durability backends for LongTerm memory.

- InMemoryLongTermBackend: testing/dev, lost on restart
- JsonlLongTermBackend: one append-only JSONL file per category
"""

from __future__ import annotations

import json
import re
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Dict, List, Union

from inkgraph.core.logging import LogComponent, get_logger
from inkgraph.core.memory.records import MemoryRecord

logger = get_logger(LogComponent.STORAGE)


class LongTermBackend(ABC):
    """Append-only journal for LongTerm records."""

    @abstractmethod
    def append(self, record: MemoryRecord) -> None: ...

    @abstractmethod
    def load(self) -> Dict[str, List[MemoryRecord]]: ...

    def flush(self) -> None:
        """Push buffered writes to durable storage."""


class InMemoryLongTermBackend(LongTermBackend):
    def __init__(self):
        self._records: Dict[str, List[MemoryRecord]] = {}

    def append(self, record: MemoryRecord) -> None:
        self._records.setdefault(record.key, []).append(record)

    def load(self) -> Dict[str, List[MemoryRecord]]:
        return {category: list(records) for category, records in self._records.items()}


class JsonlLongTermBackend(LongTermBackend):
    """Writes through on every append so a crash never loses a record."""

    _UNSAFE = re.compile(r"[^A-Za-z0-9_.-]")

    def __init__(self, base_dir: Union[str, Path]):
        self._base = Path(base_dir)
        self._base.mkdir(parents=True, exist_ok=True)

    def _path(self, category: str) -> Path:
        return self._base / f"ltm_{self._UNSAFE.sub('_', category)}.jsonl"

    def append(self, record: MemoryRecord) -> None:
        with self._path(record.key).open("a", encoding="utf-8") as f:
            f.write(record.model_dump_json())
            f.write("\n")

    def load(self) -> Dict[str, List[MemoryRecord]]:
        out: Dict[str, List[MemoryRecord]] = {}
        for p in sorted(self._base.glob("ltm_*.jsonl")):
            with p.open("r", encoding="utf-8") as f:
                for line in f:
                    line = line.strip()
                    if not line:
                        continue
                    record = MemoryRecord.model_validate(json.loads(line))
                    out.setdefault(record.key, []).append(record)
        for records in out.values():
            records.sort(key=lambda r: r.seq)
        logger.info(f"Loaded {sum(len(r) for r in out.values())} long-term records from {self._base}")
        return out
