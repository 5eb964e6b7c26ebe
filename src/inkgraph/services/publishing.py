"""CMS publishing contract.

A publisher raises ``PublishTimeout`` for transient failures (safe to retry)
and ``PublishRejected`` for permanent ones.
"""

from datetime import datetime
from typing import List, Optional, Protocol, runtime_checkable

from pydantic import BaseModel


class PublishReceipt(BaseModel):
    status: str
    url: Optional[str] = None


@runtime_checkable
class Publisher(Protocol):
    async def publish(
        self,
        title: str,
        body: str,
        tags: List[str],
        schedule_time: Optional[datetime] = None,
    ) -> PublishReceipt: ...
