"""Input and output schemas of the news pipeline nodes.

Input schemas validate the job context before a node runs (extra keys are
ignored); output schemas validate what a node hands to the next one.
"""

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


class NewsItem(BaseModel):
    headline: str = Field(..., min_length=1)
    body: str = ""
    source_url: Optional[str] = None
    tags: List[str] = Field(default_factory=list)
    brand_risk: bool = False


class ResearchBrief(BaseModel):
    summary: str = Field(..., min_length=1)
    sources: List[str] = Field(default_factory=list)
    confidence: float = Field(..., ge=0.0, le=1.0)
    conflicts: List[str] = Field(default_factory=list)


class Draft(BaseModel):
    title: str = Field(..., min_length=1)
    body: str = Field(..., min_length=1)
    tags: List[str] = Field(default_factory=list)


class EditReview(Draft):
    factual_error: bool = False
    brand_risk: bool = False
    notes: List[str] = Field(default_factory=list)


class Receipt(BaseModel):
    status: str
    url: Optional[str] = None


class ResearchInput(BaseModel):
    item: NewsItem


class WriterInput(BaseModel):
    item: NewsItem
    research: ResearchBrief
    feedback: List[Dict[str, Any]] = Field(default_factory=list)


class EditorInput(BaseModel):
    item: NewsItem
    writer: Draft


class PublisherInput(BaseModel):
    editor: EditReview
