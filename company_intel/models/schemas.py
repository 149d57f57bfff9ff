from __future__ import annotations

from dataclasses import replace
from datetime import datetime, timezone
from typing import Any, Literal

from pydantic import BaseModel, Field

from company_intel.models.scraping import ScrapingPass, ScrapingResult


# --- Requests ---


class SessionCreateRequest(BaseModel):
    company_name: str = Field(min_length=1)
    domain: str = Field(min_length=3)


class ScrapingPassIn(BaseModel):
    id: str | None = None
    scraper: str
    strategy: str = "static"
    timestamp: datetime
    url: str
    duration_ms: int = 0
    content: str = ""
    html: str = ""
    text: str = ""
    title: str = ""
    structured: dict[str, Any] = Field(default_factory=dict)
    metadata: dict[str, Any] = Field(default_factory=dict)
    errors: list[str] = Field(default_factory=list)

    def to_pass(self) -> ScrapingPass:
        timestamp = self.timestamp if self.timestamp.tzinfo else self.timestamp.replace(tzinfo=timezone.utc)
        result = ScrapingResult(
            url=self.url,
            scraper=self.scraper,
            content=self.content,
            html=self.html,
            text=self.text,
            title=self.title,
            structured=self.structured,
            metadata=self.metadata,
            errors=self.errors,
            timestamp=timestamp,
        )
        scraping_pass = ScrapingPass.from_result(
            result, strategy=self.strategy, duration_ms=self.duration_ms, timestamp=timestamp
        )
        if self.id:
            scraping_pass = replace(scraping_pass, id=self.id)
        return scraping_pass


class MergeRequest(BaseModel):
    passes: list[ScrapingPassIn] = Field(min_length=1)
    conflict_resolution: Literal["latest", "highest_quality", "combine", "manual"] = "highest_quality"
    deduplicate_content: bool = True
    preserve_all_html: bool = False


class ExtractRequest(BaseModel):
    pages: dict[str, dict[str, Any]]
    session_id: str | None = None


# --- Responses ---


class SessionResponse(BaseModel):
    id: str
    company_name: str
    domain: str
    status: str
    phase: int
    version: int
    merged_data: dict[str, Any]
    created_at: datetime | None = None
    updated_at: datetime | None = None


class ExtractResponse(BaseModel):
    categories: dict[str, dict[str, Any]]
    summary: dict[str, Any]
