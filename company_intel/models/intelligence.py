from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from company_intel.models.scraping import utc_now


class IntelligenceCategory(str, Enum):
    CORPORATE = "corporate"
    PRODUCTS = "products"
    PRICING = "pricing"
    COMPETITORS = "competitors"
    TEAM = "team"
    CASE_STUDIES = "case_studies"
    TECHNICAL = "technical"
    COMPLIANCE = "compliance"
    BLOG = "blog"
    TESTIMONIALS = "testimonials"
    PARTNERSHIPS = "partnerships"
    RESOURCES = "resources"
    EVENTS = "events"
    FEATURES = "features"
    INTEGRATIONS = "integrations"
    SUPPORT = "support"
    CAREERS = "careers"
    INVESTORS = "investors"
    PRESS = "press"
    MARKET_POSITION = "market_position"
    CONTENT = "content"
    SOCIAL_PROOF = "social_proof"
    COMMERCIAL = "commercial"
    CUSTOMER_EXPERIENCE = "customer_experience"
    FINANCIAL = "financial"


class ExtractionStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    PARTIAL = "partial"
    COMPLETED = "completed"
    FAILED = "failed"


STATUS_RANK = {
    ExtractionStatus.PENDING: 0,
    ExtractionStatus.FAILED: 1,
    ExtractionStatus.PROCESSING: 2,
    ExtractionStatus.PARTIAL: 3,
    ExtractionStatus.COMPLETED: 4,
}


class ItemType(str, Enum):
    PATTERN_MATCH = "pattern_match"
    SCHEMA_EXTRACTED = "schema_extracted"


@dataclass(frozen=True, slots=True)
class CategoryDefinition:
    category: IntelligenceCategory
    name: str
    description: str
    keywords: tuple[str, ...]


@dataclass(frozen=True, slots=True)
class IntelligenceItem:
    type: ItemType
    content: Any
    source: str
    confidence: float
    extracted_at: datetime = field(default_factory=utc_now)
    metadata: dict[str, Any] = field(default_factory=dict)
    id: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type.value,
            "content": self.content,
            "source": self.source,
            "confidence": self.confidence,
            "extracted_at": self.extracted_at.isoformat(),
            "metadata": self.metadata,
        }


@dataclass(slots=True)
class ExtractedIntelligence:
    category: IntelligenceCategory
    items: list[IntelligenceItem] = field(default_factory=list)
    confidence: float = 0.0
    sources: list[str] = field(default_factory=list)
    metadata: dict[str, Any] = field(default_factory=dict)
    extracted_at: datetime = field(default_factory=utc_now)
    status: ExtractionStatus = ExtractionStatus.PENDING

    def to_dict(self) -> dict[str, Any]:
        return {
            "category": self.category.value,
            "items": [item.to_dict() for item in self.items],
            "confidence": self.confidence,
            "sources": list(self.sources),
            "metadata": self.metadata,
            "extracted_at": self.extracted_at.isoformat(),
            "status": self.status.value,
        }
