from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class SessionStatus(str, Enum):
    ACTIVE = "active"
    COMPLETED = "completed"
    FAILED = "failed"
    ABORTED = "aborted"


@dataclass(slots=True)
class Session:
    id: str
    company_name: str
    domain: str
    status: SessionStatus = SessionStatus.ACTIVE
    phase: int = 0
    version: int = 0
    merged_data: dict[str, Any] = field(default_factory=dict)
    created_at: str | None = None
    updated_at: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "company_name": self.company_name,
            "domain": self.domain,
            "status": self.status.value,
            "phase": self.phase,
            "version": self.version,
            "merged_data": self.merged_data,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }
