from __future__ import annotations

import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class EventType(str, Enum):
    STARTED = "started"
    PROGRESS = "progress"
    DATA = "data"
    ERROR = "error"
    COMPLETE = "complete"


@dataclass
class StreamEvent:
    event: EventType
    data: dict[str, Any] = field(default_factory=dict)
    # Set only on the single event that ends an operation; errors can be non-terminal.
    terminal: bool = False

    @property
    def is_terminal(self) -> bool:
        return self.terminal

    def to_json(self) -> str:
        return json.dumps({"type": self.event.value, **self.data}, ensure_ascii=False, default=str)

    def format(self) -> str:
        return f"event: {self.event.value}\ndata: {self.to_json()}\n\n"
