"""Result of processing a single CRM event."""

from __future__ import annotations

import uuid
from dataclasses import dataclass

PROCESSED = "processed"
SKIPPED = "skipped"


@dataclass
class EventOutcome:
    status: str
    message: str
    record_id: uuid.UUID | None = None
    replaced: bool = False
    reason: str | None = None

    @property
    def skipped(self) -> bool:
        return self.status == SKIPPED

    @classmethod
    def processed(cls, message: str, record_id: uuid.UUID | None = None, **kwargs) -> "EventOutcome":
        return cls(status=PROCESSED, message=message, record_id=record_id, **kwargs)

    @classmethod
    def skip(cls, message: str, reason: str) -> "EventOutcome":
        return cls(status=SKIPPED, message=message, reason=reason)
