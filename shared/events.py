"""
Subscriber-channel event envelopes for GitFlow Live.

Three named event types cross the subscriber channel:
- baseline: repository identity plus the full commit sequence
- change: one canonical ChangeEvent
- advisory: a user-facing severity and message
"""

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import List, Optional, Sequence, Union

from pydantic import BaseModel, Field

from shared.models import ChangeEvent, CommitRecord, Severity


class EventType(str, Enum):
    """Event types delivered to subscribers."""
    BASELINE = "baseline"
    CHANGE = "change"
    ADVISORY = "advisory"


class EventMetadata(BaseModel):
    """Envelope metadata for tracing deliveries."""

    event_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    sequence: int = Field(default=0, ge=0, description="Dispatcher emission order")


class BaselinePayload(BaseModel):
    """Full commit snapshot of a repository."""

    repo_path: str
    commits: List[CommitRecord] = Field(default_factory=list)
    truncated: bool = Field(default=False, description="True when the load limit was hit")


class AdvisoryPayload(BaseModel):
    """User-facing informational notice."""

    severity: Severity
    message: str


class Event(BaseModel):
    """Envelope delivered to every subscriber."""

    metadata: EventMetadata = Field(default_factory=EventMetadata)
    event_type: EventType
    data: Union[BaselinePayload, ChangeEvent, AdvisoryPayload]

    def to_json(self) -> str:
        """Serialize event to JSON."""
        return self.model_dump_json()


class EventFactory:
    """Factory for creating envelopes with proper metadata."""

    @staticmethod
    def create_baseline_event(
        repo_path: str,
        commits: Sequence[CommitRecord],
        truncated: bool = False,
        sequence: int = 0,
    ) -> Event:
        """Create a baseline-delivery event."""
        return Event(
            metadata=EventMetadata(sequence=sequence),
            event_type=EventType.BASELINE,
            data=BaselinePayload(repo_path=repo_path, commits=list(commits), truncated=truncated),
        )

    @staticmethod
    def create_change_event(change: ChangeEvent, sequence: int = 0) -> Event:
        """Create a change-delivery event."""
        return Event(
            metadata=EventMetadata(sequence=sequence),
            event_type=EventType.CHANGE,
            data=change,
        )

    @staticmethod
    def create_advisory_event(
        severity: Union[Severity, str], message: str, sequence: int = 0
    ) -> Event:
        """Create an advisory-delivery event."""
        return Event(
            metadata=EventMetadata(sequence=sequence),
            event_type=EventType.ADVISORY,
            data=AdvisoryPayload(severity=Severity(severity), message=message),
        )


class EventSerializer:
    """Helper for wire serialization of envelopes."""

    @staticmethod
    def serialize(event: Event) -> str:
        """Serialize an event to a JSON string."""
        return event.to_json()


def describe_event(event: Event) -> Optional[str]:
    """Return a one-line human description of an envelope."""
    data = event.data
    if isinstance(data, BaselinePayload):
        return f"baseline {data.repo_path} ({len(data.commits)} commits)"
    if isinstance(data, AdvisoryPayload):
        return f"[{data.severity.value}] {data.message}"
    if isinstance(data, ChangeEvent):
        if data.commit is not None:
            return f"{data.kind.value} {data.commit.short_id} {data.commit.subject}"
        if data.ref is not None:
            return f"checkout {data.ref}"
        if data.remote_branch is not None:
            return f"push {data.remote_branch}"
    return None


__all__ = [
    "EventType", "EventMetadata", "BaselinePayload", "AdvisoryPayload",
    "Event", "EventFactory", "EventSerializer", "describe_event",
]
