"""Data models for calendar event ingestion."""
from dataclasses import asdict, dataclass, field
from typing import Tuple


@dataclass(frozen=True)
class FeedSource:
    """Upstream calendar feed and the tag prepended to its event titles."""
    prefix: str
    url: str


@dataclass
class EventRecord:
    """Normalized event from a calendar feed."""
    title: str
    start: str
    end: str
    color: str
    description: str
    location: str

    @property
    def identity_key(self) -> Tuple[str, str, str]:
        return (self.title, self.start, self.end)


@dataclass
class StoredEvent:
    """Event record as persisted in storage."""
    id: int
    title: str
    start: str
    end: str
    color: str
    description: str
    location: str

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class ReconcileResult:
    """Result of a reconciliation pass."""
    added: int = 0
    updated: int = 0
    errors: list[str] = field(default_factory=list)
