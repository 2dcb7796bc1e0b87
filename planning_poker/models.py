"""Data models for planning sessions and estimation rounds."""

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Any


class RoundStatus(str, Enum):
    """Lifecycle of a single estimation round."""

    PENDING = "pending"  # Queued, execute() not called yet
    RUNNING = "running"  # Estimate requests outstanding
    AWAITING_FINAL = "awaiting_final"  # Votes in, moderator has not confirmed
    COMPLETED = "completed"  # Final value set
    CANCELLED = "cancelled"  # Interrupted before completion


class SessionState(str, Enum):
    """Lifecycle of a planning session."""

    UNPLANNED = "unplanned"
    PLANNED = "planned"
    PLANNING = "planning"
    COMPLETE = "complete"
    STOPPED = "stopped"


@dataclass(frozen=True)
class WorkItem:
    """A task to estimate, as provided by the work-item source."""

    id: str
    title: str
    link: str
    estimate_minutes: int | None = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        result: dict[str, Any] = {
            "id": self.id,
            "title": self.title,
            "link": self.link,
        }
        if self.estimate_minutes is not None:
            result["estimate_minutes"] = self.estimate_minutes
        return result


@dataclass(frozen=True)
class Tasklist:
    """An ordered list of work items resolved from an external reference."""

    name: str
    items: tuple[WorkItem, ...] = ()


@dataclass
class Vote:
    """One participant's submitted estimate in hours."""

    person: Any
    value: float

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {"person": self.person.handle, "value": self.value}


@dataclass
class RoundOutcome:
    """Aggregate returned by Round.execute().

    ``average`` is None when nobody submitted an estimate. ``cancelled`` is set
    when the round was interrupted before every request settled.
    """

    start_time: datetime
    end_time: datetime
    estimates: list[Vote] = field(default_factory=list)
    average: float | None = None
    cancelled: bool = False

    @property
    def duration(self) -> timedelta:
        return self.end_time - self.start_time

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "start_time": self.start_time.isoformat(),
            "end_time": self.end_time.isoformat(),
            "duration_seconds": self.duration.total_seconds(),
            "estimates": [v.to_dict() for v in self.estimates],
            "average": self.average,
            "cancelled": self.cancelled,
        }


@dataclass
class RoundSummary:
    """Final state of one round, reported when a session ends."""

    item: WorkItem
    status: RoundStatus
    final_value: float | None = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "item": self.item.to_dict(),
            "status": self.status.value,
            "final_value": self.final_value,
        }


@dataclass
class SessionSummary:
    """Result of a planning run, returned to whoever owns the session."""

    room_id: str
    state: SessionState
    start_time: datetime | None = None
    end_time: datetime | None = None
    rounds: list[RoundSummary] = field(default_factory=list)

    @property
    def duration(self) -> timedelta | None:
        if self.start_time is None or self.end_time is None:
            return None
        return self.end_time - self.start_time

    @property
    def estimated(self) -> list[RoundSummary]:
        return [r for r in self.rounds if r.status is RoundStatus.COMPLETED]

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        duration = self.duration
        return {
            "room_id": self.room_id,
            "state": self.state.value,
            "start_time": self.start_time.isoformat() if self.start_time else None,
            "end_time": self.end_time.isoformat() if self.end_time else None,
            "duration_seconds": duration.total_seconds() if duration else None,
            "rounds": [r.to_dict() for r in self.rounds],
        }
