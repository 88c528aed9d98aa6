"""
Data models for WorkLog.

This module defines the data structures used throughout the application:
- TimeInterval: One tracked work period
- MergedDay: Aggregated intervals of one project on one local day
- ProposedEntry / BalanceProposal: Output of the day balancer
- Replace / Annotate: The two kinds of store mutation
"""

import json
from dataclasses import dataclass, field
from datetime import datetime, date
from typing import Optional, Union

from dates import from_iso, to_iso


@dataclass
class TimeInterval:
    """A tracked work period. `end_time` is None while it is running."""
    id: str
    owner: str
    project: str
    start_time: datetime
    end_time: Optional[datetime] = None
    description: str = ''
    duration: Optional[int] = None  # Seconds
    corrected_duration: Optional[int] = None  # Seconds, set by day balancing
    tags: set = field(default_factory=set)
    created_at: Optional[datetime] = None

    @property
    def is_completed(self) -> bool:
        return self.end_time is not None

    @property
    def effective_duration(self) -> int:
        if self.corrected_duration is not None:
            return self.corrected_duration
        return self.duration or 0

    @classmethod
    def from_row(cls, row) -> 'TimeInterval':
        return cls(
            id=row['id'],
            owner=row['owner'],
            project=row['project'],
            description=row['description'] or '',
            start_time=from_iso(row['start_ts']),
            end_time=from_iso(row['end_ts']),
            duration=row['duration'],
            corrected_duration=row['corrected_duration'],
            tags=set(json.loads(row['tags'] or '[]')),
            created_at=from_iso(row['created_at']),
        )

    def to_dict(self) -> dict:
        return {
            'id': self.id,
            'owner': self.owner,
            'project': self.project,
            'description': self.description,
            'startTime': to_iso(self.start_time),
            'endTime': to_iso(self.end_time) if self.end_time else None,
            'duration': self.duration,
            'correctedDuration': self.corrected_duration,
            'tags': sorted(self.tags),
        }


@dataclass
class MergedDay:
    """All completed intervals of one project on one local day."""
    project: str
    day: date
    start_time: datetime
    end_time: datetime
    total_duration: int = 0
    corrected_duration: int = 0
    effective_duration: int = 0
    has_corrected_duration: bool = False
    comments: list = field(default_factory=list)
    entry_ids: list = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            'project': self.project,
            'date': self.day.isoformat(),
            'startTime': to_iso(self.start_time),
            'endTime': to_iso(self.end_time),
            'totalDuration': self.total_duration,
            'correctedDuration': self.corrected_duration,
            'hasCorrectedDuration': self.has_corrected_duration,
            'effectiveDuration': self.effective_duration,
            'comments': list(self.comments),
            'entryIds': list(self.entry_ids),
        }


@dataclass
class ProposedEntry:
    """One interval's share of a balanced day."""
    id: str
    duration: int
    unrounded: float
    corrected_duration: int

    def to_dict(self) -> dict:
        return {
            'id': self.id,
            'duration': self.duration,
            'unrounded': round(self.unrounded, 2),
            'correctedDuration': self.corrected_duration,
        }


@dataclass
class BalanceProposal:
    """Dry-run result of balancing a day; nothing is persisted."""
    day: date
    effective_hours: float
    current_hours: float
    raw_difference: float
    rounded_difference: float
    residual_difference: float
    entries: list = field(default_factory=list)
    infeasible: bool = False  # Residual left because no entry could absorb a step
    requires_confirmation: bool = False

    def to_dict(self) -> dict:
        return {
            'day': self.day.isoformat(),
            'effectiveHours': round(self.effective_hours, 2),
            'currentHours': round(self.current_hours, 2),
            'rawDifference': round(self.raw_difference, 2),
            'roundedDifference': round(self.rounded_difference, 2),
            'residualDifference': round(self.residual_difference, 2),
            'infeasible': self.infeasible,
            'requiresConfirmation': self.requires_confirmation,
            'entries': [e.to_dict() for e in self.entries],
        }


@dataclass(frozen=True)
class Replace:
    """Delete `ids` and insert `record` in their place. Not undoable."""
    ids: tuple
    record: TimeInterval


@dataclass(frozen=True)
class Annotate:
    """Set one annotation column on one record. Undone by annotating None."""
    id: str
    field: str
    value: Optional[int]


StorageMutation = Union[Replace, Annotate]
