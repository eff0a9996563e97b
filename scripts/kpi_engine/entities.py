"""
Gym KPI Hub — Scope and Entity Lookups
========================================

The read-only inputs of one engine run besides the events themselves:
  EventScope     - tenant + half-open [start, end) window
  SubjectInfo    - a lead/client's acquisition source and assigned rep
  Representative - a rep (trainer) profile in the tenant
  EntityLookup   - the resolved subjects and reps for one run

And the collaborator protocols the engine fetches them through
(EventSource, SubjectResolver, RepRegistry).
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from functools import cached_property
from typing import Dict, Iterable, List, Mapping, Optional, Protocol, Tuple

from scripts.kpi_engine.events import Event


@dataclass(frozen=True)
class EventScope:
    tenant_id: str
    start: datetime
    end: datetime

    @property
    def is_valid(self) -> bool:
        return bool(self.tenant_id) and self.start < self.end

    def contains(self, moment: datetime) -> bool:
        """Half-open membership: start <= moment < end."""
        return self.start <= moment < self.end

    def week_starts(self, min_weeks: int = 4) -> List[datetime]:
        """Start of each 7-day bucket from the window start."""
        starts = []
        cursor = self.start
        while cursor < self.end or len(starts) < min_weeks:
            starts.append(cursor)
            cursor += timedelta(days=7)
        return starts


def as_utc(moment: datetime) -> datetime:
    """Treat naive datetimes as UTC."""
    if moment.tzinfo is None:
        return moment.replace(tzinfo=timezone.utc)
    return moment


def month_window(now: Optional[datetime] = None) -> Tuple[datetime, datetime]:
    """[first day of this month 00:00, first day of next month) in UTC."""
    now = as_utc(now or datetime.now(timezone.utc)).astimezone(timezone.utc)
    start = now.replace(day=1, hour=0, minute=0, second=0, microsecond=0)
    if start.month == 12:
        end = start.replace(year=start.year + 1, month=1)
    else:
        end = start.replace(month=start.month + 1)
    return start, end


@dataclass(frozen=True)
class SubjectInfo:
    id: str
    source: Optional[str] = None
    assigned_rep_id: Optional[str] = None


@dataclass(frozen=True)
class Representative:
    id: str
    display_name: str
    tenant_id: str


@dataclass(frozen=True)
class EntityLookup:
    """Subjects and reps resolved for one run. Missing ids are unattributed."""

    subjects: Mapping[str, SubjectInfo] = field(default_factory=dict)
    reps: Tuple[Representative, ...] = ()

    def resolve_subject(self, subject_id: Optional[str]) -> Optional[SubjectInfo]:
        if not subject_id:
            return None
        return self.subjects.get(subject_id)

    def source_of(self, subject_id: Optional[str]) -> Optional[str]:
        info = self.resolve_subject(subject_id)
        return info.source if info else None

    def rep_of(self, subject_id: Optional[str]) -> Optional[str]:
        """The subject's assigned rep, only if that rep belongs to the tenant."""
        info = self.resolve_subject(subject_id)
        if info is None or not info.assigned_rep_id:
            return None
        return info.assigned_rep_id if info.assigned_rep_id in self.rep_ids else None

    @cached_property
    def rep_ids(self) -> frozenset:
        return frozenset(r.id for r in self.reps)

    @cached_property
    def _names(self) -> Dict[str, str]:
        return {r.id: r.display_name or r.id for r in self.reps}

    def rep_name(self, rep_id: str) -> str:
        return self._names.get(rep_id, rep_id)


# ---------------------------------------------------------------------------
# Collaborator protocols
# ---------------------------------------------------------------------------

class EventSource(Protocol):
    def fetch(self, tenant_id: str, start: datetime, end: datetime) -> List[Event]:
        """Events with start <= occurred_at < end; no ordering implied."""
        ...


class SubjectResolver(Protocol):
    def resolve_subjects(self, subject_ids: Iterable[str]) -> Dict[str, SubjectInfo]:
        """Resolve many subjects at once; unknown ids are simply absent."""
        ...


class RepRegistry(Protocol):
    def list_reps(self, tenant_id: str) -> List[Representative]:
        ...
