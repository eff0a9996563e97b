"""
Gym KPI Hub — Data Sources
============================

Concrete EventSource / SubjectResolver / RepRegistry implementations.

  SupabaseEventSource, SupabaseSubjectResolver, SupabaseRepRegistry
      Live reads through scripts.lib.supabase_client, each guarded by the
      "supabase" circuit breaker.
  ExportFileStore
      All three protocols over a JSON export
      ({"raw_entries": [...], "clients": [...], "profiles": [...]}),
      used by the CLI for offline reports and by tests.
"""
from __future__ import annotations

import json
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Optional

from scripts.kpi_engine.entities import Representative, SubjectInfo
from scripts.kpi_engine.events import Event, _opt_str, _parse_ts, parse_events
from scripts.lib import supabase_client
from scripts.lib.circuit_breaker import circuit_breaker_call
from scripts.lib.errors import DataFetchError
from scripts.lib.logger import setup_logger

logger = setup_logger("kpi_sources")

SERVICE = "supabase"
REP_ROLE = "trainer"


def _iso_z(moment: datetime) -> str:
    """UTC ISO-8601 with a trailing Z, the format raw_entries stores."""
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


def subject_from_row(row: Mapping[str, Any]) -> Optional[SubjectInfo]:
    """A clients row -> SubjectInfo (source from payload.lead_source, rep from profile_id)."""
    if row.get("id") in (None, ""):
        return None
    payload = row.get("payload")
    if not isinstance(payload, Mapping):
        payload = {}
    return SubjectInfo(
        id=str(row["id"]),
        source=_opt_str(payload.get("lead_source")),
        assigned_rep_id=_opt_str(row.get("profile_id")),
    )


def rep_from_row(row: Mapping[str, Any], tenant_id: str) -> Optional[Representative]:
    if row.get("id") in (None, ""):
        return None
    return Representative(
        id=str(row["id"]),
        display_name=_opt_str(row.get("display_name")) or str(row["id"]),
        tenant_id=str(row.get("gym_id") or tenant_id),
    )


# ---------------------------------------------------------------------------
# Supabase
# ---------------------------------------------------------------------------

class SupabaseEventSource:
    """Reads raw_entries for one gym and period."""

    def __init__(self, failure_threshold: int = 5, reset_timeout: int = 60):
        self.failure_threshold = failure_threshold
        self.reset_timeout = reset_timeout

    def fetch(self, tenant_id: str, start: datetime, end: datetime) -> List[Event]:
        rows = circuit_breaker_call(
            SERVICE, supabase_client.fetch_raw_entries,
            tenant_id, _iso_z(start), _iso_z(end),
            failure_threshold=self.failure_threshold,
            reset_timeout=self.reset_timeout,
        )
        return parse_events(rows)


class SupabaseSubjectResolver:
    """Resolves lead ids against the clients table in batches."""

    def resolve_subjects(self, subject_ids: Iterable[str]) -> Dict[str, SubjectInfo]:
        rows = circuit_breaker_call(SERVICE, supabase_client.fetch_clients, list(subject_ids))
        subjects: Dict[str, SubjectInfo] = {}
        for row in rows:
            info = subject_from_row(row)
            if info is not None:
                subjects[info.id] = info
        return subjects


class SupabaseRepRegistry:
    """Reps are the gym's profiles with the trainer role."""

    def __init__(self, role: str = REP_ROLE):
        self.role = role

    def list_reps(self, tenant_id: str) -> List[Representative]:
        rows = circuit_breaker_call(SERVICE, supabase_client.fetch_profiles, tenant_id, self.role)
        return [rep for rep in (rep_from_row(r, tenant_id) for r in rows) if rep is not None]


# ---------------------------------------------------------------------------
# JSON export
# ---------------------------------------------------------------------------

class ExportFileStore:
    """EventSource, SubjectResolver and RepRegistry over one exported JSON document."""

    def __init__(self, data: Mapping[str, Any], rep_role: str = REP_ROLE):
        self.raw_entries: List[Dict] = list(data.get("raw_entries") or [])
        self.clients: List[Dict] = list(data.get("clients") or [])
        self.profiles: List[Dict] = list(data.get("profiles") or [])
        self.rep_role = rep_role

    @classmethod
    def from_file(cls, path: str | Path, rep_role: str = REP_ROLE) -> "ExportFileStore":
        """
        Load an export file.

        Raises:
            DataFetchError: If the file is missing or is not valid JSON.
        """
        path = Path(path)
        try:
            with open(path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise DataFetchError(f"Cannot read export {path}: {e}", source=str(path)) from e
        if not isinstance(data, dict):
            raise DataFetchError(f"Export {path} must be a JSON object", source=str(path))
        logger.info(
            "Loaded export %s: %d raw entries, %d clients, %d profiles",
            path.name, len(data.get("raw_entries") or []),
            len(data.get("clients") or []), len(data.get("profiles") or []),
        )
        return cls(data, rep_role=rep_role)

    def fetch(self, tenant_id: str, start: datetime, end: datetime) -> List[Event]:
        rows = []
        for row in self.raw_entries:
            if str(row.get("gym_id") or "") != tenant_id:
                continue
            submitted = _parse_ts(row.get("submission_date"))
            # unparseable timestamps are left for parse_events to report
            if submitted is None or start <= submitted < end:
                rows.append(row)
        return parse_events(rows)

    def resolve_subjects(self, subject_ids: Iterable[str]) -> Dict[str, SubjectInfo]:
        wanted = set(subject_ids)
        subjects: Dict[str, SubjectInfo] = {}
        for row in self.clients:
            info = subject_from_row(row)
            if info is not None and info.id in wanted:
                subjects[info.id] = info
        return subjects

    def list_reps(self, tenant_id: str) -> List[Representative]:
        reps = []
        for row in self.profiles:
            if str(row.get("gym_id") or "") != tenant_id or row.get("role") != self.rep_role:
                continue
            rep = rep_from_row(row, tenant_id)
            if rep is not None:
                reps.append(rep)
        return reps
