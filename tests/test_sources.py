"""Tests for the Supabase-backed and JSON-export data sources."""

import json
from unittest.mock import MagicMock, patch

import pytest

from factories import END, GYM, START, day, row
from scripts.kpi_engine.events import EventType
from scripts.kpi_engine.sources import (
    ExportFileStore,
    SupabaseEventSource,
    SupabaseRepRegistry,
    SupabaseSubjectResolver,
    _iso_z,
)
from scripts.lib import supabase_client
from scripts.lib.errors import CircuitOpenError, DataFetchError


def _query(data):
    """A supabase query-builder mock whose chained calls end in .execute()."""
    query = MagicMock()
    for name in ("select", "eq", "gte", "lt", "order", "range", "in_", "limit"):
        getattr(query, name).return_value = query
    query.execute.return_value = MagicMock(data=data)
    return query


def _client(data):
    client = MagicMock()
    client.table.return_value = _query(data)
    return client


class TestSupabaseEventSource:
    def test_parses_rows(self):
        rows = [row("LEAD_CREATED", day(1), lead="c1"), row("NOT_A_TYPE")]
        with patch.object(supabase_client, "get_client", return_value=_client(rows)):
            events = SupabaseEventSource().fetch(GYM, START, END)
        assert [e.event_type for e in events] == [EventType.LEAD_CREATED]

    def test_query_bounds(self):
        client = _client([])
        with patch.object(supabase_client, "get_client", return_value=client):
            SupabaseEventSource().fetch(GYM, START, END)
        query = client.table.return_value
        client.table.assert_called_with("raw_entries")
        query.eq.assert_any_call("gym_id", GYM)
        query.gte.assert_called_with("submission_date", "2025-06-01T00:00:00Z")
        query.lt.assert_called_with("submission_date", "2025-07-01T00:00:00Z")

    def test_pages_through_results(self):
        client = MagicMock()
        query = _query(None)
        query.execute.side_effect = [
            MagicMock(data=[row("LEAD_CREATED")] * supabase_client.PAGE_SIZE),
            MagicMock(data=[row("LEAD_CREATED")]),
        ]
        client.table.return_value = query
        with patch.object(supabase_client, "get_client", return_value=client):
            events = SupabaseEventSource().fetch(GYM, START, END)
        assert len(events) == supabase_client.PAGE_SIZE + 1
        query.range.assert_any_call(supabase_client.PAGE_SIZE, 2 * supabase_client.PAGE_SIZE - 1)

    def test_failure_raises_fetch_error_after_retries(self):
        client = MagicMock()
        client.table.side_effect = RuntimeError("boom")
        with patch.object(supabase_client, "get_client", return_value=client), \
                patch("time.sleep"):
            with pytest.raises(DataFetchError):
                SupabaseEventSource().fetch(GYM, START, END)
        assert client.table.call_count == supabase_client.FETCH_ATTEMPTS

    def test_circuit_opens(self):
        client = MagicMock()
        client.table.side_effect = RuntimeError("boom")
        source = SupabaseEventSource(failure_threshold=1, reset_timeout=60)
        with patch.object(supabase_client, "get_client", return_value=client), \
                patch("time.sleep"):
            with pytest.raises(DataFetchError):
                source.fetch(GYM, START, END)
            with pytest.raises(CircuitOpenError):
                source.fetch(GYM, START, END)


class TestSupabaseResolvers:
    def test_subjects(self):
        data = [
            {"id": "c1", "profile_id": "r1", "payload": {"lead_source": "QR Code Scan"}},
            {"id": "c2", "profile_id": None, "payload": None},
        ]
        with patch.object(supabase_client, "get_client", return_value=_client(data)):
            subjects = SupabaseSubjectResolver().resolve_subjects(["c1", "c2", "c3"])
        assert subjects["c1"].source == "QR Code Scan"
        assert subjects["c1"].assigned_rep_id == "r1"
        assert subjects["c2"].source is None
        assert "c3" not in subjects

    def test_reps_are_trainers(self):
        client = _client([{"id": "r1", "display_name": "Sam", "role": "trainer", "gym_id": GYM}])
        with patch.object(supabase_client, "get_client", return_value=client):
            reps = SupabaseRepRegistry().list_reps(GYM)
        assert [(r.id, r.display_name) for r in reps] == [("r1", "Sam")]
        client.table.return_value.eq.assert_any_call("role", "trainer")


class TestExportFileStore:
    def _export(self, tmp_path):
        data = {
            "raw_entries": [
                row("LEAD_CREATED", day(1), lead="c1"),
                row("LEAD_CREATED", END, lead="c2"),
                row("LEAD_CREATED", day(2), lead="c3", gym="gym-2"),
            ],
            "clients": [{"id": "c1", "profile_id": "r1", "payload": {"lead_source": "Google Ads / SEO"}}],
            "profiles": [
                {"id": "r1", "display_name": "Sam", "role": "trainer", "gym_id": GYM},
                {"id": "o1", "display_name": "Owner", "role": "owner", "gym_id": GYM},
                {"id": "r9", "display_name": "Elsewhere", "role": "trainer", "gym_id": "gym-2"},
            ],
        }
        path = tmp_path / "export.json"
        path.write_text(json.dumps(data), encoding="utf-8")
        return ExportFileStore.from_file(path)

    def test_fetch_filters_scope(self, tmp_path):
        store = self._export(tmp_path)
        events = store.fetch(GYM, START, END)
        assert [e.subject_id for e in events] == ["c1"]

    def test_lookups(self, tmp_path):
        store = self._export(tmp_path)
        assert store.resolve_subjects(["c1", "c2"])["c1"].source == "Google Ads / SEO"
        assert [r.id for r in store.list_reps(GYM)] == ["r1"]

    def test_missing_file(self, tmp_path):
        with pytest.raises(DataFetchError):
            ExportFileStore.from_file(tmp_path / "nope.json")

    def test_not_an_object(self, tmp_path):
        path = tmp_path / "list.json"
        path.write_text("[]", encoding="utf-8")
        with pytest.raises(DataFetchError):
            ExportFileStore.from_file(path)


def test_iso_z_converts_to_utc():
    from datetime import datetime, timedelta, timezone

    eastern = timezone(timedelta(hours=-5))
    assert _iso_z(datetime(2025, 6, 1, 19, 0, tzinfo=eastern)) == "2025-06-02T00:00:00Z"
