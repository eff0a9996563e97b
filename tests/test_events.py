"""Tests for event parsing, outcome classification and the classifier."""

import pytest

from factories import GYM, day, event, row
from scripts.kpi_engine.events import (
    AdminSummary,
    ConsultSummary,
    DmSummary,
    EmailSummary,
    EventType,
    LeadCreated,
    Outcome,
    PhoneSummary,
    SaleRecorded,
    TrainerEntry,
    classify_events,
    classify_outcome,
    parse_event,
    parse_events,
)
from scripts.lib.errors import SchemaValidationError


class TestParseEvent:
    def test_maps_row_columns(self):
        e = parse_event(row("LEAD_CREATED", day(2), lead="c1", author="p1", lead_source="QR Code Scan"))
        assert isinstance(e, LeadCreated)
        assert e.tenant_id == GYM
        assert e.subject_id == "c1"
        assert e.author_id == "p1"
        assert e.occurred_at == day(2)
        assert e.lead_source == "QR Code Scan"

    def test_every_event_type_has_a_variant(self):
        for event_type in EventType:
            e = parse_event(row(event_type.value))
            assert e.event_type is event_type

    def test_event_type_is_case_insensitive(self):
        assert parse_event(row("sale_recorded")).event_type is EventType.SALE_RECORDED

    def test_malformed_numbers_become_zero(self):
        sale = event("SALE_RECORDED", total_paid="abc", deposit_amount=None)
        assert sale.total_paid == 0.0
        assert sale.deposit_amount == 0.0

    def test_numeric_strings_are_read(self):
        assert event("SALE_RECORDED", total_paid="249.50").total_paid == 249.5

    def test_nan_and_bool_become_zero(self):
        assert event("AD_SPEND", amount=float("nan")).amount == 0.0
        assert event("AD_SPEND", amount=True).amount == 0.0

    def test_ad_platform_defaults_to_other(self):
        assert event("AD_SPEND", amount=10).ad_platform == "Other"

    def test_sale_closed_at_prefers_close_date(self):
        sale = event("SALE_RECORDED", day(5), close_date=day(3).isoformat())
        assert isinstance(sale, SaleRecorded)
        assert sale.closed_at == day(3)
        assert event("SALE_RECORDED", day(5)).closed_at == day(5)

    def test_non_mapping_payload_is_empty(self):
        r = row("SALE_RECORDED")
        r["payload"] = "not a dict"
        assert parse_event(r).total_paid == 0.0

    def test_unknown_type_raises(self):
        with pytest.raises(SchemaValidationError):
            parse_event(row("SOMETHING_ELSE"))

    def test_bad_timestamp_raises(self):
        r = row("LEAD_CREATED")
        r["submission_date"] = "yesterday"
        with pytest.raises(SchemaValidationError):
            parse_event(r)

    def test_naive_timestamp_is_utc(self):
        r = row("LEAD_CREATED")
        r["submission_date"] = "2025-06-02T10:00:00"
        assert parse_event(r).occurred_at.utcoffset().total_seconds() == 0


class TestParseEvents:
    def test_skips_bad_rows(self):
        bad = row("LEAD_CREATED")
        bad["submission_date"] = None
        rows = [row("LEAD_CREATED"), bad, row("NOPE"), row("BOOKING_CREATED")]
        events = parse_events(rows)
        assert [e.event_type for e in events] == [EventType.LEAD_CREATED, EventType.BOOKING_CREATED]


class TestDmSummary:
    def test_counters_keep_numeric_values(self):
        summary = event("DM_SUMMARY", texts_sent="12", instagram_inbound=4, note="hi", nested={"a": 1})
        assert isinstance(summary, DmSummary)
        assert summary.texts_sent == 12.0
        assert summary.counter("instagram_inbound") == 4.0
        assert summary.counter("note") == 0.0
        assert summary.counter("nested") == 0.0
        assert summary.counter("missing") == 0.0


class TestSummaryVariants:
    def test_consult_summary(self):
        summary = event(
            "CONSULT_SUMMARY", qualified_leads="6", unqualified_leads=2,
            ql_not_pitched_uql=25, too_expensive___no_budget=3,
        )
        assert isinstance(summary, ConsultSummary)
        assert (summary.qualified_leads, summary.unqualified_leads) == (6.0, 2.0)
        assert summary.ql_not_pitched_uql == 25.0
        assert summary.counter("too_expensive___no_budget") == 3.0

    def test_phone_summary(self):
        summary = event(
            "PHONE_SUMMARY", author="setter-1", phone_source="QR Code Scan",
            rep_name="Sam", total_dials=40, call_answered="12", bad_fit=None,
        )
        assert isinstance(summary, PhoneSummary)
        assert summary.author_id == "setter-1"
        assert summary.phone_source == "QR Code Scan"
        assert summary.rep_name == "Sam"
        assert (summary.total_dials, summary.call_answered, summary.bad_fit) == (40.0, 12.0, 0.0)

    def test_email_summary(self):
        summary = event(
            "EMAIL_SUMMARY", email_platform="Mailchimp", emails_sent=500,
            open_rate=42.5, roi_percent="120",
        )
        assert isinstance(summary, EmailSummary)
        assert summary.email_platform == "Mailchimp"
        assert summary.email_source is None
        assert (summary.emails_sent, summary.open_rate, summary.roi_percent) == (500.0, 42.5, 120.0)
        assert summary.bounce_rate == 0.0

    def test_trainer_entry(self):
        entry = event(
            "TRAINER_ENTRY", client_name="Jo", program_type="Strength",
            sessions_completed=3, attendance_flags=["late", "MISSED", ""], mood_score=None,
        )
        assert isinstance(entry, TrainerEntry)
        assert entry.client_name == "Jo"
        assert entry.sessions_completed == 3.0
        assert entry.attendance_flags == ("LATE", "MISSED")
        assert entry.mood_score is None

    def test_trainer_entry_ignores_non_list_flags(self):
        entry = event("TRAINER_ENTRY", attendance_flags="LATE", mood_score="4")
        assert entry.attendance_flags == ()
        assert entry.mood_score == 4.0

    def test_admin_summary(self):
        summary = event("ADMIN_SUMMARY", period_start="2025-06-01", period_end="not a date")
        assert isinstance(summary, AdminSummary)
        assert summary.period_start is not None and summary.period_start.day == 1
        assert summary.period_end is None


class TestClassifyOutcome:
    @pytest.mark.parametrize("text,expected", [
        ("Showed", Outcome.SHOWED),
        ("showed up", Outcome.SHOWED),
        ("No-show", Outcome.NO_SHOW),
        ("NO SHOW", Outcome.NO_SHOW),
        ("Closed", Outcome.OTHER),
        ("Ghosted", Outcome.OTHER),
        ("", Outcome.OTHER),
        (None, Outcome.OTHER),
        # substring rule: "not" contains "no"
        ("Showed (not on time)", Outcome.NO_SHOW),
    ])
    def test_substring_rule(self, text, expected):
        assert classify_outcome(text) is expected


class TestClassifyEvents:
    def test_groups_by_type_keeping_order(self):
        a = event("LEAD_CREATED", day(3))
        b = event("BOOKING_CREATED", day(1))
        c = event("LEAD_CREATED", day(2))
        classified = classify_events([a, b, c])
        assert classified[EventType.LEAD_CREATED] == (a, c)
        assert classified[EventType.BOOKING_CREATED] == (b,)
        assert classified[EventType.REFUND_ISSUED] == ()
        assert len(classified) == 3
        assert classified.counts() == {"LEAD_CREATED": 2, "BOOKING_CREATED": 1}

    def test_keeps_duplicates(self):
        a = event("LEAD_CREATED")
        assert len(classify_events([a, a])) == 2
