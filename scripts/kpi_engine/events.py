"""
Gym KPI Hub — Event Model
===========================

Typed business events read from the append-only `raw_entries` table.

Every event type is its own frozen dataclass with a fixed attribute set, so
calculators read `sale.total_paid` instead of digging through an untyped payload.
Rows are parsed once at the boundary (`parse_events`); a row that cannot be
parsed is skipped and logged, and a numeric attribute that is missing or not a
number becomes 0.

Exports:
    EventType, Event (+ one subclass per type), Outcome, classify_outcome,
    is_attended, parse_event, parse_events, ClassifiedEvents, classify_events
"""
from __future__ import annotations

import math
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, ClassVar, Dict, Iterable, List, Mapping, Optional, Tuple, Type

from scripts.lib.errors import SchemaValidationError
from scripts.lib.logger import setup_logger

logger = setup_logger("kpi_events")


class EventType(str, Enum):
    LEAD_CREATED = "LEAD_CREATED"
    BOOKING_CREATED = "BOOKING_CREATED"
    SHOW_RECORDED = "SHOW_RECORDED"
    SALE_RECORDED = "SALE_RECORDED"
    REFUND_ISSUED = "REFUND_ISSUED"
    PAYMENT_FAILED = "PAYMENT_FAILED"
    DEPOSIT_ONLY = "DEPOSIT_ONLY"
    AD_SPEND = "AD_SPEND"
    TRIAL_STARTED = "TRIAL_STARTED"
    TRIAL_CONVERTED = "TRIAL_CONVERTED"
    RECURRING_PAYMENT = "RECURRING_PAYMENT"
    CONVERSATION_STARTED = "CONVERSATION_STARTED"
    REPLY_RECEIVED = "REPLY_RECEIVED"
    FOLLOW_UP_SET = "FOLLOW_UP_SET"
    TRAINER_ENTRY = "TRAINER_ENTRY"
    ADMIN_SUMMARY = "ADMIN_SUMMARY"
    PHONE_SUMMARY = "PHONE_SUMMARY"
    DM_SUMMARY = "DM_SUMMARY"
    EMAIL_SUMMARY = "EMAIL_SUMMARY"
    CONSULT_SUMMARY = "CONSULT_SUMMARY"


# ---------------------------------------------------------------------------
# Attribute coercion
# ---------------------------------------------------------------------------

def _safe_float(val, default: float = 0.0) -> float:
    """Convert to a finite float; anything else becomes the default."""
    if val is None or isinstance(val, bool):
        return default
    try:
        num = float(val)
    except (ValueError, TypeError):
        return default
    if math.isnan(num) or math.isinf(num):
        return default
    return num


def _parse_ts(value) -> Optional[datetime]:
    """Parse an ISO-8601 string (or datetime) to a timezone-aware datetime."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        dt = value
    else:
        try:
            dt = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
        except (ValueError, TypeError):
            return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def _opt_str(val) -> Optional[str]:
    if val is None:
        return None
    text = str(val).strip()
    return text or None


# ---------------------------------------------------------------------------
# Event variants
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Event:
    """Fields shared by every event; subclasses add the type's attributes."""

    event_type: ClassVar[EventType]

    id: str
    tenant_id: str
    occurred_at: datetime
    subject_id: Optional[str] = None
    author_id: Optional[str] = None

    @classmethod
    def attributes_from(cls, payload: Mapping[str, Any]) -> Dict[str, Any]:
        """Map a raw payload to this type's attribute kwargs."""
        return {}


@dataclass(frozen=True)
class LeadCreated(Event):
    event_type: ClassVar[EventType] = EventType.LEAD_CREATED
    lead_source: Optional[str] = None

    @classmethod
    def attributes_from(cls, payload):
        return {"lead_source": _opt_str(payload.get("lead_source"))}


@dataclass(frozen=True)
class BookingCreated(Event):
    event_type: ClassVar[EventType] = EventType.BOOKING_CREATED
    channel: Optional[str] = None

    @classmethod
    def attributes_from(cls, payload):
        channel = _opt_str(payload.get("channel"))
        return {"channel": channel.upper() if channel else None}


@dataclass(frozen=True)
class ShowRecorded(Event):
    event_type: ClassVar[EventType] = EventType.SHOW_RECORDED
    outcome: str = ""

    @classmethod
    def attributes_from(cls, payload):
        outcome = payload.get("outcome")
        return {"outcome": "" if outcome is None else str(outcome)}


@dataclass(frozen=True)
class SaleRecorded(Event):
    event_type: ClassVar[EventType] = EventType.SALE_RECORDED
    total_paid: float = 0.0
    deposit_amount: float = 0.0
    payment_type: Optional[str] = None
    close_date: Optional[datetime] = None

    @classmethod
    def attributes_from(cls, payload):
        return {
            "total_paid": _safe_float(payload.get("total_paid")),
            "deposit_amount": _safe_float(payload.get("deposit_amount")),
            "payment_type": _opt_str(payload.get("payment_type")),
            "close_date": _parse_ts(payload.get("close_date")),
        }

    @property
    def closed_at(self) -> datetime:
        """The sale's own close date when recorded, else when it was logged."""
        return self.close_date or self.occurred_at


@dataclass(frozen=True)
class _AmountEvent(Event):
    amount: float = 0.0

    @classmethod
    def attributes_from(cls, payload):
        return {"amount": _safe_float(payload.get("amount"))}


@dataclass(frozen=True)
class RefundIssued(_AmountEvent):
    event_type: ClassVar[EventType] = EventType.REFUND_ISSUED


@dataclass(frozen=True)
class PaymentFailed(_AmountEvent):
    event_type: ClassVar[EventType] = EventType.PAYMENT_FAILED


@dataclass(frozen=True)
class DepositOnly(_AmountEvent):
    event_type: ClassVar[EventType] = EventType.DEPOSIT_ONLY


@dataclass(frozen=True)
class AdSpend(_AmountEvent):
    event_type: ClassVar[EventType] = EventType.AD_SPEND
    ad_platform: str = "Other"

    @classmethod
    def attributes_from(cls, payload):
        return {
            "amount": _safe_float(payload.get("amount")),
            "ad_platform": _opt_str(payload.get("ad_platform")) or "Other",
        }


@dataclass(frozen=True)
class RecurringPayment(_AmountEvent):
    event_type: ClassVar[EventType] = EventType.RECURRING_PAYMENT
    recurring_amount: float = 0.0

    @classmethod
    def attributes_from(cls, payload):
        return {
            "amount": _safe_float(payload.get("amount")),
            "recurring_amount": _safe_float(payload.get("recurring_amount")),
        }


@dataclass(frozen=True)
class TrialStarted(Event):
    event_type: ClassVar[EventType] = EventType.TRIAL_STARTED
    started_on: Optional[datetime] = None

    @classmethod
    def attributes_from(cls, payload):
        return {"started_on": _parse_ts(payload.get("trial_started_date"))}


@dataclass(frozen=True)
class TrialConverted(Event):
    event_type: ClassVar[EventType] = EventType.TRIAL_CONVERTED
    converted_on: Optional[datetime] = None

    @classmethod
    def attributes_from(cls, payload):
        return {"converted_on": _parse_ts(payload.get("trial_converted_date"))}


@dataclass(frozen=True)
class _ConversationEvent(Event):
    channel: Optional[str] = None

    @classmethod
    def attributes_from(cls, payload):
        channel = _opt_str(payload.get("channel"))
        return {"channel": channel.upper() if channel else None}


@dataclass(frozen=True)
class ConversationStarted(_ConversationEvent):
    event_type: ClassVar[EventType] = EventType.CONVERSATION_STARTED


@dataclass(frozen=True)
class ReplyReceived(_ConversationEvent):
    event_type: ClassVar[EventType] = EventType.REPLY_RECEIVED


@dataclass(frozen=True)
class FollowUpSet(Event):
    event_type: ClassVar[EventType] = EventType.FOLLOW_UP_SET
    follow_up_on: Optional[datetime] = None

    @classmethod
    def attributes_from(cls, payload):
        return {"follow_up_on": _parse_ts(payload.get("follow_up_date"))}


@dataclass(frozen=True)
class TrainerEntry(Event):
    """A trainer's or coach's session log for one client."""

    event_type: ClassVar[EventType] = EventType.TRAINER_ENTRY
    client_name: Optional[str] = None
    program_type: Optional[str] = None
    sessions_completed: float = 0.0
    attendance_flags: Tuple[str, ...] = ()
    mood_score: Optional[float] = None

    @classmethod
    def attributes_from(cls, payload):
        flags = payload.get("attendance_flags")
        mood = payload.get("mood_score")
        return {
            "client_name": _opt_str(payload.get("client_name")),
            "program_type": _opt_str(payload.get("program_type")),
            "sessions_completed": _safe_float(payload.get("sessions_completed")),
            "attendance_flags": tuple(
                str(f).upper() for f in flags if f
            ) if isinstance(flags, (list, tuple)) else (),
            "mood_score": None if mood in (None, "") else _safe_float(mood),
        }


@dataclass(frozen=True)
class AdminSummary(Event):
    """Marks a reporting period an owner or admin closed off."""

    event_type: ClassVar[EventType] = EventType.ADMIN_SUMMARY
    period_start: Optional[datetime] = None
    period_end: Optional[datetime] = None

    @classmethod
    def attributes_from(cls, payload):
        return {
            "period_start": _parse_ts(payload.get("period_start")),
            "period_end": _parse_ts(payload.get("period_end")),
        }


def _numeric_counters(payload: Mapping[str, Any]) -> Tuple[Tuple[str, float], ...]:
    return tuple(sorted(
        (str(k), _safe_float(v)) for k, v in payload.items()
        if v is not None and not isinstance(v, (bool, dict, list))
    ))


@dataclass(frozen=True)
class _TalliedSummary(Event):
    """A summary whose form adds one numeric field per vocabulary label."""

    # (payload key, count) for every numeric field on the summary
    counters: Tuple[Tuple[str, float], ...] = field(default_factory=tuple)

    def counter(self, key: str) -> float:
        for name, value in self.counters:
            if name == key:
                return value
        return 0.0


@dataclass(frozen=True)
class ConsultSummary(_TalliedSummary):
    """Consult outcome tallies; objection counts live in counters."""

    event_type: ClassVar[EventType] = EventType.CONSULT_SUMMARY
    qualified_leads: float = 0.0
    unqualified_leads: float = 0.0
    ql_not_pitched_uql: float = 0.0

    @classmethod
    def attributes_from(cls, payload):
        return {
            "qualified_leads": _safe_float(payload.get("qualified_leads")),
            "unqualified_leads": _safe_float(payload.get("unqualified_leads")),
            "ql_not_pitched_uql": _safe_float(payload.get("ql_not_pitched_uql")),
            "counters": _numeric_counters(payload),
        }


PHONE_TALLIES = (
    "total_dials", "call_answered", "booked", "showed_up", "wrong_number",
    "already_bought", "bad_fit", "hangup_hostile", "cb_requested", "sales_closed",
)


@dataclass(frozen=True)
class PhoneSummary(Event):
    """A setter's phone session: dial outcomes for one lead source."""

    event_type: ClassVar[EventType] = EventType.PHONE_SUMMARY
    phone_source: Optional[str] = None
    rep_name: Optional[str] = None
    total_dials: float = 0.0
    call_answered: float = 0.0
    booked: float = 0.0
    showed_up: float = 0.0
    wrong_number: float = 0.0
    already_bought: float = 0.0
    bad_fit: float = 0.0
    hangup_hostile: float = 0.0
    cb_requested: float = 0.0
    sales_closed: float = 0.0

    @classmethod
    def attributes_from(cls, payload):
        attrs = {name: _safe_float(payload.get(name)) for name in PHONE_TALLIES}
        attrs["phone_source"] = _opt_str(payload.get("phone_source"))
        attrs["rep_name"] = _opt_str(payload.get("rep_name"))
        return attrs


EMAIL_FIELDS = (
    "emails_sent", "open_rate", "click_rate", "unsubscribe_rate", "bounce_rate",
    "conversion_rate", "spam_complaints", "revenue_generated", "new_subscribers",
    "engagement_score", "average_clicks_per_email", "average_opens_per_email",
    "average_revenue_per_email", "roi_percent",
)


@dataclass(frozen=True)
class EmailSummary(Event):
    """One campaign's results. Rates are percentages of emails_sent."""

    event_type: ClassVar[EventType] = EventType.EMAIL_SUMMARY
    email_platform: Optional[str] = None
    email_source: Optional[str] = None
    emails_sent: float = 0.0
    open_rate: float = 0.0
    click_rate: float = 0.0
    unsubscribe_rate: float = 0.0
    bounce_rate: float = 0.0
    conversion_rate: float = 0.0
    spam_complaints: float = 0.0
    revenue_generated: float = 0.0
    new_subscribers: float = 0.0
    engagement_score: float = 0.0
    average_clicks_per_email: float = 0.0
    average_opens_per_email: float = 0.0
    average_revenue_per_email: float = 0.0
    roi_percent: float = 0.0

    @classmethod
    def attributes_from(cls, payload):
        attrs = {name: _safe_float(payload.get(name)) for name in EMAIL_FIELDS}
        attrs["email_platform"] = _opt_str(payload.get("email_platform"))
        attrs["email_source"] = _opt_str(payload.get("email_source"))
        return attrs


DM_TALLIES = (
    "texts_sent", "replies_received", "booked", "showed_up", "opt_out", "qnr",
    "dead_lead", "sales_closed",
)


@dataclass(frozen=True)
class DmSummary(_TalliedSummary):
    """A DM setter's session; per-source message counts live in counters."""

    event_type: ClassVar[EventType] = EventType.DM_SUMMARY
    dm_setter_name: Optional[str] = None
    texts_sent: float = 0.0
    replies_received: float = 0.0
    booked: float = 0.0
    showed_up: float = 0.0
    opt_out: float = 0.0
    qnr: float = 0.0
    dead_lead: float = 0.0
    sales_closed: float = 0.0

    @classmethod
    def attributes_from(cls, payload):
        attrs = {name: _safe_float(payload.get(name)) for name in DM_TALLIES}
        attrs["dm_setter_name"] = _opt_str(payload.get("dm_setter_name"))
        attrs["counters"] = _numeric_counters(payload)
        return attrs


EVENT_VARIANTS: Dict[EventType, Type[Event]] = {
    cls.event_type: cls
    for cls in (
        LeadCreated, BookingCreated, ShowRecorded, SaleRecorded, RefundIssued,
        PaymentFailed, DepositOnly, AdSpend, TrialStarted, TrialConverted,
        RecurringPayment, ConversationStarted, ReplyReceived, FollowUpSet,
        TrainerEntry, AdminSummary, PhoneSummary, DmSummary, EmailSummary,
        ConsultSummary,
    )
}


# ---------------------------------------------------------------------------
# Show outcomes
# ---------------------------------------------------------------------------

class Outcome(str, Enum):
    SHOWED = "showed"
    NO_SHOW = "no_show"
    OTHER = "other"


def classify_outcome(text: Optional[str]) -> Outcome:
    """Classify a free-text show outcome.

    Matching is by substring on the lowercased text: "show" without "no" is a
    show, "no" together with "show" is a no-show. Note that an outcome such as
    "Showed (not on time)" counts as a no-show because it contains "no".
    """
    lowered = (text or "").lower()
    if "show" in lowered and "no" not in lowered:
        return Outcome.SHOWED
    if "no" in lowered and "show" in lowered:
        return Outcome.NO_SHOW
    return Outcome.OTHER


def is_attended(event: ShowRecorded) -> bool:
    return classify_outcome(event.outcome) is Outcome.SHOWED


# ---------------------------------------------------------------------------
# Row parsing
# ---------------------------------------------------------------------------

def parse_event(row: Mapping[str, Any]) -> Event:
    """
    Build a typed event from a raw_entries row.

    Raises:
        SchemaValidationError: Unknown event type, missing id or unparseable timestamp.
    """
    raw_type = str(row.get("event_type") or "").strip().upper()
    try:
        event_type = EventType(raw_type)
    except ValueError:
        raise SchemaValidationError(f"Unknown event type {raw_type!r}", field="event_type")

    if row.get("id") in (None, ""):
        raise SchemaValidationError("Event row has no id", field="id")

    occurred_at = _parse_ts(row.get("submission_date"))
    if occurred_at is None:
        raise SchemaValidationError(
            f"Unparseable submission_date {row.get('submission_date')!r}",
            field="submission_date",
        )

    payload = row.get("payload")
    if not isinstance(payload, Mapping):
        payload = {}

    cls = EVENT_VARIANTS[event_type]
    return cls(
        id=str(row["id"]),
        tenant_id=str(row.get("gym_id") or ""),
        occurred_at=occurred_at,
        subject_id=_opt_str(row.get("lead_id")),
        author_id=_opt_str(row.get("profile_id")),
        **cls.attributes_from(payload),
    )


def parse_events(rows: Iterable[Mapping[str, Any]]) -> List[Event]:
    """Parse rows, skipping (and logging) the ones that are not valid events."""
    events: List[Event] = []
    skipped = 0
    for row in rows:
        try:
            events.append(parse_event(row))
        except SchemaValidationError as e:
            skipped += 1
            logger.debug("Skipping raw entry %s: %s", row.get("id"), e)
    if skipped:
        logger.warning("Skipped %d unparseable raw entries", skipped)
    return events


# ---------------------------------------------------------------------------
# Classifier
# ---------------------------------------------------------------------------

class ClassifiedEvents:
    """Read-only partition of one scope's events by event type."""

    def __init__(self, by_type: Mapping[EventType, Tuple[Event, ...]]):
        self._by_type = dict(by_type)

    def __getitem__(self, event_type: EventType) -> Tuple[Event, ...]:
        return self._by_type.get(event_type, ())

    def __len__(self) -> int:
        return sum(len(v) for v in self._by_type.values())

    def types(self) -> List[EventType]:
        return [t for t in EventType if t in self._by_type]

    def counts(self) -> Dict[str, int]:
        return {t.value: len(self._by_type[t]) for t in self.types()}


def classify_events(events: Iterable[Event]) -> ClassifiedEvents:
    """Group events by type, keeping every event and its original order."""
    grouped: Dict[EventType, List[Event]] = defaultdict(list)
    for event in events:
        grouped[event.event_type].append(event)
    return ClassifiedEvents({t: tuple(evs) for t, evs in grouped.items()})
