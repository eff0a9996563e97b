"""
Gym KPI Hub — Metric Snapshot Models
======================================

Pydantic models for the engine's output. Each metric group is its own model
with explicit zero defaults; percentages are integers 0-100 (the presentation
layer adds the "%"), currency is whole units, ROAS-style multipliers carry
one decimal.
"""
from __future__ import annotations

from datetime import datetime
from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, Field


# ─── Funnel & Sources ───────────────────────────────────────

class FunnelMetrics(BaseModel):
    """Lead → booking → show → close counts and stage conversion."""
    leads: int = 0
    bookings: int = 0
    shows: int = 0
    closes: int = 0
    booked_pct: int = 0
    lead_to_show_pct: int = 0
    lead_to_sale_pct: int = 0


class SourceCount(BaseModel):
    source: str
    value: int = 0


class LeadSourceMetrics(BaseModel):
    phone: List[SourceCount] = Field(default_factory=list)
    messages: List[SourceCount] = Field(default_factory=list)


# ─── Paid Acquisition ───────────────────────────────────────

class PlatformRoas(BaseModel):
    platform: str
    label: str
    ad_spend: int = 0
    revenue: int = 0
    roas: float = 0.0


class AdEfficiencyMetrics(BaseModel):
    ad_spend: int = 0
    paid_leads: int = 0
    paid_bookings: int = 0
    paid_shows: int = 0
    paid_closes: int = 0
    paid_revenue: int = 0
    roas: float = 0.0
    cac: int = 0
    cpb: int = 0
    cpl: int = 0
    cps: int = 0
    spend_by_platform: Dict[str, int] = Field(default_factory=dict)


class SourceRoiMetrics(BaseModel):
    platforms: List[PlatformRoas] = Field(default_factory=list)


# ─── Revenue, Risk, LTV ─────────────────────────────────────

class RevenueMetrics(BaseModel):
    total_revenue: int = 0
    aov: int = 0
    revenue_per_lead: int = 0
    revenue_per_rep: int = 0


class RiskMetrics(BaseModel):
    refunds: int = 0
    refund_amount: int = 0
    refund_rate_pct: int = 0
    failed_payments: int = 0
    installment_sales: int = 0
    failed_payment_rate_pct: int = 0
    deposit_only: int = 0
    deposit_only_rate_pct: int = 0


class LtvMetrics(BaseModel):
    trials_started: int = 0
    trials_converted: int = 0
    trial_conversion_pct: int = 0
    mrr: int = 0
    net_revenue: int = 0
    ltv_to_cac: float = 0.0


# ─── Timing & Follow-up ─────────────────────────────────────

class TimingMetrics(BaseModel):
    sales_cycle_days: int = 0
    time_to_book_days: int = 0
    sales_cycle_samples: int = 0
    time_to_book_samples: int = 0


class FollowUpMetrics(BaseModel):
    leads_with_followup: int = 0
    leads_with_followup_and_sale: int = 0
    followup_conversion_pct: int = 0


# ─── Channels & Reps ────────────────────────────────────────

class ChannelBookings(BaseModel):
    channel: str
    label: str
    sent: int = 0
    booked: int = 0


class ChannelMetrics(BaseModel):
    channels: List[ChannelBookings] = Field(default_factory=list)


class WeeklySales(BaseModel):
    week: str
    sales: int = 0


class RepPerformanceMetrics(BaseModel):
    weekly: List[WeeklySales] = Field(default_factory=list)


class RepRow(BaseModel):
    """One leaderboard row. rep_id is None only on the placeholder row."""
    rep_id: Optional[str] = None
    name: str = "—"
    bookings: int = 0
    shows: int = 0
    closes: int = 0
    show_rate_pct: int = 0
    close_rate_pct: int = 0
    revenue: int = 0


class LeaderboardMetrics(BaseModel):
    rows: List[RepRow] = Field(default_factory=lambda: [RepRow()])
    self_only: bool = False


# ─── Consult Outcomes ───────────────────────────────────────

class LabelCount(BaseModel):
    label: str
    value: int = 0


class ConsultOutcomeMetrics(BaseModel):
    """Consult-room results and the objections heard there."""
    call_volume: int = 0
    consults_held: int = 0
    show_rate_pct: int = 0
    no_shows: int = 0
    no_show_rate_pct: int = 0
    qualified_leads: int = 0
    qualification_rate_pct: int = 0
    unqualified_leads: int = 0
    unqualified_rate_pct: int = 0
    sales_closed: int = 0
    close_rate_pct: int = 0
    follow_ups_set: int = 0
    follow_up_rate_pct: int = 0
    ql_not_pitched_uql_pct: int = 0
    objections: List[LabelCount] = Field(default_factory=list)


class PaymentShare(BaseModel):
    payment_type: str
    label: str
    sales: int = 0
    share_pct: int = 0


class PaymentMixMetrics(BaseModel):
    """How closed sales were paid; shares are of all closes."""
    methods: List[PaymentShare] = Field(default_factory=list)


# ─── Setting & Email ────────────────────────────────────────

class PhoneSettingMetrics(BaseModel):
    """Phone-setting totals. own_rows_only is set when only the caller's rows count."""
    total_dials: int = 0
    call_answered: int = 0
    booked: int = 0
    showed_up: int = 0
    wrong_number: int = 0
    already_bought: int = 0
    bad_fit: int = 0
    hangup_hostile: int = 0
    cb_requested: int = 0
    sales_closed: int = 0
    answer_rate_pct: int = 0
    own_rows_only: bool = False


class DmSettingMetrics(BaseModel):
    sources: List[SourceCount] = Field(default_factory=list)
    texts_sent: int = 0
    replies_received: int = 0
    booked: int = 0
    showed_up: int = 0
    opt_out: int = 0
    qnr: int = 0
    dead_lead: int = 0
    sales_closed: int = 0
    reply_rate_pct: int = 0
    own_rows_only: bool = False


class EmailMetrics(BaseModel):
    """Campaign totals; rates are weighted by emails sent."""
    emails_sent: int = 0
    open_rate_pct: int = 0
    click_rate_pct: int = 0
    unsubscribe_rate_pct: int = 0
    bounce_rate_pct: int = 0
    conversion_rate_pct: int = 0
    spam_complaints: int = 0
    new_subscribers: int = 0
    engagement_score: int = 0
    average_clicks_per_email: int = 0
    average_opens_per_email: int = 0


class EmailRevenueMetrics(BaseModel):
    revenue_generated: int = 0
    average_revenue_per_email: int = 0
    roi_pct: int = 0


# ─── Snapshot ───────────────────────────────────────────────

SnapshotStatus = Literal["ok", "scope_unavailable"]


class MetricSnapshot(BaseModel):
    """
    Everything the dashboard shows for one gym and period.

    A group the caller may not see is None. status is "scope_unavailable"
    when the events could not be read; every visible group is then zeroed.
    """
    tenant_id: Optional[str] = None
    period_start: Optional[datetime] = None
    period_end: Optional[datetime] = None
    generated_at: Optional[datetime] = None
    status: SnapshotStatus = "ok"
    visible_groups: List[str] = Field(default_factory=list)

    funnel: Optional[FunnelMetrics] = None
    lead_sources: Optional[LeadSourceMetrics] = None
    ad_efficiency: Optional[AdEfficiencyMetrics] = None
    revenue: Optional[RevenueMetrics] = None
    risk: Optional[RiskMetrics] = None
    ltv: Optional[LtvMetrics] = None
    timing: Optional[TimingMetrics] = None
    follow_up: Optional[FollowUpMetrics] = None
    channels: Optional[ChannelMetrics] = None
    source_roi: Optional[SourceRoiMetrics] = None
    rep_performance: Optional[RepPerformanceMetrics] = None
    leaderboard: Optional[LeaderboardMetrics] = None
    consult_outcomes: Optional[ConsultOutcomeMetrics] = None
    payment_mix: Optional[PaymentMixMetrics] = None
    phone_setting: Optional[PhoneSettingMetrics] = None
    dm_setting: Optional[DmSettingMetrics] = None
    email: Optional[EmailMetrics] = None
    email_revenue: Optional[EmailRevenueMetrics] = None

    @property
    def is_available(self) -> bool:
        return self.status == "ok"

    def metrics(self) -> dict:
        """Visible groups only, without run metadata (handy for comparisons)."""
        return self.model_dump(
            include=set(self.visible_groups), exclude_none=True,
        )
