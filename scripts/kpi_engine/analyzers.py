"""
Gym KPI Hub — Metric Calculators
==================================

One analyzer per metric family. Each reads the classified events plus the
resolved entities and returns its own metric group models, so analyzers are
independent of each other and can run in any order or in parallel:

  FunnelAnalyzer         - leads, bookings, shows, closes, stage conversion
  LeadSourceAnalyzer     - lead counts per phone source and DM source
  AttributionAnalyzer    - paid funnel, ad spend, CAC/CPB/CPL/CPS, ROAS
  RevenueRiskAnalyzer    - revenue, AOV, refunds, failed payments, trials, MRR
  TimingAnalyzer         - sales cycle and time to book
  FollowUpAnalyzer       - follow-up conversion
  ChannelAnalyzer        - bookings per channel against outbound volume
  ConsultOutcomeAnalyzer - consults held, qualification, objections, payment mix
  SettingAnalyzer        - phone and DM setting totals
  EmailAnalyzer          - email campaign rates and revenue
  LeaderboardAnalyzer    - per-rep table and weekly sales

Rounding: percentages and currency are rounded half up (2.5 -> 3) to whole
numbers, multipliers to one decimal. Every ratio with a zero denominator is 0.
"""
from __future__ import annotations

import math
from collections import Counter, defaultdict
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Set, Tuple

from pydantic import BaseModel

from models.kpi_models import (
    AdEfficiencyMetrics,
    ChannelBookings,
    ChannelMetrics,
    ConsultOutcomeMetrics,
    DmSettingMetrics,
    EmailMetrics,
    EmailRevenueMetrics,
    FollowUpMetrics,
    FunnelMetrics,
    LabelCount,
    LeaderboardMetrics,
    LeadSourceMetrics,
    LtvMetrics,
    PaymentMixMetrics,
    PaymentShare,
    PhoneSettingMetrics,
    PlatformRoas,
    RepPerformanceMetrics,
    RepRow,
    RevenueMetrics,
    RiskMetrics,
    SourceCount,
    SourceRoiMetrics,
    TimingMetrics,
    WeeklySales,
)
from scripts.kpi_engine.entities import EntityLookup, EventScope
from scripts.kpi_engine.events import (
    DM_TALLIES,
    PHONE_TALLIES,
    ClassifiedEvents,
    EventType,
    Outcome,
    classify_outcome,
    is_attended,
)
from scripts.kpi_engine.permissions import MetricGroup, Permissions
from scripts.kpi_engine.vocabulary import Vocabulary, label_key
from scripts.lib.logger import setup_logger

logger = setup_logger("kpi_analyzers")

SELF_PLACEHOLDER = "You"
EMPTY_PLACEHOLDER = "—"


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _safe_div(numerator: float, denominator: float, default: float = 0.0) -> float:
    """Zero-safe division."""
    if denominator == 0:
        return default
    return numerator / denominator


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def _pct(numerator: float, denominator: float) -> int:
    """Whole-number percentage clamped to 0..100; 0 when the denominator is 0."""
    if not denominator:
        return 0
    return max(0, min(100, _round_half_up(numerator / denominator * 100)))


def _money(value: float) -> int:
    return _round_half_up(value)


def _one_decimal(value: float) -> float:
    return math.floor(value * 10 + 0.5) / 10


def _ratio(numerator: float, denominator: float) -> float:
    """Multiplier such as ROAS, one decimal; 0.0 when the denominator is 0."""
    if not denominator:
        return 0.0
    return _one_decimal(numerator / denominator)


def _days_between(start: Optional[datetime], end: Optional[datetime]) -> Optional[float]:
    if start is None or end is None:
        return None
    return (end - start).total_seconds() / 86400.0


def _first_seen(events: Iterable, when=lambda e: e.occurred_at) -> Dict[str, datetime]:
    """Earliest timestamp per subject id."""
    first: Dict[str, datetime] = {}
    for e in events:
        if not e.subject_id:
            continue
        moment = when(e)
        if e.subject_id not in first or moment < first[e.subject_id]:
            first[e.subject_id] = moment
    return first


# ---------------------------------------------------------------------------
# Shared run context
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class AnalysisContext:
    events: ClassifiedEvents
    entities: EntityLookup
    scope: EventScope
    vocabulary: Vocabulary
    permissions: Permissions


@dataclass
class AnalyzerResult:
    """Metric groups an analyzer produced plus exact figures for assembly."""
    groups: Dict[MetricGroup, BaseModel]
    facts: Dict[str, float] = field(default_factory=dict)


# ---------------------------------------------------------------------------
# Funnel
# ---------------------------------------------------------------------------

class FunnelAnalyzer:
    """Count each funnel stage and the conversion between them."""

    name = "funnel"

    def analyze(self, ctx: AnalysisContext) -> AnalyzerResult:
        ev = ctx.events
        leads = len(ev[EventType.LEAD_CREATED])
        bookings = len(ev[EventType.BOOKING_CREATED])
        shows = sum(1 for e in ev[EventType.SHOW_RECORDED] if is_attended(e))
        closes = len(ev[EventType.SALE_RECORDED])

        funnel = FunnelMetrics(
            leads=leads,
            bookings=bookings,
            shows=shows,
            closes=closes,
            booked_pct=_pct(bookings, leads),
            lead_to_show_pct=_pct(shows, bookings),
            lead_to_sale_pct=_pct(closes, leads),
        )
        return AnalyzerResult({MetricGroup.FUNNEL: funnel})


class LeadSourceAnalyzer:
    """Leads per configured phone source and DM-summary counters per DM source."""

    name = "lead_sources"

    def analyze(self, ctx: AnalysisContext) -> AnalyzerResult:
        by_source: Counter = Counter()
        for lead in ctx.events[EventType.LEAD_CREATED]:
            source = ctx.entities.source_of(lead.subject_id)
            if source:
                by_source[source] += 1

        messages: Counter = Counter()
        for summary in ctx.events[EventType.DM_SUMMARY]:
            for label in ctx.vocabulary.dm_sources:
                messages[label] += summary.counter(label_key(label))

        metrics = LeadSourceMetrics(
            phone=[
                SourceCount(source=s, value=by_source.get(s, 0))
                for s in ctx.vocabulary.phone_lead_sources
            ],
            messages=[
                SourceCount(source=s, value=_round_half_up(messages.get(s, 0)))
                for s in ctx.vocabulary.dm_sources
            ],
        )
        return AnalyzerResult({MetricGroup.LEAD_SOURCES: metrics})


# ---------------------------------------------------------------------------
# Paid attribution
# ---------------------------------------------------------------------------

class AttributionAnalyzer:
    """
    Paid funnel and ad efficiency.

    A lead is paid when its resolved acquisition source is in the paid set;
    bookings, shows and sales follow their subject into the paid funnel.
    """

    name = "attribution"

    def analyze(self, ctx: AnalysisContext) -> AnalyzerResult:
        ev, entities, vocab = ctx.events, ctx.entities, ctx.vocabulary

        paid_ids: Set[str] = {
            lead.subject_id
            for lead in ev[EventType.LEAD_CREATED]
            if lead.subject_id and vocab.is_paid(entities.source_of(lead.subject_id))
        }
        paid_bookings = sum(1 for b in ev[EventType.BOOKING_CREATED] if b.subject_id in paid_ids)
        paid_shows = sum(
            1 for s in ev[EventType.SHOW_RECORDED] if s.subject_id in paid_ids and is_attended(s)
        )
        paid_sales = [s for s in ev[EventType.SALE_RECORDED] if s.subject_id in paid_ids]
        paid_closes = len(paid_sales)
        paid_revenue = sum(s.total_paid for s in paid_sales)

        spend_by_platform: Dict[str, float] = defaultdict(float)
        for spend in ev[EventType.AD_SPEND]:
            spend_by_platform[spend.ad_platform] += spend.amount
        ad_spend = sum(spend_by_platform.values())

        revenue_by_platform: Dict[str, float] = defaultdict(float)
        for sale in ev[EventType.SALE_RECORDED]:
            source = entities.source_of(sale.subject_id)
            if source is None:
                continue
            revenue_by_platform[vocab.platform_for(source)] += sale.total_paid

        cac_exact = _safe_div(ad_spend, paid_closes)
        efficiency = AdEfficiencyMetrics(
            ad_spend=_money(ad_spend),
            paid_leads=len(paid_ids),
            paid_bookings=paid_bookings,
            paid_shows=paid_shows,
            paid_closes=paid_closes,
            paid_revenue=_money(paid_revenue),
            roas=_ratio(paid_revenue, ad_spend),
            cac=_money(cac_exact),
            cpb=_money(_safe_div(ad_spend, paid_bookings)),
            cpl=_money(_safe_div(ad_spend, len(paid_ids))),
            cps=_money(_safe_div(ad_spend, paid_shows)),
            spend_by_platform={
                platform: _money(amount) for platform, amount in sorted(spend_by_platform.items())
            },
        )

        # The catch-all platform never gets its own ROAS row.
        roi = SourceRoiMetrics(platforms=[
            PlatformRoas(
                platform=platform,
                label=label,
                ad_spend=_money(spend_by_platform.get(platform, 0.0)),
                revenue=_money(revenue_by_platform.get(platform, 0.0)),
                roas=_ratio(
                    revenue_by_platform.get(platform, 0.0),
                    spend_by_platform.get(platform, 0.0),
                ),
            )
            for platform, label in vocab.roas_platforms
            if platform != vocab.other_platform
        ])

        return AnalyzerResult(
            {MetricGroup.AD_EFFICIENCY: efficiency, MetricGroup.SOURCE_ROI: roi},
            facts={"cac_exact": cac_exact, "paid_closes": paid_closes},
        )


# ---------------------------------------------------------------------------
# Revenue, risk, lifetime value
# ---------------------------------------------------------------------------

class RevenueRiskAnalyzer:
    name = "revenue_risk"

    def analyze(self, ctx: AnalysisContext) -> AnalyzerResult:
        ev, vocab = ctx.events, ctx.vocabulary

        sales = ev[EventType.SALE_RECORDED]
        closes = len(sales)
        leads = len(ev[EventType.LEAD_CREATED])
        total_revenue = sum(s.total_paid for s in sales)

        refunds = ev[EventType.REFUND_ISSUED]
        refund_amount = sum(r.amount for r in refunds)
        net_revenue = total_revenue - refund_amount

        failed = len(ev[EventType.PAYMENT_FAILED])
        installment_sales = sum(1 for s in sales if vocab.is_installment(s.payment_type))
        deposit_only = len(ev[EventType.DEPOSIT_ONLY])

        trials_started = len(ev[EventType.TRIAL_STARTED])
        trials_converted = len(ev[EventType.TRIAL_CONVERTED])
        mrr = sum(p.recurring_amount for p in ev[EventType.RECURRING_PAYMENT])

        revenue = RevenueMetrics(
            total_revenue=_money(total_revenue),
            aov=_money(_safe_div(total_revenue, closes)),
            revenue_per_lead=_money(_safe_div(total_revenue, leads)),
        )
        risk = RiskMetrics(
            refunds=len(refunds),
            refund_amount=_money(refund_amount),
            refund_rate_pct=_pct(len(refunds), closes),
            failed_payments=failed,
            installment_sales=installment_sales,
            failed_payment_rate_pct=_pct(failed, installment_sales),
            deposit_only=deposit_only,
            deposit_only_rate_pct=_pct(deposit_only, closes),
        )
        ltv = LtvMetrics(
            trials_started=trials_started,
            trials_converted=trials_converted,
            trial_conversion_pct=_pct(trials_converted, trials_started),
            mrr=_money(mrr),
            net_revenue=_money(net_revenue),
        )
        return AnalyzerResult(
            {MetricGroup.REVENUE: revenue, MetricGroup.RISK: risk, MetricGroup.LTV: ltv},
            facts={"net_revenue": net_revenue, "closes": closes},
        )


# ---------------------------------------------------------------------------
# Timing & follow-up
# ---------------------------------------------------------------------------

class TimingAnalyzer:
    """
    Average days from a subject's first lead event to its first close
    (sales cycle) and to its first booking (time to book). Subjects missing
    either end are left out. A close backdated before the lead counts as a
    negative span and pulls the average down.
    """

    name = "timing"

    def analyze(self, ctx: AnalysisContext) -> AnalyzerResult:
        ev = ctx.events
        lead_at = _first_seen(ev[EventType.LEAD_CREATED])
        booked_at = _first_seen(ev[EventType.BOOKING_CREATED])
        closed_at = _first_seen(ev[EventType.SALE_RECORDED], when=lambda s: s.closed_at)

        cycle = self._spans(lead_at, closed_at)
        to_book = self._spans(lead_at, booked_at)

        timing = TimingMetrics(
            sales_cycle_days=_round_half_up(_safe_div(sum(cycle), len(cycle))),
            time_to_book_days=_round_half_up(_safe_div(sum(to_book), len(to_book))),
            sales_cycle_samples=len(cycle),
            time_to_book_samples=len(to_book),
        )
        return AnalyzerResult({MetricGroup.TIMING: timing})

    @staticmethod
    def _spans(starts: Dict[str, datetime], ends: Dict[str, datetime]) -> List[float]:
        spans = []
        for subject_id, start in starts.items():
            days = _days_between(start, ends.get(subject_id))
            if days is not None:
                spans.append(days)
        return spans


class FollowUpAnalyzer:
    name = "follow_up"

    def analyze(self, ctx: AnalysisContext) -> AnalyzerResult:
        followed = {e.subject_id for e in ctx.events[EventType.FOLLOW_UP_SET] if e.subject_id}
        sold = {e.subject_id for e in ctx.events[EventType.SALE_RECORDED] if e.subject_id}
        converted = followed & sold

        metrics = FollowUpMetrics(
            leads_with_followup=len(followed),
            leads_with_followup_and_sale=len(converted),
            followup_conversion_pct=_pct(len(converted), len(followed)),
        )
        return AnalyzerResult({MetricGroup.FOLLOW_UP: metrics})


# ---------------------------------------------------------------------------
# Channels
# ---------------------------------------------------------------------------

class ChannelAnalyzer:
    """Bookings per channel next to the outbound volume logged for it."""

    name = "channels"

    def analyze(self, ctx: AnalysisContext) -> AnalyzerResult:
        booked: Counter = Counter(
            b.channel for b in ctx.events[EventType.BOOKING_CREATED] if b.channel
        )

        rows = []
        for channel in ctx.vocabulary.booking_channels:
            sent = 0.0
            for summary in ctx.events[EventType(channel.outbound_event)]:
                value = getattr(summary, channel.outbound_field, None)
                if value is None and hasattr(summary, "counter"):
                    value = summary.counter(channel.outbound_field)
                sent += value or 0.0
            rows.append(ChannelBookings(
                channel=channel.key,
                label=channel.label,
                sent=_round_half_up(sent),
                booked=booked.get(channel.key, 0),
            ))
        return AnalyzerResult({MetricGroup.CHANNELS: ChannelMetrics(channels=rows)})


# ---------------------------------------------------------------------------
# Consult outcomes
# ---------------------------------------------------------------------------

class ConsultOutcomeAnalyzer:
    """
    What happened once leads reached the consult room, plus how closed sales
    were paid. Qualified/unqualified counts, the objection tallies and
    "QL / not pitched UQL" come from the closers' consult summaries.
    """

    name = "consult_outcomes"

    def analyze(self, ctx: AnalysisContext) -> AnalyzerResult:
        ev, vocab = ctx.events, ctx.vocabulary

        bookings = len(ev[EventType.BOOKING_CREATED])
        outcomes = [classify_outcome(s.outcome) for s in ev[EventType.SHOW_RECORDED]]
        held = outcomes.count(Outcome.SHOWED)
        no_shows = outcomes.count(Outcome.NO_SHOW)
        sales = ev[EventType.SALE_RECORDED]
        closes = len(sales)
        follow_ups = len(ev[EventType.FOLLOW_UP_SET])

        summaries = ev[EventType.CONSULT_SUMMARY]
        ql = sum(s.qualified_leads for s in summaries)
        uql = sum(s.unqualified_leads for s in summaries)
        not_pitched = _safe_div(sum(s.ql_not_pitched_uql for s in summaries), len(summaries))

        consult = ConsultOutcomeMetrics(
            call_volume=_round_half_up(sum(p.total_dials for p in ev[EventType.PHONE_SUMMARY])),
            consults_held=held,
            show_rate_pct=_pct(held, bookings),
            no_shows=no_shows,
            no_show_rate_pct=_pct(no_shows, bookings),
            qualified_leads=_round_half_up(ql),
            qualification_rate_pct=_pct(ql, ql + uql),
            unqualified_leads=_round_half_up(uql),
            unqualified_rate_pct=_pct(uql, ql + uql),
            sales_closed=closes,
            close_rate_pct=_pct(closes, held),
            follow_ups_set=follow_ups,
            follow_up_rate_pct=_pct(follow_ups, held),
            ql_not_pitched_uql_pct=_round_half_up(not_pitched),
            objections=[
                LabelCount(
                    label=label,
                    value=_round_half_up(sum(s.counter(label_key(label)) for s in summaries)),
                )
                for label in vocab.objections
            ],
        )

        paid_by: Counter = Counter((s.payment_type or "").strip().upper() for s in sales)
        mix = PaymentMixMetrics(methods=[
            PaymentShare(
                payment_type=code,
                label=label,
                sales=paid_by.get(code, 0),
                share_pct=_pct(paid_by.get(code, 0), closes),
            )
            for code, label in vocab.payment_mix
        ])
        return AnalyzerResult({MetricGroup.CONSULT_OUTCOMES: consult, MetricGroup.PAYMENT_MIX: mix})


# ---------------------------------------------------------------------------
# Phone & DM setting
# ---------------------------------------------------------------------------

class SettingAnalyzer:
    """
    Totals from the setters' phone and DM session summaries. Callers without
    the all-setters view only count the summaries they logged themselves.
    """

    name = "setting"

    def analyze(self, ctx: AnalysisContext) -> AnalyzerResult:
        perms = ctx.permissions
        phone_rows = [
            s for s in ctx.events[EventType.PHONE_SUMMARY] if perms.owns_setting_row(s.author_id)
        ]
        dm_rows = [
            s for s in ctx.events[EventType.DM_SUMMARY] if perms.owns_setting_row(s.author_id)
        ]
        own_rows_only = not perms.all_setters

        phone_totals = {
            name: sum(getattr(s, name) for s in phone_rows) for name in PHONE_TALLIES
        }
        phone = PhoneSettingMetrics(
            answer_rate_pct=_pct(phone_totals["call_answered"], phone_totals["total_dials"]),
            own_rows_only=own_rows_only,
            **{name: _round_half_up(v) for name, v in phone_totals.items()},
        )

        dm_totals = {name: sum(getattr(s, name) for s in dm_rows) for name in DM_TALLIES}
        dm = DmSettingMetrics(
            sources=[
                SourceCount(
                    source=label,
                    value=_round_half_up(sum(s.counter(label_key(label)) for s in dm_rows)),
                )
                for label in ctx.vocabulary.dm_sources
            ],
            reply_rate_pct=_pct(dm_totals["replies_received"], dm_totals["texts_sent"]),
            own_rows_only=own_rows_only,
            **{name: _round_half_up(v) for name, v in dm_totals.items()},
        )
        return AnalyzerResult({MetricGroup.PHONE_SETTING: phone, MetricGroup.DM_SETTING: dm})


# ---------------------------------------------------------------------------
# Email
# ---------------------------------------------------------------------------

class EmailAnalyzer:
    """
    Campaign results across email summaries.

    Rates are averaged weighted by emails sent (0 when nothing was sent).
    Scores and per-email averages are weighted the same way, except that a
    campaign with no recorded sends weighs 1; with no sends at all they are
    a plain mean over campaigns.
    """

    name = "email"

    def analyze(self, ctx: AnalysisContext) -> AnalyzerResult:
        rows = ctx.events[EventType.EMAIL_SUMMARY]
        sent = sum(r.emails_sent for r in rows)

        def sent_weighted(attr: str) -> int:
            weighted = sum(getattr(r, attr) * r.emails_sent for r in rows)
            return _round_half_up(_safe_div(weighted, sent))

        def campaign_weighted(values: List[float]) -> int:
            weighted = sum(v * (r.emails_sent or 1) for v, r in zip(values, rows))
            return _round_half_up(_safe_div(weighted, sent or len(rows)))

        def revenue_per_email(r) -> float:
            if r.average_revenue_per_email:
                return r.average_revenue_per_email
            return _safe_div(r.revenue_generated, r.emails_sent)

        email = EmailMetrics(
            emails_sent=_round_half_up(sent),
            open_rate_pct=sent_weighted("open_rate"),
            click_rate_pct=sent_weighted("click_rate"),
            unsubscribe_rate_pct=sent_weighted("unsubscribe_rate"),
            bounce_rate_pct=sent_weighted("bounce_rate"),
            conversion_rate_pct=sent_weighted("conversion_rate"),
            spam_complaints=_round_half_up(sum(r.spam_complaints for r in rows)),
            new_subscribers=_round_half_up(sum(r.new_subscribers for r in rows)),
            engagement_score=campaign_weighted([r.engagement_score for r in rows]),
            average_clicks_per_email=campaign_weighted([r.average_clicks_per_email for r in rows]),
            average_opens_per_email=campaign_weighted([r.average_opens_per_email for r in rows]),
        )

        has_roi = any(r.roi_percent > 0 for r in rows)
        email_revenue = EmailRevenueMetrics(
            revenue_generated=_money(sum(r.revenue_generated for r in rows)),
            average_revenue_per_email=campaign_weighted([revenue_per_email(r) for r in rows]),
            roi_pct=campaign_weighted([r.roi_percent for r in rows]) if has_roi else 0,
        )
        return AnalyzerResult({MetricGroup.EMAIL: email, MetricGroup.EMAIL_REVENUE: email_revenue})


# ---------------------------------------------------------------------------
# Reps
# ---------------------------------------------------------------------------

class LeaderboardAnalyzer:
    """
    Per-rep bookings, shows, closes and revenue, attributed to the subject's
    assigned rep. Reps with no attributed events are omitted; a caller limited
    to their own row sees at most that row. Also buckets sales by week.
    """

    name = "leaderboard"

    def analyze(self, ctx: AnalysisContext) -> AnalyzerResult:
        ev, entities, perms = ctx.events, ctx.entities, ctx.permissions

        tallies: Dict[str, Dict[str, float]] = defaultdict(
            lambda: {"bookings": 0, "shows": 0, "closes": 0, "revenue": 0.0}
        )
        for booking in ev[EventType.BOOKING_CREATED]:
            rep_id = entities.rep_of(booking.subject_id)
            if rep_id:
                tallies[rep_id]["bookings"] += 1
        for show in ev[EventType.SHOW_RECORDED]:
            rep_id = entities.rep_of(show.subject_id)
            if rep_id and is_attended(show):
                tallies[rep_id]["shows"] += 1
        for sale in ev[EventType.SALE_RECORDED]:
            rep_id = entities.rep_of(sale.subject_id)
            if rep_id:
                tallies[rep_id]["closes"] += 1
                tallies[rep_id]["revenue"] += sale.total_paid

        rows: List[RepRow] = []
        for rep in entities.reps:
            if rep.id not in tallies:
                continue
            if perms.self_only and rep.id != perms.rep_id:
                continue
            t = tallies[rep.id]
            rows.append(RepRow(
                rep_id=rep.id,
                name=entities.rep_name(rep.id),
                bookings=int(t["bookings"]),
                shows=int(t["shows"]),
                closes=int(t["closes"]),
                show_rate_pct=_pct(t["shows"], t["bookings"]),
                close_rate_pct=_pct(t["closes"], t["shows"]),
                revenue=_money(t["revenue"]),
            ))
        # sorted() is stable, so ties keep registry order
        rows = sorted(rows, key=lambda r: (-r.revenue, -r.closes))

        closers = [r for r in rows if r.closes > 0]
        revenue_per_rep = _safe_div(sum(r.revenue for r in closers), len(closers))

        if not rows:
            rows = [RepRow(name=SELF_PLACEHOLDER if perms.self_only else EMPTY_PLACEHOLDER)]

        return AnalyzerResult(
            {
                MetricGroup.LEADERBOARD: LeaderboardMetrics(rows=rows, self_only=perms.self_only),
                MetricGroup.REP_PERFORMANCE: RepPerformanceMetrics(weekly=self._weekly(ctx)),
            },
            facts={"revenue_per_rep": revenue_per_rep},
        )

    @staticmethod
    def _weekly(ctx: AnalysisContext) -> List[WeeklySales]:
        starts = ctx.scope.week_starts()
        counts = [0] * len(starts)
        for sale in ctx.events[EventType.SALE_RECORDED]:
            index = (sale.occurred_at - ctx.scope.start).days // 7
            if 0 <= index < len(counts):
                counts[index] += 1
        return [WeeklySales(week=f"W{i + 1}", sales=n) for i, n in enumerate(counts)]


ANALYZERS: Tuple = (
    FunnelAnalyzer,
    LeadSourceAnalyzer,
    AttributionAnalyzer,
    RevenueRiskAnalyzer,
    TimingAnalyzer,
    FollowUpAnalyzer,
    ChannelAnalyzer,
    ConsultOutcomeAnalyzer,
    SettingAnalyzer,
    EmailAnalyzer,
    LeaderboardAnalyzer,
)


def combine(results: Iterable[AnalyzerResult]) -> Dict[MetricGroup, BaseModel]:
    """Merge analyzer outputs and fill in the figures that span analyzers."""
    groups: Dict[MetricGroup, BaseModel] = {}
    facts: Dict[str, float] = {}
    for result in results:
        groups.update(result.groups)
        facts.update(result.facts)

    groups[MetricGroup.REVENUE].revenue_per_rep = _money(facts.get("revenue_per_rep", 0.0))

    # LTV proxy: net revenue per close against acquisition cost per paid close
    ltv_per_client = _safe_div(facts.get("net_revenue", 0.0), facts.get("closes", 0))
    groups[MetricGroup.LTV].ltv_to_cac = _ratio(ltv_per_client, facts.get("cac_exact", 0.0))
    return groups
