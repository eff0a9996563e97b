"""
Gym KPI Hub — KPI Engine
==========================

Turns one gym's events for a period into a MetricSnapshot.

  aggregate()  - pure computation over an already-fetched event slice
  KpiEngine    - fetches the slice and lookups, then calls aggregate()

The fetch phase is the only place anything can fail; a failed fetch or an
invalid scope yields a zeroed snapshot with status "scope_unavailable"
instead of an exception, so callers never deal with partial metrics.

Usage:
    engine = KpiEngine(event_source, resolver, registry)
    snapshot = engine.compute("gym-1", start, end, permissions_for("owner"))
"""
from __future__ import annotations

import os
import time
from concurrent.futures import Executor, ThreadPoolExecutor
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional

from models.kpi_models import MetricSnapshot
from scripts.kpi_engine.analyzers import ANALYZERS, AnalysisContext, AnalyzerResult, combine
from scripts.kpi_engine.entities import (
    EntityLookup,
    EventScope,
    EventSource,
    RepRegistry,
    SubjectResolver,
    as_utc,
)
from scripts.kpi_engine.events import Event, classify_events
from scripts.kpi_engine.permissions import Permissions
from scripts.kpi_engine.vocabulary import Vocabulary, load_vocabulary
from scripts.lib.errors import CircuitOpenError, DataError, ScopeUnavailableError
from scripts.lib.logger import setup_logger

logger = setup_logger("kpi_engine")

DEFAULT_CONFIG: Dict[str, Any] = {
    "max_workers": int(os.getenv("KPI_ENGINE_WORKERS", "4")),
    "parallel": True,
}

STATUS_OK = "ok"
STATUS_SCOPE_UNAVAILABLE = "scope_unavailable"


def _now_utc() -> datetime:
    return datetime.now(timezone.utc)


# ---------------------------------------------------------------------------
# Pure aggregation
# ---------------------------------------------------------------------------

def _timed(analyzer, ctx: AnalysisContext) -> AnalyzerResult:
    started = time.perf_counter()
    result = analyzer.analyze(ctx)
    logger.debug("%s analyzer took %.1fms", analyzer.name, (time.perf_counter() - started) * 1000)
    return result


def _run_analyzers(ctx: AnalysisContext, executor: Optional[Executor]) -> List[AnalyzerResult]:
    analyzers = [cls() for cls in ANALYZERS]
    if executor is None:
        return [_timed(a, ctx) for a in analyzers]
    return list(executor.map(lambda a: _timed(a, ctx), analyzers))


def aggregate(
    events: Iterable[Event],
    entities: EntityLookup,
    scope: EventScope,
    permissions: Permissions,
    vocabulary: Vocabulary,
    executor: Optional[Executor] = None,
    status: str = STATUS_OK,
) -> MetricSnapshot:
    """
    Compute a snapshot from an in-memory event slice.

    Events outside the tenant or the half-open [start, end) window are
    dropped here even if the source already filtered them. Groups the caller
    may not see are left as None.
    """
    in_scope = [
        e for e in events
        if e.tenant_id == scope.tenant_id and scope.contains(e.occurred_at)
    ]
    classified = classify_events(in_scope)
    logger.debug("Aggregating %d events for %s: %s", len(in_scope), scope.tenant_id, classified.counts())

    ctx = AnalysisContext(
        events=classified,
        entities=entities,
        scope=scope,
        vocabulary=vocabulary,
        permissions=permissions,
    )

    groups = combine(_run_analyzers(ctx, executor))

    visible = {
        group.value: model
        for group, model in groups.items()
        if permissions.can_see(group)
    }
    return MetricSnapshot(
        tenant_id=scope.tenant_id,
        period_start=scope.start,
        period_end=scope.end,
        generated_at=_now_utc(),
        status=status,
        visible_groups=permissions.ordered_groups(),
        **visible,
    )


def empty_snapshot(
    scope: EventScope,
    permissions: Permissions,
    vocabulary: Vocabulary,
    status: str = STATUS_SCOPE_UNAVAILABLE,
) -> MetricSnapshot:
    """Every visible group at its zero value."""
    return aggregate([], EntityLookup(), scope, permissions, vocabulary, status=status)


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------

class KpiEngine:
    """Fetches a gym's events and lookups, then aggregates them."""

    def __init__(
        self,
        source: EventSource,
        resolver: SubjectResolver,
        registry: RepRegistry,
        vocabulary: Optional[Vocabulary] = None,
        config: Optional[Dict[str, Any]] = None,
    ):
        self.source = source
        self.resolver = resolver
        self.registry = registry
        self.vocabulary = vocabulary or load_vocabulary()
        self.config = {**DEFAULT_CONFIG, **(config or {})}

    def compute(
        self,
        tenant_id: str,
        start: datetime,
        end: datetime,
        permissions: Permissions,
    ) -> MetricSnapshot:
        start, end = as_utc(start), as_utc(end)
        scope = EventScope(tenant_id=tenant_id or "", start=start, end=end)

        if permissions.is_empty:
            logger.info("Caller role %r sees no metric groups for %s", permissions.role, tenant_id)
            return empty_snapshot(scope, permissions, self.vocabulary, status=STATUS_OK)

        try:
            events, entities = self._fetch(scope)
        except (DataError, CircuitOpenError) as e:
            logger.warning("Scope unavailable for %s [%s, %s): %s", tenant_id, start, end, e)
            return empty_snapshot(scope, permissions, self.vocabulary)

        if self._parallel:
            with ThreadPoolExecutor(max_workers=self.config["max_workers"]) as pool:
                snapshot = aggregate(events, entities, scope, permissions, self.vocabulary, executor=pool)
        else:
            snapshot = aggregate(events, entities, scope, permissions, self.vocabulary)

        logger.info(
            "Computed KPI snapshot for %s [%s, %s): %d events, %d groups",
            tenant_id, start.date(), end.date(), len(events), len(snapshot.visible_groups),
        )
        return snapshot

    @property
    def _parallel(self) -> bool:
        return bool(self.config.get("parallel")) and int(self.config.get("max_workers") or 1) > 1

    def _fetch(self, scope: EventScope):
        """
        Read the event slice, the tenant's reps and the subjects the events
        mention.

        Raises:
            ScopeUnavailableError: If the scope itself is invalid.
            DataError / CircuitOpenError: If a collaborator fails.
        """
        if not scope.is_valid:
            raise ScopeUnavailableError(
                tenant_id=scope.tenant_id or None,
                reason="tenant missing or empty period",
            )

        events = self.source.fetch(scope.tenant_id, scope.start, scope.end)
        reps = self.registry.list_reps(scope.tenant_id)
        subject_ids = sorted({e.subject_id for e in events if e.subject_id})
        subjects = self.resolver.resolve_subjects(subject_ids) if subject_ids else {}

        logger.debug(
            "Fetched %d events, %d reps for %s; %d of %d subjects unattributed",
            len(events), len(reps), scope.tenant_id,
            len(subject_ids) - len(subjects), len(subject_ids),
        )
        return events, EntityLookup(subjects=dict(subjects), reps=tuple(reps))

