"""
Gym KPI Hub — KPI Router
==========================
Dashboard KPI endpoints backed by the KPI engine.

Endpoints:
  GET /api/kpis/snapshot     - Metric snapshot for a gym and period
  GET /api/kpis/permissions  - Metric groups the caller may see
"""
from __future__ import annotations

from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from starlette.concurrency import run_in_threadpool

from dashboard.api.middleware import get_caller
from models.kpi_models import MetricSnapshot
from scripts.kpi_engine.engine import KpiEngine
from scripts.kpi_engine.entities import as_utc, month_window
from scripts.kpi_engine.permissions import CallerContext, restrict
from scripts.kpi_engine.sources import (
    SupabaseEventSource,
    SupabaseRepRegistry,
    SupabaseSubjectResolver,
)
from scripts.lib.logger import setup_logger

logger = setup_logger("kpis_router")

router = APIRouter(prefix="/api/kpis", tags=["kpis"])


def get_engine(request: Request) -> KpiEngine:
    """The app's engine, created against Supabase on first use."""
    engine = getattr(request.app.state, "kpi_engine", None)
    if engine is None:
        engine = KpiEngine(
            SupabaseEventSource(), SupabaseSubjectResolver(), SupabaseRepRegistry(),
            vocabulary=getattr(request.app.state, "vocabulary", None),
        )
        request.app.state.kpi_engine = engine
    return engine


@router.get("/snapshot", response_model=MetricSnapshot, response_model_exclude_none=True)
async def kpi_snapshot(
    gym_id: Optional[str] = Query(None, description="Gym to report on (admins only)"),
    start: Optional[datetime] = Query(None, description="Period start, inclusive"),
    end: Optional[datetime] = Query(None, description="Period end, exclusive"),
    groups: Optional[str] = Query(None, description="Comma-separated metric groups to return"),
    caller: CallerContext = Depends(get_caller),
    engine: KpiEngine = Depends(get_engine),
):
    """
    KPI snapshot for the caller's gym (or the requested gym for admins).

    Defaults to the current calendar month. `groups` narrows the response to
    the named metric groups; it never adds groups the role may not see. A gym
    whose data cannot be read comes back with status "scope_unavailable" and
    zeroed metrics.
    """
    default_start, default_end = month_window()
    start = as_utc(start) if start else default_start
    end = as_utc(end) if end else default_end
    tenant_id = caller.tenant_for(gym_id)
    permissions = caller.permissions()
    if groups:
        permissions = restrict(permissions, groups.split(","))

    try:
        return await run_in_threadpool(
            engine.compute, tenant_id or "", start, end, permissions,
        )
    except Exception as e:
        logger.error("KPI snapshot failed for %s: %s", tenant_id, e)
        raise HTTPException(status_code=500, detail="Failed to compute KPI snapshot")


@router.get("/permissions")
async def kpi_permissions(caller: CallerContext = Depends(get_caller)):
    """What the caller's role may see."""
    perms = caller.permissions()
    return {
        "role": perms.role,
        "gym_id": caller.gym_id,
        "visible_groups": perms.ordered_groups(),
        "self_only": perms.self_only,
        "all_setters": perms.all_setters,
    }
