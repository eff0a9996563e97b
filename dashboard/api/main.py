"""
Gym KPI Hub API
===============

FastAPI app serving dashboard KPI snapshots computed from Supabase raw entries.

  /api/health   - store connectivity, vocabulary and circuit breaker state
  /api/kpis/*   - snapshots and the caller's visible metric groups

Environment:
  CORS_ORIGINS      comma separated origins (default: local dashboard ports)
  REQUIRE_API_KEY   "true" rejects requests without X-API-Key
"""

import os
from contextlib import asynccontextmanager
from datetime import datetime, timezone

from dotenv import load_dotenv
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from dashboard.api.middleware import APIKeyMiddleware
from dashboard.api.routers.kpis import router as kpis_router
from scripts.kpi_engine.vocabulary import load_vocabulary
from scripts.lib import supabase_client
from scripts.lib.circuit_breaker import CircuitBreaker
from scripts.lib.logger import setup_logger

load_dotenv()

logger = setup_logger("kpi_api")

VERSION = "1.0.0"
DEFAULT_ORIGINS = "http://localhost:3000,http://localhost:8001"


def _supabase_available() -> bool:
    try:
        supabase_client.get_client()
    except Exception as e:
        logger.debug("Supabase unavailable: %s", e)
        return False
    return True


@asynccontextmanager
async def lifespan(app: FastAPI):
    # A broken vocabulary file fails startup instead of every snapshot request.
    app.state.vocabulary = load_vocabulary()
    if _supabase_available():
        logger.info("Supabase reachable")
    else:
        logger.warning("Supabase not configured; snapshots will report scope_unavailable")
    yield
    logger.info("KPI API stopped")


app = FastAPI(
    title="Gym KPI Hub",
    version=VERSION,
    description="Role-filtered KPI snapshots for the gym sales dashboard",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[o.strip() for o in os.getenv("CORS_ORIGINS", DEFAULT_ORIGINS).split(",") if o.strip()],
    allow_credentials=True,
    allow_methods=["GET"],
    allow_headers=["*"],
)
app.add_middleware(
    APIKeyMiddleware,
    require_auth=os.getenv("REQUIRE_API_KEY", "false").lower() == "true",
)

app.include_router(kpis_router)


@app.get("/api/health", tags=["system"])
async def health():
    return {
        "status": "healthy",
        "service": "Gym KPI Hub",
        "version": VERSION,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "integrations": {"supabase": _supabase_available()},
        "circuits": CircuitBreaker.all_status(),
    }
