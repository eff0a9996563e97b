"""
Gym KPI Hub — API Key Caller Middleware
=========================================
Resolves the X-API-Key header to a caller (role, profile, gym) using the
api_keys table in Supabase and stores it on request.state.caller.

Public endpoints (health, docs) bypass auth. Without a key the request runs
as an admin in development mode, or is rejected with 401 when
REQUIRE_API_KEY is set.
"""
from __future__ import annotations

import hashlib
import time
from typing import Optional

from fastapi import Request
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.responses import Response

from scripts.kpi_engine.permissions import ANONYMOUS, DEVELOPMENT_CALLER, CallerContext
from scripts.lib.logger import setup_logger

logger = setup_logger("api_middleware")

PUBLIC_PATHS = frozenset({"/api/health", "/docs", "/openapi.json", "/redoc"})
KEY_CACHE_SECONDS = 300


def _hash_key(key: str) -> str:
    """Keys are stored hashed; compare on the sha256 hex digest."""
    return hashlib.sha256(key.encode()).hexdigest()


def lookup_api_key(key_hash: str) -> Optional[dict]:
    """The active api_keys row for a hash, or None."""
    from scripts.lib.supabase_client import get_client

    client = get_client()
    result = (
        client.table("api_keys")
        .select("id, profile_id, role, gym_id, active")
        .eq("key_hash", key_hash)
        .eq("active", True)
        .limit(1)
        .execute()
    )
    return result.data[0] if result.data else None


def get_caller(request: Request) -> CallerContext:
    """FastAPI dependency: the caller the middleware resolved."""
    return getattr(request.state, "caller", ANONYMOUS)


class APIKeyMiddleware(BaseHTTPMiddleware):
    """
    Middleware that maps the X-API-Key header to a CallerContext.

    If Supabase is unavailable the caller is anonymous: the request goes
    through but sees no metric groups.
    """

    def __init__(self, app, require_auth: bool = False, lookup=lookup_api_key):
        super().__init__(app)
        self.require_auth = require_auth
        self.lookup = lookup
        self._cache: dict[str, tuple[float, CallerContext]] = {}  # key_hash -> (expires_at, caller)

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        path = request.url.path

        if path in PUBLIC_PATHS:
            return await call_next(request)

        api_key = request.headers.get("X-API-Key")

        if not api_key:
            if self.require_auth:
                return JSONResponse(status_code=401, content={"detail": "Missing X-API-Key header"})
            # No auth required (development mode)
            request.state.caller = DEVELOPMENT_CALLER
            return await call_next(request)

        caller = self._resolve(api_key)
        if caller is None:
            return JSONResponse(status_code=403, content={"detail": "Invalid API key"})

        request.state.caller = caller
        return await call_next(request)

    def _resolve(self, key: str) -> Optional[CallerContext]:
        """Caller for a key, None for an unknown key. Hits are cached per hash."""
        key_hash = _hash_key(key)

        cached = self._cache.get(key_hash)
        if cached and cached[0] > time.monotonic():
            return cached[1]

        try:
            row = self.lookup(key_hash)
        except Exception as e:
            logger.warning("API key validation failed (continuing as anonymous): %s", e)
            return ANONYMOUS

        if not row:
            return None

        caller = CallerContext(
            role=row.get("role"),
            profile_id=row.get("profile_id"),
            gym_id=row.get("gym_id"),
        )
        self._cache[key_hash] = (time.monotonic() + KEY_CACHE_SECONDS, caller)
        return caller
