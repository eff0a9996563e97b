"""
Supabase Client Helper for Gym KPI Hub.
Provides the connection plus the three reads the KPI engine depends on:
raw event entries, client (lead) records and staff profiles.

Usage:
    from scripts.lib.supabase_client import get_client, fetch_raw_entries

    client = get_client()
    rows = fetch_raw_entries("gym-123", "2025-06-01T00:00:00+00:00",
                             "2025-07-01T00:00:00+00:00")
"""
import os
from pathlib import Path
from typing import Dict, Iterable, List

from dotenv import load_dotenv
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from scripts.lib.errors import DataFetchError
from scripts.lib.logger import setup_logger

logger = setup_logger(__name__)

# Load .env from project root
PROJECT_ROOT = Path(__file__).resolve().parent.parent.parent
load_dotenv(PROJECT_ROOT / ".env")

SUPABASE_URL = os.environ.get("SUPABASE_URL", "")
SUPABASE_KEY = (
    os.environ.get("SUPABASE_SERVICE_ROLE_KEY", "")
    or os.environ.get("SUPABASE_KEY", "")
)

FETCH_ATTEMPTS = int(os.getenv("KPI_FETCH_ATTEMPTS", "3"))
PAGE_SIZE = 1000  # PostgREST default max rows per request
ID_CHUNK = 200    # keep `in.(...)` filters well under URL length limits

RAW_ENTRY_COLUMNS = "id,gym_id,profile_id,event_type,submission_date,lead_id,payload"

_client = None


def get_client():
    """Create and return a Supabase client (singleton)."""
    global _client
    if _client is not None:
        return _client

    if not SUPABASE_URL or not SUPABASE_KEY:
        raise RuntimeError(
            "SUPABASE_URL and SUPABASE_SERVICE_ROLE_KEY must be set in .env"
        )

    from supabase import create_client
    _client = create_client(SUPABASE_URL, SUPABASE_KEY)
    logger.info("Supabase client connected to %s", SUPABASE_URL)
    return _client


def _retrying(func):
    """Retry transient fetch failures with exponential backoff."""
    return retry(
        stop=stop_after_attempt(FETCH_ATTEMPTS),
        wait=wait_exponential(multiplier=0.5, min=0.5, max=4),
        retry=retry_if_exception_type(DataFetchError),
        reraise=True,
    )(func)


@_retrying
def fetch_raw_entries(gym_id: str, start_iso: str, end_iso: str) -> List[Dict]:
    """
    Fetch every raw event entry for one gym with
    start_iso <= submission_date < end_iso.

    Pages through the result set so large months are not truncated.

    Raises:
        DataFetchError: If any page fails.
    """
    rows: List[Dict] = []
    offset = 0
    try:
        client = get_client()
        while True:
            result = (
                client.table("raw_entries")
                .select(RAW_ENTRY_COLUMNS)
                .eq("gym_id", gym_id)
                .gte("submission_date", start_iso)
                .lt("submission_date", end_iso)
                .order("submission_date")
                .range(offset, offset + PAGE_SIZE - 1)
                .execute()
            )
            page = result.data or []
            rows.extend(page)
            if len(page) < PAGE_SIZE:
                break
            offset += PAGE_SIZE
    except Exception as e:
        logger.error("raw_entries fetch failed for gym %s: %s", gym_id, e)
        raise DataFetchError(str(e), source="raw_entries") from e

    logger.info(
        "Fetched %d raw entries for gym %s [%s, %s)", len(rows), gym_id,
        start_iso, end_iso,
    )
    return rows


@_retrying
def fetch_clients(client_ids: Iterable[str]) -> List[Dict]:
    """
    Fetch client (lead) rows by id: id, profile_id (assigned rep), payload.

    Raises:
        DataFetchError: If the query fails.
    """
    ids = sorted({str(cid) for cid in client_ids if cid})
    if not ids:
        return []

    rows: List[Dict] = []
    try:
        client = get_client()
        for i in range(0, len(ids), ID_CHUNK):
            chunk = ids[i:i + ID_CHUNK]
            result = (
                client.table("clients")
                .select("id, profile_id, payload")
                .in_("id", chunk)
                .execute()
            )
            rows.extend(result.data or [])
    except Exception as e:
        logger.error("clients fetch failed for %d ids: %s", len(ids), e)
        raise DataFetchError(str(e), source="clients") from e

    logger.info("Fetched %d/%d client records", len(rows), len(ids))
    return rows


@_retrying
def fetch_profiles(gym_id: str, role: str = None) -> List[Dict]:
    """
    Fetch staff profiles for a gym, optionally filtered by role.

    Raises:
        DataFetchError: If the query fails.
    """
    try:
        client = get_client()
        query = (
            client.table("profiles")
            .select("id,display_name,role,gym_id")
            .eq("gym_id", gym_id)
        )
        if role:
            query = query.eq("role", role)
        result = query.execute()
    except Exception as e:
        logger.error("profiles fetch failed for gym %s: %s", gym_id, e)
        raise DataFetchError(str(e), source="profiles") from e
    return result.data or []

