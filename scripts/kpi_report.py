"""
Gym KPI Hub — KPI Report
==========================
Computes one gym's KPI snapshot for a period and writes it as JSON.

Reads live from Supabase by default, or from a JSON export
({"raw_entries": [...], "clients": [...], "profiles": [...]}) with --from-file.
The period defaults to the current calendar month (UTC).

Outputs:
    - data/processed/kpi_snapshot_<gym>.json  (unless --out is given)

Usage:
    python scripts/kpi_report.py --gym-id gym-123
    python scripts/kpi_report.py --gym-id gym-123 --start 2025-06-01 --end 2025-07-01
    python scripts/kpi_report.py --gym-id gym-123 --role trainer --profile-id p-9
    python scripts/kpi_report.py --gym-id gym-123 --groups funnel,revenue
    python scripts/kpi_report.py --gym-id gym-123 --from-file exports/june.json --out june.json
"""
from __future__ import annotations

import argparse
import sys
from datetime import datetime
from pathlib import Path
from typing import List, Optional

from dotenv import load_dotenv

# ---------------------------------------------------------------------------
# Path setup
# ---------------------------------------------------------------------------
SCRIPT_DIR = Path(__file__).resolve().parent
PROJECT_ROOT = SCRIPT_DIR.parent
sys.path.insert(0, str(PROJECT_ROOT))

load_dotenv(PROJECT_ROOT / ".env")

from scripts.kpi_engine.engine import KpiEngine, STATUS_OK
from scripts.kpi_engine.entities import as_utc, month_window
from scripts.kpi_engine.permissions import permissions_for, restrict
from scripts.kpi_engine.sources import (
    ExportFileStore,
    SupabaseEventSource,
    SupabaseRepRegistry,
    SupabaseSubjectResolver,
)
from scripts.lib.errors import HubError
from scripts.lib.logger import setup_logger
from scripts.lib.utils import atomic_write_json

logger = setup_logger("kpi_report")

PROCESSED_DIR = PROJECT_ROOT / "data" / "processed"


def _parse_date(value: str) -> datetime:
    """argparse type: ISO date or datetime, naive values taken as UTC."""
    try:
        return as_utc(datetime.fromisoformat(value.replace("Z", "+00:00")))
    except ValueError:
        raise argparse.ArgumentTypeError(f"not an ISO date: {value!r}")


def _parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Compute a gym KPI snapshot")
    parser.add_argument("--gym-id", required=True, help="Gym (tenant) id")
    parser.add_argument("--start", type=_parse_date, help="Period start, inclusive (default: first of this month)")
    parser.add_argument("--end", type=_parse_date, help="Period end, exclusive (default: first of next month)")
    parser.add_argument("--role", default="owner", help="Role to compute the snapshot for. Default: owner")
    parser.add_argument("--profile-id", help="Caller's profile id (needed for self-only roles)")
    parser.add_argument("--groups", help="Comma-separated metric groups to keep (default: all the role may see)")
    parser.add_argument("--from-file", type=str, help="Read a JSON export instead of Supabase")
    parser.add_argument("--out", type=str, help="Output path for the snapshot JSON")
    parser.add_argument("--sequential", action="store_true", help="Run calculators on one thread")
    return parser.parse_args(argv)


def build_engine(from_file: Optional[str] = None, sequential: bool = False) -> KpiEngine:
    config = {"parallel": not sequential}
    if from_file:
        store = ExportFileStore.from_file(from_file)
        return KpiEngine(store, store, store, config=config)
    return KpiEngine(
        SupabaseEventSource(), SupabaseSubjectResolver(), SupabaseRepRegistry(), config=config,
    )


def _report(args: argparse.Namespace) -> int:
    default_start, default_end = month_window()
    start = args.start or default_start
    end = args.end or default_end
    out_path = Path(args.out) if args.out else PROCESSED_DIR / f"kpi_snapshot_{args.gym_id}.json"

    logger.info("KPI report starting")
    logger.info("  Gym: %s", args.gym_id)
    logger.info("  Period: %s -> %s", start.isoformat(), end.isoformat())
    logger.info("  Role: %s", args.role)
    logger.info("  Source: %s", args.from_file or "supabase")

    permissions = permissions_for(args.role, args.profile_id)
    if args.groups:
        permissions = restrict(permissions, args.groups.split(","))

    engine = build_engine(args.from_file, args.sequential)
    snapshot = engine.compute(args.gym_id, start, end, permissions)

    if not atomic_write_json(snapshot, out_path):
        return 1

    logger.info("=== KPI Report Complete ===")
    logger.info("  Status: %s", snapshot.status)
    logger.info("  Groups: %s", ", ".join(snapshot.visible_groups) or "(none)")
    if snapshot.funnel is not None:
        f = snapshot.funnel
        logger.info("  Funnel: %d leads, %d bookings, %d shows, %d closes",
                    f.leads, f.bookings, f.shows, f.closes)
    if snapshot.revenue is not None:
        logger.info("  Revenue: %d", snapshot.revenue.total_revenue)
    logger.info("  JSON: %s", out_path)
    return 0 if snapshot.status == STATUS_OK else 2


def main(argv: Optional[List[str]] = None) -> int:
    """
    Entry point for both `python scripts/kpi_report.py` and the
    gym-kpi-report console script. Returns the process exit code:
    0 ok, 2 scope unavailable, 1 failure.
    """
    args = _parse_args(argv)
    try:
        return _report(args)
    except HubError as exc:
        logger.error("KPI report failed: %s", exc)
    except Exception as exc:
        logger.error("KPI report failed: %s", exc, exc_info=True)
    return 1


if __name__ == "__main__":
    sys.exit(main())
