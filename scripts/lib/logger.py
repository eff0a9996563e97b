"""
Logging setup shared by the KPI engine, the API and the report CLI.

Every logger writes to stdout; LOG_TO_FILE=true also appends to
logs/YYYYMMDD_kpi_hub.log. LOG_LEVEL sets the threshold (default INFO).

Usage:
    from scripts.lib.logger import setup_logger
    logger = setup_logger(__name__)
"""
import logging
import os
import sys
from datetime import date
from pathlib import Path

PROJECT_ROOT = Path(__file__).resolve().parents[2]
LOG_DIR = PROJECT_ROOT / "logs"

LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def _file_handler(log_dir: Path, formatter: logging.Formatter) -> logging.Handler:
    log_dir.mkdir(parents=True, exist_ok=True)
    handler = logging.FileHandler(log_dir / f"{date.today():%Y%m%d}_kpi_hub.log", encoding="utf-8")
    handler.setFormatter(formatter)
    return handler


def setup_logger(
    name: str,
    level: str = None,
    log_to_file: bool = None,
    log_dir: Path = None,
) -> logging.Logger:
    """
    Return the named logger, attaching handlers on first use only.

    Explicit arguments win over the LOG_LEVEL / LOG_TO_FILE environment.
    """
    logger = logging.getLogger(name)
    if logger.handlers:
        return logger

    level_name = (level or os.getenv("LOG_LEVEL") or "INFO").upper()
    resolved = getattr(logging, level_name, None)
    logger.setLevel(resolved if isinstance(resolved, int) else logging.INFO)

    formatter = logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT)
    stream = logging.StreamHandler(sys.stdout)
    stream.setFormatter(formatter)
    logger.addHandler(stream)

    if log_to_file is None:
        log_to_file = os.getenv("LOG_TO_FILE", "false").lower() in ("1", "true", "yes")
    if log_to_file:
        logger.addHandler(_file_handler(Path(log_dir) if log_dir else LOG_DIR, formatter))

    return logger
