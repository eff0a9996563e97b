"""
File output helpers for KPI snapshots.

Usage:
    from scripts.lib.utils import atomic_write_json
    atomic_write_json(snapshot, "data/processed/kpi_snapshot_gym-1.json")
"""
import json
import os
import tempfile
from pathlib import Path
from typing import Any, Union

from pydantic import BaseModel

from scripts.lib.logger import setup_logger

logger = setup_logger(__name__)


def atomic_write_json(data: Union[BaseModel, dict, Any], file_path: Union[str, Path], indent: int = 2) -> bool:
    """
    Serialize data to file_path so readers never see a half-written file.

    Pydantic models are dumped in JSON mode with unset groups (None) left out.
    Returns False, after logging, when the file cannot be written.
    """
    if isinstance(data, BaseModel):
        data = data.model_dump(mode="json", exclude_none=True)

    target = Path(file_path)
    try:
        target.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(dir=target.parent, prefix=f".{target.name}.", suffix=".tmp")
    except OSError as e:
        logger.error("Cannot prepare %s: %s", target, e)
        return False

    try:
        with os.fdopen(fd, "w", encoding="utf-8") as fh:
            json.dump(data, fh, ensure_ascii=False, indent=indent, default=str)
        os.replace(tmp_name, target)
    except OSError as e:
        logger.error("Failed writing %s: %s", target, e)
        Path(tmp_name).unlink(missing_ok=True)
        return False

    logger.debug("Wrote %s", target)
    return True
