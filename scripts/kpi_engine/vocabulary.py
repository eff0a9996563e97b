"""
Gym KPI Hub — Acquisition Vocabularies
========================================

Loads configs/kpi_vocabulary.yaml: the paid-source set, the source -> ad
platform map, the lead-source lists shown on the dashboard, booking channels, instalment
payment types, consult objections and payment-mix labels. Calculators read
these tables instead of hard-coding them.

Usage:
    from scripts.kpi_engine.vocabulary import load_vocabulary
    vocab = load_vocabulary()
    vocab.platform_for("Google Ads / SEO")   # -> "Google"
"""
from __future__ import annotations

import os
import re
from dataclasses import dataclass, field
from functools import lru_cache
from pathlib import Path
from typing import Dict, FrozenSet, Optional, Tuple

import yaml

from scripts.kpi_engine.events import EventType
from scripts.lib.errors import ConfigError
from scripts.lib.logger import setup_logger

logger = setup_logger("kpi_vocabulary")

PROJECT_ROOT = Path(__file__).resolve().parent.parent.parent
DEFAULT_VOCABULARY_PATH = PROJECT_ROOT / "configs" / "kpi_vocabulary.yaml"

_NON_WORD = re.compile(r"\W", re.ASCII)


def label_key(label: str) -> str:
    """Payload key a summary form uses for a label ("Email → DM CTA" -> "email___dm_cta")."""
    return _NON_WORD.sub("_", label).lower()


@dataclass(frozen=True)
class BookingChannel:
    key: str
    label: str
    outbound_event: str
    outbound_field: str


@dataclass(frozen=True)
class Vocabulary:
    """Immutable lookup tables shared by every calculator."""

    phone_lead_sources: Tuple[str, ...] = ()
    dm_sources: Tuple[str, ...] = ()
    paid_sources: FrozenSet[str] = frozenset()
    source_platforms: Dict[str, str] = field(default_factory=dict)
    other_platform: str = "Other"
    roas_platforms: Tuple[Tuple[str, str], ...] = ()
    booking_channels: Tuple[BookingChannel, ...] = ()
    installment_payment_types: FrozenSet[str] = frozenset()
    objections: Tuple[str, ...] = ()
    # payment type code -> display label, in display order
    payment_mix: Tuple[Tuple[str, str], ...] = ()

    def is_paid(self, source: Optional[str]) -> bool:
        return bool(source) and source in self.paid_sources

    def platform_for(self, source: Optional[str]) -> str:
        """Ad platform for a lead source; unknown sources map to the Other bucket."""
        if not source:
            return self.other_platform
        return self.source_platforms.get(source, self.other_platform)

    def is_installment(self, payment_type: Optional[str]) -> bool:
        return (payment_type or "").strip().upper() in self.installment_payment_types


def _as_str_list(data: dict, key: str, path: Path) -> Tuple[str, ...]:
    value = data.get(key, [])
    if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
        raise ConfigError(f"'{key}' must be a list of strings", config_path=str(path))
    return tuple(value)


def _as_str_map(data: dict, key: str, path: Path) -> Dict[str, str]:
    value = data.get(key, {})
    if not isinstance(value, dict):
        raise ConfigError(f"'{key}' must be a mapping", config_path=str(path))
    return {str(k): str(v) for k, v in value.items()}


def parse_vocabulary(data: dict, path: Path = DEFAULT_VOCABULARY_PATH) -> Vocabulary:
    """Build a Vocabulary from an already-loaded YAML document."""
    if not isinstance(data, dict):
        raise ConfigError("Vocabulary file must contain a mapping", config_path=str(path))

    channels = []
    for raw in data.get("booking_channels", []) or []:
        try:
            channels.append(BookingChannel(
                key=str(raw["key"]).upper(),
                label=str(raw.get("label", raw["key"])),
                outbound_event=str(raw["outbound_event"]).upper(),
                outbound_field=str(raw["outbound_field"]),
            ))
        except (KeyError, TypeError) as e:
            raise ConfigError(f"Invalid booking channel entry {raw!r}: {e}", config_path=str(path))
        if channels[-1].outbound_event not in EventType.__members__:
            raise ConfigError(
                f"Unknown outbound event {channels[-1].outbound_event!r} for channel {channels[-1].key}",
                config_path=str(path),
            )

    return Vocabulary(
        phone_lead_sources=_as_str_list(data, "phone_lead_sources", path),
        dm_sources=_as_str_list(data, "dm_sources", path),
        paid_sources=frozenset(_as_str_list(data, "paid_sources", path)),
        source_platforms=_as_str_map(data, "source_platforms", path),
        other_platform=str(data.get("other_platform", "Other")),
        roas_platforms=tuple(_as_str_map(data, "roas_platforms", path).items()),
        booking_channels=tuple(channels),
        installment_payment_types=frozenset(
            t.upper() for t in _as_str_list(data, "installment_payment_types", path)
        ),
        objections=_as_str_list(data, "objections", path),
        payment_mix=tuple(
            (code.upper(), label) for code, label in _as_str_map(data, "payment_mix", path).items()
        ),
    )


@lru_cache(maxsize=8)
def load_vocabulary(path: str | Path | None = None) -> Vocabulary:
    """
    Load vocabularies from YAML (cached per path).

    Resolution order: explicit path, KPI_VOCABULARY_PATH, configs/kpi_vocabulary.yaml.

    Raises:
        ConfigError: If the file is missing or malformed.
    """
    path = Path(path or os.getenv("KPI_VOCABULARY_PATH") or DEFAULT_VOCABULARY_PATH)
    if not path.exists():
        raise ConfigError(f"Vocabulary config not found: {path}", config_path=str(path))

    try:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {path.name}: {e}", config_path=str(path))

    vocab = parse_vocabulary(data, path)
    logger.info(
        "Loaded vocabulary from %s: %d phone sources, %d DM sources, %d paid, %d platforms",
        path.name, len(vocab.phone_lead_sources), len(vocab.dm_sources),
        len(vocab.paid_sources), len(vocab.roas_platforms),
    )
    return vocab
