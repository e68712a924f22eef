"""Measurement extraction from free report text."""
from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Dict, List, Mapping, Optional, Tuple

logger = logging.getLogger("medibot")

# Only the first match of each pattern is used. Keyword patterns allow any
# non-digit run between the label and its value ("Glucose (fasting): 118").
# A blood pressure pair inside a longer slash-separated run ("01/15/2024",
# "01 / 15 / 2024") is not a reading.
MEASUREMENT_PATTERNS: List[Tuple[str, re.Pattern]] = [
    (
        "blood_pressure",
        re.compile(
            r"(?<![\d/])(?<!/\s)(?P<systolic>\d{2,3})\s*/\s*(?P<diastolic>\d{2,3})(?!\d)(?!\s*/)(?:\s*mm\s*hg)?",
            re.IGNORECASE,
        ),
    ),
    ("glucose", re.compile(r"\bglucose[^\d]*(?P<value>\d+)\s*mg/dl", re.IGNORECASE)),
    ("cholesterol", re.compile(r"\bcholesterol[^\d]*(?P<value>\d+)\s*mg/dl", re.IGNORECASE)),
    ("hemoglobin", re.compile(r"\bhemoglobin[^\d]*(?P<value>\d+\.?\d*)\s*g/dl", re.IGNORECASE)),
    ("bmi", re.compile(r"\bbmi[^\d]*(?P<value>\d+\.?\d*)", re.IGNORECASE)),
    ("temperature", re.compile(r"\btemperature[^\d]*(?P<value>\d+\.?\d*)\s*°?\s*f?", re.IGNORECASE)),
    ("heart_rate", re.compile(r"\bheart\s+rate[^\d]*(?P<value>\d+)\s*bpm", re.IGNORECASE)),
]

MEASUREMENT_KINDS = tuple(kind for kind, _ in MEASUREMENT_PATTERNS)


@dataclass(frozen=True)
class MeasurementMatch:
    kind: str
    values: Mapping[str, float] = field(default_factory=dict)
    text: str = ""
    start: int = 0

    def __post_init__(self):
        # read-only view so a match cannot be changed after extraction
        object.__setattr__(self, "values", MappingProxyType(dict(self.values)))

    def formatted(self) -> Dict[str, str]:
        return {name: format_number(v) for name, v in self.values.items()}


def format_number(value: float) -> str:
    """Render 25.0 as "25" and 11.5 as "11.5"."""
    if float(value).is_integer():
        return str(int(value))
    return repr(float(value))


def _parse_values(match: re.Match) -> Optional[Dict[str, float]]:
    values: Dict[str, float] = {}
    for name, raw in match.groupdict().items():
        if raw is None:
            continue
        try:
            values[name] = float(raw)
        except ValueError:
            return None
    return values or None


def extract_measurement(text: str, kind: str) -> Optional[MeasurementMatch]:
    for name, pattern in MEASUREMENT_PATTERNS:
        if name != kind:
            continue
        match = pattern.search(text or "")
        if not match:
            return None
        values = _parse_values(match)
        if values is None:
            logger.debug({"function": "extract_measurement", "kind": kind, "skipped": "unparseable"})
            return None
        return MeasurementMatch(kind=kind, values=values, text=match.group(0).strip(), start=match.start())
    raise KeyError(f"unknown measurement kind: {kind}")


def extract_measurements(text: str) -> Dict[str, MeasurementMatch]:
    """Return the first match of every recognised measurement kind, in pattern order."""
    found: Dict[str, MeasurementMatch] = {}
    for kind in MEASUREMENT_KINDS:
        match = extract_measurement(text, kind)
        if match is not None:
            found[kind] = match
    return found


__all__ = [
    "MEASUREMENT_PATTERNS",
    "MEASUREMENT_KINDS",
    "MeasurementMatch",
    "extract_measurement",
    "extract_measurements",
    "format_number",
]
