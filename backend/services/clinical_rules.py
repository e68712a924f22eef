"""Clinical rule tables for the report analyzer.

Thresholds, finding templates and the condition vocabulary live in
``config/clinical_rules.yaml``. They are loaded once and compiled into frozen
dataclasses so a single ``RuleSet`` can be shared by every analysis.
"""
from __future__ import annotations

import logging
import operator
import os
import re
import string
from dataclasses import dataclass, field
from functools import lru_cache
from pathlib import Path
from typing import Any, Callable, Dict, Mapping, Optional, Tuple

import yaml

from backend.services.measurements import MEASUREMENT_PATTERNS

logger = logging.getLogger("medibot")

CONFIG_PATH = Path(__file__).parent.parent / "config" / "clinical_rules.yaml"

SEVERITIES = ("critical", "abnormal", "normal")

# Value names each extractor pattern yields; rule fields and templates may only use these
MEASUREMENT_FIELDS: Dict[str, Tuple[str, ...]] = {
    kind: tuple(pattern.groupindex) for kind, pattern in MEASUREMENT_PATTERNS
}

_OPERATORS: Dict[str, Callable[[float, float], bool]] = {
    "gte": operator.ge,
    "gt": operator.gt,
    "lte": operator.le,
    "lt": operator.lt,
}


class RuleConfigError(ValueError):
    """Raised when the clinical rules file is missing or malformed."""


@dataclass(frozen=True)
class Comparison:
    field: str
    op: str
    threshold: float

    def matches(self, values: Mapping[str, float]) -> bool:
        if self.field not in values:
            return False
        return _OPERATORS[self.op](values[self.field], self.threshold)


@dataclass(frozen=True)
class Predicate:
    """``any``/``all`` over comparisons; an empty predicate always matches."""

    mode: str = "all"
    comparisons: Tuple[Comparison, ...] = ()

    def __call__(self, values: Mapping[str, float]) -> bool:
        if not self.comparisons:
            return True
        checks = (c.matches(values) for c in self.comparisons)
        return any(checks) if self.mode == "any" else all(checks)


@dataclass(frozen=True)
class ClassificationRule:
    tier: str
    severity: str
    predicate: Predicate
    finding: Optional[str] = None
    value_text: Optional[str] = None
    condition: Optional[str] = None
    recommendations: Tuple[str, ...] = ()

    @property
    def is_critical(self) -> bool:
        return self.severity == "critical"

    @property
    def is_normal(self) -> bool:
        return self.severity == "normal"


@dataclass(frozen=True)
class MeasurementRules:
    kind: str
    label: str
    unit: str
    rules: Tuple[ClassificationRule, ...]

    def classify(self, values: Mapping[str, float]) -> Optional[ClassificationRule]:
        for rule in self.rules:
            if rule.predicate(values):
                return rule
        return None


@dataclass(frozen=True)
class ConditionMention:
    condition: str
    recommendation: str
    terms: Tuple[str, ...] = ()
    abbreviations: Tuple[str, ...] = ()
    patterns: Tuple[re.Pattern, ...] = field(default=(), compare=False, repr=False)

    def found_in(self, lowered_text: str) -> bool:
        if any(term in lowered_text for term in self.terms):
            return True
        return any(p.search(lowered_text) for p in self.patterns)


@dataclass(frozen=True)
class SummaryText:
    preamble: str
    no_findings: str
    review: str


@dataclass(frozen=True)
class Fallback:
    finding: str
    recommendations: Tuple[str, ...]


@dataclass(frozen=True)
class RuleSet:
    version: str
    measurements: Tuple[MeasurementRules, ...]
    mentions: Tuple[ConditionMention, ...]
    summary: SummaryText
    fallback: Fallback

    def for_kind(self, kind: str) -> Optional[MeasurementRules]:
        for item in self.measurements:
            if item.kind == kind:
                return item
        return None

    @property
    def kinds(self) -> Tuple[str, ...]:
        return tuple(m.kind for m in self.measurements)


def load_rules(path: Optional[Path] = None) -> Dict[str, Any]:
    """Read the raw YAML document."""
    path = Path(path or CONFIG_PATH)
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except FileNotFoundError as exc:
        raise RuleConfigError(f"rules file not found: {path}") from exc
    except yaml.YAMLError as exc:
        raise RuleConfigError(f"invalid YAML in {path}: {exc}") from exc
    if not isinstance(data, dict):
        raise RuleConfigError(f"rules file {path} must contain a mapping")
    return data


def _parse_comparison(raw: Any, where: str) -> Comparison:
    if not isinstance(raw, dict):
        raise RuleConfigError(f"{where}: comparison must be a mapping")
    op = str(raw.get("op") or "")
    if op not in _OPERATORS:
        raise RuleConfigError(f"{where}: unknown operator {op!r}")
    try:
        threshold = float(raw["value"])
    except (KeyError, TypeError, ValueError) as exc:
        raise RuleConfigError(f"{where}: comparison needs a numeric value") from exc
    return Comparison(field=str(raw.get("field") or "value"), op=op, threshold=threshold)


def _parse_predicate(raw: Any, where: str) -> Predicate:
    if raw is None:
        return Predicate()
    if isinstance(raw, dict) and ("any" in raw or "all" in raw):
        mode = "any" if "any" in raw else "all"
        items = raw[mode] or []
        if not isinstance(items, list):
            raise RuleConfigError(f"{where}: '{mode}' must be a list")
        return Predicate(mode=mode, comparisons=tuple(_parse_comparison(c, where) for c in items))
    return Predicate(comparisons=(_parse_comparison(raw, where),))


def _optional_text(value: Any) -> Optional[str]:
    return None if value is None else str(value)


def _parse_rule(raw: Any, where: str) -> ClassificationRule:
    if not isinstance(raw, dict):
        raise RuleConfigError(f"{where}: rule must be a mapping")
    severity = str(raw.get("severity") or "abnormal")
    if severity not in SEVERITIES:
        raise RuleConfigError(f"{where}: unknown severity {severity!r}")
    recs = raw.get("recommendations") or []
    if isinstance(recs, str):
        recs = [recs]
    return ClassificationRule(
        tier=str(raw.get("tier") or severity),
        severity=severity,
        predicate=_parse_predicate(raw.get("when"), where),
        finding=_optional_text(raw.get("finding")),
        value_text=_optional_text(raw.get("value_text")),
        condition=_optional_text(raw.get("condition")),
        recommendations=tuple(str(r) for r in recs),
    )


def _parse_mention(raw: Any, where: str) -> ConditionMention:
    if not isinstance(raw, dict) or not raw.get("condition"):
        raise RuleConfigError(f"{where}: mention needs a condition")
    terms = tuple(str(t).lower() for t in raw.get("terms") or [])
    abbreviations = tuple(str(a).lower() for a in raw.get("abbreviations") or [])
    if not terms and not abbreviations:
        raise RuleConfigError(f"{where}: mention needs at least one term")
    return ConditionMention(
        condition=str(raw["condition"]),
        recommendation=str(raw.get("recommendation") or ""),
        terms=terms,
        abbreviations=abbreviations,
        patterns=tuple(re.compile(r"\b" + re.escape(a) + r"\b") for a in abbreviations),
    )


def _template_fields(template: str, where: str) -> Tuple[str, ...]:
    try:
        parsed = list(string.Formatter().parse(template))
    except ValueError as exc:
        raise RuleConfigError(f"{where}: malformed template {template!r}: {exc}") from exc
    return tuple(re.split(r"[.\[]", name, maxsplit=1)[0] for _, name, _, _ in parsed if name is not None)


def _check_rule_fields(rule: ClassificationRule, allowed: Tuple[str, ...], where: str) -> None:
    for comparison in rule.predicate.comparisons:
        if comparison.field not in allowed:
            raise RuleConfigError(
                f"{where}: unknown field {comparison.field!r} (expected one of {', '.join(allowed)})"
            )
    for template in (rule.finding, rule.value_text):
        if not template:
            continue
        for name in _template_fields(template, where):
            if name not in allowed:
                raise RuleConfigError(
                    f"{where}: template placeholder {{{name}}} is not provided (expected one of {', '.join(allowed)})"
                )


def build_rule_set(data: Mapping[str, Any]) -> RuleSet:
    """Compile a raw rules document into an immutable ``RuleSet``.

    Comparison fields and ``finding``/``value_text`` placeholders are checked
    against the values the extractor yields for each kind, so a bad rules file
    fails here and not on the first request.
    """
    measurements = []
    for kind, spec in (data.get("measurements") or {}).items():
        if not isinstance(spec, dict) or not spec.get("rules"):
            raise RuleConfigError(f"measurements.{kind}: rules list is required")
        allowed = MEASUREMENT_FIELDS.get(str(kind))
        if allowed is None:
            raise RuleConfigError(f"measurements.{kind}: no extractor for this measurement kind")
        rules = tuple(
            _parse_rule(r, f"measurements.{kind}.rules[{i}]") for i, r in enumerate(spec["rules"])
        )
        for i, rule in enumerate(rules):
            _check_rule_fields(rule, allowed, f"measurements.{kind}.rules[{i}]")
        measurements.append(
            MeasurementRules(
                kind=str(kind),
                label=str(spec.get("label") or kind),
                unit=str(spec.get("unit") or ""),
                rules=rules,
            )
        )

    mentions = tuple(
        _parse_mention(m, f"mentions[{i}]") for i, m in enumerate(data.get("mentions") or [])
    )

    summary = data.get("summary") or {}
    fallback = data.get("fallback") or {}
    try:
        summary_text = SummaryText(
            preamble=summary["preamble"],
            no_findings=summary["no_findings"],
            review=summary["review"],
        )
        fallback_text = Fallback(
            finding=fallback["finding"],
            recommendations=tuple(fallback["recommendations"]),
        )
    except (KeyError, TypeError) as exc:
        raise RuleConfigError(f"summary/fallback section incomplete: {exc}") from exc

    return RuleSet(
        version=str(data.get("version") or "0"),
        measurements=tuple(measurements),
        mentions=mentions,
        summary=summary_text,
        fallback=fallback_text,
    )


def load_rule_set(path: Optional[Path] = None) -> RuleSet:
    rule_set = build_rule_set(load_rules(path))
    logger.info({
        "function": "load_rule_set",
        "version": rule_set.version,
        "kinds": list(rule_set.kinds),
        "mentions": len(rule_set.mentions),
    })
    return rule_set


@lru_cache(maxsize=1)
def default_rule_set() -> RuleSet:
    """Rule set from ``CLINICAL_RULES_PATH`` or the bundled YAML file."""
    override = (os.getenv("CLINICAL_RULES_PATH") or "").strip()
    return load_rule_set(Path(override) if override else None)


__all__ = [
    "RuleConfigError",
    "RuleSet",
    "MeasurementRules",
    "ClassificationRule",
    "ConditionMention",
    "Predicate",
    "Comparison",
    "MEASUREMENT_FIELDS",
    "load_rules",
    "build_rule_set",
    "load_rule_set",
    "default_rule_set",
]
