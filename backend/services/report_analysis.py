"""Rule-based analysis of free-text medical reports.

The pipeline runs in one synchronous pass:

1. ``extract_measurements`` finds the first value of each measurement kind.
2. ``classify_measurements`` applies the first matching clinical rule per kind.
3. ``scan_mentions`` looks for literal condition names in the text.
4. ``analyze_measurements`` merges everything into an ``AnalysisResult``.

No state survives between calls; the ``RuleSet`` is read-only and may be
shared freely.
"""
from __future__ import annotations

import logging
from typing import Dict, List, Mapping, Optional, Tuple

from backend.schemas.report import AnalysisResult
from backend.services.clinical_rules import (
    ClassificationRule,
    ConditionMention,
    RuleSet,
    default_rule_set,
)
from backend.services.measurements import MeasurementMatch, extract_measurements

logger = logging.getLogger("medibot")

Classification = Tuple[MeasurementMatch, ClassificationRule]


class _Findings:
    """Accumulates result lists while the pipeline runs."""

    def __init__(self) -> None:
        self.key_findings: List[str] = []
        self.critical_values: List[str] = []
        self.normal_values: List[str] = []
        self.diseases: List[str] = []
        self.recommendations: List[str] = []

    def add_condition(self, label: str) -> bool:
        if label in self.diseases:
            return False
        self.diseases.append(label)
        return True


def compose_report_text(text: Optional[str], extracted_text: Optional[str] = None) -> str:
    """Join manually entered text and upstream extracted text."""
    return ((text or "").strip() + "\n" + (extracted_text or "").strip()).strip()


def classify_measurements(
    matches: Mapping[str, MeasurementMatch], rules: RuleSet
) -> List[Classification]:
    """Pair each extracted measurement with its first matching rule.

    Kinds are visited in rule-set order; kinds without rules (temperature,
    heart rate) are skipped.
    """
    out: List[Classification] = []
    for measurement in rules.measurements:
        match = matches.get(measurement.kind)
        if match is None:
            continue
        rule = measurement.classify(match.values)
        if rule is not None:
            out.append((match, rule))
    return out


def scan_mentions(text: str, rules: RuleSet) -> List[ConditionMention]:
    lowered = (text or "").lower()
    return [m for m in rules.mentions if m.found_in(lowered)]


def _apply_rule(findings: _Findings, match: MeasurementMatch, rule: ClassificationRule) -> None:
    params = match.formatted()
    if rule.finding:
        findings.key_findings.append(rule.finding.format(**params))
    if rule.value_text:
        value_text = rule.value_text.format(**params)
        if rule.is_critical:
            findings.critical_values.append(value_text)
        elif rule.is_normal:
            findings.normal_values.append(value_text)
    if rule.condition:
        findings.add_condition(rule.condition)
    findings.recommendations.extend(rule.recommendations)


def _apply_mention(findings: _Findings, mention: ConditionMention) -> None:
    if not findings.add_condition(mention.condition):
        return
    findings.key_findings.append(f"Diagnosed: {mention.condition}")
    if mention.recommendation:
        findings.recommendations.append(mention.recommendation)


def build_summary(findings: _Findings, rules: RuleSet) -> str:
    """Compose the summary text.

    When nothing was found this also appends the fallback finding and
    recommendations to ``findings``.
    """
    text = rules.summary.preamble
    if findings.diseases:
        text += f"Identified conditions: {', '.join(findings.diseases)}. "
    if findings.critical_values:
        text += f"{len(findings.critical_values)} critical value(s) requiring immediate attention. "
    if findings.normal_values:
        text += f"{len(findings.normal_values)} parameter(s) within normal range. "
    if not findings.key_findings:
        text += rules.summary.no_findings
        findings.key_findings.append(rules.fallback.finding)
        findings.recommendations.extend(rules.fallback.recommendations)
    else:
        text += rules.summary.review
    return text


def analyze_measurements(
    text: str,
    matches: Mapping[str, MeasurementMatch],
    rules: RuleSet,
    dedupe_recommendations: bool = False,
) -> AnalysisResult:
    findings = _Findings()
    for match, rule in classify_measurements(matches, rules):
        _apply_rule(findings, match, rule)
    for mention in scan_mentions(text, rules):
        _apply_mention(findings, mention)

    summary = build_summary(findings, rules)
    recommendations = findings.recommendations
    if dedupe_recommendations:
        recommendations = list(dict.fromkeys(recommendations))

    return AnalysisResult(
        summary=summary,
        key_findings=findings.key_findings,
        critical_values=findings.critical_values,
        normal_values=findings.normal_values,
        diseases=findings.diseases,
        recommendations=recommendations,
    )


def analyze_report(
    text: str,
    rules: Optional[RuleSet] = None,
    dedupe_recommendations: bool = False,
) -> AnalysisResult:
    """Analyze report text and return a fresh ``AnalysisResult``.

    Any string is valid input, including the empty string.
    """
    rules = rules or default_rule_set()
    text = text or ""
    return analyze_measurements(text, extract_measurements(text), rules, dedupe_recommendations)


def analysis_log_fields(result: AnalysisResult, matches: Dict[str, MeasurementMatch]) -> Dict[str, object]:
    """Counts-only view of a result for structured logs (never report text)."""
    return {
        "measurements": sorted(matches),
        "diseases": len(result.diseases),
        "critical": len(result.critical_values),
        "normal": len(result.normal_values),
        "recommendations": len(result.recommendations),
    }


__all__ = [
    "analyze_report",
    "analyze_measurements",
    "classify_measurements",
    "scan_mentions",
    "build_summary",
    "compose_report_text",
    "analysis_log_fields",
]
