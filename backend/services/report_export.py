"""Plain-text rendering of an analysis for download."""
from __future__ import annotations

from typing import List, Sequence

from backend.schemas.report import AnalysisResult

DISCLAIMER = (
    "Disclaimer: This AI analysis is for informational purposes only and should not replace "
    "professional medical advice. Always consult with healthcare professionals for proper "
    "diagnosis and treatment."
)


def _section(title: str, items: Sequence[str]) -> List[str]:
    if not items:
        return []
    return [title, *(f"- {item}" for item in items), ""]


def render_report_text(result: AnalysisResult, title: str = "Medical Analysis Report") -> str:
    lines: List[str] = [title, "=" * len(title), "", "Executive Summary", result.summary, ""]
    lines += _section("Identified Medical Conditions & Diseases", result.diseases)
    lines += _section("Critical Values - Requires Immediate Attention", result.critical_values)
    lines += _section("Normal Values", result.normal_values)
    lines += _section("Key Clinical Findings", result.key_findings)
    lines += _section("Medical Recommendations", result.recommendations)
    lines.append(DISCLAIMER)
    return "\n".join(lines) + "\n"


__all__ = ["render_report_text", "DISCLAIMER"]
