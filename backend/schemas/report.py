# backend/schemas/report.py
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel
from typing import Dict, List, Optional


class AnalysisResult(BaseModel):
    """Structured outcome of a single report analysis.

    Field names are snake_case in Python and camelCase on the wire.
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    summary: str = Field(..., description="Narrative summary of the analysis.")
    key_findings: List[str] = Field(default_factory=list, description="Findings in detection order.")
    critical_values: List[str] = Field(default_factory=list, description="Values requiring immediate attention.")
    normal_values: List[str] = Field(default_factory=list, description="Values within normal range.")
    diseases: List[str] = Field(default_factory=list, description="Identified conditions, without duplicates.")
    recommendations: List[str] = Field(default_factory=list, description="Recommendations in trigger order.")


class MeasurementOut(BaseModel):
    kind: str
    values: Dict[str, float]
    text: str


class ReportAnalysisRequest(BaseModel):
    """Manual report text plus optional text produced by upstream extraction."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    text: str = Field("", description="Report text entered by the user.")
    extracted_text: Optional[str] = Field(None, description="Text extracted from uploaded files.")


class ReportAnalysisOut(AnalysisResult):
    measurements: List[MeasurementOut] = Field(default_factory=list)
    rules_version: str = ""


class ExtractTextOut(BaseModel):
    text: str
    source: str
    filename: str


class MentionOut(BaseModel):
    condition: str
    terms: List[str]


class MeasurementRulesOut(BaseModel):
    kind: str
    label: str
    unit: str
    tiers: List[str]


class RulesOut(BaseModel):
    version: str
    measurements: List[MeasurementRulesOut]
    mentions: List[MentionOut]
