# backend/routes/report_routes.py
import logging
import os

from fastapi import APIRouter, Depends, File, HTTPException, Request, UploadFile, status
from fastapi.responses import PlainTextResponse

from backend.middleware.rate_limit import ANALYZE_RATE_LIMIT, UPLOAD_RATE_LIMIT, limiter
from backend.schemas.report import (
    ExtractTextOut,
    MeasurementOut,
    MeasurementRulesOut,
    MentionOut,
    ReportAnalysisOut,
    ReportAnalysisRequest,
    RulesOut,
)
from backend.services.clinical_rules import RuleSet, default_rule_set
from backend.services.measurements import extract_measurements
from backend.services.report_analysis import (
    analysis_log_fields,
    analyze_measurements,
    analyze_report,
    compose_report_text,
)
from backend.services.report_export import render_report_text
from backend.services.text_intake import (
    UnsupportedDocumentError,
    extract_text_from_bytes,
    sanitize_filename,
)

router = APIRouter(prefix="/api/reports", tags=["reports"])
logger = logging.getLogger("medibot")

MAX_FILE_MB = int(os.getenv("MAX_FILE_MB", "10"))
MAX_REPORT_CHARS = int(os.getenv("MAX_REPORT_CHARS", "20000"))
DEDUPE_RECOMMENDATIONS = (os.getenv("DEDUPE_RECOMMENDATIONS", "false") or "false").strip().lower() in {"1", "true", "yes", "on"}


def get_rule_set(request: Request) -> RuleSet:
    rules = getattr(request.app.state, "rules", None)
    return rules if isinstance(rules, RuleSet) else default_rule_set()


def _report_text(payload: ReportAnalysisRequest) -> str:
    text = compose_report_text(payload.text, payload.extracted_text)
    if not text:
        raise HTTPException(status_code=400, detail="No content to analyze")
    if len(text) > MAX_REPORT_CHARS:
        raise HTTPException(
            status_code=413,
            detail=f"Report text exceeds the {MAX_REPORT_CHARS} character limit",
        )
    return text


@router.post("/analyze", response_model=ReportAnalysisOut, status_code=status.HTTP_200_OK)
@limiter.limit(ANALYZE_RATE_LIMIT)
def analyze(request: Request, payload: ReportAnalysisRequest, rules: RuleSet = Depends(get_rule_set)):
    """Run the rule-based analyzer over the submitted report text."""
    text = _report_text(payload)
    matches = extract_measurements(text)
    result = analyze_measurements(text, matches, rules, DEDUPE_RECOMMENDATIONS)
    logger.info({"function": "analyze_report", **analysis_log_fields(result, matches)})
    return ReportAnalysisOut(
        **result.model_dump(),
        measurements=[MeasurementOut(kind=m.kind, values=dict(m.values), text=m.text) for m in matches.values()],
        rules_version=rules.version,
    )


@router.post("/export", response_class=PlainTextResponse)
@limiter.limit(ANALYZE_RATE_LIMIT)
def export(request: Request, payload: ReportAnalysisRequest, rules: RuleSet = Depends(get_rule_set)):
    """Analyze and return the downloadable plain-text report."""
    text = _report_text(payload)
    result = analyze_report(text, rules, DEDUPE_RECOMMENDATIONS)
    return PlainTextResponse(
        render_report_text(result),
        headers={"Content-Disposition": 'attachment; filename="medical-analysis-report.txt"'},
    )


@router.post("/extract_text", response_model=ExtractTextOut)
@limiter.limit(UPLOAD_RATE_LIMIT)
async def extract_text(request: Request, file: UploadFile = File(...)):
    # Read into memory; never write to disk
    data = await file.read()
    name = sanitize_filename(file.filename or "file")
    if not data:
        raise HTTPException(status_code=400, detail="Empty file")
    size_mb = len(data) / (1024 * 1024)
    if size_mb > MAX_FILE_MB:
        raise HTTPException(status_code=413, detail=f"File size exceeds the {MAX_FILE_MB}MB limit")
    try:
        text, source = extract_text_from_bytes(data, name, file.content_type or "")
    except UnsupportedDocumentError as exc:
        logger.info({"function": "extract_text", "rejected": "unsupported", "content_type": file.content_type})
        raise HTTPException(status_code=415, detail=str(exc))
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=f"Text extraction failed: {exc}")
    return ExtractTextOut(text=text, source=source, filename=name)


@router.get("/rules", response_model=RulesOut)
def rules_info(rules: RuleSet = Depends(get_rule_set)):
    return RulesOut(
        version=rules.version,
        measurements=[
            MeasurementRulesOut(kind=m.kind, label=m.label, unit=m.unit, tiers=[r.tier for r in m.rules])
            for m in rules.measurements
        ],
        mentions=[
            MentionOut(
                condition=m.condition,
                terms=list(m.terms) + list(m.abbreviations),
            )
            for m in rules.mentions
        ],
    )
