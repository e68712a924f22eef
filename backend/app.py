# --- imports (top of backend/app.py) ---
import os, json
import sys
import logging

from datetime import datetime, timezone
from pathlib import Path

from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from dotenv import load_dotenv
from slowapi.errors import RateLimitExceeded
from starlette.exceptions import HTTPException as StarletteHTTPException

# Resolve paths early so env vars are available before importing the app modules
BASE_DIR = Path(__file__).resolve().parent
ROOT_DIR = BASE_DIR.parent
ENV_PATH = BASE_DIR / ".env"

if str(ROOT_DIR) not in sys.path:
    sys.path.append(str(ROOT_DIR))

load_dotenv(ENV_PATH)

from backend.middleware.rate_limit import limiter, rate_limit_handler
from backend.middleware.tracing import TRACE_ID_CTX_VAR, TracingMiddleware
from backend.routes import report_routes
from backend.services.clinical_rules import CONFIG_PATH, load_rule_set
from backend.utils.exceptions import (
    handle_http_exception,
    handle_unhandled_exception,
    handle_validation_exception,
)

CLINICAL_RULES_PATH = Path((os.getenv("CLINICAL_RULES_PATH") or "").strip() or CONFIG_PATH)
CORS_ORIGINS = [
    o.strip()
    for o in (os.getenv("CORS_ORIGINS") or "http://localhost:5173,http://127.0.0.1:5173").split(",")
    if o.strip()
]
LOG_LEVEL = (os.getenv("LOG_LEVEL") or "INFO").strip().upper()


# --- logging setup ---
class JsonFormatter(logging.Formatter):
    def format(self, record):  # type: ignore[override]
        msg = record.msg if isinstance(record.msg, dict) else None
        payload = {
            "timestamp": datetime.now(timezone.utc).isoformat(timespec="seconds").replace("+00:00", "Z"),
            "level": record.levelname,
            "function": (msg or {}).get("function") or record.funcName,
            "message": msg if msg is not None else record.getMessage(),
        }
        trace_id = TRACE_ID_CTX_VAR.get()
        if trace_id:
            payload["trace_id"] = trace_id
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=False, default=str)


def configure_logging() -> logging.Logger:
    logger = logging.getLogger("medibot")
    logger.setLevel(getattr(logging, LOG_LEVEL, logging.INFO))
    if not any(isinstance(h, logging.StreamHandler) for h in logger.handlers):
        handler = logging.StreamHandler()
        handler.setFormatter(JsonFormatter())
        logger.addHandler(handler)
    logging.getLogger("uvicorn").setLevel(logging.INFO)
    return logger


logger = configure_logging()

# --- app setup ---
app = FastAPI(title="Medical Report Analyzer", version="0.1.0")

# Rules are compiled once and shared read-only by every request
app.state.rules = load_rule_set(CLINICAL_RULES_PATH)
app.state.limiter = limiter

app.add_middleware(TracingMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.add_exception_handler(RateLimitExceeded, rate_limit_handler)
app.add_exception_handler(StarletteHTTPException, handle_http_exception)
app.add_exception_handler(RequestValidationError, handle_validation_exception)
app.add_exception_handler(Exception, handle_unhandled_exception)

app.include_router(report_routes.router)


@app.get("/healthz")
def healthz():
    return {"status": "ok", "rules_version": app.state.rules.version}
