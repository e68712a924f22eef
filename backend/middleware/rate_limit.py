import logging
import os
import time

from fastapi import Request
from fastapi.responses import JSONResponse
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address

from backend.middleware.tracing import TRACE_ID_CTX_VAR

logger = logging.getLogger("medibot")

RATE_LIMIT_ENABLED = (os.getenv("RATE_LIMIT_ENABLED", "true") or "true").strip().lower() not in {"0", "false", "off", "no"}
ANALYZE_RATE_LIMIT = (os.getenv("ANALYZE_RATE_LIMIT") or "60/minute").strip()
UPLOAD_RATE_LIMIT = (os.getenv("UPLOAD_RATE_LIMIT") or "10/minute").strip()

limiter = Limiter(key_func=get_remote_address, default_limits=[], enabled=RATE_LIMIT_ENABLED)


async def rate_limit_handler(request: Request, exc: RateLimitExceeded):
    try:
        retry_after = max(1, int(getattr(exc, "reset_time", time.time()) - time.time()))
    except (TypeError, ValueError):
        retry_after = 60
    logger.info({
        "function": "rate_limit",
        "path": str(request.url.path),
        "client": get_remote_address(request),
    })
    return JSONResponse(
        status_code=429,
        headers={"Retry-After": str(retry_after)},
        content={
            "code": "TOO_MANY_REQUESTS",
            "message": "Too many requests. Please wait a bit and try again.",
            "trace_id": TRACE_ID_CTX_VAR.get(),
        },
    )
