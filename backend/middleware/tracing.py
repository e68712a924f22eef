import logging
import time
import uuid
from contextvars import ContextVar

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

TRACE_ID_CTX_VAR: ContextVar[str] = ContextVar("trace_id", default="")
TRACE_HEADER = "x-trace-id"

logger = logging.getLogger("medibot")


class TracingMiddleware(BaseHTTPMiddleware):
    """
    Tag every request with a trace id (reusing the caller's x-trace-id when
    given), expose it through a context variable for logs and error bodies,
    and echo it on the response.
    """
    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        incoming = (request.headers.get(TRACE_HEADER) or "").strip()
        trace_id = incoming[:64] if incoming else str(uuid.uuid4())
        TRACE_ID_CTX_VAR.set(trace_id)
        request.state.trace_id = trace_id

        started = time.perf_counter()
        response = await call_next(request)
        logger.info({
            "function": "request",
            "path": request.url.path,
            "status": response.status_code,
            "duration_ms": round((time.perf_counter() - started) * 1000, 1),
            "trace_id": trace_id,
        })

        response.headers[TRACE_HEADER] = trace_id
        return response
