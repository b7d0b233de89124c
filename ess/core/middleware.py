import time
import uuid

import structlog
from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import Response

from ..authn import extract_principal
from ..config import settings

logger = structlog.get_logger("ess.middleware")


class RequestContextMiddleware(BaseHTTPMiddleware):
    """Bind request id and caller to every log line emitted while serving a request."""

    async def dispatch(self, request: Request, call_next):
        request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        principal = extract_principal(
            request.headers.get("authorization"),
            request.cookies.get(settings.SESSION_COOKIE_NAME),
        )

        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(
            request_id=request_id,
            path=request.url.path,
            method=request.method,
            actor=principal.actor_ref if principal is not None else None,
            company_id=principal.company_id if principal is not None else None,
        )

        start_time = time.perf_counter()

        try:
            response: Response = await call_next(request)
        except Exception as exc:
            process_time = (time.perf_counter() - start_time) * 1000
            logger.error(
                "request_failed",
                error=str(exc),
                duration_ms=round(process_time, 2),
            )
            raise

        process_time = (time.perf_counter() - start_time) * 1000
        response.headers["X-Request-ID"] = request_id

        logger.info(
            "request_finished",
            status=response.status_code,
            duration_ms=round(process_time, 2),
        )

        return response
