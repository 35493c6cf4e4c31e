"""HTTP middleware: request tagging, timing and engine error responses."""

import time
import uuid
from typing import Callable, Dict

from fastapi import Request, Response
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from .exceptions import ErrorCategory, WorkflowEngineError, create_error_response
from .logging import get_logger, set_logging_context, clear_logging_context
from ..models.core import utc_now


logger = get_logger(__name__)

# Categories not listed map to 500
STATUS_BY_CATEGORY: Dict[ErrorCategory, int] = {
    ErrorCategory.VALIDATION: 400,
    ErrorCategory.PLANNING: 400,
    ErrorCategory.CANCELLATION: 409,
    ErrorCategory.STORAGE: 503,
}


def status_code_for_error(error: WorkflowEngineError) -> int:
    """HTTP status code for an engine error, chosen by its category."""
    status_code = STATUS_BY_CATEGORY.get(error.category, 500)
    if status_code == 503 and not error.recoverable:
        return 500
    return status_code


class ErrorHandlingMiddleware(BaseHTTPMiddleware):
    """Tags each request with an ID and converts escaped errors to JSON responses.

    Routes normally map engine errors themselves; this catches whatever
    escapes them so clients always get a JSON body and an X-Request-ID.
    """

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        started = time.perf_counter()
        route = f"{request.method} {request.url.path}"

        set_logging_context(request_id=request_id, route=route,
                            client_ip=request.client.host if request.client else "unknown")
        try:
            try:
                response = await call_next(request)
            except WorkflowEngineError as e:
                status_code = status_code_for_error(e)
                logger.warning(f"{route} failed with {e.error_code} ({status_code})",
                               extra={"error_details": e.to_dict()})
                response = JSONResponse(status_code=status_code, content=create_error_response(e))
            except Exception as e:
                logger.error(f"{route} raised {type(e).__name__}: {e}", exc_info=True)
                response = JSONResponse(
                    status_code=500,
                    content={
                        "error": "InternalServerError",
                        "message": "An unexpected error occurred",
                        "details": {"error_type": type(e).__name__, "timestamp": utc_now().isoformat()},
                        "request_id": request_id
                    }
                )

            logger.info(f"{route} -> {response.status_code} in {time.perf_counter() - started:.3f}s")
            response.headers["X-Request-ID"] = request_id
            return response
        finally:
            clear_logging_context()


class PerformanceMonitoringMiddleware(BaseHTTPMiddleware):
    """Adds X-Response-Time and warns about requests slower than the threshold.

    Execute endpoints await whole runs, so slow requests usually point at a
    slow node handler rather than at the API.
    """

    def __init__(self, app, slow_request_threshold: float = 5.0):
        super().__init__(app)
        self.slow_request_threshold = slow_request_threshold

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        started = time.perf_counter()
        response = await call_next(request)
        elapsed = time.perf_counter() - started

        if elapsed > self.slow_request_threshold:
            logger.warning(f"Slow request: {request.method} {request.url.path} took {elapsed:.3f}s "
                           f"(threshold {self.slow_request_threshold}s)")

        response.headers["X-Response-Time"] = f"{elapsed:.3f}s"
        return response
