"""FastAPI middleware for request/response logging and correlation."""

import time
import uuid
from typing import Callable, Optional

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp

from subscription_sync.logging_config import bind_context, clear_context, get_logger

logger = get_logger(__name__)

REQUEST_ID_HEADER = "X-Request-ID"


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Logs HTTP requests and responses with correlation IDs.

    A request_id is taken from the incoming X-Request-ID header when present,
    generated otherwise, bound to every log line of the request and echoed
    back in the response.
    """

    def __init__(self, app: ASGIApp, include_request_details: bool = True):
        """Initialize middleware.

        Args:
            app: ASGI application
            include_request_details: If True, log client and user agent details
        """
        super().__init__(app)
        self.include_request_details = include_request_details

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request_id = request.headers.get(REQUEST_ID_HEADER) or str(uuid.uuid4())
        bind_context(request_id=request_id)

        if self.include_request_details:
            logger.info(
                "request_started",
                method=request.method,
                path=request.url.path,
                query_params=str(request.query_params) if request.query_params else None,
                client_host=request.client.host if request.client else "unknown",
                user_agent=request.headers.get("user-agent"),
            )
        else:
            logger.info("request_started", method=request.method, path=request.url.path)

        start_time = time.time()

        try:
            response = await call_next(request)

            logger.info(
                "request_completed",
                method=request.method,
                path=request.url.path,
                status_code=response.status_code,
                duration_ms=round((time.time() - start_time) * 1000, 2),
            )

            response.headers[REQUEST_ID_HEADER] = request_id
            return response

        except Exception as exc:
            logger.error(
                "request_failed",
                method=request.method,
                path=request.url.path,
                duration_ms=round((time.time() - start_time) * 1000, 2),
                error=str(exc),
                error_type=type(exc).__name__,
                exc_info=True,
            )
            raise

        finally:
            clear_context()


def _path_segment_after(path: str, marker: str) -> Optional[str]:
    parts = path.split("/")
    try:
        index = parts.index(marker)
    except ValueError:
        return None
    if len(parts) > index + 1 and parts[index + 1]:
        return parts[index + 1]
    return None


class ContextMiddleware(BaseHTTPMiddleware):
    """Binds business context from the request path to the logging context.

    - /users/{user_id}/... binds user_id
    - /checkout/{external_reference}/... binds external_reference
    """

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        path = request.url.path

        user_id = _path_segment_after(path, "users")
        if user_id:
            bind_context(user_id=user_id)

        external_reference = _path_segment_after(path, "checkout")
        if external_reference:
            bind_context(external_reference=external_reference)

        return await call_next(request)
