"""
FastAPI middleware binding request context (request id, protocol action, caller) to logs
"""
import re
import time
import uuid
from typing import Callable, Dict, Optional

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

from benefits_bpp.core.logging_config import LoggingConfig

logger = LoggingConfig.get_logger(__name__)

PROTOCOL_PATH = re.compile(r"^/benefits/dsep/(?P<action>[a-z_]+)$")
REQUEST_ID_HEADER = "X-Request-ID"


def request_log_context(request: Request) -> Dict[str, Optional[str]]:
    """
    Context fields for one request

    Protocol routes also carry their action; the transaction id is bound
    later by the controller once the body has been parsed.
    """
    context = {
        "request_id": request.headers.get(REQUEST_ID_HEADER) or str(uuid.uuid4()),
        "method": request.method,
        "path": request.url.path,
        "client_host": request.client.host if request.client else None,
    }
    match = PROTOCOL_PATH.match(request.url.path)
    if match:
        context["action"] = match.group("action")
    user_id = request.headers.get("x-user-id")
    if user_id:
        context["user_id"] = user_id
    return context


class LoggingContextMiddleware(BaseHTTPMiddleware):
    """Binds request context for the duration of a request and logs its outcome"""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        context = request_log_context(request)
        LoggingConfig.set_context(**context)

        start_time = time.time()
        logger.debug("Request started", extra={"query_params": str(request.query_params)})

        try:
            response = await call_next(request)
        except Exception as e:
            logger.error(
                "Request failed",
                exc_info=True,
                extra={
                    "error_type": type(e).__name__,
                    "duration_ms": int((time.time() - start_time) * 1000),
                }
            )
            raise
        else:
            logger.info(
                "Request completed",
                extra={
                    "status_code": response.status_code,
                    "duration_ms": int((time.time() - start_time) * 1000),
                }
            )
            response.headers[REQUEST_ID_HEADER] = context["request_id"]
            return response
        finally:
            LoggingConfig.clear_context()
