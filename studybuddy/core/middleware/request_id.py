import logging
import time
from typing import Optional
from uuid import uuid4

from starlette.middleware.base import BaseHTTPMiddleware

from studybuddy.core.logging import LOGGER_NAME, latency_bucket_ms, request_id_ctx_var


logger = logging.getLogger(LOGGER_NAME)


class RequestIdMiddleware(BaseHTTPMiddleware):
    """
    Bind a request id for the duration of each request.

    The caller's x-request-id is reused when present so ids line up with
    the desktop app's own logs; it is always echoed on the response.
    """

    def __init__(self, app, header_name: str = "x-request-id"):
        super().__init__(app)
        self.header_name = header_name

    async def dispatch(self, request, call_next):
        rid = request.headers.get(self.header_name) or uuid4().hex
        request.state.request_id = rid
        token = request_id_ctx_var.set(rid)
        started = time.perf_counter()

        status: Optional[int] = 500
        try:
            response = await call_next(request)
            status = response.status_code
            response.headers[self.header_name] = rid
            return response
        finally:
            self._log_completion(request, rid, status, (time.perf_counter() - started) * 1000)
            request_id_ctx_var.reset(token)

    @staticmethod
    def _log_completion(request, rid: str, status: Optional[int], elapsed_ms: float) -> None:
        logger.info(
            "request.complete",
            extra={
                "request_id": rid,
                "user_id": request.headers.get("x-user-id"),
                "path": request.url.path,
                "method": request.method,
                "status": status,
                "latency_bucket": latency_bucket_ms(elapsed_ms),
            },
        )
