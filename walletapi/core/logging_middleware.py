import logging
import time
import uuid
from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint

logger = logging.getLogger("walletapi")

REQUEST_ID_HEADER = "X-Request-ID"


class LoggingMiddleware(BaseHTTPMiddleware):
    """요청/응답 로깅 + 요청 ID 전파

    체크아웃 콜백과 UI 폴링이 섞여 들어오므로 사용자 ID와 요청 ID를 함께 남깁니다.
    """

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        start = time.time()
        request_id = request.headers.get(REQUEST_ID_HEADER) or uuid.uuid4().hex[:12]
        user_id = request.headers.get("X-User-Id", "-")
        prefix = f"[{request_id}] {request.method} {request.url.path} user={user_id}"

        logger.info(f"[Request] {prefix}")
        try:
            response = await call_next(request)
        except Exception:
            logger.exception(f"[Unhandled Error] {prefix}")
            raise

        duration_ms = (time.time() - start) * 1000
        response.headers[REQUEST_ID_HEADER] = request_id
        message = f"[Response] {prefix} -> {response.status_code} in {duration_ms:.1f}ms"
        if response.status_code >= 500:
            logger.error(message)
        elif response.status_code >= 400:
            logger.warning(message)
        else:
            logger.info(message)
        return response
