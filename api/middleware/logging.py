"""
访问日志中间件

记录每个请求的方法、路径、状态码与耗时。授权令牌、网关签名与凭据一律脱敏；
网关回调的原始报文只记录大小（签名校验依赖原始字节，日志里不出现明文）。
"""
import json
import time
from typing import Any
from urllib.parse import parse_qsl

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp

from core.config import settings
from core.logging_config import get_logger


logger = get_logger(__name__)

MASK = "***"


class LoggingMiddleware(BaseHTTPMiddleware):
    """请求/响应日志"""

    SKIP_PATHS = {"/health", "/docs", "/redoc", "/openapi.json"}

    # 报文不落日志的路径前缀：网关 webhook 与内容交付
    OPAQUE_BODY_PREFIXES = ("/api/v1/payments/webhooks/", "/api/v1/entitlements/content")

    SENSITIVE_FIELDS = {
        "password", "token", "secret", "api_key", "access_token", "refresh_token",
        "grant_token", "app_secret", "merchant_key", "signature", "sign",
        "id_token", "session_id", "paymentid", "payment_ref_id",
    }

    SENSITIVE_HEADERS = ("authorization", "x-access-token", "stripe-signature", "x-nagad-signature")

    def __init__(self, app: ASGIApp):
        super().__init__(app)
        self.enable_body_log_default: bool = settings.LOG_REQUEST_BODY_ENABLE_BY_DEFAULT
        self.max_body_log_bytes: int = settings.LOG_REQUEST_BODY_MAX_BYTES

    async def dispatch(self, request: Request, call_next):
        if request.url.path in self.SKIP_PATHS:
            return await call_next(request)

        started = time.perf_counter()
        request_info = await self._describe(request)
        logger.info("request_started", **request_info)

        try:
            response = await call_next(request)
        except Exception as exc:
            logger.error(
                "request_failed",
                duration_ms=round((time.perf_counter() - started) * 1000, 2),
                error=str(exc),
                error_type=type(exc).__name__,
                exc_info=True,
                **request_info,
            )
            raise

        duration = time.perf_counter() - started
        self._log_response(response, duration, request_info)
        response.headers["X-Process-Time"] = f"{duration:.3f}"
        return response

    async def _describe(self, request: Request) -> dict:
        path = request.url.path
        info: dict[str, Any] = {
            "method": request.method,
            "path": path,
            "query_params": self.redact(dict(request.query_params)),
        }
        if request.path_params:
            info["path_params"] = request.path_params

        present = [h for h in self.SENSITIVE_HEADERS if h in request.headers]
        if present:
            info["credential_headers"] = present

        if request.method in ("POST", "PUT", "PATCH"):
            if path.startswith(self.OPAQUE_BODY_PREFIXES):
                info["body_bytes"] = int(request.headers.get("content-length") or 0)
            elif self._should_log_body(request):
                snippet = await self._body_snippet(request)
                if snippet is not None:
                    info["body"] = snippet

        user_agent = request.headers.get("User-Agent")
        if user_agent:
            info["user_agent"] = user_agent
        return info

    def _should_log_body(self, request: Request) -> bool:
        # X-Log-Body: true/false 可按请求覆盖
        header = (request.headers.get("X-Log-Body") or "").lower()
        if header in {"true", "1", "yes"}:
            return True
        if header in {"false", "0", "no"}:
            return False
        return bool(self.enable_body_log_default and settings.DEBUG)

    async def _body_snippet(self, request: Request) -> Any:
        body = await request.body()
        if not body:
            return None
        text = body[: self.max_body_log_bytes].decode("utf-8", errors="ignore")
        content_type = request.headers.get("content-type", "").lower()
        if "application/json" in content_type:
            try:
                return self.redact(json.loads(text))
            except ValueError:
                return text
        if "application/x-www-form-urlencoded" in content_type:
            return self.redact(dict(parse_qsl(text, keep_blank_values=True)))
        return text

    @classmethod
    def redact(cls, data: Any) -> Any:
        if isinstance(data, dict):
            return {k: (MASK if str(k).lower() in cls.SENSITIVE_FIELDS else cls.redact(v)) for k, v in data.items()}
        if isinstance(data, (list, tuple)):
            return [cls.redact(v) for v in data]
        return data

    def _log_response(self, response: Response, duration: float, request_info: dict):
        status_code = response.status_code
        log_data = {"status_code": status_code, "duration_ms": round(duration * 1000, 2), **request_info}
        if status_code < 400:
            logger.info("request_completed", **log_data)
        elif status_code < 500:
            logger.warning("request_client_error", **log_data)
        else:
            logger.error("request_server_error", **log_data)
