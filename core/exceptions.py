"""
自定义异常映射与全局异常处理器
"""
from typing import Optional
from fastapi import FastAPI, Request, HTTPException
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
import traceback
import uuid
from starlette import status as http_status

from .response import error_response
from shared.codes import BusinessCode
from shared.codes.payment_codes import PaymentCode
from core.logging_config import get_logger
from domain.common.exceptions import BusinessException


class UnauthorizedException(BusinessException):
    """未授权异常"""

    def __init__(self, message: str = "Unauthorized"):
        super().__init__(
            code=BusinessCode.UNAUTHORIZED,
            message=message,
            error_type="Unauthorized",
        )


class TokenExpiredException(BusinessException):
    """Token过期异常"""

    def __init__(self):
        super().__init__(
            code=BusinessCode.TOKEN_EXPIRED,
            message="Token expired",
            error_type="TokenExpired",
        )


_HTTP_STATUS_BY_CODE = {
    BusinessCode.PARAM_ERROR: http_status.HTTP_400_BAD_REQUEST,
    BusinessCode.PARAM_MISSING: http_status.HTTP_400_BAD_REQUEST,
    BusinessCode.PARAM_TYPE_ERROR: http_status.HTTP_400_BAD_REQUEST,
    BusinessCode.PARAM_VALIDATION_ERROR: http_status.HTTP_422_UNPROCESSABLE_ENTITY,
    BusinessCode.INVALID_LINE_ITEM: http_status.HTTP_400_BAD_REQUEST,
    BusinessCode.INVALID_SHIPPING_ADDRESS: http_status.HTTP_400_BAD_REQUEST,
    BusinessCode.UNSUPPORTED_PAYMENT_METHOD: http_status.HTTP_400_BAD_REQUEST,

    BusinessCode.BUSINESS_ERROR: http_status.HTTP_400_BAD_REQUEST,
    BusinessCode.NOT_FOUND: http_status.HTTP_404_NOT_FOUND,
    BusinessCode.ORDER_NOT_FOUND: http_status.HTTP_404_NOT_FOUND,
    BusinessCode.GRANT_NOT_FOUND: http_status.HTTP_404_NOT_FOUND,
    BusinessCode.INVALID_STATE_TRANSITION: http_status.HTTP_409_CONFLICT,
    BusinessCode.PAYMENT_ALREADY_SETTLED: http_status.HTTP_409_CONFLICT,
    BusinessCode.TOKEN_INVALID: http_status.HTTP_401_UNAUTHORIZED,
    BusinessCode.TOKEN_EXPIRED: http_status.HTTP_401_UNAUTHORIZED,

    BusinessCode.PERMISSION_ERROR: http_status.HTTP_403_FORBIDDEN,
    BusinessCode.UNAUTHORIZED: http_status.HTTP_401_UNAUTHORIZED,
    BusinessCode.FORBIDDEN: http_status.HTTP_403_FORBIDDEN,
    BusinessCode.ACCESS_DENIED: http_status.HTTP_403_FORBIDDEN,

    BusinessCode.SYSTEM_ERROR: http_status.HTTP_500_INTERNAL_SERVER_ERROR,
    BusinessCode.DATABASE_ERROR: http_status.HTTP_500_INTERNAL_SERVER_ERROR,
    BusinessCode.NETWORK_ERROR: http_status.HTTP_500_INTERNAL_SERVER_ERROR,
    BusinessCode.SERVICE_UNAVAILABLE: http_status.HTTP_503_SERVICE_UNAVAILABLE,
    BusinessCode.CATALOG_UNAVAILABLE: http_status.HTTP_503_SERVICE_UNAVAILABLE,
    BusinessCode.CONTENT_UNAVAILABLE: http_status.HTTP_503_SERVICE_UNAVAILABLE,

    BusinessCode.RATE_LIMIT_ERROR: http_status.HTTP_429_TOO_MANY_REQUESTS,
    BusinessCode.TOO_MANY_REQUESTS: http_status.HTTP_429_TOO_MANY_REQUESTS,

    PaymentCode.PROVIDER_ERROR: http_status.HTTP_502_BAD_GATEWAY,
    PaymentCode.GATEWAY_UNAVAILABLE: http_status.HTTP_503_SERVICE_UNAVAILABLE,
    PaymentCode.TIMEOUT: http_status.HTTP_503_SERVICE_UNAVAILABLE,
    PaymentCode.RATE_LIMITED: http_status.HTTP_503_SERVICE_UNAVAILABLE,
    PaymentCode.TAMPERED_PAYLOAD: http_status.HTTP_400_BAD_REQUEST,
    PaymentCode.DOUBLE_CREDIT_REFUSED: http_status.HTTP_409_CONFLICT,
}


def business_code_to_http_status(code: int) -> int:
    """根据业务码映射HTTP状态码（默认400）。

    BusinessCode 与 PaymentCode 数值区间不重叠，按整数值查表即可。
    """
    return _HTTP_STATUS_BY_CODE.get(int(code), http_status.HTTP_400_BAD_REQUEST)


_RETRY_AFTER_SECONDS = "5"

# 安全相关拒绝单独记审计日志；响应体保持通用
_SECURITY_CODES = {BusinessCode.ACCESS_DENIED, PaymentCode.TAMPERED_PAYLOAD, PaymentCode.DOUBLE_CREDIT_REFUSED}


def _request_id(request: Request) -> str:
    return getattr(getattr(request, "state", object()), "request_id", None) or str(uuid.uuid4())


def _problem(status_code: int, body, headers: Optional[dict] = None) -> JSONResponse:
    return JSONResponse(status_code=status_code, content=body.model_dump(mode="json"), headers=headers)


def register_exception_handlers(app: FastAPI):
    """
    注册全局异常处理器

    业务异常按业务码映射 HTTP 状态；依赖不可用（503）附带 Retry-After 与 retryable 标记；
    401 附带 WWW-Authenticate。
    """

    logger = get_logger(__name__)

    @app.exception_handler(BusinessException)
    async def business_exception_handler(request: Request, exc: BusinessException):
        request_id = _request_id(request)
        status_code = business_code_to_http_status(exc.code)
        retryable = status_code == http_status.HTTP_503_SERVICE_UNAVAILABLE

        if exc.code in _SECURITY_CODES:
            logger.warning(
                "security_refusal",
                request_id=request_id,
                code=int(exc.code),
                error_type=exc.error_type,
                path=request.url.path,
            )
        elif status_code >= 500:
            logger.warning(
                "dependency_unavailable" if retryable else "business_exception",
                request_id=request_id,
                code=int(exc.code),
                error_type=exc.error_type,
                error=exc.message,
            )

        headers = None
        if status_code == http_status.HTTP_401_UNAUTHORIZED:
            headers = {"WWW-Authenticate": "Bearer"}
        elif retryable:
            headers = {"Retry-After": _RETRY_AFTER_SECONDS}

        body = error_response(
            code=exc.code,
            message=exc.message,
            error_type=exc.error_type,
            details=exc.details,
            field=exc.field,
            request_id=request_id,
            retryable=retryable,
        )
        return _problem(status_code, body, headers)

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        errors = exc.errors()
        first_error = errors[0] if errors else {}
        # loc 首段是 body/query/path，字段名从第二段开始
        field = ".".join(str(loc) for loc in first_error.get("loc", [])[1:])

        body = error_response(
            code=BusinessCode.PARAM_VALIDATION_ERROR,
            message=f"Validation failed: {first_error.get('msg', 'unknown')}",
            error_type="ValidationError",
            details={"errors": [{k: v for k, v in e.items() if k not in ("ctx", "input")} for e in errors]},
            field=field or None,
            request_id=_request_id(request),
        )
        return _problem(http_status.HTTP_422_UNPROCESSABLE_ENTITY, body)

    @app.exception_handler(HTTPException)
    async def http_exception_handler(request: Request, exc: HTTPException):
        code_mapping = {
            401: BusinessCode.UNAUTHORIZED,
            403: BusinessCode.FORBIDDEN,
            404: BusinessCode.NOT_FOUND,
            429: BusinessCode.TOO_MANY_REQUESTS,
            503: BusinessCode.SERVICE_UNAVAILABLE,
        }
        body = error_response(
            code=code_mapping.get(exc.status_code, BusinessCode.SYSTEM_ERROR),
            message=str(exc.detail),
            error_type="HTTPError",
            details={"status_code": exc.status_code},
            request_id=_request_id(request),
        )
        return _problem(exc.status_code, body, getattr(exc, "headers", None))

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        request_id = _request_id(request)
        logger.error("unhandled_exception", request_id=request_id, error=str(exc), exc_info=True)

        details: Optional[dict] = None
        if app.debug:
            details = {"exception": str(exc), "traceback": traceback.format_exc()}
        body = error_response(
            code=BusinessCode.SYSTEM_ERROR,
            message="Internal server error",
            error_type="SystemError",
            details=details,
            request_id=request_id,
        )
        return _problem(http_status.HTTP_500_INTERNAL_SERVER_ERROR, body)
