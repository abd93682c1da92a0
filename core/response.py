"""
统一响应格式

所有 JSON 接口返回 `{code, message, data, error}`；内容交付与支付回调跳转除外。
"""
from datetime import datetime, timezone
from typing import Any, Generic, Optional, TypeVar

from pydantic import BaseModel, Field, field_serializer

from shared.codes import BusinessCode


T = TypeVar("T")


class ErrorDetail(BaseModel):
    """错误详情

    retryable 标记对端依赖（目录服务、内容源、支付网关）暂不可用，客户端可稍后重试。
    """
    type: str
    details: Optional[dict] = None
    field: Optional[str] = None
    retryable: bool = False
    request_id: Optional[str] = None
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @field_serializer('timestamp')
    def serialize_timestamp(self, timestamp: datetime) -> str:
        ts = timestamp if timestamp.tzinfo else timestamp.replace(tzinfo=timezone.utc)
        return ts.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


class Response(BaseModel, Generic[T]):
    """统一响应模型"""
    code: int
    message: str
    data: Optional[T] = None
    error: Optional[ErrorDetail] = None


class PaginatedData(BaseModel, Generic[T]):
    """分页数据"""
    items: list[T]
    total: int
    page: int
    size: int
    pages: int


class WebhookAck(BaseModel):
    """网关 webhook 回执：HTTP 层恒为 200，是否入账看 acknowledged"""
    acknowledged: bool
    order_code: Optional[str] = None
    status: Optional[str] = None
    duplicate: bool = False
    correlation_id: Optional[str] = None


def success_response(
    data: Any = None,
    message: str = "Success",
    code: int = BusinessCode.SUCCESS
) -> Response:
    return Response(code=code, message=message, data=data)


def error_response(
    code: int,
    message: str,
    error_type: str = "BusinessError",
    details: Optional[dict] = None,
    field: Optional[str] = None,
    request_id: Optional[str] = None,
    retryable: bool = False,
) -> Response:
    """
    创建错误响应

    Args:
        code: 业务状态码
        message: 错误消息
        error_type: 错误类型
        details: 错误详情
        field: 错误字段
        request_id: 请求ID
        retryable: 是否为可重试的暂时性错误
    """
    return Response(
        code=code,
        message=message,
        error=ErrorDetail(
            type=error_type,
            details=details,
            field=field,
            retryable=retryable,
            request_id=request_id,
        ),
    )


def paginated_response(
    items: list,
    total: int,
    page: int,
    size: int,
    message: str = "Success"
) -> Response[PaginatedData]:
    pages = -(-total // size) if size > 0 else 0
    return Response(
        code=BusinessCode.SUCCESS,
        message=message,
        data=PaginatedData(items=items, total=total, page=page, size=size, pages=pages),
    )


def webhook_ack(acknowledged: bool, message: str = "Webhook received", **outcome: Any) -> Response[WebhookAck]:
    """webhook 统一回执；未入账时只返回 acknowledged=False，不泄露失败原因"""
    payload = WebhookAck(acknowledged=acknowledged, **(outcome if acknowledged else {}))
    return Response(code=BusinessCode.SUCCESS, message=message, data=payload)
