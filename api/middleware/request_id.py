"""
Request ID 与客户端地址中间件

为每个请求生成或透传追踪ID，并解析客户端来源地址。来源地址参与电子书授权的
设备绑定，因此只接受能解析为 IP 的头部值，其余情况回退到直连地址。
"""
import ipaddress
import uuid
from typing import Optional

import structlog
from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware


class RequestIDMiddleware(BaseHTTPMiddleware):
    """
    功能：
    1. 从请求头获取或生成 request_id，并在响应头中返回
    2. 解析 client_ip 写入 request.state
    3. 绑定到 structlog 上下文，后续日志自动携带
    """

    HEADER_NAME = "X-Request-ID"

    # 按优先级排列；X-Forwarded-For 取第一个地址（原始客户端）
    CLIENT_IP_HEADERS = ("CF-Connecting-IP", "X-Forwarded-For", "X-Real-IP")

    async def dispatch(self, request: Request, call_next):
        request_id = request.headers.get(self.HEADER_NAME) or str(uuid.uuid4())
        client_ip = self.resolve_client_ip(request)

        request.state.request_id = request_id
        request.state.client_ip = client_ip

        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(
            request_id=request_id,
            client_ip=client_ip,
            method=request.method,
            path=request.url.path,
        )

        response = await call_next(request)
        response.headers[self.HEADER_NAME] = request_id
        return response

    @classmethod
    def resolve_client_ip(cls, request: Request) -> str:
        for header in cls.CLIENT_IP_HEADERS:
            value = request.headers.get(header)
            if not value:
                continue
            candidate = _parse_ip(value.split(",")[0])
            if candidate:
                return candidate
        return request.client.host if request.client else "unknown"


def _parse_ip(value: str) -> Optional[str]:
    value = value.strip()
    try:
        return str(ipaddress.ip_address(value))
    except ValueError:
        return None
