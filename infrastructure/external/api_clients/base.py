"""
只读 REST 客户端基类（供目录服务等内部依赖使用）

- 有界超时；超时、网络错误与 429/5xx 按指数退避重试（tenacity）
- 重试耗尽统一转换为 UnavailableError，调用方据此映射为"依赖不可用"
- 401/403/404 分类为独立异常，不重试
"""
import asyncio
import json
import logging
import time
from dataclasses import dataclass
from typing import Any, Dict, Optional

import httpx
from tenacity import (
    AsyncRetrying,
    before_sleep_log,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

logger = logging.getLogger(__name__)

RETRY_STATUS_CODES = {429, 500, 502, 503, 504}


@dataclass
class APIResponse:
    status_code: int
    headers: Dict[str, str]
    data: Any
    elapsed_ms: float
    request_id: Optional[str] = None

    @property
    def is_error(self) -> bool:
        return self.status_code >= 400


class APIError(Exception):
    """API错误基类"""

    def __init__(self, message: str, status_code: Optional[int] = None, response: Optional[APIResponse] = None):
        self.message = message
        self.status_code = status_code
        self.response = response
        super().__init__(message)

    def __str__(self):
        parts = [self.message]
        if self.status_code:
            parts.append(f"status={self.status_code}")
        if self.response is not None and self.response.request_id:
            parts.append(f"request_id={self.response.request_id}")
        return " | ".join(parts)


class AuthenticationError(APIError):
    """对端拒绝了服务令牌（401/403）"""


class NotFoundError(APIError):
    """资源不存在（404）"""


class UnavailableError(APIError):
    """对端不可用：重试耗尽后的超时、网络错误或 5xx"""


class _TransientStatus(APIError):
    """可重试的状态码；只在重试循环内部流转"""

    def __init__(self, response: APIResponse, retry_after: Optional[float] = None):
        super().__init__(f"Transient status {response.status_code}", response.status_code, response)
        self.retry_after = retry_after


class BaseAPIClient:
    """
    REST API客户端基类

    实例在进程内复用 httpx 连接池；测试通过 transport 注入 MockTransport。
    """

    def __init__(
        self,
        base_url: str,
        timeout: float = 5.0,
        max_retries: int = 2,
        retry_delay: float = 0.2,
        headers: Optional[Dict[str, str]] = None,
        auth_token: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Args:
            base_url: API基础URL
            timeout: 单次请求超时（秒）
            max_retries: 最大重试次数（不含首次）
            retry_delay: 指数退避的基数（秒）
            headers: 默认请求头
            auth_token: Bearer 令牌
            transport: 自定义 httpx 传输层
        """
        self.base_url = base_url.rstrip('/')
        self.timeout = timeout
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self._transport = transport
        self.default_headers = {"Accept": "application/json", "User-Agent": "Shelfgate/1.0", **(headers or {})}
        if auth_token:
            self.default_headers["Authorization"] = f"Bearer {auth_token}"
        self._client: Optional[httpx.AsyncClient] = None

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=httpx.Timeout(self.timeout),
                follow_redirects=True,
                transport=self._transport,
            )
        return self._client

    async def close(self):
        if self._client:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    def _build_url(self, endpoint: str) -> str:
        return f"{self.base_url}/{endpoint.lstrip('/')}"

    @staticmethod
    def _wrap(response: httpx.Response, elapsed_ms: float) -> APIResponse:
        data = None
        if "application/json" in response.headers.get("content-type", ""):
            try:
                data = response.json()
            except json.JSONDecodeError:
                data = None
        return APIResponse(
            status_code=response.status_code,
            headers=dict(response.headers),
            data=data,
            elapsed_ms=elapsed_ms,
            request_id=response.headers.get("x-request-id"),
        )

    @staticmethod
    def _raise_for_status(response: APIResponse):
        error_class = {401: AuthenticationError, 403: AuthenticationError, 404: NotFoundError}.get(
            response.status_code, APIError
        )
        message = f"API request failed with status {response.status_code}"
        if isinstance(response.data, dict):
            message = response.data.get("message") or response.data.get("error") or response.data.get("detail") or message
        raise error_class(message=str(message), status_code=response.status_code, response=response)

    def _retrying(self) -> AsyncRetrying:
        return AsyncRetrying(
            reraise=True,
            stop=stop_after_attempt(self.max_retries + 1),
            wait=wait_exponential(multiplier=self.retry_delay, min=self.retry_delay, max=self.retry_delay * 8),
            retry=retry_if_exception_type((httpx.TimeoutException, httpx.NetworkError, _TransientStatus)),
            before_sleep=before_sleep_log(logger, logging.WARNING),
        )

    async def _send_once(self, method: str, url: str, params: Optional[Dict[str, Any]], headers: Dict[str, str]) -> APIResponse:
        started = time.perf_counter()
        raw = await self.client.request(method=method, url=url, params=params, headers=headers)
        response = self._wrap(raw, (time.perf_counter() - started) * 1000)
        logger.debug("api_response url=%s status=%s elapsed_ms=%.1f", url, response.status_code, response.elapsed_ms)

        if response.status_code in RETRY_STATUS_CODES:
            retry_after: Optional[float] = None
            if response.status_code == 429:
                try:
                    retry_after = float(response.headers.get("retry-after") or 0) or None
                except (TypeError, ValueError):
                    retry_after = None
                if retry_after:
                    # 对端给出的等待时间也受退避上限约束
                    await asyncio.sleep(min(retry_after, self.retry_delay * 8))
            raise _TransientStatus(response, retry_after)
        if response.is_error:
            self._raise_for_status(response)
        return response

    async def get(self, endpoint: str, params: Optional[Dict[str, Any]] = None) -> APIResponse:
        url = self._build_url(endpoint)
        try:
            async for attempt in self._retrying():
                with attempt:
                    return await self._send_once("GET", url, params, self.default_headers)
        except httpx.TimeoutException as exc:
            raise UnavailableError(f"Request timeout after {self.timeout}s") from exc
        except httpx.TransportError as exc:
            raise UnavailableError(f"Network error: {exc}") from exc
        except _TransientStatus as exc:
            raise UnavailableError(exc.message, status_code=exc.status_code, response=exc.response) from exc
        raise AssertionError("unreachable")  # pragma: no cover
