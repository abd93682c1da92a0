"""商品目录服务客户端（实现 CatalogPort）"""
from decimal import Decimal, InvalidOperation
from typing import Any, Optional

import httpx

from application.ports.catalog import ProductInfo
from core.config import CatalogSettings
from core.logging_config import get_logger
from domain.common.exceptions import CatalogUnavailableException

from .base import BaseAPIClient, APIError, NotFoundError, UnavailableError


logger = get_logger(__name__)


class CatalogClient(BaseAPIClient):
    """GET {base_url}/products/{id} -> 商品快照

    兼容裸对象与统一响应包裹 `{"code": 0, "data": {...}}` 两种格式。
    """

    def __init__(self, cfg: CatalogSettings, transport: Optional[httpx.AsyncBaseTransport] = None):
        super().__init__(
            base_url=cfg.base_url,
            timeout=cfg.timeout,
            max_retries=cfg.max_retries,
            retry_delay=cfg.retry_delay,
            auth_token=cfg.api_token,
            transport=transport,
        )

    @staticmethod
    def _to_product(product_id: str, payload: dict[str, Any]) -> ProductInfo:
        body = payload.get("data") if isinstance(payload.get("data"), dict) else payload
        try:
            price = Decimal(str(body.get("price")))
        except (InvalidOperation, ValueError) as exc:
            raise CatalogUnavailableException(f"Catalog returned an invalid price for {product_id}") from exc
        kind = str(body.get("kind") or body.get("type") or "").lower()
        is_digital = bool(body.get("is_digital", kind in {"digital", "ebook"}))
        return ProductInfo(
            product_id=str(body.get("id") or body.get("product_id") or product_id),
            title=str(body.get("title") or body.get("name") or product_id),
            price=price,
            is_digital=is_digital,
            is_purchasable=bool(body.get("is_purchasable", body.get("is_active", True))),
            content_key=body.get("content_key") or body.get("file_key"),
        )

    async def get_product(self, product_id: str) -> Optional[ProductInfo]:
        try:
            response = await self.get(f"products/{product_id}")
        except NotFoundError:
            return None
        except UnavailableError as exc:
            logger.warning("catalog_unavailable", product_id=product_id, error=str(exc))
            raise CatalogUnavailableException() from exc
        except APIError as exc:
            logger.warning("catalog_request_failed", product_id=product_id, status_code=exc.status_code)
            raise CatalogUnavailableException(f"Catalog lookup failed: {exc.message}") from exc
        if not isinstance(response.data, dict):
            raise CatalogUnavailableException("Catalog returned a non-JSON body")
        return self._to_product(product_id, response.data)
