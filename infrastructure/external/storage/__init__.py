"""Content storage entry point.

Builds the read-only content provider used by the delivery gate from
``settings.content``.
"""
from typing import Optional

from application.ports.content_storage import ContentStoragePort
from core.config import ContentSettings, settings
from core.logging_config import get_logger
from .exceptions import (
    StorageError,
    NotFoundError,
    TransientError,
    ConfigurationError,
    ValidationError,
)
from .providers.http import HttpProvider
from .providers.local import LocalProvider
from .watermark import watermark_pdf

logger = get_logger(__name__)


def create_content_storage(cfg: Optional[ContentSettings] = None) -> ContentStoragePort:
    """Create the content provider named by ``CONTENT__PROVIDER``.

    Raises:
        ConfigurationError: If provider is unknown or misconfigured
    """
    cfg = cfg or settings.content
    provider = (cfg.provider or "local").lower()
    if provider == "local":
        storage = LocalProvider(cfg.local_base_path, chunk_size=cfg.chunk_size)
    elif provider == "http":
        if not cfg.http_base_url:
            raise ConfigurationError("CONTENT__HTTP_BASE_URL is required for the http provider")
        storage = HttpProvider(
            cfg.http_base_url,
            token=cfg.http_token,
            timeout=cfg.timeout,
            chunk_size=cfg.chunk_size,
        )
    else:
        raise ConfigurationError(f"Unknown content provider '{cfg.provider}'. Available: local, http")

    logger.info("content_storage_initialized", provider=provider)
    return storage


__all__ = [
    "create_content_storage",
    "LocalProvider",
    "HttpProvider",
    "watermark_pdf",
    "StorageError",
    "NotFoundError",
    "TransientError",
    "ConfigurationError",
    "ValidationError",
]
