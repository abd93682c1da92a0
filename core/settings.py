"""
Payment-related settings using pydantic-settings v2 with nested env keys.

Kept apart from core.config.Settings so gateway credentials can be loaded
(and overridden in tests) independently.
"""
from __future__ import annotations

from typing import Optional
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import BaseModel, Field


class PaymentTimeouts(BaseModel):
    connect: float = 1.0
    read: float = 3.0
    write: float = 3.0
    total: float = 5.0


class PaymentRetry(BaseModel):
    max: int = 2
    base_backoff: float = 0.2


class WebhookSettings(BaseModel):
    tolerance_seconds: int = 300
    ip_allowlist: list[str] | None = None  # Optional IPs/CIDRs allowed to post webhooks


class StorefrontSettings(BaseModel):
    """Where buyers land after a gateway redirect."""
    base_url: str = "http://localhost:3000"
    success_path: str = "/payment/success"
    failure_path: str = "/payment/failed"
    cancel_path: str = "/payment/cancelled"


class BkashSettings(BaseModel):
    app_key: Optional[str] = None
    app_secret: Optional[str] = None
    username: Optional[str] = None
    password: Optional[str] = None
    sandbox: bool = True
    sandbox_url: str = "https://tokenized.sandbox.bka.sh/v1.2.0-beta"
    live_url: str = "https://tokenized.pay.bka.sh/v1.2.0-beta"

    @property
    def base_url(self) -> str:
        return self.sandbox_url if self.sandbox else self.live_url


class NagadSettings(BaseModel):
    merchant_id: Optional[str] = None
    merchant_key: Optional[str] = None
    sandbox: bool = True
    sandbox_url: str = "https://sandbox.mynagad.com:10080/remote-payment-gateway-1.0/api/dfs"
    live_url: str = "https://api.mynagad.com/api/dfs"
    signature_header: str = "X-Nagad-Signature"

    @property
    def base_url(self) -> str:
        return self.sandbox_url if self.sandbox else self.live_url


class StripeSettings(BaseModel):
    secret_key: Optional[str] = None
    webhook_secret: Optional[str] = None


class PaymentSettings(BaseSettings):
    currency: str = "BDT"
    # Public URL of this service; gateway callback URLs are built from it.
    public_base_url: str = "http://localhost:8000"
    timeouts: PaymentTimeouts = Field(default_factory=PaymentTimeouts)
    retry: PaymentRetry = Field(default_factory=PaymentRetry)
    webhook: WebhookSettings = Field(default_factory=WebhookSettings)
    storefront: StorefrontSettings = Field(default_factory=StorefrontSettings)

    bkash: BkashSettings = Field(default_factory=BkashSettings)
    nagad: NagadSettings = Field(default_factory=NagadSettings)
    stripe: StripeSettings = Field(default_factory=StripeSettings)

    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="PAYMENT__",
        case_sensitive=False,
        extra="allow",
        env_nested_delimiter="__",
    )

    def callback_url(self, method: str, outcome: str = "success") -> str:
        return f"{self.public_base_url.rstrip('/')}/api/v1/payments/{method}/callback/{outcome}"


payment_settings = PaymentSettings()
