"""
Payment DTOs (Pydantic v2) used at application boundaries.
"""
from __future__ import annotations

from decimal import Decimal
from typing import Any, Optional, Literal
from pydantic import BaseModel, Field, field_validator


Verdict = Literal["paid", "failed", "pending"]


class InitiatePaymentRequest(BaseModel):
    order_code: str = Field(..., min_length=1, max_length=32)


class InitiateResult(BaseModel):
    """What the client needs after initiation: a redirect, or nothing (offline)."""

    order_code: str
    provider: str
    payment_status: str
    correlation_id: Optional[str] = None
    redirect_url: Optional[str] = None
    immediate: bool = False


class GatewayVerdict(BaseModel):
    """A gateway's authenticated answer about one payment attempt."""

    provider: str
    correlation_id: str
    status: Verdict
    order_code: Optional[str] = None
    amount: Optional[Decimal] = None
    currency: Optional[str] = None
    raw: dict[str, Any] = Field(default_factory=dict)

    @field_validator("currency")
    @classmethod
    def _upper_currency(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return v
        u = v.upper()
        if len(u) != 3 or not u.isalpha():
            raise ValueError("currency must be ISO-4217 alpha-3")
        return u


class VerificationOutcome(BaseModel):
    order_code: Optional[str]
    status: str
    duplicate: bool = False
    correlation_id: Optional[str] = None


class ReconcileSummary(BaseModel):
    examined: int = 0
    settled: int = 0
    still_pending: int = 0
    errors: int = 0
