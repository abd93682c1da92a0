"""
Exceptions for payment providers mapped to unified BusinessException variants.
"""
from __future__ import annotations

from typing import Optional
from domain.common.exceptions import (
    BusinessException,
    GatewayUnavailableException,
    TamperedPayloadException,
)
from shared.codes.payment_codes import PaymentCode


class PaymentProviderError(BusinessException):
    """Provider answered, but with an error (bad credentials, rejected request)."""

    def __init__(self, message: str, *, provider: str, provider_code: str | None = None, details: Optional[dict] = None):
        full_details = {"provider": provider, "provider_code": provider_code}
        if details:
            full_details.update(details)
        super().__init__(
            code=PaymentCode.PROVIDER_ERROR,
            message=message,
            error_type="PaymentProviderError",
            details=full_details,
        )


class PaymentRecoverableError(GatewayUnavailableException):
    """Timeout / transport failure / throttling; the caller may retry."""

    def __init__(self, message: str, *, provider: str, provider_code: str | None = None, details: Optional[dict] = None):
        full_details = {"provider_code": provider_code}
        if details:
            full_details.update(details)
        super().__init__(message, provider=provider, details=full_details)


class PaymentSignatureError(TamperedPayloadException):
    """Signature, amount or payload shape check failed."""

    def __init__(self, message: str, *, provider: str, details: Optional[dict] = None):
        super().__init__(message, provider=provider, details=details)
