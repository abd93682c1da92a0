"""领域层业务异常定义，供领域与基础设施使用。

核心（core）层仅负责全局映射与异常处理，尽量避免领域层反向依赖核心层。
"""
from __future__ import annotations

from typing import Optional
from shared.codes import BusinessCode
from shared.codes.payment_codes import PaymentCode


class BusinessException(Exception):
    """业务异常基类"""

    def __init__(
        self,
        code: int,
        message: str,
        error_type: str = "BusinessError",
        details: Optional[dict] = None,
        field: Optional[str] = None,
    ) -> None:
        self.code = code
        self.message = message
        self.error_type = error_type
        self.details = details
        self.field = field
        super().__init__(self.message)


class DomainValidationException(BusinessException):
    def __init__(
        self,
        message: str,
        *,
        field: str | None = None,
        details: dict | None = None,
    ):
        super().__init__(
            code=BusinessCode.PARAM_VALIDATION_ERROR,
            message=message,
            error_type="DomainValidationError",
            details=details,
            field=field,
        )


# ---------------------------------------------------------------------------
# 订单
# ---------------------------------------------------------------------------

class InvalidLineItemException(BusinessException):
    def __init__(self, product_id: str, reason: str):
        super().__init__(
            code=BusinessCode.INVALID_LINE_ITEM,
            message=f"Invalid line item: {reason}",
            error_type="InvalidLineItem",
            details={"product_id": product_id, "reason": reason},
            field="items",
        )


class InvalidShippingAddressException(BusinessException):
    def __init__(self, reason: str = "A shipping address is required for physical items"):
        super().__init__(
            code=BusinessCode.INVALID_SHIPPING_ADDRESS,
            message=reason,
            error_type="InvalidShippingAddress",
            field="shipping_address",
        )


class UnsupportedPaymentMethodException(BusinessException):
    def __init__(self, method: str):
        super().__init__(
            code=BusinessCode.UNSUPPORTED_PAYMENT_METHOD,
            message=f"Unsupported payment method: {method}",
            error_type="UnsupportedPaymentMethod",
            details={"payment_method": method},
            field="payment_method",
        )


class InvalidStateTransitionException(BusinessException):
    def __init__(self, axis: str, current: str, target: str):
        super().__init__(
            code=BusinessCode.INVALID_STATE_TRANSITION,
            message=f"Cannot move {axis} status from {current} to {target}",
            error_type="InvalidStateTransition",
            details={"axis": axis, "current": current, "target": target},
        )


class OrderNotFoundException(BusinessException):
    def __init__(self, order_id: Optional[int] = None, *, order_code: Optional[str] = None):
        details = {}
        if order_id is not None:
            details["order_id"] = order_id
        if order_code is not None:
            details["order_code"] = order_code
        super().__init__(
            code=BusinessCode.ORDER_NOT_FOUND,
            message="Order not found",
            error_type="OrderNotFound",
            details=details or None,
        )


class PermissionDeniedException(BusinessException):
    def __init__(self, message: str = "Permission denied"):
        super().__init__(
            code=BusinessCode.PERMISSION_ERROR,
            message=message,
            error_type="PermissionDenied",
        )


# ---------------------------------------------------------------------------
# 支付
# ---------------------------------------------------------------------------

class PaymentAlreadySettledException(BusinessException):
    def __init__(self, order_code: str, payment_status: str):
        super().__init__(
            code=BusinessCode.PAYMENT_ALREADY_SETTLED,
            message=f"Order {order_code} is already {payment_status}",
            error_type="PaymentAlreadySettled",
            details={"order_code": order_code, "payment_status": payment_status},
        )


class GatewayUnavailableException(BusinessException):
    """网关不可达/超时，调用方可安全重试"""

    def __init__(self, message: str, *, provider: str, details: Optional[dict] = None):
        full_details = {"provider": provider}
        if details:
            full_details.update(details)
        super().__init__(
            code=PaymentCode.GATEWAY_UNAVAILABLE,
            message=message,
            error_type="GatewayUnavailable",
            details=full_details,
        )


class TamperedPayloadException(BusinessException):
    """签名或金额校验失败；不得修改任何订单状态"""

    def __init__(self, message: str, *, provider: str, details: Optional[dict] = None):
        full_details = {"provider": provider}
        if details:
            full_details.update(details)
        super().__init__(
            code=PaymentCode.TAMPERED_PAYLOAD,
            message=message,
            error_type="TamperedPayload",
            details=full_details,
        )


class DoubleCreditRefusedException(BusinessException):
    def __init__(self, order_code: str, correlation_id: str):
        super().__init__(
            code=PaymentCode.DOUBLE_CREDIT_REFUSED,
            message="A second payment was refused for an already settled order",
            error_type="DoubleCreditRefused",
            details={"order_code": order_code, "correlation_id": correlation_id},
        )


# ---------------------------------------------------------------------------
# 授权（电子书访问）
# ---------------------------------------------------------------------------

class GrantNotFoundException(BusinessException):
    def __init__(self, grant_id: Optional[int] = None):
        details = {"grant_id": grant_id} if grant_id is not None else None
        super().__init__(
            code=BusinessCode.GRANT_NOT_FOUND,
            message="Access grant not found",
            error_type="GrantNotFound",
            details=details,
        )


class AccessViolation(BusinessException):
    """访问校验失败的基类。reason 仅用于日志，不回显给调用方。"""

    reason = "access_denied"

    def __init__(self, message: str = "Access denied", *, details: Optional[dict] = None):
        super().__init__(
            code=BusinessCode.ACCESS_DENIED,
            message=message,
            error_type=type(self).__name__,
            details=details,
        )


class InvalidTokenException(AccessViolation):
    reason = "invalid_token"


class GrantRevokedException(AccessViolation):
    reason = "revoked"


class GrantExpiredException(AccessViolation):
    reason = "expired"


class DeviceMismatchException(AccessViolation):
    reason = "device_mismatch"


class IdentityMismatchException(AccessViolation):
    """已登录调用方不是授权所属买家"""

    reason = "identity_mismatch"


class AccessDeniedException(BusinessException):
    """对外统一的拒绝结果"""

    def __init__(self):
        super().__init__(
            code=BusinessCode.ACCESS_DENIED,
            message="Access denied",
            error_type="AccessDenied",
        )


# ---------------------------------------------------------------------------
# 外部依赖
# ---------------------------------------------------------------------------

class CatalogUnavailableException(BusinessException):
    def __init__(self, message: str = "Catalog service unavailable"):
        super().__init__(
            code=BusinessCode.CATALOG_UNAVAILABLE,
            message=message,
            error_type="CatalogUnavailable",
        )


class ContentUnavailableException(BusinessException):
    def __init__(self, key: Optional[str] = None):
        super().__init__(
            code=BusinessCode.CONTENT_UNAVAILABLE,
            message="Content storage unavailable",
            error_type="ContentUnavailable",
            details={"key": key} if key else None,
        )
