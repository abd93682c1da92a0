"""
Payment specific codes and provider status mapping.
"""
from __future__ import annotations

from enum import IntEnum


class PaymentCode(IntEnum):
    # Generic success
    SUCCESS = 0

    # Provider/Network errors (6xxxx)
    PROVIDER_ERROR = 60000
    GATEWAY_UNAVAILABLE = 60001
    TAMPERED_PAYLOAD = 60002
    TIMEOUT = 60003
    RATE_LIMITED = 60004
    DOUBLE_CREDIT_REFUSED = 60005


# Provider status -> verdict ("paid" | "failed" | "pending").
# "pending" means the gateway has not settled yet; nothing is written.
PROVIDER_STATUS_TO_INTERNAL = {
    "bkash": {
        # transactionStatus from execute/query
        "Completed": "paid",
        "Initiated": "pending",
        "Inprogress": "pending",
        "Pending Authorized": "pending",
        "Authorized": "pending",
        "Cancelled": "failed",
        "Failed": "failed",
        "Expired": "failed",
        # redirect ?status=
        "success": "paid",
        "failure": "failed",
        "cancel": "failed",
    },
    "nagad": {
        "Success": "paid",
        "Initiated": "pending",
        "Ready": "pending",
        "InProgress": "pending",
        "Aborted": "failed",
        "Cancelled": "failed",
        "Failed": "failed",
        "Rejected": "failed",
        "Expired": "failed",
    },
    "stripe": {
        # checkout.session payment_status
        "paid": "paid",
        "no_payment_required": "paid",
        "unpaid": "pending",
        # webhook event types
        "checkout.session.completed": "paid",
        "checkout.session.async_payment_succeeded": "paid",
        "checkout.session.async_payment_failed": "failed",
        "checkout.session.expired": "failed",
    },
}
