"""Notification port (fire-and-forget).

Implementations must not raise: a failed notification never undoes a
committed payment or grant.
"""
from __future__ import annotations

from typing import Protocol, runtime_checkable

from domain.order.events import PaymentConfirmed
from domain.entitlement.events import GrantsIssued


@runtime_checkable
class NotificationPort(Protocol):
    def payment_confirmed(self, event: PaymentConfirmed) -> None: ...

    def grants_issued(self, event: GrantsIssued) -> None: ...
