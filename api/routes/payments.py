"""
Payments API routes.

Initiation for buyers, plus the inbound gateway surface: webhooks and the
browser redirect callbacks. Both inbound paths converge on the same
idempotent `PaymentApplicationService.verify`. Keep this thin: no SDK
details here.
"""
from __future__ import annotations

import ipaddress
import json
from typing import Any, Optional
from urllib.parse import parse_qsl, urlencode

from fastapi import APIRouter, Depends, Request
from fastapi.responses import RedirectResponse

from api.dependencies import get_current_principal, get_payment_service
from application.dto import PrincipalDTO
from application.dtos.payments import InitiatePaymentRequest, InitiateResult, VerificationOutcome
from application.services.payment_service import PaymentApplicationService
from core.logging_config import get_logger
from core.response import Response as ApiResponse, WebhookAck, success_response, webhook_ack
from core.settings import payment_settings
from domain.common.exceptions import BusinessException


router = APIRouter(prefix="/payments", tags=["Payments"])
logger = get_logger(__name__)

_OUTCOME_ALIASES = {
    "success": "success",
    "completed": "success",
    "fail": "failure",
    "failed": "failure",
    "failure": "failure",
    "cancel": "cancel",
    "cancelled": "cancel",
    "canceled": "cancel",
}


def _ip_allowed(remote_ip: Optional[str]) -> bool:
    allowlist = payment_settings.webhook.ip_allowlist or []
    if not allowlist:
        return True
    if not remote_ip:
        return False
    try:
        rip = ipaddress.ip_address(remote_ip)
    except ValueError:
        return False
    for entry in allowlist:
        try:
            if "/" in entry:
                if rip in ipaddress.ip_network(entry, strict=False):
                    return True
            elif rip == ipaddress.ip_address(entry):
                return True
        except ValueError:
            continue
    return False


async def _callback_params(request: Request) -> dict[str, Any]:
    """Query string merged with a urlencoded or JSON POST body."""
    params: dict[str, Any] = dict(request.query_params)
    if request.method != "POST":
        return params
    body = await request.body()
    if not body:
        return params
    ct = (request.headers.get("content-type") or "").lower()
    if "application/x-www-form-urlencoded" in ct:
        params.update(parse_qsl(body.decode("utf-8", errors="replace"), keep_blank_values=True))
    elif "application/json" in ct:
        try:
            parsed = json.loads(body)
        except ValueError:
            parsed = None
        if isinstance(parsed, dict):
            params.update({k: v for k, v in parsed.items() if isinstance(v, (str, int, float))})
    return params


def _storefront_url(landing: str, **query: Optional[str]) -> str:
    storefront = payment_settings.storefront
    path = {
        "success": storefront.success_path,
        "failure": storefront.failure_path,
        "cancel": storefront.cancel_path,
    }[landing]
    url = f"{storefront.base_url.rstrip('/')}{path}"
    clean = {k: v for k, v in query.items() if v}
    return f"{url}?{urlencode(clean)}" if clean else url


def _landing_for(outcome: Optional[VerificationOutcome], requested: str) -> str:
    if outcome is not None:
        if outcome.status == "paid":
            return "success"
        if outcome.status == "failed":
            return "failure"
    return requested


@router.post("/initiate", summary="Initiate payment", response_model=ApiResponse[InitiateResult])
async def initiate_payment(
    payload: InitiatePaymentRequest,
    principal: PrincipalDTO = Depends(get_current_principal),
    service: PaymentApplicationService = Depends(get_payment_service),
):
    """Returns a gateway redirect URL, or an immediate result for cash on delivery."""
    result = await service.initiate(payload.order_code, principal)
    return success_response(data=result, message="Payment initiated")


@router.post("/webhooks/{method}", summary="Gateway webhook", response_model=ApiResponse[WebhookAck])
async def payments_webhook(
    method: str,
    request: Request,
    service: PaymentApplicationService = Depends(get_payment_service),
):
    """Always acknowledges with 200; failures are logged, and reconciliation picks up the rest."""
    # Allowlist checks the socket peer; forwarding headers are client-controlled.
    remote_ip = request.client.host if request.client else None
    if not _ip_allowed(remote_ip):
        logger.warning("webhook_ip_not_allowed", method=method, remote_ip=remote_ip)
        return webhook_ack(False, message="Source not allowed")

    raw_body = await request.body()
    headers = {k: v for k, v in request.headers.items()}
    try:
        outcome = await service.verify(method, headers, raw_body, dict(request.query_params))
    except BusinessException as exc:
        logger.warning(
            "webhook_processing_failed",
            method=method,
            error_type=exc.error_type,
            error=exc.message,
        )
        return webhook_ack(False)
    except Exception as exc:
        logger.error("webhook_processing_failed", method=method, error=str(exc), exc_info=True)
        return webhook_ack(False)

    return webhook_ack(True, **outcome.model_dump())


@router.api_route("/{method}/callback/{outcome}", methods=["GET", "POST"], summary="Gateway redirect callback")
async def payments_callback(
    method: str,
    outcome: str,
    request: Request,
    service: PaymentApplicationService = Depends(get_payment_service),
):
    """Buyer's browser lands here after the gateway; always answered with a redirect."""
    params = await _callback_params(request)
    # bKash returns to a single URL with ?status=success|failure|cancel
    segment = str(params.get("status") or "") if outcome == "return" else outcome
    requested = _OUTCOME_ALIASES.get(segment.lower(), "failure")

    result: Optional[VerificationOutcome] = None
    try:
        result = await service.verify(method, {k: v for k, v in request.headers.items()}, b"", params)
    except BusinessException as exc:
        logger.warning(
            "payment_callback_failed",
            method=method,
            outcome=outcome,
            error_type=exc.error_type,
            error=exc.message,
        )
        return RedirectResponse(_storefront_url("failure", reason=exc.error_type), status_code=302)
    except Exception as exc:
        logger.error("payment_callback_failed", method=method, outcome=outcome, error=str(exc), exc_info=True)
        return RedirectResponse(_storefront_url("failure", reason="error"), status_code=302)

    landing = _landing_for(result, requested)
    logger.info("payment_callback_redirect", method=method, outcome=outcome, landing=landing, order_code=result.order_code)
    return RedirectResponse(
        _storefront_url(landing, order_code=result.order_code, status=result.status),
        status_code=302,
    )
