"""
电子书授权API路由 - 授权列表、内容交付、撤销与补发
"""
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import StreamingResponse

from api.dependencies import (
    get_access_token,
    get_client_characteristics,
    get_current_admin,
    get_current_principal,
    get_delivery_gate,
    get_entitlement_service,
    get_optional_principal,
    get_origin,
)
from api.utils.headers import NO_STORE_HEADERS, build_content_disposition
from application.dto import GrantResponseDTO, PrincipalDTO
from application.services.delivery_service import DeliveryGate
from application.services.entitlement_service import EntitlementApplicationService
from core.response import Response as ApiResponse, success_response

router = APIRouter(
    prefix="/entitlements",
    tags=["电子书授权"]
)


@router.get("", summary="我的授权", response_model=ApiResponse[list[GrantResponseDTO]])
async def list_my_grants(
    include_revoked: bool = Query(False, description="是否包含已撤销的授权"),
    principal: PrincipalDTO = Depends(get_current_principal),
    service: EntitlementApplicationService = Depends(get_entitlement_service),
):
    grants = await service.list_my_grants(principal, include_revoked=include_revoked)
    return success_response(data=grants)


@router.get("/content", summary="阅读电子书")
async def read_content(
    request: Request,
    token: str = Depends(get_access_token),
    principal: Optional[PrincipalDTO] = Depends(get_optional_principal),
    gate: DeliveryGate = Depends(get_delivery_gate),
):
    """
    凭授权令牌交付内容

    首次访问把授权绑定到当前设备；之后只有同一设备可访问。
    携带登录凭证时，调用方必须是授权所属买家。
    任何校验失败均返回同一个 403。
    """
    delivered = await gate.serve(
        token,
        get_client_characteristics(request),
        get_origin(request),
        account_id=principal.account_id if principal else None,
    )
    headers = {
        **NO_STORE_HEADERS,
        "Content-Disposition": build_content_disposition("inline", delivered.filename),
    }
    if delivered.size is not None:
        headers["Content-Length"] = str(delivered.size)
    return StreamingResponse(delivered.body, media_type=delivered.media_type, headers=headers)


@router.delete("/{grant_id}", summary="撤销授权", response_model=ApiResponse[GrantResponseDTO])
async def revoke_grant(
    grant_id: int,
    principal: PrincipalDTO = Depends(get_current_principal),
    gate: DeliveryGate = Depends(get_delivery_gate),
):
    """买家本人或管理员可撤销；撤销后不可恢复，只能补发"""
    grant = await gate.revoke(grant_id, principal)
    return success_response(data=grant, message="Grant revoked")


@router.post("/{grant_id}/reissue", summary="补发授权（管理员）", response_model=ApiResponse[GrantResponseDTO])
async def reissue_grant(
    grant_id: int,
    admin: PrincipalDTO = Depends(get_current_admin),
    service: EntitlementApplicationService = Depends(get_entitlement_service),
):
    grant = await service.reissue(grant_id, admin)
    return success_response(data=grant, message="Grant reissued")
