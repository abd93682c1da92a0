"""
订单API路由 - FastAPI表现层
"""
from typing import Optional

from fastapi import APIRouter, Depends, Query

from api.dependencies import (
    get_current_admin,
    get_current_principal,
    get_order_service,
    get_payment_service,
)
from application.dto import (
    FulfillmentStatusUpdateDTO,
    OrderCreateDTO,
    OrderResponseDTO,
    PaymentStatusUpdateDTO,
    PrincipalDTO,
)
from application.services.order_service import OrderApplicationService
from application.services.payment_service import PaymentApplicationService
from core.config import settings
from core.response import PaginatedData, Response as ApiResponse, paginated_response, success_response
from domain.order.entity import FulfillmentStatus, PaymentStatus

router = APIRouter(
    prefix="/orders",
    tags=["订单"]
)


@router.post("", summary="下单", response_model=ApiResponse[OrderResponseDTO])
async def create_order(
    data: OrderCreateDTO,
    principal: PrincipalDTO = Depends(get_current_principal),
    service: OrderApplicationService = Depends(get_order_service),
):
    """
    创建订单

    - **items**: 商品行（product_id + quantity），价格以目录服务为准
    - **payment_method**: bkash / nagad / stripe / cash_on_delivery
    - **shipping_address**: 含实体商品时必填

    货到付款订单创建后立即受理，电子书授权随之签发。
    """
    order = await service.create_order(principal, data)
    return success_response(data=order, message="Order created")


@router.get("", summary="我的订单", response_model=ApiResponse[PaginatedData[OrderResponseDTO]])
async def list_my_orders(
    page: int = Query(1, ge=1, description="页码"),
    size: int = Query(settings.DEFAULT_PAGE_SIZE, ge=1, le=settings.MAX_PAGE_SIZE, description="每页数量"),
    principal: PrincipalDTO = Depends(get_current_principal),
    service: OrderApplicationService = Depends(get_order_service),
):
    items, total = await service.list_my_orders(principal, page=page, size=size)
    return paginated_response(items=items, total=total, page=page, size=size)


@router.get("/admin/all", summary="订单列表（管理员）", response_model=ApiResponse[PaginatedData[OrderResponseDTO]])
async def list_all_orders(
    page: int = Query(1, ge=1, description="页码"),
    size: int = Query(settings.DEFAULT_PAGE_SIZE, ge=1, le=settings.MAX_PAGE_SIZE, description="每页数量"),
    payment_status: Optional[PaymentStatus] = Query(None, description="按支付状态过滤"),
    fulfillment_status: Optional[FulfillmentStatus] = Query(None, description="按履约状态过滤"),
    _: PrincipalDTO = Depends(get_current_admin),
    service: OrderApplicationService = Depends(get_order_service),
):
    items, total = await service.list_all_orders(
        page=page,
        size=size,
        payment_status=payment_status,
        fulfillment_status=fulfillment_status,
    )
    return paginated_response(items=items, total=total, page=page, size=size)


@router.get("/code/{order_code}", summary="按订单号查询", response_model=ApiResponse[OrderResponseDTO])
async def get_order_by_code(
    order_code: str,
    principal: PrincipalDTO = Depends(get_current_principal),
    service: OrderApplicationService = Depends(get_order_service),
):
    order = await service.get_order_by_code(order_code, principal)
    return success_response(data=order)


@router.get("/{order_id}", summary="订单详情", response_model=ApiResponse[OrderResponseDTO])
async def get_order(
    order_id: int,
    principal: PrincipalDTO = Depends(get_current_principal),
    service: OrderApplicationService = Depends(get_order_service),
):
    """非本人订单对普通买家表现为不存在"""
    order = await service.get_order(order_id, principal)
    return success_response(data=order)


@router.put("/{order_id}/status", summary="更新履约状态（管理员）", response_model=ApiResponse[OrderResponseDTO])
async def update_fulfillment_status(
    order_id: int,
    body: FulfillmentStatusUpdateDTO,
    admin: PrincipalDTO = Depends(get_current_admin),
    service: OrderApplicationService = Depends(get_order_service),
):
    order = await service.update_fulfillment_status(order_id, body.status, admin)
    return success_response(data=order, message="Fulfillment status updated")


@router.put("/{order_id}/payment-status", summary="更新支付状态（管理员）", response_model=ApiResponse[OrderResponseDTO])
async def update_payment_status(
    order_id: int,
    body: PaymentStatusUpdateDTO,
    admin: PrincipalDTO = Depends(get_current_admin),
    service: OrderApplicationService = Depends(get_order_service),
):
    """
    人工迁移支付状态（例如线下核实到账）

    迁移到可发放状态时，同一事务内签发电子书授权；迁移到 refunded 时撤销授权。
    """
    order = await service.update_payment_status(order_id, body.status, admin, reference=body.reference)
    return success_response(data=order, message="Payment status updated")


@router.post("/{order_id}/refund", summary="退款（管理员）", response_model=ApiResponse[OrderResponseDTO])
async def refund_order(
    order_id: int,
    admin: PrincipalDTO = Depends(get_current_admin),
    payments: PaymentApplicationService = Depends(get_payment_service),
):
    order = await payments.refund(order_id, admin)
    return success_response(data=order, message="Order refunded")
