"""
API依赖项 - 认证、授权与应用服务装配

买家身份由外部认证服务签发的 JWT 提供（sub = 账户ID，is_admin 声明标记管理员）；
应用服务从 lifespan 中挂到 app.state 的基础设施组件装配。
"""
from typing import Optional

import jwt
from fastapi import Depends, Query, Request
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials

from application.dto import PrincipalDTO
from application.services.delivery_service import DeliveryGate
from application.services.entitlement_service import EntitlementApplicationService
from application.services.order_service import OrderApplicationService
from application.services.payment_service import PaymentApplicationService
from core.config import settings
from core.exceptions import TokenExpiredException, UnauthorizedException
from domain.common.exceptions import AccessDeniedException, PermissionDeniedException
from domain.entitlement.origin_policy import ClientCharacteristics

# HTTP Bearer for direct API calls
http_bearer = HTTPBearer(
    scheme_name="Bearer",
    description="JWT Bearer token issued by the account service",
    auto_error=False,
)


async def get_token(
    bearer_token: Optional[HTTPAuthorizationCredentials] = Depends(http_bearer),
) -> str:
    """从Bearer token中提取token"""
    if bearer_token and bearer_token.credentials:
        return bearer_token.credentials
    raise UnauthorizedException("Missing authentication credentials")


def decode_principal(token: str) -> PrincipalDTO:
    """校验 JWT 并转换为调用方身份"""
    try:
        payload = jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
    except jwt.ExpiredSignatureError:
        raise TokenExpiredException() from None
    except jwt.InvalidTokenError:
        raise UnauthorizedException("Invalid authentication credentials") from None

    subject = payload.get("sub")
    if subject is None or str(subject).strip() == "":
        raise UnauthorizedException("Token has no subject")
    return PrincipalDTO(account_id=str(subject), is_admin=bool(payload.get(settings.ADMIN_CLAIM, False)))


async def get_current_principal(token: str = Depends(get_token)) -> PrincipalDTO:
    """获取当前调用方"""
    return decode_principal(token)


async def get_optional_principal(
    bearer_token: Optional[HTTPAuthorizationCredentials] = Depends(http_bearer),
) -> Optional[PrincipalDTO]:
    """可选身份：未携带凭证时为 None，携带了则必须有效"""
    if bearer_token and bearer_token.credentials:
        return decode_principal(bearer_token.credentials)
    return None


async def get_current_admin(principal: PrincipalDTO = Depends(get_current_principal)) -> PrincipalDTO:
    """获取当前管理员"""
    if not principal.is_admin:
        raise PermissionDeniedException("Administrator privileges required")
    return principal


# ---------------------------------------------------------------------------
# 应用服务
# ---------------------------------------------------------------------------

async def get_payment_service(request: Request) -> PaymentApplicationService:
    state = request.app.state
    return PaymentApplicationService(state.uow_factory, state.gateways, notifier=state.notifier)


async def get_order_service(
    request: Request,
    payments: PaymentApplicationService = Depends(get_payment_service),
) -> OrderApplicationService:
    state = request.app.state
    return OrderApplicationService(state.uow_factory, state.catalog, payments=payments, notifier=state.notifier)


async def get_entitlement_service(request: Request) -> EntitlementApplicationService:
    return EntitlementApplicationService(request.app.state.uow_factory, notifier=request.app.state.notifier)


async def get_delivery_gate(request: Request) -> DeliveryGate:
    state = request.app.state
    return DeliveryGate(
        state.uow_factory,
        state.content_storage,
        state.origin_policy,
        watermarker=getattr(state, "watermarker", None),
    )


# ---------------------------------------------------------------------------
# 内容访问
# ---------------------------------------------------------------------------

async def get_access_token(
    request: Request,
    token: Optional[str] = Query(default=None, description="Access grant token"),
) -> str:
    """授权令牌：查询参数 ?token= 或请求头 X-Access-Token"""
    value = token or request.headers.get("X-Access-Token")
    if not value:
        raise AccessDeniedException()
    return value


def get_client_characteristics(request: Request) -> ClientCharacteristics:
    headers = request.headers
    return ClientCharacteristics(
        user_agent=headers.get("user-agent", ""),
        accept_language=headers.get("accept-language", ""),
        accept_encoding=headers.get("accept-encoding", ""),
        accept=headers.get("accept", ""),
    )


def get_origin(request: Request) -> str:
    """请求来源地址；由 RequestIDMiddleware 解析"""
    origin = getattr(request.state, "client_ip", None)
    if origin:
        return origin
    return request.client.host if request.client else "unknown"
