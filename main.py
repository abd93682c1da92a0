"""
FastAPI应用主入口
"""
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from fastapi.middleware.cors import CORSMiddleware

from api.routes import entitlements as entitlements_routes
from api.routes import orders as orders_routes
from api.routes import payments as payments_routes
from api.middleware import RequestIDMiddleware, LoggingMiddleware
from core.config import settings
from core.exceptions import register_exception_handlers
from core.response import success_response
from core.logging_config import get_logger, configure_logging
from domain.entitlement.origin_policy import build_origin_policy
from infrastructure.adapters.notification_port import CeleryNotificationAdapter
from infrastructure.database import Database
from infrastructure.external.api_clients import CatalogClient
from infrastructure.external.payments import build_gateways
from infrastructure.external.storage import create_content_storage, watermark_pdf
from infrastructure.unit_of_work import uow_factory_for


# 初始化日志：在入口处显式配置，避免模块导入时的副作用
configure_logging()
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """应用生命周期管理：组装基础设施并挂到 app.state"""
    database = Database(settings.database.url, echo=settings.database.echo)
    # 启动时创建数据库表（仅开发环境）。生产应使用 Alembic 迁移
    if settings.DEBUG:
        await database.create_tables()
        logger.info("database_initialized", message="Database tables created (development)")
    else:
        logger.info(
            "database_migrations_required",
            message="No auto-create in production, use Alembic migrations (alembic upgrade head)"
        )

    entitlement = settings.entitlement
    app.state.database = database
    app.state.uow_factory = uow_factory_for(database.session_factory)
    app.state.gateways = build_gateways()
    app.state.catalog = CatalogClient(settings.catalog)
    app.state.content_storage = create_content_storage(settings.content)
    app.state.watermarker = watermark_pdf if settings.content.watermark_enabled else None
    app.state.notifier = CeleryNotificationAdapter()
    app.state.origin_policy = build_origin_policy(
        entitlement.origin_policy,
        ipv4_prefix=entitlement.subnet_ipv4_prefix,
        ipv6_prefix=entitlement.subnet_ipv6_prefix,
    )
    logger.info(
        "application_started",
        gateways=sorted(m.value for m in app.state.gateways),
        content_provider=settings.content.provider,
        origin_policy=entitlement.origin_policy,
    )

    yield

    # 关闭时的清理工作
    for gateway in app.state.gateways.values():
        await gateway.aclose()
    await app.state.catalog.close()
    await app.state.content_storage.close()
    await database.dispose()
    logger.info("application_shutdown", message="Application shutdown")


app = FastAPI(
    title=settings.PROJECT_NAME,
    version=settings.VERSION,
    debug=settings.DEBUG,
    lifespan=lifespan,
    description="数字商品履约服务：订单、支付、电子书授权与安全交付",
)

# 添加中间件（注意顺序：从下往上执行）
# 1. 日志中间件（依赖request_id）
app.add_middleware(LoggingMiddleware)

# 2. Request ID中间件（最先执行，为后续中间件提供request_id与client_ip）
app.add_middleware(RequestIDMiddleware)

# 3. CORS中间件
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# 注册全局异常处理器
register_exception_handlers(app)


# 注册路由
app.include_router(orders_routes.router, prefix="/api/v1")
app.include_router(payments_routes.router, prefix="/api/v1")
app.include_router(entitlements_routes.router, prefix="/api/v1")


@app.get("/", tags=["Root"])
async def root():
    return success_response(
        data={"name": settings.PROJECT_NAME, "version": settings.VERSION, "docs": "/docs"},
        message="Welcome",
    )


@app.get("/health", tags=["Health"])
async def health_check(request: Request):
    """健康检查：数据库可达即视为健康；外部网关与目录服务不参与判定"""
    database_ok = await request.app.state.database.ping()
    body = success_response(
        data={"status": "healthy" if database_ok else "degraded", "database": database_ok},
        message="OK" if database_ok else "Database unreachable",
    )
    if database_ok:
        return body
    return JSONResponse(status_code=503, content=body.model_dump(mode="json"))


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.DEBUG,
        log_level="debug" if settings.DEBUG else "info"
    )
