"""
数据库配置和连接管理

引擎与会话工厂由进程生命周期（FastAPI lifespan / Celery 任务）显式创建并注入，
不提供模块级全局连接。
"""
from sqlalchemy import event, text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine, async_sessionmaker
from sqlalchemy.engine import make_url
from typing import Optional

from infrastructure.models import Base


def _build_async_url(database_url: str) -> str:
    """确保数据库URL使用异步驱动"""
    url = make_url(database_url)
    drivername = url.drivername

    if "+" in drivername:
        return database_url

    driver_map = {
        "postgresql": "postgresql+asyncpg",
        "postgres": "postgresql+asyncpg",
        "sqlite": "sqlite+aiosqlite",
    }

    if drivername not in driver_map:
        raise ValueError(f"不支持的数据库驱动: {drivername}. 请使用 async 驱动或更新 DATABASE__URL")

    async_driver = driver_map[drivername]
    return str(url.set(drivername=async_driver))


def configure_sqlite_engine(engine: AsyncEngine) -> None:
    """SQLite：交由 SQLAlchemy 控制事务，使 SAVEPOINT 正常工作；
    BEGIN IMMEDIATE 让并发写事务串行等待而不是死锁。
    """

    @event.listens_for(engine.sync_engine, "connect")
    def _on_connect(dbapi_connection, connection_record):  # pragma: no cover - driver hook
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def _on_begin(conn):  # pragma: no cover - driver hook
        conn.exec_driver_sql("BEGIN IMMEDIATE")


class Database:
    """进程级数据库句柄：持有引擎与会话工厂"""

    def __init__(self, url: str, *, echo: bool = False, engine: Optional[AsyncEngine] = None) -> None:
        async_url = _build_async_url(url)
        self.engine = engine or create_async_engine(async_url, echo=echo, future=True)
        if self.engine.dialect.name == "sqlite":
            configure_sqlite_engine(self.engine)
        self.session_factory = async_sessionmaker(bind=self.engine, expire_on_commit=False)

    async def create_tables(self) -> None:
        """
        创建所有表

        根据models中定义的所有模型创建对应的数据库表
        """
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    async def ping(self) -> bool:
        """健康检查：执行 SELECT 1"""
        try:
            async with self.engine.connect() as conn:
                await conn.execute(text("SELECT 1"))
        except SQLAlchemyError:
            return False
        return True

    async def dispose(self) -> None:
        await self.engine.dispose()
