"""
app.db
~~~~~~

MongoDB 连接管理（motor ``AsyncIOMotorClient``）。

进程内只持有一个客户端（自带连接池），由 lifespan 负责开关：
启动时 ``connect_mongo()`` 返回数据库句柄交给各仓库，
关闭时 ``close_mongo()``。
"""
from __future__ import annotations

from urllib.parse import urlsplit, urlunsplit

from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase

from app.core.logging import get_logger
from app.core.settings import settings

logger = get_logger(__name__)

_client: AsyncIOMotorClient | None = None


def _mask_uri(uri: str) -> str:
    """隐藏连接串中的密码，只用于日志输出。"""
    parts = urlsplit(uri)
    if not parts.password:
        return uri
    host = parts.netloc.rsplit("@", 1)[1]
    return urlunsplit(parts._replace(netloc=f"{parts.username}:***@{host}"))


async def connect_mongo() -> AsyncIOMotorDatabase:
    """创建客户端并 ping 目标库，失败时直接抛出，让应用启动失败。

    Returns:
        默认数据库句柄。
    """
    global _client
    _client = AsyncIOMotorClient(
        settings.MONGO_URI,
        tz_aware=True,  # 读出的时间带 UTC 时区，便于直接序列化为 ISO
        appname=settings.PROJECT_NAME,
        serverSelectionTimeoutMS=settings.MONGO_TIMEOUT_MS,
    )
    db = _client[settings.MONGO_DB_NAME]
    try:
        await db.command("ping")
    except Exception as e:
        logger.error("MongoDB 连接失败 | uri=%s | %s", _mask_uri(settings.MONGO_URI), e)
        _client.close()
        _client = None
        raise

    logger.info(
        "MongoDB 已连接 | uri=%s | db=%s",
        _mask_uri(settings.MONGO_URI),
        settings.MONGO_DB_NAME,
    )
    return db


async def ping_mongo() -> bool:
    """探测数据库是否可用（健康检查用，不抛异常）。"""
    if _client is None:
        return False
    try:
        await _client[settings.MONGO_DB_NAME].command("ping")
    except Exception as e:
        logger.warning("MongoDB 健康检查失败: %s", e)
        return False
    return True


async def close_mongo() -> None:
    global _client
    if _client is None:
        return
    _client.close()
    _client = None
    logger.info("MongoDB 连接已关闭")
