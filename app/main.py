"""
app.main
~~~~~~~~

FastAPI 应用入口 —— 注册路由、挂载中间件、定义生命周期。
"""
from __future__ import annotations

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from app.api import chat_endpoints, chat_ws
from app.core.exceptions import ChatError
from app.core.logging import get_logger, setup_logging
from app.core.rate_limit import limiter
from app.core.security import IdentityVerifier
from app.core.settings import settings
from app.db import close_mongo, connect_mongo, ping_mongo
from app.schemas.api_response import ApiResponse
from app.services.chat_system import ChatSystem

# 初始化日志系统（必须在其他模块之前）
setup_logging()
logger = get_logger(__name__)


# ── 生命周期 ──────────────────────────────────────────────────────────

@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """应用生命周期钩子，仅在 worker 启动/关闭时各执行一次。"""
    # ── 启动 ──
    db = await connect_mongo()
    app.state.chat_system = ChatSystem.from_database(db)
    app.state.identity_verifier = IdentityVerifier(
        secret=settings.JWT_SECRET,
        algorithm=settings.JWT_ALGORITHM,
        allowed_roles=settings.WS_ALLOWED_ROLES,
        cookie_name=settings.AUTH_COOKIE_NAME,
    )
    app.state.http_verifier = IdentityVerifier(
        secret=settings.JWT_SECRET,
        algorithm=settings.JWT_ALGORITHM,
        cookie_name=settings.AUTH_COOKIE_NAME,
    )
    logger.info(
        "🚀 应用已启动 | env=%s | debug=%s | log_level=%s",
        settings.ENVIRONMENT,
        settings.debug,
        settings.effective_log_level,
    )
    yield
    # ── 关闭 ──
    await close_mongo()
    logger.info("👋 应用已关闭")


# ── 创建 FastAPI 实例 ─────────────────────────────────────────────────

app: FastAPI = FastAPI(
    title=settings.PROJECT_NAME,
    description="一对一实时私聊后端 API",
    version=settings.VERSION,
    debug=settings.debug,
    lifespan=lifespan,
)

app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

# ── CORS 中间件 ───────────────────────────────────────────────────────
if settings.allow_cors_all_origins:
    # dev / test 环境：允许所有来源，方便本地调试
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
else:
    # prod 环境：仅允许 ALLOWED_ORIGINS 中的来源（Cookie 鉴权需要 allow_credentials）
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.ALLOWED_ORIGINS,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "DELETE"],
        allow_headers=["*"],
    )

# ── 路由挂载 ──────────────────────────────────────────────────────────
app.include_router(chat_endpoints.router, prefix="/api", tags=["Chat"])
app.include_router(chat_ws.router, tags=["WebSocket Chat"])


# ── 全局异常处理器 ────────────────────────────────────────────────────

@app.exception_handler(ChatError)
async def chat_error_handler(request: Request, exc: ChatError) -> JSONResponse:
    """业务异常 → 统一的 ApiResponse.fail() 格式，状态码取自异常类型。"""
    logger.info("请求被拒绝: %s %s -> %s", request.method, request.url.path, exc.message)
    response = ApiResponse.from_error(exc)
    return JSONResponse(status_code=exc.status_code, content=response.model_dump())


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """捕获所有未处理异常，返回统一的 ApiResponse.fail() 格式。

    避免 FastAPI 默认返回 HTML 错误页面，保持 JSON 响应一致性。
    """
    logger.error("未捕获异常: %s %s -> %s", request.method, request.url, exc, exc_info=True)
    # 非 prod 环境返回详细错误信息，prod 环境隐藏内部细节
    detail = str(exc) if not settings.is_prod else "服务器内部错误"
    response = ApiResponse.fail(msg=detail, code=500, data=None)
    return JSONResponse(
        status_code=500,
        content=response.model_dump(),
    )


@app.get("/health", tags=["System"])
async def health_check() -> JSONResponse:
    """存活探针：服务本身可响应即返回 200，数据库状态单独给出。"""
    system: ChatSystem | None = getattr(app.state, "chat_system", None)
    database_ok = await ping_mongo()
    return JSONResponse(
        content={
            "status": "ok" if database_ok else "degraded",
            "environment": settings.ENVIRONMENT,
            "database": database_ok,
            "online_connections": system.hub.online_count if system else 0,
            "cached_rooms": len(system.directory) if system else 0,
        },
    )


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "app.main:app",
        host=settings.HOST,
        port=settings.PORT,
        reload=settings.reload,  # 仅 dev 环境开启热重载
        log_level=settings.effective_log_level.lower(),
    )
