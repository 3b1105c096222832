"""
live_relay.main
~~~~~~~~~~~~~~~

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

from live_relay.api import control, sse, ws
from live_relay.core.config import settings
from live_relay.core.errors import (
    RoomValidationError,
    UpstreamConnectError,
    UpstreamDisconnectError,
    serialize_error,
)
from live_relay.core.logging import get_logger, setup_logging
from live_relay.core.rate_limit import limiter
from live_relay.services.relay_hub import RelayHub
from live_relay.upstream.base import UpstreamFactory

# 初始化日志系统（必须在其他模块之前）
setup_logging()
logger = get_logger(__name__)


def _default_upstream_factory() -> UpstreamFactory:
    from live_relay.upstream.tiktok import TikTokUpstream

    return TikTokUpstream


# ── 异常处理器 ────────────────────────────────────────────────────────

async def room_validation_handler(request: Request, exc: RoomValidationError) -> JSONResponse:
    """房间名缺失或为空 → 400。"""
    return JSONResponse(status_code=400, content={"error": str(exc)})


async def upstream_error_handler(
    request: Request, exc: UpstreamConnectError | UpstreamDisconnectError,
) -> JSONResponse:
    """上游连接/断开失败 → 502，错误详情取自原始异常。"""
    detail = serialize_error(exc.__cause__ or exc, include_stack=settings.expose_error_stack)
    return JSONResponse(status_code=502, content={"error": detail})


async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """捕获所有未处理异常，返回统一的 JSON 错误格式。"""
    logger.error("未捕获异常: %s %s -> %s", request.method, request.url, exc, exc_info=True)
    # 非 prod 环境返回详细错误信息，prod 环境隐藏内部细节
    detail = str(exc) if not settings.is_prod else "服务器内部错误"
    return JSONResponse(status_code=500, content={"error": {"message": detail}})


async def health_check(request: Request) -> JSONResponse:
    """验证服务是否正常运行。"""
    hub: RelayHub = request.app.state.relay_hub
    return JSONResponse(
        content={
            "status": "ok",
            "environment": settings.ENVIRONMENT,
            "rooms": len(hub.rooms.status()),
            "subscribers": hub.subscriber_count(),
        },
    )


# ── 应用工厂 ──────────────────────────────────────────────────────────

def create_app(upstream_factory: UpstreamFactory | None = None) -> FastAPI:
    """创建 FastAPI 应用。

    Args:
        upstream_factory: 房间名 → 上游客户端 的工厂，缺省使用 TikTok 客户端。
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        """应用生命周期钩子，仅在 worker 启动/关闭时各执行一次。"""
        # ── 启动 ──
        app.state.relay_hub = RelayHub(upstream_factory or _default_upstream_factory())
        logger.info(
            "🚀 中继已启动 | env=%s | debug=%s | log_level=%s",
            settings.ENVIRONMENT,
            settings.debug,
            settings.effective_log_level,
        )
        yield
        # ── 关闭 ──
        await app.state.relay_hub.shutdown()
        logger.info("👋 中继已关闭")

    app = FastAPI(
        title=settings.PROJECT_NAME,
        description="直播事件多房间中继（WebSocket / SSE）",
        version=settings.VERSION,
        debug=settings.debug,
        lifespan=lifespan,
    )

    # ── CORS 中间件 ──
    if settings.allow_cors_all_origins:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=["*"],
            allow_methods=["*"],
            allow_headers=["*"],
        )
    else:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=[],
            allow_methods=["GET", "POST"],
            allow_headers=["*"],
        )

    # ── 限流 ──
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

    # ── 异常处理 ──
    app.add_exception_handler(RoomValidationError, room_validation_handler)
    app.add_exception_handler(UpstreamConnectError, upstream_error_handler)
    app.add_exception_handler(UpstreamDisconnectError, upstream_error_handler)
    app.add_exception_handler(Exception, global_exception_handler)

    # ── 路由挂载（/{username} 通配路由必须最后注册）──
    app.add_api_route("/health", health_check, methods=["GET"], tags=["System"])
    app.include_router(control.router, tags=["Control"])
    app.include_router(ws.router, tags=["WebSocket"])
    app.include_router(sse.router, tags=["SSE"])

    return app


app: FastAPI = create_app()


def run() -> None:
    """命令行入口：``live-relay``。"""
    import uvicorn

    uvicorn.run(
        "live_relay.main:app",
        host=settings.HOST,
        port=settings.PORT,
        reload=settings.reload,  # 仅 dev 环境开启热重载
        log_level=settings.effective_log_level.lower(),
    )


if __name__ == "__main__":
    run()
