"""
live_relay.api.control
~~~~~~~~~~~~~~~~~~~~~~

控制接口 —— 手动连接/断开房间上游，查询当前已连接的房间。

端点:
  - ``GET  /status``      → 当前已连接上游的房间列表
  - ``POST /connect``     → 连接指定房间（body: ``{"uniqueId": "..."}``）
  - ``POST /disconnect``  → 断开指定房间
"""
from fastapi import APIRouter, Depends, Request

from live_relay.api.deps import get_relay_hub
from live_relay.core.config import settings
from live_relay.core.errors import normalize_room
from live_relay.core.logging import get_logger
from live_relay.core.rate_limit import limiter
from live_relay.schemas.relay import (
    ConnectResponse,
    DisconnectResponse,
    ErrorResponse,
    RoomRequest,
    StatusResponse,
)
from live_relay.services.relay_hub import RelayHub

logger = get_logger(__name__)

router: APIRouter = APIRouter()

_ERROR_RESPONSES: dict = {
    400: {"model": ErrorResponse, "description": "uniqueId 缺失或为空"},
    502: {"model": ErrorResponse, "description": "上游连接/断开失败"},
}


@router.get("/status", summary="已连接房间列表", response_model=StatusResponse)
@limiter.limit(settings.CONTROL_RATE_LIMIT)
async def status(request: Request, hub: RelayHub = Depends(get_relay_hub)):
    """返回当前已建立上游连接的房间名。"""
    return StatusResponse(rooms=hub.rooms.status())


@router.post(
    "/connect",
    summary="连接房间上游",
    response_model=ConnectResponse,
    responses=_ERROR_RESPONSES,
)
@limiter.limit(settings.CONTROL_RATE_LIMIT)
async def connect(
    request: Request,
    body: RoomRequest | None = None,
    hub: RelayHub = Depends(get_relay_hub),
):
    """连接指定主播的直播间。已连接或正在连接时复用同一连接。

    Args:
        request: FastAPI Request 对象（用于限流判断）。
        body: 包含 ``uniqueId`` 的请求体。
    """
    room = normalize_room(body.unique_id if body else None)
    await hub.rooms.connect(room)
    logger.info("控制接口连接房间 | room=%s", room)
    return ConnectResponse(uniqueId=room)


@router.post(
    "/disconnect",
    summary="断开房间上游",
    response_model=DisconnectResponse,
    responses=_ERROR_RESPONSES,
)
@limiter.limit(settings.CONTROL_RATE_LIMIT)
async def disconnect(
    request: Request,
    body: RoomRequest | None = None,
    hub: RelayHub = Depends(get_relay_hub),
):
    """断开指定房间的上游连接。未连接时直接返回成功。

    Args:
        request: FastAPI Request 对象（用于限流判断）。
        body: 包含 ``uniqueId`` 的请求体。
    """
    room = normalize_room(body.unique_id if body else None)
    await hub.rooms.disconnect(room)
    logger.info("控制接口断开房间 | room=%s", room)
    return DisconnectResponse(uniqueId=room)
