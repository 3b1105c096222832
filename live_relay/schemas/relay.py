"""
live_relay.schemas.relay
~~~~~~~~~~~~~~~~~~~~~~~~

控制接口的 Pydantic 请求/响应模型。字段名沿用线上协议的 camelCase。
"""
from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class RoomRequest(BaseModel):
    """connect / disconnect 请求体。"""

    model_config = ConfigDict(populate_by_name=True)

    unique_id: str | None = Field(default=None, alias="uniqueId", description="主播用户名（房间名），null 视为缺失")


class ConnectResponse(BaseModel):
    """连接成功响应。"""

    model_config = ConfigDict(populate_by_name=True)

    connected: bool = Field(default=True)
    unique_id: str = Field(..., alias="uniqueId")


class DisconnectResponse(BaseModel):
    """断开成功响应。"""

    model_config = ConfigDict(populate_by_name=True)

    disconnected: bool = Field(default=True)
    unique_id: str = Field(..., alias="uniqueId")


class StatusResponse(BaseModel):
    """当前已连接上游的房间列表。"""

    rooms: list[str] = Field(default_factory=list)


class ErrorResponse(BaseModel):
    """错误响应：``error`` 为字符串或 ``{name, message, stack?}``。"""

    error: Any
