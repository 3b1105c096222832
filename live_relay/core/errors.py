"""
live_relay.core.errors
~~~~~~~~~~~~~~~~~~~~~~

中继服务的异常体系与错误载荷序列化。

- ``UpstreamConnectError``    → 上游连接失败，房间回到空闲状态
- ``UpstreamDisconnectError`` → 上游断开调用失败，本地清理照常进行
- ``DeliveryError``           → 单个订阅者投递失败，只影响该订阅者
- ``RoomValidationError``     → 房间名缺失/为空，在改动任何注册表前拒绝
"""
from __future__ import annotations

import traceback
from typing import Any


class RelayError(Exception):
    """中继服务所有业务异常的基类。"""


class UpstreamConnectError(RelayError):
    """上游连接失败。原始异常保存在 ``__cause__`` 中。"""

    def __init__(self, room: str, cause: BaseException) -> None:
        super().__init__(f"连接房间 {room} 的上游失败: {cause}")
        self.room = room
        self.__cause__ = cause


class UpstreamDisconnectError(RelayError):
    """上游断开失败（本地记录已清理）。"""

    def __init__(self, room: str, cause: BaseException) -> None:
        super().__init__(f"断开房间 {room} 的上游失败: {cause}")
        self.room = room
        self.__cause__ = cause


class DeliveryError(RelayError):
    """向单个订阅者投递事件失败。"""


class RoomValidationError(RelayError):
    """房间标识缺失或为空。"""

    def __init__(self, field: str = "uniqueId") -> None:
        super().__init__(f"{field} required")
        self.field = field


def normalize_room(raw: Any, field: str = "uniqueId") -> str:
    """清洗房间名（即主播用户名），为空时抛出 ``RoomValidationError``。"""
    room = str(raw or "").strip()
    if not room:
        raise RoomValidationError(field)
    return room


def serialize_error(err: object, include_stack: bool = True) -> dict[str, Any]:
    """把异常转换为可 JSON 化的错误载荷。

    异常对象输出 ``{name, message, stack?}``，其他值输出 ``{message}``。

    Args:
        err: 任意异常或值。
        include_stack: 是否附带调用栈（prod 环境应关闭）。
    """
    if isinstance(err, BaseException):
        payload: dict[str, Any] = {"name": type(err).__name__, "message": str(err)}
        if include_stack and err.__traceback__ is not None:
            payload["stack"] = "".join(
                traceback.format_exception(type(err), err, err.__traceback__),
            )
        return payload
    return {"message": str(err)}
