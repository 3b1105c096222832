"""
live_relay.upstream.base
~~~~~~~~~~~~~~~~~~~~~~~~

上游客户端抽象 —— 中继核心只依赖这里定义的协议，不关心具体直播平台。

一个 ``UpstreamClient`` 对应一个房间：先 ``add_listener()`` 绑定监听，
再 ``connect()``；连接存续期间，每个上游事件以 ``UpstreamEvent`` 的形式
同步回调给监听者。
"""
from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, Protocol


@dataclass(frozen=True)
class UpstreamEvent:
    """上游原始事件。

    Attributes:
        type: 事件名，如 ``chat`` / ``gift`` / ``error``。
        payload: 原始载荷，本层视为不透明数据。
    """

    type: str
    payload: Any = None


UpstreamListener = Callable[[UpstreamEvent], None]


class UpstreamClient(Protocol):
    """单个房间的上游连接。"""

    room: str

    def add_listener(self, listener: UpstreamListener) -> None:
        """注册事件监听者，必须在 ``connect()`` 之前调用。"""
        ...

    async def connect(self) -> None:
        """建立上游连接，失败时抛出异常。"""
        ...

    async def disconnect(self) -> None:
        """断开上游连接。"""
        ...


UpstreamFactory = Callable[[str], UpstreamClient]
