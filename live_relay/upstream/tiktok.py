"""
live_relay.upstream.tiktok
~~~~~~~~~~~~~~~~~~~~~~~~~~

基于 TikTokLive 的上游客户端实现。

把 TikTokLive 的强类型事件映射为中继统一的事件名，
载荷转换为普通 dict 后原样交给监听者。
"""
from __future__ import annotations

import asyncio
from typing import Any

from TikTokLive import TikTokLiveClient
from TikTokLive.events import (
    CommentEvent,
    ConnectEvent,
    DisconnectEvent,
    EmoteChatEvent,
    FollowEvent,
    GiftEvent,
    GoalUpdateEvent,
    JoinEvent,
    LikeEvent,
    LiveEndEvent,
    QuestionNewEvent,
    ShareEvent,
    SocialEvent,
    SubscribeEvent,
)

from live_relay.core.logging import get_logger
from live_relay.upstream.base import UpstreamEvent, UpstreamListener

logger = get_logger(__name__)

# TikTokLive 事件类 → 中继事件名
EVENT_NAMES: dict[type, str] = {
    ConnectEvent: "connected",
    DisconnectEvent: "disconnected",
    LiveEndEvent: "streamEnd",
    CommentEvent: "chat",
    JoinEvent: "member",
    GiftEvent: "gift",
    LikeEvent: "like",
    SocialEvent: "social",
    FollowEvent: "follow",
    ShareEvent: "share",
    QuestionNewEvent: "questionNew",
    GoalUpdateEvent: "goalUpdate",
    SubscribeEvent: "subscribe",
    EmoteChatEvent: "emote",
}


def event_to_payload(event: Any) -> Any:
    """把 TikTokLive 事件对象转换为可 JSON 化的 dict。"""
    to_dict = getattr(event, "to_dict", None)
    if callable(to_dict):
        return to_dict()
    try:
        return {k: v for k, v in vars(event).items() if not k.startswith("_")}
    except TypeError:
        return {"repr": repr(event)}


class TikTokUpstream:
    """单个 TikTok 直播间的上游连接。

    Attributes:
        room: 主播用户名。
    """

    def __init__(self, room: str) -> None:
        self.room = room
        self._listeners: list[UpstreamListener] = []
        self._client = TikTokLiveClient(unique_id=room)
        self._task: asyncio.Task | None = None

        for event_cls, name in EVENT_NAMES.items():
            self._client.add_listener(event_cls, self._relay(name))

    def add_listener(self, listener: UpstreamListener) -> None:
        self._listeners.append(listener)

    def _relay(self, name: str):
        async def handler(event: Any) -> None:
            self._dispatch(UpstreamEvent(type=name, payload=event_to_payload(event)))

        return handler

    def _dispatch(self, event: UpstreamEvent) -> None:
        for listener in self._listeners:
            listener(event)

    def _on_task_done(self, task: asyncio.Task) -> None:
        # 运行期异常（掉线、解码失败等）以 error + disconnected 上报，房间注册表据此摘除记录；
        # 正常结束时 TikTokLive 自己会发 DisconnectEvent
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.warning("TikTok 连接异常结束 | room=%s | %s", self.room, exc)
            self._dispatch(UpstreamEvent(type="error", payload=exc))
            self._dispatch(UpstreamEvent(type="disconnected", payload={"uniqueId": self.room}))

    async def connect(self) -> None:
        """连接直播间。主播未开播、用户名不存在等情况会直接抛出异常。"""
        self._task = await self._client.start()
        self._task.add_done_callback(self._on_task_done)

    async def disconnect(self) -> None:
        await self._client.disconnect()
