"""
live_relay.services.normalizer
~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~

事件归一化 —— 把上游原始事件包装成 ``EventEnvelope`` 并交给广播器。
"""
from __future__ import annotations

from collections.abc import Callable
from typing import Any

from live_relay.core.errors import serialize_error
from live_relay.core.logging import get_logger
from live_relay.schemas.events import EventEnvelope, now_ms
from live_relay.services.broadcaster import BroadcastFanout
from live_relay.services.dedup import ChatDedupCache, compute_chat_key

logger = get_logger(__name__)


class EventNormalizer:
    """上游事件 → 信封 → 扇出。

    只有 ``chat`` 事件会经过去重；其余类型无条件放行。
    """

    def __init__(
        self,
        dedup: ChatDedupCache,
        fanout: BroadcastFanout,
        clock: Callable[[], int] = now_ms,
        include_stack: bool = True,
    ) -> None:
        self.dedup = dedup
        self.fanout = fanout
        self._clock = clock
        self.include_stack = include_stack

    def envelope(self, room: str, event_type: str, payload: Any) -> EventEnvelope:
        """构造信封；异常类载荷会先转换为错误载荷。"""
        if isinstance(payload, BaseException):
            payload = serialize_error(payload, include_stack=self.include_stack)
        return EventEnvelope(type=event_type, payload=payload, timestamp=self._clock(), room=room)

    def handle(self, room: str, event_type: str, payload: Any) -> EventEnvelope | None:
        """处理一条上游事件。被判定为重复弹幕时返回 ``None``。"""
        if event_type == "chat":
            key = compute_chat_key(payload)
            if key is not None and not self.dedup.should_emit(room, key):
                logger.debug("丢弃重复弹幕 | room=%s | key=%s", room, key)
                return None
        return self.emit(room, event_type, payload)

    def emit(self, room: str, event_type: str, payload: Any) -> EventEnvelope:
        """跳过去重，直接构造信封并广播（用于中继自身产生的 error / disconnected）。"""
        envelope = self.envelope(room, event_type, payload)
        self.fanout.publish(envelope)
        return envelope
