"""
live_relay.services.broadcaster
~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~

广播扇出 —— 把一条信封投递给房间内所有传输方式下、过滤器匹配的订阅者。
"""
from __future__ import annotations

from collections.abc import Iterable

from live_relay.core.logging import get_logger
from live_relay.schemas.events import EventEnvelope
from live_relay.services.subscribers import SubscriberRegistry

logger = get_logger(__name__)


class BroadcastFanout:
    """跨传输方式的广播器。

    信封只序列化一次，各订阅者共享同一份 JSON 文本。
    单个订阅者投递失败只记录日志，不影响其他订阅者。

    Attributes:
        registries: 参与广播的订阅者注册表（每种传输方式一个）。
    """

    def __init__(self, registries: Iterable[SubscriberRegistry]) -> None:
        self.registries: tuple[SubscriberRegistry, ...] = tuple(registries)

    def publish(self, envelope: EventEnvelope) -> int:
        """广播信封，返回成功投递的订阅者数量。"""
        data = envelope.to_json()
        delivered = 0
        for registry in self.registries:
            for subscriber in registry.subscribers(envelope.room):
                if not subscriber.accepts(envelope.type):
                    continue
                try:
                    subscriber.deliver(envelope, data)
                except Exception as e:
                    logger.debug("投递失败，跳过该订阅者 | %r | %s", subscriber, e)
                    continue
                delivered += 1
        return delivered

    def room_count(self, room: str) -> int:
        """房间在所有传输方式下的订阅者总数。"""
        return sum(registry.count(room) for registry in self.registries)
