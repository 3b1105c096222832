"""
live_relay.services.relay_hub
~~~~~~~~~~~~~~~~~~~~~~~~~~~~~

中继中枢 —— 进程内唯一的状态持有者。

在 FastAPI lifespan 中创建一次并挂载到 ``app.state.relay_hub``，
各端点通过依赖注入拿到同一个实例，不使用模块级全局注册表。
"""
from __future__ import annotations

from collections.abc import Callable

from live_relay.core.config import Settings, settings as default_settings
from live_relay.core.logging import get_logger
from live_relay.schemas.events import now_ms
from live_relay.services.broadcaster import BroadcastFanout
from live_relay.services.dedup import ChatDedupCache
from live_relay.services.lifecycle import LifecycleController
from live_relay.services.normalizer import EventNormalizer
from live_relay.services.room_registry import RoomRegistry
from live_relay.services.subscribers import (
    SseSubscriber,
    SubscriberRegistry,
    WebSocketSubscriber,
    parse_event_filter,
)
from live_relay.upstream.base import UpstreamFactory

logger = get_logger(__name__)


class RelayHub:
    """组装去重缓存、订阅者注册表、广播器、房间注册表和生命周期控制器。

    Attributes:
        ws_subscribers: WebSocket 订阅者注册表。
        sse_subscribers: SSE 订阅者注册表。
        dedup: 弹幕去重缓存。
        fanout: 广播器。
        normalizer: 事件归一化。
        rooms: 房间注册表。
        lifecycle: 订阅生命周期控制器。
    """

    def __init__(
        self,
        upstream_factory: UpstreamFactory,
        config: Settings | None = None,
        clock: Callable[[], int] = now_ms,
    ) -> None:
        self.config: Settings = config or default_settings
        self.ws_subscribers = SubscriberRegistry("ws")
        self.sse_subscribers = SubscriberRegistry("sse")
        self.dedup = ChatDedupCache(
            ttl_ms=self.config.DEDUP_TTL_SECONDS * 1000,
            max_entries=self.config.DEDUP_COMPACT_THRESHOLD,
            compact_target=self.config.DEDUP_COMPACT_TARGET,
            clock=clock,
        )
        self.fanout = BroadcastFanout([self.ws_subscribers, self.sse_subscribers])
        self.normalizer = EventNormalizer(
            self.dedup,
            self.fanout,
            clock=clock,
            include_stack=self.config.expose_error_stack,
        )
        self.rooms = RoomRegistry(upstream_factory, self.normalizer)
        self.lifecycle = LifecycleController(self.rooms, self.fanout)

    def event_filter(self, selector: str | None) -> frozenset[str]:
        """按配置的默认值解析 ``events`` 参数。"""
        return parse_event_filter(selector, default=self.config.DEFAULT_EVENT_TYPES.split(","))

    def new_ws_subscriber(self, room: str, selector: str | None) -> WebSocketSubscriber:
        return WebSocketSubscriber(
            room, self.event_filter(selector), max_queue=self.config.SUBSCRIBER_QUEUE_SIZE,
        )

    def new_sse_subscriber(self, room: str, selector: str | None) -> SseSubscriber:
        return SseSubscriber(
            room, self.event_filter(selector), max_queue=self.config.SUBSCRIBER_QUEUE_SIZE,
        )

    def subscriber_count(self) -> int:
        return self.ws_subscribers.total() + self.sse_subscribers.total()

    async def shutdown(self) -> None:
        """关闭全部订阅者并断开全部上游连接。"""
        logger.info(
            "中继关闭中 | 房间: %d | 订阅者: %d",
            len(self.rooms.status()), self.subscriber_count(),
        )
        await self.lifecycle.shutdown()
