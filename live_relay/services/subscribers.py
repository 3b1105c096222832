"""
live_relay.services.subscribers
~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~

订阅者与订阅者注册表。

每个订阅者属于唯一的房间和传输方式（WebSocket / SSE），持有一个有界发送
队列和一个事件类型过滤器。扇出时只做 ``put_nowait``，真正的网络写入由
各传输端点的发送循环完成，慢消费者只会丢自己的事件，不会拖慢广播。
"""
from __future__ import annotations

import asyncio
import uuid
from collections.abc import Iterable
from typing import Literal

from live_relay.core.errors import DeliveryError
from live_relay.core.logging import get_logger
from live_relay.schemas.events import EventEnvelope

logger = get_logger(__name__)

TransportKind = Literal["ws", "sse"]

WILDCARD = "*"
DEFAULT_EVENT_TYPES: frozenset[str] = frozenset({"chat"})


def parse_event_filter(
    selector: str | None,
    default: Iterable[str] = DEFAULT_EVENT_TYPES,
) -> frozenset[str]:
    """解析 ``events`` 查询参数（逗号分隔、忽略大小写、去空白）。

    为空或缺省时返回 ``default``（默认只接收 chat）。

    Examples:
        >>> sorted(parse_event_filter(" Gift, LIKE "))
        ['gift', 'like']
    """
    types = frozenset(
        part.strip().lower() for part in (selector or "").split(",") if part.strip()
    )
    return types or frozenset(t.strip().lower() for t in default if t.strip())


class Subscriber:
    """单个下游订阅连接的簿记对象。

    Attributes:
        room: 所属房间。
        kind: 传输方式。
        event_types: 接受的事件类型（小写），包含 ``*`` 时接受全部。
        id: 订阅者唯一标识。
    """

    kind: TransportKind

    def __init__(self, room: str, event_types: Iterable[str], max_queue: int = 256) -> None:
        self.room = room
        self.event_types = frozenset(t.lower() for t in event_types)
        self.id = uuid.uuid4().hex[:12]
        self._queue: asyncio.Queue[str | None] = asyncio.Queue(maxsize=max_queue)
        self._closed = False

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.kind}:{self.room}:{self.id}>"

    @property
    def closed(self) -> bool:
        return self._closed

    def accepts(self, event_type: str) -> bool:
        """过滤器是否接受该事件类型（大小写不敏感）。"""
        return WILDCARD in self.event_types or event_type.lower() in self.event_types

    def encode(self, envelope: EventEnvelope, data: str) -> str:
        """把信封编码为本传输方式的一帧。``data`` 是信封的 JSON 文本。"""
        raise NotImplementedError

    def deliver(self, envelope: EventEnvelope, data: str | None = None) -> None:
        """非阻塞投递。已关闭或队列已满时抛出 ``DeliveryError``。"""
        if self._closed:
            raise DeliveryError(f"{self!r} 已关闭")
        frame = self.encode(envelope, data if data is not None else envelope.to_json())
        try:
            self._queue.put_nowait(frame)
        except asyncio.QueueFull:
            raise DeliveryError(f"{self!r} 发送队列已满，丢弃 {envelope.type}") from None

    async def next_frame(self) -> str | None:
        """取出下一帧待发送数据；订阅者关闭后返回 ``None``。"""
        if self._closed and self._queue.empty():
            return None
        return await self._queue.get()

    def close(self) -> None:
        """关闭订阅者：不再接收新事件，已排队的帧发送完后 ``next_frame`` 返回 ``None``。"""
        if self._closed:
            return
        self._closed = True
        try:
            self._queue.put_nowait(None)
        except asyncio.QueueFull:
            # 队列满时腾出一个位置给结束标记
            self._queue.get_nowait()
            self._queue.put_nowait(None)


class WebSocketSubscriber(Subscriber):
    """WebSocket 订阅者：每个信封发送为一帧 JSON 文本。"""

    kind: TransportKind = "ws"

    def encode(self, envelope: EventEnvelope, data: str) -> str:
        return data


class SseSubscriber(Subscriber):
    """SSE 订阅者：事件类型放在 ``event:`` 字段，信封 JSON 放在 ``data:`` 字段。"""

    kind: TransportKind = "sse"

    def encode(self, envelope: EventEnvelope, data: str) -> str:
        return f"event: {envelope.type}\ndata: {data}\n\n"


class SubscriberRegistry:
    """某一种传输方式的订阅者注册表（房间 → 订阅者集合）。"""

    def __init__(self, kind: TransportKind) -> None:
        self.kind = kind
        self._rooms: dict[str, set[Subscriber]] = {}

    def add(self, subscriber: Subscriber) -> None:
        self._rooms.setdefault(subscriber.room, set()).add(subscriber)
        logger.info(
            "订阅者加入 | %s room=%s | 在线: %d",
            self.kind, subscriber.room, self.count(subscriber.room),
        )

    def remove(self, subscriber: Subscriber) -> bool:
        """移除订阅者，返回是否确实移除（重复调用返回 ``False``）。"""
        members = self._rooms.get(subscriber.room)
        if not members or subscriber not in members:
            return False
        members.discard(subscriber)
        if not members:
            del self._rooms[subscriber.room]
        logger.info(
            "订阅者离开 | %s room=%s | 在线: %d",
            self.kind, subscriber.room, self.count(subscriber.room),
        )
        return True

    def subscribers(self, room: str) -> tuple[Subscriber, ...]:
        """房间内订阅者的快照，遍历期间增删不受影响。"""
        return tuple(self._rooms.get(room, ()))

    def count(self, room: str) -> int:
        return len(self._rooms.get(room, ()))

    def rooms(self) -> list[str]:
        return list(self._rooms)

    def total(self) -> int:
        return sum(len(members) for members in self._rooms.values())
