"""
live_relay.services.lifecycle
~~~~~~~~~~~~~~~~~~~~~~~~~~~~~

订阅生命周期 —— 把订阅者的加入/离开与房间上游的连接/断开绑定起来。

房间状态机::

    IDLE ──首个订阅者──▶ CONNECTING ──成功──▶ CONNECTED ──最后一个订阅者离开──▶ IDLE
                             │
                             └──失败（通知订阅者后关闭）──▶ IDLE

连接失败时每个订阅者恰好收到一条 ``error`` 信封，载荷统一为 ``{name, message, stack?}``：
过滤器接受 error 的订阅者从房间广播收到，其余订阅者由本模块单独补发。
"""
from __future__ import annotations

import asyncio

from live_relay.core.errors import UpstreamConnectError, UpstreamDisconnectError
from live_relay.core.logging import get_logger
from live_relay.services.broadcaster import BroadcastFanout
from live_relay.services.room_registry import RoomRegistry
from live_relay.services.subscribers import Subscriber, SubscriberRegistry

logger = get_logger(__name__)


class LifecycleController:
    """订阅者加入/离开 ↔ 上游连接/断开。

    Attributes:
        rooms: 房间注册表。
        fanout: 广播器（持有全部传输方式的订阅者注册表）。
    """

    def __init__(self, rooms: RoomRegistry, fanout: BroadcastFanout) -> None:
        self.rooms = rooms
        self.fanout = fanout
        self._registries: dict[str, SubscriberRegistry] = {r.kind: r for r in fanout.registries}
        self._tasks: set[asyncio.Task] = set()

    def _spawn(self, coro, name: str) -> asyncio.Task:
        task = asyncio.create_task(coro, name=name)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    # ── 加入 ──────────────────────────────────────────────────────────

    def join(self, subscriber: Subscriber) -> asyncio.Task:
        """登记订阅者并在后台确保房间已连接上游。

        订阅者立即开始接收广播，不必等待连接完成。

        Returns:
            后台连接任务（测试或调用方可以 await 它）。
        """
        self._registries[subscriber.kind].add(subscriber)
        return self._spawn(self._ensure_upstream(subscriber), name=f"join:{subscriber.room}")

    async def _ensure_upstream(self, subscriber: Subscriber) -> None:
        room = subscriber.room
        try:
            await self.rooms.connect(room)
        except UpstreamConnectError as e:
            # 过滤器接受 error 的订阅者已经收到了房间广播，其余的单独补发一条同样载荷的信封
            if not subscriber.accepts("error") and not subscriber.closed:
                envelope = self.rooms.normalizer.envelope(room, "error", e.__cause__ or e)
                try:
                    subscriber.deliver(envelope)
                except Exception as delivery_error:
                    logger.debug("连接失败通知未送达 | %r | %s", subscriber, delivery_error)
            subscriber.close()
            return

        # 连接期间订阅者已经全部离开：断开这条孤立的连接
        if self.fanout.room_count(room) == 0:
            logger.info("连接完成时房间已无订阅者，断开 | room=%s", room)
            await self._disconnect_if_idle(room)

    # ── 离开 ──────────────────────────────────────────────────────────

    def leave(self, subscriber: Subscriber) -> asyncio.Task | None:
        """移除订阅者（幂等）。房间在所有传输方式下都没有订阅者时断开上游。

        Returns:
            触发的断开任务；未触发断开时返回 ``None``。
        """
        removed = self._registries[subscriber.kind].remove(subscriber)
        subscriber.close()
        if not removed or self.fanout.room_count(subscriber.room) > 0:
            return None
        return self._spawn(
            self._disconnect_if_idle(subscriber.room), name=f"leave:{subscriber.room}",
        )

    async def _disconnect_if_idle(self, room: str) -> None:
        # 任务真正执行时再确认一次，期间可能有新订阅者加入
        if self.fanout.room_count(room) > 0:
            return
        try:
            await self.rooms.disconnect(room)
        except UpstreamDisconnectError as e:
            logger.warning("订阅者全部离开后断开上游失败 | %s", e)

    # ── 关闭 ──────────────────────────────────────────────────────────

    async def shutdown(self) -> None:
        """关闭所有订阅者并断开所有上游连接。"""
        for registry in self._registries.values():
            for room in registry.rooms():
                for subscriber in registry.subscribers(room):
                    registry.remove(subscriber)
                    subscriber.close()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
        await self.rooms.shutdown()
