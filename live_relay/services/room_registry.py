"""
live_relay.services.room_registry
~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~

房间注册表 —— 管理每个房间唯一的上游连接。

同一房间在任意时刻最多只有一个已建立的连接或一个进行中的连接尝试，
两者不会同时存在。并发的 ``connect(room)`` 会合并到同一个连接任务上，
所有调用方看到同一个结果（成功，或同一个 ``UpstreamConnectError``）。
"""
from __future__ import annotations

import asyncio

from live_relay.core.errors import UpstreamConnectError, UpstreamDisconnectError
from live_relay.core.logging import get_logger
from live_relay.services.normalizer import EventNormalizer
from live_relay.upstream.base import UpstreamClient, UpstreamEvent, UpstreamFactory

logger = get_logger(__name__)


class RoomRegistry:
    """房间 → 上游连接 的注册表。

    - ``connect(room)``    → 建立连接（幂等，并发调用合并）
    - ``disconnect(room)`` → 断开连接（幂等，无连接时什么都不做）
    - ``status()``         → 当前已连接的房间列表

    Attributes:
        normalizer: 上游事件归一化与广播入口。
    """

    def __init__(self, factory: UpstreamFactory, normalizer: EventNormalizer) -> None:
        self._factory = factory
        self.normalizer = normalizer
        self._connections: dict[str, UpstreamClient] = {}
        self._connecting: dict[str, asyncio.Task[UpstreamClient]] = {}
        self._pending_clients: dict[str, UpstreamClient] = {}

    # ── 查询 ──────────────────────────────────────────────────────────

    def status(self) -> list[str]:
        """当前已建立上游连接的房间名。"""
        return list(self._connections)

    def is_connected(self, room: str) -> bool:
        return room in self._connections

    def is_connecting(self, room: str) -> bool:
        return room in self._connecting

    # ── 连接 ──────────────────────────────────────────────────────────

    async def connect(self, room: str) -> None:
        """确保房间已连接上游。

        Raises:
            UpstreamConnectError: 上游连接失败（所有合并的调用方收到同一个异常）。
        """
        if room in self._connections:
            return

        attempt = self._connecting.get(room)
        if attempt is None:
            # 在第一个 await 之前登记，关闭“检查-登记”之间的竞态窗口
            attempt = asyncio.create_task(self._establish(room), name=f"upstream-connect:{room}")
            attempt.add_done_callback(_consume_exception)
            self._connecting[room] = attempt
        else:
            logger.debug("房间正在连接中，等待同一次连接结果 | room=%s", room)

        # 连接任务独立运行，调用方被取消不会中断连接
        await asyncio.shield(attempt)

    async def _establish(self, room: str) -> UpstreamClient:
        client = self._factory(room)
        self._pending_clients[room] = client
        client.add_listener(lambda event: self._on_upstream_event(client, room, event))
        try:
            await client.connect()
        except Exception as e:
            logger.warning("上游连接失败 | room=%s | %s", room, e)
            self.normalizer.emit(room, "error", e)
            raise UpstreamConnectError(room, e) from e
        else:
            self._connections[room] = client
            logger.info("上游已连接 | room=%s | 当前房间数: %d", room, len(self._connections))
            return client
        finally:
            self._pending_clients.pop(room, None)
            self._connecting.pop(room, None)

    def _on_upstream_event(self, client: UpstreamClient, room: str, event: UpstreamEvent) -> None:
        # 只接受当前正在连接或已连接的那个客户端的事件，断开后的残留事件直接丢弃
        if client is not self._connections.get(room) and client is not self._pending_clients.get(room):
            logger.debug("丢弃已失效连接的事件 | room=%s | type=%s", room, event.type)
            return
        if event.type == "disconnected" and client is self._connections.get(room):
            # 上游自行结束（下播、掉线）：摘除记录，下一个订阅者加入时重新连接
            del self._connections[room]
            self.normalizer.dedup.forget(room)
            logger.info("上游已自行断开 | room=%s | 当前房间数: %d", room, len(self._connections))
        self.normalizer.handle(room, event.type, event.payload)

    # ── 断开 ──────────────────────────────────────────────────────────

    async def disconnect(self, room: str) -> None:
        """断开房间的上游连接。

        无论上游断开调用是否成功，本地连接记录和去重表都会被清除并广播 ``disconnected``；
        断开期间房间已被重新连接时不再广播。

        Raises:
            UpstreamDisconnectError: 上游断开调用失败（本地已清理）。
        """
        # 先摘除记录再 await：断开期间到达的 connect 会新建连接，而不是复用正在关闭的旧连接
        client = self._connections.pop(room, None)
        if client is None:
            return
        self.normalizer.dedup.forget(room)

        try:
            await client.disconnect()
        except Exception as e:
            logger.warning("上游断开失败，本地记录已清理 | room=%s | %s", room, e)
            raise UpstreamDisconnectError(room, e) from e
        finally:
            # 断开期间房间已被重新连接：新连接的订阅者不应收到旧连接的 disconnected
            if room in self._connections or room in self._connecting:
                logger.info("旧上游已断开，房间已重新连接 | room=%s", room)
            else:
                self.normalizer.emit(room, "disconnected", {"uniqueId": room})
                logger.info("上游已断开 | room=%s | 当前房间数: %d", room, len(self._connections))

    async def shutdown(self) -> None:
        """断开所有房间（应用关闭时调用）。"""
        for room in list(self._connections):
            try:
                await self.disconnect(room)
            except UpstreamDisconnectError as e:
                logger.warning("关闭时断开失败 | %s", e)


def _consume_exception(task: asyncio.Task) -> None:
    # 所有等待方都已离开时，避免 "exception was never retrieved" 警告
    if not task.cancelled():
        task.exception()
