"""
tests.conftest
~~~~~~~~~~~~~~

共享 pytest fixtures —— 用假的上游客户端替换 TikTok 连接，
使单元测试可在无网络环境下快速运行。
"""
from __future__ import annotations

import asyncio
import os
from typing import Any

import pytest

# ── 在所有测试导入前设置环境变量 ─────────────────────────────────────
os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("RATE_LIMIT_ENABLED", "false")

from live_relay.services.relay_hub import RelayHub  # noqa: E402
from live_relay.services.subscribers import Subscriber  # noqa: E402
from live_relay.upstream.base import UpstreamEvent, UpstreamListener  # noqa: E402


# ── 假时钟 ────────────────────────────────────────────────────────────

class FakeClock:
    """可手动推进的毫秒时钟。"""

    def __init__(self, start: int = 1_700_000_000_000) -> None:
        self.now = start

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int) -> None:
        self.now += ms


# ── 假上游 ────────────────────────────────────────────────────────────

class FakeUpstream:
    """模拟一个房间的上游连接，记录 connect / disconnect 调用次数。"""

    def __init__(
        self,
        room: str,
        fail: Exception | None = None,
        gate: asyncio.Event | None = None,
        disconnect_error: Exception | None = None,
        announce: bool = False,
        disconnect_gate: asyncio.Event | None = None,
    ) -> None:
        self.room = room
        self.fail = fail
        self.gate = gate
        self.disconnect_error = disconnect_error
        self.announce = announce
        self.disconnect_gate = disconnect_gate
        self.listeners: list[UpstreamListener] = []
        self.connect_calls = 0
        self.disconnect_calls = 0

    def add_listener(self, listener: UpstreamListener) -> None:
        self.listeners.append(listener)

    async def connect(self) -> None:
        self.connect_calls += 1
        if self.gate is not None:
            await self.gate.wait()
        else:
            await asyncio.sleep(0)
        if self.fail is not None:
            raise self.fail
        if self.announce:
            self.emit("connected", {"uniqueId": self.room})

    async def disconnect(self) -> None:
        self.disconnect_calls += 1
        if self.disconnect_gate is not None:
            await self.disconnect_gate.wait()
        else:
            await asyncio.sleep(0)
        if self.disconnect_error is not None:
            raise self.disconnect_error

    def emit(self, event_type: str, payload: Any = None) -> None:
        for listener in self.listeners:
            listener(UpstreamEvent(type=event_type, payload=payload))


class FakeUpstreamFactory:
    """房间名 → ``FakeUpstream``，按房间记录所有创建过的实例。"""

    def __init__(
        self,
        fail_rooms: dict[str, Exception] | None = None,
        gate: asyncio.Event | None = None,
        disconnect_error: Exception | None = None,
        announce: bool = False,
        disconnect_gate: asyncio.Event | None = None,
    ) -> None:
        self.fail_rooms = fail_rooms or {}
        self.gate = gate
        self.disconnect_error = disconnect_error
        self.announce = announce
        self.disconnect_gate = disconnect_gate
        self.created: dict[str, list[FakeUpstream]] = {}

    def __call__(self, room: str) -> FakeUpstream:
        client = FakeUpstream(
            room,
            fail=self.fail_rooms.get(room),
            gate=self.gate,
            disconnect_error=self.disconnect_error,
            announce=self.announce,
            disconnect_gate=self.disconnect_gate,
        )
        self.created.setdefault(room, []).append(client)
        return client

    def last(self, room: str) -> FakeUpstream:
        return self.created[room][-1]

    def connect_calls(self, room: str) -> int:
        return sum(c.connect_calls for c in self.created.get(room, []))

    def disconnect_calls(self, room: str) -> int:
        return sum(c.disconnect_calls for c in self.created.get(room, []))


# ── 工具函数 ──────────────────────────────────────────────────────────

def _drain(subscriber: Subscriber) -> list[str | None]:
    """非阻塞地取出订阅者队列中所有待发送帧（``None`` 为关闭标记）。"""
    frames: list[str | None] = []
    while not subscriber._queue.empty():
        frames.append(subscriber._queue.get_nowait())
    return frames


async def _settle(hub: RelayHub) -> None:
    """等待生命周期控制器的所有后台任务结束。"""
    while hub.lifecycle._tasks:
        await asyncio.gather(*list(hub.lifecycle._tasks), return_exceptions=True)


# ── Fixtures ──────────────────────────────────────────────────────────

@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def factory() -> FakeUpstreamFactory:
    return FakeUpstreamFactory(fail_rooms={"offline": RuntimeError("主播未开播")})


@pytest.fixture()
def drain():
    return _drain


@pytest.fixture()
def settle():
    return _settle


@pytest.fixture()
def hub(factory: FakeUpstreamFactory, clock: FakeClock) -> RelayHub:
    return RelayHub(factory, clock=clock)
