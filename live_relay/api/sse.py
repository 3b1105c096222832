"""
live_relay.api.sse
~~~~~~~~~~~~~~~~~~

SSE 订阅接口 —— ``GET /{username}?events=chat,gift``。

每个事件输出为::

    event: <type>
    data: <信封 JSON>

连接打开时先发送 ``:ok`` 注释，空闲时定期发送心跳注释，防止代理断开长连接。
"""
from __future__ import annotations

import asyncio
from collections.abc import AsyncGenerator

from fastapi import APIRouter, Depends
from fastapi.responses import StreamingResponse

from live_relay.api.deps import get_relay_hub
from live_relay.core.errors import normalize_room
from live_relay.core.logging import conn_id_ctx_var, get_logger
from live_relay.services.relay_hub import RelayHub
from live_relay.services.subscribers import SseSubscriber

logger = get_logger(__name__)

router: APIRouter = APIRouter()

SSE_HEADERS: dict[str, str] = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


async def sse_event_stream(
    hub: RelayHub,
    subscriber: SseSubscriber,
    keepalive_seconds: float,
) -> AsyncGenerator[str, None]:
    """SSE 输出流。首次迭代时加入房间，生成器结束（含客户端断开）时离开房间。"""
    conn_id_ctx_var.set(f"sse-{subscriber.id}")
    hub.lifecycle.join(subscriber)
    try:
        yield ":ok\n\n"
        while True:
            try:
                frame = await asyncio.wait_for(subscriber.next_frame(), timeout=keepalive_seconds)
            except asyncio.TimeoutError:
                yield ": keepalive\n\n"
                continue
            if frame is None:
                logger.debug("SSE 订阅者已关闭，结束输出 | room=%s", subscriber.room)
                return
            yield frame
    finally:
        hub.lifecycle.leave(subscriber)


@router.get("/{username}", summary="SSE 订阅房间事件")
async def sse_room_endpoint(
    username: str,
    events: str | None = None,
    hub: RelayHub = Depends(get_relay_hub),
) -> StreamingResponse:
    """订阅指定主播房间的事件流。

    Args:
        username: 主播用户名（房间名）。
        events: 可选的事件类型过滤（逗号分隔，``*`` 表示全部，缺省只收 chat）。
    """
    room = normalize_room(username, field="username")
    subscriber = hub.new_sse_subscriber(room, events)
    return StreamingResponse(
        sse_event_stream(hub, subscriber, hub.config.SSE_KEEPALIVE_SECONDS),
        media_type="text/event-stream",
        headers=SSE_HEADERS,
    )
