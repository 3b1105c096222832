"""
live_relay.api.ws
~~~~~~~~~~~~~~~~~

WebSocket 订阅接口 —— ``ws://host/{username}?events=chat,gift``。

连接建立即加入房间（首个订阅者会触发上游连接），断开即离开房间
（最后一个订阅者离开会触发上游断开）。每个事件以一帧 JSON 文本下发。
客户端发来的消息会被忽略。
"""
from __future__ import annotations

import asyncio

from fastapi import APIRouter, WebSocket, WebSocketDisconnect, status

from live_relay.api.deps import get_ws_relay_hub
from live_relay.core.errors import RoomValidationError, normalize_room
from live_relay.core.logging import conn_id_ctx_var, get_logger
from live_relay.services.subscribers import WebSocketSubscriber

logger = get_logger(__name__)

router: APIRouter = APIRouter()


async def _drain_incoming(websocket: WebSocket) -> None:
    """读取并丢弃客户端消息，直到客户端断开。"""
    while True:
        message = await websocket.receive()
        if message["type"] == "websocket.disconnect":
            return


async def _pump_outgoing(websocket: WebSocket, subscriber: WebSocketSubscriber) -> None:
    """把订阅者队列里的帧逐个发出，订阅者关闭后返回。"""
    while True:
        frame = await subscriber.next_frame()
        if frame is None:
            return
        await websocket.send_text(frame)


@router.websocket("/{username}")
async def websocket_room_endpoint(
    websocket: WebSocket,
    username: str,
    events: str | None = None,
) -> None:
    """WebSocket 房间订阅端点。

    Args:
        websocket: FastAPI WebSocket 连接对象。
        username: 主播用户名（房间名）。
        events: 可选的事件类型过滤（逗号分隔，``*`` 表示全部，缺省只收 chat）。
    """
    try:
        room = normalize_room(username.lstrip("/"), field="username")
    except RoomValidationError as e:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION, reason=str(e))
        return

    hub = get_ws_relay_hub(websocket)
    await websocket.accept()
    subscriber = hub.new_ws_subscriber(room, events)
    token = conn_id_ctx_var.set(f"ws-{subscriber.id}")
    hub.lifecycle.join(subscriber)

    receiver = asyncio.create_task(_drain_incoming(websocket))
    sender = asyncio.create_task(_pump_outgoing(websocket, subscriber))
    try:
        done, pending = await asyncio.wait({receiver, sender}, return_when=asyncio.FIRST_COMPLETED)
        for task in pending:
            task.cancel()
        await asyncio.gather(*pending, return_exceptions=True)

        if sender in done:
            exc = sender.exception()
            if exc is not None:
                logger.debug("WebSocket 发送中断 | room=%s | %s", room, exc)
            elif subscriber.closed:
                # 订阅者被服务端关闭（上游连接失败或应用关闭）
                await websocket.close(
                    code=status.WS_1011_INTERNAL_ERROR, reason="upstream unavailable",
                )
    except WebSocketDisconnect:
        pass
    except Exception as e:
        logger.error("WebSocket 异常: %s | room=%s", e, room, exc_info=True)
    finally:
        receiver.cancel()
        sender.cancel()
        hub.lifecycle.leave(subscriber)
        conn_id_ctx_var.reset(token)
