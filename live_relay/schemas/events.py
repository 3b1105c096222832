"""
live_relay.schemas.events
~~~~~~~~~~~~~~~~~~~~~~~~~

事件信封 —— 所有上游事件归一化后的统一结构，与传输方式无关。
"""
from __future__ import annotations

import json
import time
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


def now_ms() -> int:
    """当前时间戳（毫秒）。"""
    return int(time.time() * 1000)


class EventEnvelope(BaseModel):
    """一条归一化事件。创建后不可修改，按引用扇出给所有匹配的订阅者。

    .. code-block:: json

        {"type": "chat", "payload": {...}, "timestamp": 1700000000000, "room": "alice"}
    """

    model_config = ConfigDict(frozen=True)

    type: str = Field(..., description="事件类型，如 chat / gift / error")
    payload: Any = Field(default=None, description="上游原始载荷（本层不解析）")
    timestamp: int = Field(default_factory=now_ms, description="毫秒时间戳")
    room: str = Field(..., description="所属房间（主播用户名）")

    def to_json(self) -> str:
        """序列化为线上 JSON 文本。无法识别的载荷字段退化为字符串。"""
        return json.dumps(self.model_dump(), ensure_ascii=False, default=str)
