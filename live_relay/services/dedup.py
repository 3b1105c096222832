"""
live_relay.services.dedup
~~~~~~~~~~~~~~~~~~~~~~~~~

弹幕去重缓存 —— 按房间记录最近出现过的弹幕指纹，窗口期内重复的弹幕直接丢弃。

上游在重连或网络抖动时会重复推送同一条弹幕，这里用一张带时间戳的表做
惰性过期：过期条目即使还在表里也视为不存在；表超过阈值时顺手清理一遍，
不需要后台定时器。
"""
from __future__ import annotations

from collections.abc import Callable, Mapping
from typing import Any

from live_relay.schemas.events import now_ms

# 依次尝试的字段路径，取第一个非空值
_ID_PATHS: tuple[tuple[str, ...], ...] = (
    ("msgId",), ("messageId",), ("id",), ("common", "msgId"),
)
_USER_PATHS: tuple[tuple[str, ...], ...] = (
    ("uniqueId",), ("userId",), ("user", "userId"), ("user", "uniqueId"),
)
_TEXT_PATHS: tuple[tuple[str, ...], ...] = (("comment",), ("text",), ("content",))
_TIME_PATHS: tuple[tuple[str, ...], ...] = (
    ("createTime",), ("timestamp",), ("ts",), ("common", "createTime"),
)


def _lookup(payload: Any, path: tuple[str, ...]) -> Any:
    node = payload
    for name in path:
        if node is None:
            return None
        if isinstance(node, Mapping):
            node = node.get(name)
        else:
            try:
                node = getattr(node, name, None)
            except Exception:
                return None
    return node


def _first(payload: Any, paths: tuple[tuple[str, ...], ...]) -> Any:
    for path in paths:
        value = _lookup(payload, path)
        if value:
            return value
    return None


def compute_chat_key(payload: Any) -> str | None:
    """从弹幕载荷推导去重键。

    优先使用稳定的消息 ID；没有时退化为 ``用户|内容|时间`` 指纹；
    三者都缺失则返回 ``None``（不做去重）。任何形状的载荷都不会抛异常。
    """
    msg_id = _first(payload, _ID_PATHS)
    if msg_id:
        return str(msg_id)

    user = _first(payload, _USER_PATHS)
    text = _first(payload, _TEXT_PATHS)
    created = _first(payload, _TIME_PATHS)
    if user is None and text is None and created is None:
        return None
    return "|".join("" if part is None else str(part) for part in (user, text, created))


class ChatDedupCache:
    """按房间划分的弹幕去重表。

    Attributes:
        ttl_ms: 去重窗口（毫秒）。
        max_entries: 单房间表超过该大小时触发清理。
        compact_target: 清理时降到该大小即停止扫描。
    """

    def __init__(
        self,
        ttl_ms: int = 120_000,
        max_entries: int = 1000,
        compact_target: int = 800,
        clock: Callable[[], int] = now_ms,
    ) -> None:
        self.ttl_ms = ttl_ms
        self.max_entries = max_entries
        self.compact_target = compact_target
        self._clock = clock
        self._seen: dict[str, dict[str, int]] = {}

    def should_emit(self, room: str, key: str) -> bool:
        """判断该弹幕是否应当广播。

        窗口内已出现过的键返回 ``False`` 且不刷新时间戳；
        否则记录 ``lastSeenAt = now`` 并返回 ``True``。
        """
        now = self._clock()
        table = self._seen.setdefault(room, {})
        last = table.get(key)
        if last is not None and now - last < self.ttl_ms:
            return False

        table[key] = now
        if len(table) > self.max_entries:
            self._compact(table, now)
        return True

    def _compact(self, table: dict[str, int], now: int) -> None:
        for key, seen_at in list(table.items()):
            if now - seen_at >= self.ttl_ms:
                del table[key]
                if len(table) <= self.compact_target:
                    break

    def forget(self, room: str) -> None:
        """丢弃某个房间的整张去重表（房间断开时调用）。"""
        self._seen.pop(room, None)

    def size(self, room: str) -> int:
        """某个房间当前的条目数（含尚未清理的过期条目）。"""
        return len(self._seen.get(room, {}))
