"""
live_relay
~~~~~~~~~~

直播事件多房间中继：每个房间维护一条上游连接，把归一化后的事件
扇出给 WebSocket 与 SSE 订阅者。
"""
__version__ = "0.1.0"
