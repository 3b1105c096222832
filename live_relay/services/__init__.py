"""
live_relay.services
~~~~~~~~~~~~~~~~~~~
房间生命周期与事件扇出核心。
"""
from live_relay.services.relay_hub import RelayHub

__all__ = ["RelayHub"]
