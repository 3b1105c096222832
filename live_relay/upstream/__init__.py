"""
live_relay.upstream
~~~~~~~~~~~~~~~~~~~
上游直播平台客户端。
"""
from live_relay.upstream.base import (
    UpstreamClient,
    UpstreamEvent,
    UpstreamFactory,
    UpstreamListener,
)

__all__ = ["UpstreamClient", "UpstreamEvent", "UpstreamFactory", "UpstreamListener"]
