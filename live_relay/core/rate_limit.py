"""
live_relay.core.rate_limit
~~~~~~~~~~~~~~~~~~~~~~~~~~

控制接口（connect / disconnect / status）的限流配置。
"""
from slowapi import Limiter
from slowapi.util import get_remote_address

from live_relay.core.config import settings

# --------- HTTP 接口限流器 ---------
# 基于客户端 IP 地址进行限流，订阅端点（SSE / WS）不限流
limiter = Limiter(
    key_func=get_remote_address,
    storage_uri="memory://",
    enabled=settings.RATE_LIMIT_ENABLED,
)
