"""SynergySync 传输层 -- REST 客户端与推送通道"""

from .http_client import HttpApiClient
from .local_hub import LocalPushChannel, LocalPushHub
from .socketio_channel import SocketIOPushChannel

__all__ = [
    "HttpApiClient",
    "LocalPushHub",
    "LocalPushChannel",
    "SocketIOPushChannel",
]
