# Realtime channel package

from .channels import ChannelManager, Connection
from .handlers import RealtimeSession

__all__ = ["ChannelManager", "Connection", "RealtimeSession"]
