"""Channel adapters for social and chat surfaces."""

from .base import ChannelAdapter
from .chat import ChatAdapter
from .telegram import TelegramAdapter
from .twitter import TwitterAdapter

__all__ = [
    "ChannelAdapter",
    "ChatAdapter",
    "TelegramAdapter",
    "TwitterAdapter",
]
