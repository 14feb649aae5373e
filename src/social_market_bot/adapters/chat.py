"""Conversational-agent surface: replies go back through a host callback."""

from __future__ import annotations

from collections.abc import Callable
from typing import Any

from ..exceptions import DeliveryError
from ..models import OriginChannel, RawCommand, ReplyMessage
from .base import ChannelAdapter

ReplyCallback = Callable[[str, ReplyMessage], None]


class ChatAdapter(ChannelAdapter):
    """Adapter for a host agent runtime that hands over messages and a callback."""

    channel = OriginChannel.CHAT

    def __init__(self, callback: ReplyCallback) -> None:
        self._callback = callback

    @staticmethod
    def to_raw_command(text: str, conversation_id: str) -> RawCommand:
        return RawCommand(
            text=text,
            origin_channel=OriginChannel.CHAT,
            origin_id=conversation_id,
        )

    def send(self, origin_id: str, text: str, content: dict[str, Any] | None = None) -> None:
        message = ReplyMessage(text=text, content=content or {})
        try:
            self._callback(origin_id, message)
        except DeliveryError:
            raise
        except Exception as exc:
            raise DeliveryError(
                f"Chat callback failed for {origin_id}: {type(exc).__name__}: {exc}"
            ) from exc
