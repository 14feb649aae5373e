"""Platform-agnostic channel adapter interface."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any

from ..models import OriginChannel


class ChannelAdapter(ABC):
    """Send capability the pipeline needs from one social or chat surface."""

    channel: OriginChannel

    @abstractmethod
    def send(self, origin_id: str, text: str, content: dict[str, Any] | None = None) -> None:
        """Deliver a reply to the conversation identified by ``origin_id``.

        Implementations raise DeliveryError when the platform rejects or
        cannot be reached; they never retry.
        """

    def close(self) -> None:
        """Release adapter resources."""
