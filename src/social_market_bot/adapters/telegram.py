"""Telegram Bot API adapter (long polling in, threaded replies out)."""

from __future__ import annotations

import json
import logging
import threading
from collections.abc import Callable
from typing import Any

import httpx

from ..config import Settings
from ..exceptions import ChannelError, ConfigError, DeliveryError
from ..models import OriginChannel, RawCommand
from ..redaction import sanitize_text
from .base import ChannelAdapter

TELEGRAM_API_BASE = "https://api.telegram.org"
MAX_MESSAGE_CHARS = 4096


class TelegramAdapter(ChannelAdapter):
    """Normalizes Telegram updates into RawCommands and sends replies."""

    channel = OriginChannel.TELEGRAM

    def __init__(
        self,
        settings: Settings,
        logger: logging.Logger,
        *,
        client: httpx.Client | None = None,
        retry_delay_seconds: float = 5.0,
    ) -> None:
        if not settings.telegram_bot_token:
            raise ConfigError("TELEGRAM_BOT_TOKEN is required for the Telegram adapter.")
        self.settings = settings
        self.logger = logger
        self._retry_delay = retry_delay_seconds
        self._offset: int | None = None
        self._client = client or httpx.Client(
            base_url=f"{TELEGRAM_API_BASE}/bot{settings.telegram_bot_token}/",
            # Long polling holds the read open for the poll timeout.
            timeout=httpx.Timeout(
                settings.http_timeout_seconds,
                read=settings.http_timeout_seconds + settings.telegram_poll_timeout_seconds,
            ),
        )

    def __enter__(self) -> TelegramAdapter:
        return self

    def __exit__(self, exc_type: Any, exc: Any, exc_tb: Any) -> None:
        self.close()

    def close(self) -> None:
        self._client.close()

    @staticmethod
    def to_raw_command(update: dict[str, Any]) -> RawCommand | None:
        """Return a RawCommand for text messages, None for anything else."""
        message = update.get("message")
        if not isinstance(message, dict):
            return None
        text = message.get("text")
        chat = message.get("chat")
        if not isinstance(text, str) or not text.strip() or not isinstance(chat, dict):
            return None
        # Plain group chatter is ignored; only slash commands reach the pipeline.
        if not text.lstrip().startswith("/"):
            return None
        chat_id = chat.get("id")
        if chat_id is None:
            return None
        message_id = message.get("message_id")
        origin_id = f"{chat_id}:{message_id}" if message_id is not None else str(chat_id)
        return RawCommand(text=text, origin_channel=OriginChannel.TELEGRAM, origin_id=origin_id)

    def fetch_commands(self) -> list[RawCommand]:
        """Long-poll getUpdates once and advance the update offset."""
        params: dict[str, Any] = {
            "timeout": self.settings.telegram_poll_timeout_seconds,
            "allowed_updates": json.dumps(["message"]),
        }
        if self._offset is not None:
            params["offset"] = self._offset
        updates = self._call("getUpdates", params=params)
        if not isinstance(updates, list):
            raise ChannelError("Telegram getUpdates result was not a list.")

        commands: list[RawCommand] = []
        for update in updates:
            if not isinstance(update, dict):
                continue
            update_id = update.get("update_id")
            if isinstance(update_id, int):
                self._offset = max(self._offset or 0, update_id + 1)
            command = self.to_raw_command(update)
            if command is not None:
                commands.append(command)
        return commands

    def run(self, handle: Callable[[RawCommand], Any], stop_event: threading.Event) -> None:
        """Poll until ``stop_event`` is set, handing each command to ``handle``."""
        self.logger.info("Telegram listener started")
        while not stop_event.is_set():
            try:
                commands = self.fetch_commands()
            except ChannelError as exc:
                self.logger.warning("Telegram polling failed (%s); retrying", exc)
                stop_event.wait(self._retry_delay)
                continue
            for command in commands:
                handle(command)
        self.logger.info("Telegram listener stopped")

    def send(self, origin_id: str, text: str, content: dict[str, Any] | None = None) -> None:
        chat_id, _, message_id = origin_id.partition(":")
        body: dict[str, Any] = {
            "chat_id": chat_id,
            "text": text[:MAX_MESSAGE_CHARS],
            "disable_web_page_preview": True,
        }
        if message_id:
            body["reply_to_message_id"] = int(message_id)
            body["allow_sending_without_reply"] = True
        try:
            self._call("sendMessage", json_body=body)
        except ChannelError as exc:
            raise DeliveryError(f"Telegram reply to {origin_id} failed: {exc}") from exc

    def _call(
        self,
        method: str,
        *,
        params: dict[str, Any] | None = None,
        json_body: dict[str, Any] | None = None,
    ) -> Any:
        try:
            if json_body is not None:
                response = self._client.post(method, json=json_body)
            else:
                response = self._client.get(method, params=params)
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            raise ChannelError(
                f"Telegram {method} failed with status {exc.response.status_code}: "
                f"{sanitize_text(exc.response.text[:300])}"
            ) from exc
        except httpx.HTTPError as exc:
            raise ChannelError(
                f"Telegram {method} request failed: {sanitize_text(str(exc))}"
            ) from exc

        try:
            payload = response.json()
        except ValueError as exc:
            raise ChannelError(f"Telegram {method} returned invalid JSON.") from exc
        if not isinstance(payload, dict) or not payload.get("ok"):
            description = payload.get("description") if isinstance(payload, dict) else None
            raise ChannelError(f"Telegram {method} rejected: {description or 'unknown error'}")
        return payload.get("result")
