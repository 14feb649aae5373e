"""X/Twitter API v2 adapter (filtered stream in, reply tweets out)."""

from __future__ import annotations

import json
import logging
import threading
from collections.abc import Callable
from typing import Any

import httpx

from ..config import Settings
from ..exceptions import ChannelError, DeliveryError
from ..models import OriginChannel, RawCommand
from ..redaction import sanitize_text
from .base import ChannelAdapter

MAX_TWEET_CHARS = 280
STREAM_RULE_TAG = "market-create-mentions"


def clip_tweet(text: str) -> str:
    if len(text) <= MAX_TWEET_CHARS:
        return text
    return text[: MAX_TWEET_CHARS - 1] + "…"


class TwitterAdapter(ChannelAdapter):
    """Streams mentions of the agent account and replies in-thread."""

    channel = OriginChannel.TWITTER

    def __init__(
        self,
        settings: Settings,
        logger: logging.Logger,
        *,
        client: httpx.Client | None = None,
        retry_delay_seconds: float = 15.0,
    ) -> None:
        settings.require_channel(OriginChannel.TWITTER)
        self.settings = settings
        self.logger = logger
        self.agent_username = settings.agent_username
        self._retry_delay = retry_delay_seconds
        self._self_user_id: str | None = None
        self._client = client or httpx.Client(
            base_url=str(settings.twitter_api_base_url),
            timeout=settings.http_timeout_seconds,
            headers={"User-Agent": "social-market-bot/0.1"},
        )

    def __enter__(self) -> TwitterAdapter:
        return self

    def __exit__(self, exc_type: Any, exc: Any, exc_tb: Any) -> None:
        self.close()

    def close(self) -> None:
        self._client.close()

    @property
    def stream_rule(self) -> str:
        agent = self.agent_username
        return f'@{agent} "create market:" -is:retweet -from:{agent}'

    def resolve_self_user_id(self) -> str:
        """Look up the agent account's own user id once and cache it."""
        if self._self_user_id is None:
            payload = self._call_json("GET", "/2/users/me", auth="user")
            data = payload.get("data")
            user_id = data.get("id") if isinstance(data, dict) else None
            if user_id is None:
                raise ChannelError("Twitter /2/users/me returned no user id.")
            self._self_user_id = str(user_id)
        return self._self_user_id

    def to_raw_command(self, payload: dict[str, Any]) -> RawCommand | None:
        """Return a RawCommand for tweets other accounts address to the agent."""
        data = payload.get("data", payload)
        if not isinstance(data, dict):
            return None
        text = data.get("text")
        tweet_id = data.get("id")
        if not isinstance(text, str) or tweet_id is None:
            return None
        # The bot's own replies quote the command formats back at it.
        author_id = data.get("author_id")
        if author_id is not None and str(author_id) == self._self_user_id:
            return None
        if f"@{self.agent_username.lower()}" not in text.lower():
            return None
        return RawCommand(text=text, origin_channel=OriginChannel.TWITTER, origin_id=str(tweet_id))

    def ensure_stream_rule(self) -> None:
        """Register the mention rule on the filtered stream if it is missing."""
        rules = self._call_json("GET", "/2/tweets/search/stream/rules", auth="app")
        existing = {rule.get("value") for rule in rules.get("data") or [] if isinstance(rule, dict)}
        if self.stream_rule in existing:
            return
        self._call_json(
            "POST",
            "/2/tweets/search/stream/rules",
            auth="app",
            json_body={"add": [{"value": self.stream_rule, "tag": STREAM_RULE_TAG}]},
        )
        self.logger.info("Registered stream rule %s", self.stream_rule)

    def stream_commands(
        self,
        handle: Callable[[RawCommand], Any],
        stop_event: threading.Event,
    ) -> None:
        """Consume one stream connection until it drops or ``stop_event`` is set."""
        try:
            with self._client.stream(
                "GET",
                "/2/tweets/search/stream",
                params={"tweet.fields": "author_id,created_at"},
                headers=self._auth_headers("app"),
                # Keep-alive newlines arrive every ~20s; allow a few to be missed.
                timeout=httpx.Timeout(self.settings.http_timeout_seconds, read=90.0),
            ) as response:
                response.raise_for_status()
                for line in response.iter_lines():
                    if stop_event.is_set():
                        return
                    if not line.strip():
                        continue
                    try:
                        payload = json.loads(line)
                    except json.JSONDecodeError:
                        self.logger.warning("Skipping malformed stream line")
                        continue
                    if not isinstance(payload, dict):
                        continue
                    command = self.to_raw_command(payload)
                    if command is not None:
                        handle(command)
        except httpx.HTTPStatusError as exc:
            raise ChannelError(
                f"Twitter stream failed with status {exc.response.status_code}"
            ) from exc
        except httpx.HTTPError as exc:
            raise ChannelError(f"Twitter stream dropped: {sanitize_text(str(exc))}") from exc

    def run(self, handle: Callable[[RawCommand], Any], stop_event: threading.Event) -> None:
        """Keep a stream connection open until ``stop_event`` is set.

        Setup calls share the reconnect backoff, so a rate limit or auth error
        at startup is retried instead of ending the listener thread.
        """
        self.logger.info("Twitter listener started for %s", self.stream_rule)
        ready = False
        while not stop_event.is_set():
            try:
                if not ready:
                    self.resolve_self_user_id()
                    self.ensure_stream_rule()
                    ready = True
                self.stream_commands(handle, stop_event)
            except ChannelError as exc:
                self.logger.warning("Twitter stream error (%s); reconnecting", exc)
                stop_event.wait(self._retry_delay)
        self.logger.info("Twitter listener stopped")

    def send(self, origin_id: str, text: str, content: dict[str, Any] | None = None) -> None:
        body = {"text": clip_tweet(text), "reply": {"in_reply_to_tweet_id": origin_id}}
        try:
            self._call_json("POST", "/2/tweets", auth="user", json_body=body)
        except ChannelError as exc:
            raise DeliveryError(f"Twitter reply to {origin_id} failed: {exc}") from exc

    def _auth_headers(self, auth: str) -> dict[str, str]:
        token = (
            self.settings.twitter_user_access_token
            if auth == "user"
            else self.settings.twitter_bearer_token
        )
        return {"Authorization": f"Bearer {token}"}

    def _call_json(
        self,
        method: str,
        path: str,
        *,
        auth: str,
        json_body: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        try:
            response = self._client.request(
                method, path, json=json_body, headers=self._auth_headers(auth)
            )
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            raise ChannelError(
                f"Twitter {method} {path} failed with status {exc.response.status_code}: "
                f"{sanitize_text(exc.response.text[:300])}"
            ) from exc
        except httpx.HTTPError as exc:
            raise ChannelError(
                f"Twitter {method} {path} request failed: {sanitize_text(str(exc))}"
            ) from exc
        try:
            payload = response.json()
        except ValueError as exc:
            raise ChannelError(f"Twitter {method} {path} returned invalid JSON.") from exc
        if not isinstance(payload, dict):
            raise ChannelError(f"Twitter {method} {path} returned a non-object payload.")
        return payload
