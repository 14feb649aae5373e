"""Append-only JSONL journal of pipeline events, one file per UTC day."""

from __future__ import annotations

import json
import threading
from collections.abc import Callable, Iterator
from datetime import UTC, datetime
from enum import Enum
from pathlib import Path
from typing import Any

from pydantic import BaseModel

from .exceptions import JournalError
from .redaction import sanitize_for_logging, sanitize_text


def _encode(value: Any) -> Any:
    """json.dumps fallback for the value types pipeline payloads carry."""
    if isinstance(value, datetime):
        aware = value if value.tzinfo else value.replace(tzinfo=UTC)
        return aware.astimezone(UTC).isoformat()
    if isinstance(value, BaseModel):
        return value.model_dump(mode="json")
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, (bytes, bytearray)):
        return "0x" + bytes(value).hex()
    if isinstance(value, Path):
        return str(value)
    # URL-like objects (pydantic AnyUrl) render through __str__; anything
    # without a custom __str__ is schema drift and must fail loudly.
    if type(value).__str__ is not object.__str__:
        return sanitize_text(str(value))
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


class JournalWriter:
    """Thread-safe JSONL writer shared by listeners, workers and the CLI.

    The target file is chosen per write, so a long-running ``serve`` process
    rolls over to a new file at UTC midnight.
    """

    def __init__(
        self,
        journal_dir: Path,
        session_id: str,
        *,
        now_provider: Callable[[], datetime] | None = None,
    ) -> None:
        self.journal_dir = journal_dir
        self.session_id = session_id
        self._now_provider = now_provider or (lambda: datetime.now(UTC))
        self._lock = threading.Lock()
        try:
            self.journal_dir.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise JournalError(f"Cannot create journal directory {journal_dir}: {exc}") from exc

    @property
    def events_path(self) -> Path:
        return self.path_for(self._now_provider())

    def path_for(self, when: datetime) -> Path:
        return self.journal_dir / f"{when.astimezone(UTC):%Y%m%d}.jsonl"

    def write_event(
        self,
        event_type: str,
        payload: dict[str, Any],
        metadata: dict[str, Any] | None = None,
    ) -> None:
        """Append one sanitized event record."""
        now = self._now_provider()
        record = {
            "ts": now.astimezone(UTC).isoformat(),
            "event_type": event_type,
            "session_id": self.session_id,
            "payload": sanitize_for_logging(payload),
            "metadata": sanitize_for_logging(metadata or {}),
        }
        try:
            line = json.dumps(record, default=_encode, ensure_ascii=False)
            with self._lock, self.path_for(now).open("a", encoding="utf-8") as fh:
                fh.write(line + "\n")
        except (OSError, TypeError, ValueError) as exc:
            raise JournalError(f"Failed writing event journal: {exc}") from exc


def read_events(path: Path) -> Iterator[dict[str, Any]]:
    """Yield records from a journal file, skipping torn trailing lines."""
    try:
        with path.open("r", encoding="utf-8") as fh:
            for line in fh:
                line = line.strip()
                if not line:
                    continue
                try:
                    yield json.loads(line)
                except json.JSONDecodeError:
                    continue
    except OSError as exc:
        raise JournalError(f"Failed reading event journal {path}: {exc}") from exc
