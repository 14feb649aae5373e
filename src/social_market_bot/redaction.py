"""Masking of bot credentials in log lines and journal payloads."""

from __future__ import annotations

import re
from collections.abc import Callable, Mapping
from typing import Any

REDACTED = "[REDACTED]"

# Dict keys whose values are always masked, whatever they contain.
_SECRET_FIELD_RE = re.compile(
    r"(private[_-]?key|secret|token|api[_-]?key|authorization|bearer|signature|mnemonic)",
    re.IGNORECASE,
)

_Rule = tuple[re.Pattern[str], str | Callable[[re.Match[str]], str]]

# Applied in order; earlier rules may shorten text later rules look at.
_TEXT_RULES: tuple[_Rule, ...] = (
    (
        re.compile(
            r"-----BEGIN [A-Z ]*PRIVATE KEY-----.*?-----END [A-Z ]*PRIVATE KEY-----",
            re.DOTALL,
        ),
        REDACTED,
    ),
    # Telegram puts the bot token in the request path.
    (re.compile(r"(/bot)\d+:[A-Za-z0-9_-]+"), r"\1" + REDACTED),
    (re.compile(r"(?i)\b(bearer)\s+[A-Za-z0-9\-._~+/]+=*"), r"\1 " + REDACTED),
    (re.compile(r"\bsk-[A-Za-z0-9_-]{8,}"), REDACTED),
    (
        re.compile(
            r"(?i)\b(authorization|token|secret|private[_-]?key|api[_-]?key)\s*[:=]\s*([^\s,;]+)"
        ),
        lambda match: f"{match.group(1)}={REDACTED}",
    ),
    # A bare 32-byte hex string is how PRIVATE_KEY is usually pasted. The
    # 0x-prefixed form is left alone: it is indistinguishable from a tx hash.
    (re.compile(r"(?<![0-9a-fA-Fx])[0-9a-fA-F]{64}(?![0-9a-fA-F])"), REDACTED),
)


def sanitize_text(text: str) -> str:
    """Mask credentials embedded in free text."""
    for pattern, replacement in _TEXT_RULES:
        text = pattern.sub(replacement, text)
    return text


def sanitize_for_logging(value: Any) -> Any:
    """Recursively mask secret-named fields and secrets inside strings."""
    if isinstance(value, Mapping):
        return {
            key: REDACTED if _SECRET_FIELD_RE.search(str(key)) else sanitize_for_logging(child)
            for key, child in value.items()
        }
    if isinstance(value, (list, tuple)):
        return type(value)(sanitize_for_logging(item) for item in value)
    if isinstance(value, str):
        return sanitize_text(value)
    return value
