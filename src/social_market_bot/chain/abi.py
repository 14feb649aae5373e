"""Prediction market contract interface."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

from ..exceptions import ConfigError

MARKET_CREATED_EVENT = "MarketCreated"

PREDICTION_MARKET_ABI: list[dict[str, Any]] = [
    {
        "type": "function",
        "name": "createMarket",
        "stateMutability": "nonpayable",
        "inputs": [
            {"name": "_question", "type": "string"},
            {"name": "_optionA", "type": "string"},
            {"name": "_optionB", "type": "string"},
            {"name": "_duration", "type": "uint256"},
            {"name": "_category", "type": "string"},
            {"name": "_tags", "type": "string[]"},
            {"name": "_marketFee", "type": "uint256"},
        ],
        "outputs": [{"name": "", "type": "uint256"}],
    },
    {
        "type": "function",
        "name": "marketCount",
        "stateMutability": "view",
        "inputs": [],
        "outputs": [{"name": "", "type": "uint256"}],
    },
    {
        "type": "event",
        "name": MARKET_CREATED_EVENT,
        "anonymous": False,
        "inputs": [
            {"name": "marketId", "type": "uint256", "indexed": True},
            {"name": "question", "type": "string", "indexed": False},
            {"name": "optionA", "type": "string", "indexed": False},
            {"name": "optionB", "type": "string", "indexed": False},
            {"name": "endTime", "type": "uint256", "indexed": False},
        ],
    },
]


def load_abi(path: Path | None) -> list[dict[str, Any]]:
    """Load an ABI override file (bare list or a build artifact with ``abi``)."""
    if path is None:
        return PREDICTION_MARKET_ABI
    try:
        payload = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as exc:
        raise ConfigError(f"Failed reading contract ABI file ({path}): {exc}") from exc
    if isinstance(payload, dict):
        payload = payload.get("abi")
    if not isinstance(payload, list):
        raise ConfigError(f"Contract ABI file must contain a JSON list or an 'abi' key: {path}")
    names = {entry.get("name") for entry in payload if isinstance(entry, dict)}
    missing = {"createMarket", "marketCount"} - names
    if missing:
        raise ConfigError(f"Contract ABI is missing entries: {', '.join(sorted(missing))}")
    return payload


def abi_has_event(abi: list[dict[str, Any]], name: str) -> bool:
    return any(entry.get("type") == "event" and entry.get("name") == name for entry in abi)
