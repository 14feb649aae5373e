"""Language-model field extraction for conversational surfaces.

Model output is untrusted: it may omit fields, invent extra ones, or return
numbers as strings. This module only shapes the JSON into the same loosely
typed field objects the grammar produces and tags them ``source="model"`` so
the validator applies the stricter presence rules.
"""

from __future__ import annotations

import json
import logging
import re
from typing import Any

from openai import APIError, OpenAI

from ..config import Settings
from ..exceptions import ModelExtractionError
from ..models import ExtractedMarketFields, ExtractionFailure, StrategyDepositFields

MARKET_FIELDS_PROMPT = """Extract prediction market creation parameters from the user's message.
Respond with a single JSON object and nothing else. Use null for any value that
cannot be determined from the message.

{
    "question": "Prediction question users will bet on with option A and option B",
    "option_a": "First option, e.g. Yes",
    "option_b": "Second option, e.g. No",
    "duration_days": "Duration of the market in whole days",
    "category": "Market category (SOCIAL, CRYPTO, SPORTS)",
    "tags": ["tag1", "tag2"],
    "fee_basis_points": 100
}

Only use a duration the user actually stated. Category, tags and fee may be
null when not mentioned."""

STRATEGY_FIELDS_PROMPT = """Extract the BTC deposit strategy request from the user's message.
Respond with a single JSON object and nothing else:

{"strategy": "strategy name as written by the user", "amount": 0.5}

Use null for any value that cannot be determined."""

_FENCED_JSON_RE = re.compile(r"```(?:json)?\s*(\{.*?\})\s*```", re.DOTALL | re.IGNORECASE)


def parse_model_json(raw: str | None) -> dict[str, Any]:
    """Parse a model reply that should contain one JSON object."""
    if not raw or not raw.strip():
        raise ModelExtractionError("Model returned an empty response.")
    fenced = _FENCED_JSON_RE.search(raw)
    candidate = fenced.group(1) if fenced else raw.strip()
    try:
        payload = json.loads(candidate)
    except json.JSONDecodeError as exc:
        raise ModelExtractionError(f"Model response was not valid JSON: {exc}") from exc
    if not isinstance(payload, dict):
        raise ModelExtractionError(
            f"Model response must be a JSON object, got {type(payload).__name__}."
        )
    return payload


def _pick(payload: dict[str, Any], *keys: str) -> Any:
    # Accept both snake_case and the underscore-prefixed camelCase keys some
    # prompt templates produce.
    for key in keys:
        if key in payload and payload[key] is not None:
            return payload[key]
    return None


class ModelFieldExtractor:
    """Fallible, non-deterministic extractor backed by an OpenAI chat model."""

    def __init__(
        self,
        client: OpenAI,
        *,
        model: str,
        logger: logging.Logger | None = None,
    ) -> None:
        self._client = client
        self.model = model
        self.logger = logger or logging.getLogger("social_market_bot.extraction.llm")

    @classmethod
    def from_settings(cls, settings: Settings, logger: logging.Logger) -> ModelFieldExtractor:
        if not settings.openai_api_key:
            raise ModelExtractionError("OPENAI_API_KEY is not configured")
        kwargs: dict[str, Any] = {
            "api_key": settings.openai_api_key,
            "timeout": settings.http_timeout_seconds,
        }
        if settings.openai_api_base:
            kwargs["base_url"] = str(settings.openai_api_base)
        return cls(OpenAI(**kwargs), model=settings.openai_model, logger=logger)

    def extract(self, text: str) -> ExtractedMarketFields | ExtractionFailure:
        try:
            payload = self._complete(MARKET_FIELDS_PROMPT, text)
        except ModelExtractionError as exc:
            self.logger.warning("Model market extraction failed: %s", exc)
            return ExtractionFailure(reason="model_error", detail=str(exc))
        return ExtractedMarketFields(
            question=_pick(payload, "question", "_question"),
            option_a=_pick(payload, "option_a", "optionA", "_optionA"),
            option_b=_pick(payload, "option_b", "optionB", "_optionB"),
            duration_days=_pick(payload, "duration_days", "duration", "_duration"),
            category=_pick(payload, "category", "_category"),
            tags=_pick(payload, "tags", "_tags"),
            fee_basis_points=_pick(payload, "fee_basis_points", "marketFee", "_marketFee"),
            source="model",
        )

    def extract_strategy(self, text: str) -> StrategyDepositFields | ExtractionFailure:
        try:
            payload = self._complete(STRATEGY_FIELDS_PROMPT, text)
        except ModelExtractionError as exc:
            self.logger.warning("Model strategy extraction failed: %s", exc)
            return ExtractionFailure(reason="model_error", detail=str(exc))
        return StrategyDepositFields(
            strategy=_pick(payload, "strategy"),
            amount=_pick(payload, "amount"),
            source="model",
        )

    def _complete(self, system_prompt: str, text: str) -> dict[str, Any]:
        try:
            response = self._client.chat.completions.create(
                model=self.model,
                messages=[
                    {"role": "system", "content": system_prompt},
                    {"role": "user", "content": text},
                ],
                response_format={"type": "json_object"},
                temperature=0,
            )
        except APIError as exc:
            raise ModelExtractionError(f"{type(exc).__name__}: {exc}") from exc
        if not response.choices:
            raise ModelExtractionError("Model returned no choices.")
        return parse_model_json(response.choices[0].message.content)
