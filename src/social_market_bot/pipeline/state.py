"""Per-command pipeline state machine."""

from __future__ import annotations

from collections.abc import Callable
from datetime import UTC, datetime
from typing import Any, Literal

from pydantic import BaseModel, Field, field_validator

from ..models import OriginChannel, ParsedMarketRequest, SubmissionResult

PipelineState = Literal[
    "received",
    "extracted",
    "validated",
    "submitted",
    "confirmed",
    "replied",
    "failed",
]
FailureStage = Literal["received", "extracted", "validated", "submitted"]

_TERMINAL_STATES: set[PipelineState] = {"confirmed", "replied", "failed"}

_ALLOWED_TRANSITIONS: dict[PipelineState, set[PipelineState]] = {
    "received": {"extracted", "failed"},
    "extracted": {"validated", "failed"},
    "validated": {"submitted", "replied", "failed"},
    "submitted": {"confirmed", "failed"},
    "confirmed": {"replied"},
    "replied": set(),
    "failed": set(),
}


def is_terminal_pipeline_state(state: PipelineState) -> bool:
    """Return True when state is terminal."""
    return state in _TERMINAL_STATES


class PipelineEvent(BaseModel):
    """One pipeline state transition with optional context."""

    state: PipelineState
    ts: datetime
    note: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)

    @field_validator("ts", mode="before")
    @classmethod
    def ensure_utc(cls, value: Any) -> Any:
        if isinstance(value, datetime):
            return value.astimezone(UTC) if value.tzinfo else value.replace(tzinfo=UTC)
        return value


class PipelineRecord(BaseModel):
    """State, outcome and history for one inbound command."""

    command_id: str
    origin_channel: OriginChannel
    origin_id: str
    kind: Literal["market", "strategy", "help"] = "market"
    current_state: PipelineState = "received"
    failure_stage: FailureStage | None = None
    failure_reason: str | None = None
    request: ParsedMarketRequest | None = None
    result: SubmissionResult | None = None
    transaction_hash: str | None = None
    reply_attempted: bool = False
    reply_delivered: bool = False
    events: list[PipelineEvent] = Field(default_factory=list)

    @property
    def succeeded(self) -> bool:
        if self.kind == "market":
            return self.current_state in {"confirmed", "replied"}
        # Help and strategy replies have no on-chain step; an undelivered
        # reply leaves them in "validated".
        return self.current_state in {"validated", "replied"}


class PipelineTracker:
    """Validate and record transitions for one command's pipeline run."""

    def __init__(
        self,
        *,
        record: PipelineRecord,
        now_provider: Callable[[], datetime] | None = None,
    ) -> None:
        self.record = record
        self._now_provider = now_provider or (lambda: datetime.now(UTC))

    def transition(
        self,
        new_state: PipelineState,
        *,
        note: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> None:
        """Apply one validated state transition and append a pipeline event."""
        current = self.record.current_state
        if new_state == current:
            return
        allowed_next = _ALLOWED_TRANSITIONS.get(current, set())
        if new_state not in allowed_next:
            raise ValueError(f"Invalid pipeline transition: {current} -> {new_state}")

        self.record.events.append(
            PipelineEvent(state=new_state, ts=self._now(), note=note, metadata=metadata or {})
        )
        self.record.current_state = new_state

    def fail(self, reason: str, *, metadata: dict[str, Any] | None = None) -> None:
        """Move to the absorbing failed state, remembering which stage failed."""
        stage = self.record.current_state
        if stage not in ("received", "extracted", "validated", "submitted"):
            raise ValueError(f"Cannot fail a command in state {stage}")
        self.transition("failed", note=reason, metadata=metadata)
        self.record.failure_stage = stage
        self.record.failure_reason = reason

    def _now(self) -> datetime:
        value = self._now_provider()
        return value.astimezone(UTC) if value.tzinfo else value.replace(tzinfo=UTC)
