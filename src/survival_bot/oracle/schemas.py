"""Oracle decision schema and fail-safe parsing helpers."""

from __future__ import annotations

import json
import math
import re
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from survival_bot.errors import DecisionParseError
from survival_bot.utils.logging import get_logger

_FENCED_RE = re.compile(r"```(?:json)?[ \t]*\n?(.*?)```", re.DOTALL | re.IGNORECASE)
_UNPARSEABLE = "unparseable"

_logger = get_logger("survival_bot.oracle.schemas")


class Decision(BaseModel):
    """Structured trading decision returned by the oracle."""

    model_config = ConfigDict(extra="ignore")

    action: Literal["BUY", "SELL", "HOLD"]
    symbol: str | None = None
    confidence: int = Field(ge=0, le=100)
    reasoning: str
    stop_loss: float | None = None
    take_profit: float | None = None

    @field_validator("action", mode="before")
    @classmethod
    def _upper_action(cls, v: Any) -> Any:
        return v.strip().upper() if isinstance(v, str) else v

    @field_validator("symbol", mode="before")
    @classmethod
    def _normalize_symbol(cls, v: Any) -> Any:
        if isinstance(v, str):
            cleaned = v.strip().upper().replace("/", "")
            return cleaned or None
        return v

    @field_validator("stop_loss", "take_profit")
    @classmethod
    def _drop_unusable_level(cls, v: float | None) -> float | None:
        if v is not None and (not math.isfinite(v) or v <= 0):
            return None
        return v

    @property
    def is_trade(self) -> bool:
        return self.action in ("BUY", "SELL")

    @classmethod
    def hold_default(cls) -> "Decision":
        """Construct the conservative fallback decision."""
        return cls(action="HOLD", confidence=0, reasoning=_UNPARSEABLE)

    @classmethod
    def parse_strict(cls, payload: dict[str, Any]) -> "Decision":
        """Validate a raw dict. Any violation maps to HOLD."""
        try:
            decision = cls.model_validate(payload)
        except ValidationError as exc:
            _logger.warning(
                "decision_validation_failed",
                error=exc.errors()[0]["msg"],
                field=".".join(str(p) for p in exc.errors()[0]["loc"]),
            )
            return cls.hold_default()
        if decision.is_trade and decision.symbol is None:
            _logger.warning("decision_missing_symbol", action=decision.action)
            return cls.hold_default()
        return decision

    @classmethod
    def parse_response_text(cls, text: str) -> "Decision":
        """Parse oracle text. Never raises; anything unusable is HOLD."""
        try:
            json_obj = _extract_json_obj(text)
        except DecisionParseError as exc:
            _logger.warning("decision_parse_failed", reason=str(exc), raw=text[:500])
            return cls.hold_default()
        return cls.parse_strict(json_obj)


def parse_decision(raw_text: str) -> Decision:
    """Turn unstructured oracle text into a Decision."""
    if not isinstance(raw_text, str):
        return Decision.hold_default()
    return Decision.parse_response_text(raw_text)


def _extract_json_obj(text: str) -> dict[str, Any]:
    """Pull one JSON object out of fenced, embedded or bare text."""
    fenced_match = _FENCED_RE.search(text)
    if fenced_match:
        candidate = fenced_match.group(1).strip()
    else:
        candidate = find_balanced_object(text) or text.strip()

    if not candidate:
        raise DecisionParseError("oracle_response_empty")
    try:
        decoded = json.loads(candidate)
    except (json.JSONDecodeError, RecursionError) as exc:
        raise DecisionParseError(f"oracle_response_not_json: {exc}") from exc
    if not isinstance(decoded, dict):
        raise DecisionParseError("oracle_response_json_not_object")
    return decoded


def find_balanced_object(text: str) -> str | None:
    """Return the first top-level ``{...}`` span, honouring JSON string literals."""
    start = text.find("{")
    if start < 0:
        return None

    depth = 0
    in_string = False
    escaped = False
    for index in range(start, len(text)):
        char = text[index]
        if in_string:
            if escaped:
                escaped = False
            elif char == "\\":
                escaped = True
            elif char == '"':
                in_string = False
            continue
        if char == '"':
            in_string = True
        elif char == "{":
            depth += 1
        elif char == "}":
            depth -= 1
            if depth == 0:
                return text[start : index + 1]
    return None
