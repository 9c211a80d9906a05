"""Base model for flow-optimization API payloads.

Every payload model inherits from :class:`FlowBaseModel` which provides:

* ``alias_generator=to_camel`` so camelCase API keys map
  automatically to snake_case fields.
* A ``raw`` dict that captures the original payload, so the engine can
  keep merging the wire shape while callers read typed fields.

Timestamps go through :data:`FlowTimestamp`, which accepts ISO-8601
strings (the server serializes JavaScript ``Date`` objects that way) as
well as epoch seconds or milliseconds.
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Annotated, Any

from pydantic import BaseModel, BeforeValidator, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel

from flowsync._constants import MS_THRESHOLD


def parse_flow_timestamp(value: Any) -> datetime | None:
    """Convert an API timestamp to an aware UTC datetime.

    Returns ``None`` when the value is missing or cannot be interpreted;
    a bad timestamp never invalidates the surrounding payload.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo is not None else value.replace(tzinfo=UTC)
    if isinstance(value, bool):
        return None
    if isinstance(value, str):
        text = value.strip()
        try:
            value = float(text)
        except ValueError:
            if text.endswith("Z"):
                text = f"{text[:-1]}+00:00"
            try:
                parsed = datetime.fromisoformat(text)
            except ValueError:
                return None
            return parsed if parsed.tzinfo is not None else parsed.replace(tzinfo=UTC)
    if isinstance(value, (int, float)):
        ts = float(value)
        if ts <= 0:
            return None
        if ts >= MS_THRESHOLD:
            ts /= 1000.0
        try:
            return datetime.fromtimestamp(ts, tz=UTC)
        except (OverflowError, OSError, ValueError):
            return None
    return None


FlowTimestamp = Annotated[datetime | None, BeforeValidator(parse_flow_timestamp)]
"""Annotated type that coerces ISO strings and epoch numbers to UTC datetimes."""


class FlowBaseModel(BaseModel):
    """Base for flow-optimization payload models."""

    model_config = ConfigDict(
        frozen=True,
        extra="ignore",
        populate_by_name=True,
        alias_generator=to_camel,
    )

    raw: dict[str, Any] = Field(default_factory=dict)
    """Original payload dict."""

    @model_validator(mode="before")
    @classmethod
    def _stash_raw(cls, values: Any) -> Any:
        if not isinstance(values, dict):
            return values
        if "raw" in values:
            return values
        stashed = dict(values)
        stashed["raw"] = dict(values)
        return stashed
