"""Base model for backend rows.

Every row model inherits from :class:`ArovaBaseModel` which provides:

* A ``model_validator(mode="before")`` that drops empty-string values so
  the field default (usually ``None``) is used instead.
* A ``raw`` dict that captures the original row.
* :meth:`ArovaBaseModel.payload`, the canonical JSON-mode dump used for
  structural comparisons.  Poll and push observations of the same row
  produce equal payloads.
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Annotated, Any

from pydantic import BaseModel, BeforeValidator, ConfigDict, Field, model_validator

# Threshold to distinguish seconds from milliseconds.
_MS_THRESHOLD = 1_000_000_000_000


def parse_timestamp(value: Any) -> datetime | None:
    """Coerce an ISO-8601 string or epoch number (seconds or ms) to an aware UTC datetime."""
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.astimezone(UTC) if value.tzinfo is not None else value.replace(tzinfo=UTC)
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        ts = float(value)
        if ts >= _MS_THRESHOLD:
            ts /= 1000.0
        return datetime.fromtimestamp(ts, tz=UTC)
    if isinstance(value, str):
        parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
        return parsed.astimezone(UTC) if parsed.tzinfo is not None else parsed.replace(tzinfo=UTC)
    raise ValueError(f"unsupported timestamp value: {value!r}")


Timestamp = Annotated[datetime | None, BeforeValidator(parse_timestamp)]
"""Annotated type that accepts ISO strings or epoch numbers and yields UTC datetimes."""


class ArovaBaseModel(BaseModel):
    """Base for backend row models."""

    model_config = ConfigDict(
        frozen=True,
        extra="ignore",
        populate_by_name=True,
    )

    raw: dict[str, Any] = Field(default_factory=dict, exclude=True)
    """Original row dict."""

    @model_validator(mode="before")
    @classmethod
    def _clean_values(cls, values: Any) -> Any:
        """Drop empty-string values and stash the raw row."""
        if not isinstance(values, dict):
            return values
        cleaned = {key: value for key, value in values.items() if not (isinstance(value, str) and not value.strip())}
        if "raw" not in values:
            cleaned["raw"] = dict(values)
        return cleaned

    def payload(self) -> dict[str, Any]:
        """Canonical JSON-compatible dump (without ``raw``)."""
        return self.model_dump(mode="json")
