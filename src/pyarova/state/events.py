"""Canonical change records.

Both ingestion paths (poll and push) convert their inputs into
:class:`ChangeRecord`.  Only the coordinator consumes them.
"""

from __future__ import annotations

from datetime import UTC, datetime
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from pyarova._constants import FORECASTS_TABLE, LIVE_SESSION_TABLE


class ChangeSource(StrEnum):
    POLL = "poll"
    PUSH = "push"


class ChangeKind(StrEnum):
    INSERTED = "inserted"
    UPDATED = "updated"
    DELETED = "deleted"


class EntityKind(StrEnum):
    LIVE_SESSION = "live_session"
    FORECAST = "forecast"

    @property
    def table(self) -> str:
        return _KIND_TABLES[self]

    @property
    def is_singleton(self) -> bool:
        """Singleton kinds only care about their latest state."""
        return self is EntityKind.LIVE_SESSION

    @classmethod
    def from_table(cls, table: str) -> EntityKind | None:
        for kind, name in _KIND_TABLES.items():
            if name == table:
                return kind
        return None


_KIND_TABLES: dict[EntityKind, str] = {
    EntityKind.LIVE_SESSION: LIVE_SESSION_TABLE,
    EntityKind.FORECAST: FORECASTS_TABLE,
}


class ChangeRecord(BaseModel):
    """One observed change, transport-agnostic and immutable."""

    model_config = ConfigDict(frozen=True)

    entity_kind: EntityKind
    entity_id: str
    change_kind: ChangeKind
    source: ChangeSource
    payload: dict[str, Any] = Field(default_factory=dict, description="Canonical row payload")
    version: datetime | None = Field(default=None, description="Version marker of the row, if any.")
    observed_at: datetime = Field(default_factory=lambda: datetime.now(UTC))

    @field_validator("entity_id")
    @classmethod
    def _normalize_entity_id(cls, value: str) -> str:
        entity_id = value.strip()
        if not entity_id:
            raise ValueError("entity_id must be non-empty")
        return entity_id

    @field_validator("observed_at")
    @classmethod
    def _ensure_tz_aware(cls, value: datetime) -> datetime:
        if value.tzinfo is None:
            return value.replace(tzinfo=UTC)
        return value
