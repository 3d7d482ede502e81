"""Live session status model (singleton ``live_stream_config`` row)."""

from __future__ import annotations

from typing import Any

from pydantic import Field, field_validator

from pyarova.models._base import ArovaBaseModel, Timestamp


class LiveSession(ArovaBaseModel):
    """Full current state of the live session.

    This is the watched singleton snapshot.  ``updated_at`` acts as the
    version marker when the backend provides it.
    """

    id: str
    video_id: str | None = None
    is_live: bool = False
    title: str | None = None
    description: str | None = None
    scheduled_start: Timestamp = None
    thumbnail_url: str | None = None
    updated_at: Timestamp = Field(default=None, description="Version marker, if provided.")

    @field_validator("id", mode="before")
    @classmethod
    def _coerce_id(cls, value: Any) -> Any:
        if isinstance(value, int) and not isinstance(value, bool):
            return str(value)
        return value

    @field_validator("is_live", mode="before")
    @classmethod
    def _coerce_is_live(cls, value: Any) -> Any:
        # Rows written before the column had a default carry null.
        return False if value is None else value

    def comparison_key(self) -> Any:
        """Key used to detect a state transition between two snapshots."""
        if self.updated_at is not None:
            return self.updated_at
        return tuple(sorted(self.payload().items(), key=lambda item: item[0]))
