"""User-facing notification model."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict


class Notification(BaseModel):
    """Message handed to a notification sink."""

    model_config = ConfigDict(frozen=True)

    title: str
    description: str
    duration_ms: int
