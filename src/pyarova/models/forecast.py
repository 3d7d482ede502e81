"""Forecast alert model (``forecasts`` rows)."""

from __future__ import annotations

from enum import StrEnum
from typing import Any

from pydantic import field_validator

from pyarova.models._base import ArovaBaseModel, Timestamp


class TradeBias(StrEnum):
    LONG = "long"
    SHORT = "short"
    NEUTRAL = "neutral"


class Forecast(ArovaBaseModel):
    """A published forecast."""

    id: str
    forecast_type: str
    title: str | None = None
    currency_pair: str | None = None
    trade_bias: TradeBias | None = None
    description: str | None = None
    commentary: str | None = None
    image_url: str | None = None
    tags: list[str] | None = None
    created_at: Timestamp = None
    updated_at: Timestamp = None

    @field_validator("id", mode="before")
    @classmethod
    def _coerce_id(cls, value: Any) -> Any:
        if isinstance(value, int) and not isinstance(value, bool):
            return str(value)
        return value

    @field_validator("trade_bias", mode="before")
    @classmethod
    def _coerce_bias(cls, value: Any) -> TradeBias | None:
        if not isinstance(value, str):
            return None
        try:
            return TradeBias(value.strip().lower())
        except ValueError:
            return None
