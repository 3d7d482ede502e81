"""Change event normalization.

Converts raw push envelopes and polled rows into canonical
:class:`~pyarova.state.events.ChangeRecord` objects.  Malformed input never
propagates: it is logged and ``None`` is returned.
"""

from __future__ import annotations

import logging
from typing import Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError

from pyarova._constants import DEFAULT_FORECAST_TYPE
from pyarova._redact import redact_for_log
from pyarova.exceptions import MalformedPayloadError
from pyarova.models._base import ArovaBaseModel
from pyarova.models.forecast import Forecast
from pyarova.models.live_session import LiveSession
from pyarova.state.events import ChangeKind, ChangeRecord, ChangeSource, EntityKind

_logger = logging.getLogger(__name__)

_EVENT_TYPES: dict[str, ChangeKind] = {
    "INSERT": ChangeKind.INSERTED,
    "UPDATE": ChangeKind.UPDATED,
    "DELETE": ChangeKind.DELETED,
}

_MODELS: dict[EntityKind, type[ArovaBaseModel]] = {
    EntityKind.LIVE_SESSION: LiveSession,
    EntityKind.FORECAST: Forecast,
}


class _ChangeEnvelope(BaseModel):
    """Postgres-changes style envelope delivered by the push feed."""

    model_config = ConfigDict(extra="ignore", frozen=True)

    table: str
    event_type: str = Field(validation_alias=AliasChoices("eventType", "event_type", "type"))
    new: dict[str, Any] = Field(default_factory=dict, validation_alias=AliasChoices("new", "record"))
    old: dict[str, Any] = Field(default_factory=dict, validation_alias=AliasChoices("old", "old_record"))


def _parse_row(kind: EntityKind, row: Any) -> ArovaBaseModel:
    model_cls = _MODELS[kind]
    if isinstance(row, model_cls):
        return row
    if not isinstance(row, dict):
        raise MalformedPayloadError(f"{kind} row is not an object")
    try:
        return model_cls.model_validate(row)
    except ValidationError as exc:
        raise MalformedPayloadError(f"{kind} row failed validation: {exc.error_count()} error(s)") from exc


def _in_scope(kind: EntityKind, row: dict[str, Any], forecast_type: str) -> bool:
    if kind != EntityKind.FORECAST:
        return True
    value = row.get("forecast_type")
    # Delete envelopes may only carry the primary key.
    return value is None or value == forecast_type


def _record_from_model(
    kind: EntityKind,
    model: ArovaBaseModel,
    *,
    change_kind: ChangeKind,
    source: ChangeSource,
) -> ChangeRecord:
    return ChangeRecord(
        entity_kind=kind,
        entity_id=str(model.id),  # type: ignore[attr-defined]
        change_kind=change_kind,
        source=source,
        payload=model.payload(),
        version=getattr(model, "updated_at", None),
    )


def _normalize_envelope(
    raw: Any,
    *,
    forecast_type: str,
    expected_kind: EntityKind | None,
) -> ChangeRecord | None:
    if not isinstance(raw, dict):
        raise MalformedPayloadError("change payload is not an object")
    try:
        envelope = _ChangeEnvelope.model_validate(raw)
    except ValidationError as exc:
        raise MalformedPayloadError("change envelope failed validation") from exc

    kind = EntityKind.from_table(envelope.table)
    if kind is None or (expected_kind is not None and kind != expected_kind):
        _logger.debug("Ignoring change for out-of-scope table %s", envelope.table)
        return None

    change_kind = _EVENT_TYPES.get(envelope.event_type.strip().upper())
    if change_kind is None:
        raise MalformedPayloadError(f"unknown event type {envelope.event_type!r}")

    if change_kind == ChangeKind.DELETED:
        row = envelope.old
        entity_id = row.get("id")
        if entity_id is None or not str(entity_id).strip():
            raise MalformedPayloadError("delete envelope without primary key")
        if not _in_scope(kind, row, forecast_type):
            _logger.debug("Ignoring delete of out-of-scope %s %s", kind, entity_id)
            return None
        return ChangeRecord(
            entity_kind=kind,
            entity_id=str(entity_id),
            change_kind=change_kind,
            source=ChangeSource.PUSH,
            payload=dict(row),
        )

    if not _in_scope(kind, envelope.new, forecast_type):
        _logger.debug("Ignoring out-of-scope %s %s", kind, envelope.new.get("id"))
        return None
    model = _parse_row(kind, envelope.new)
    if kind == EntityKind.FORECAST and getattr(model, "forecast_type", None) != forecast_type:
        return None
    return _record_from_model(kind, model, change_kind=change_kind, source=ChangeSource.PUSH)


def normalize_push(
    raw: Any,
    *,
    forecast_type: str = DEFAULT_FORECAST_TYPE,
    expected_kind: EntityKind | None = None,
) -> ChangeRecord | None:
    """Normalize a push envelope.

    Returns ``None`` for malformed or out-of-scope payloads.  When
    *expected_kind* is given, envelopes for any other kind are out of scope.
    """
    try:
        return _normalize_envelope(raw, forecast_type=forecast_type, expected_kind=expected_kind)
    except (MalformedPayloadError, ValidationError) as exc:
        _logger.debug("Dropping malformed push payload (%s): %s", exc, redact_for_log(raw))
        return None


def normalize_snapshot(
    kind: EntityKind,
    row: Any,
    *,
    change_kind: ChangeKind = ChangeKind.UPDATED,
    source: ChangeSource = ChangeSource.POLL,
    forecast_type: str = DEFAULT_FORECAST_TYPE,
) -> ChangeRecord | None:
    """Normalize a fetched row (dict or already-parsed model) of *kind*."""
    try:
        model = _parse_row(kind, row)
        if kind == EntityKind.FORECAST and getattr(model, "forecast_type", None) != forecast_type:
            return None
        return _record_from_model(kind, model, change_kind=change_kind, source=source)
    except (MalformedPayloadError, ValidationError) as exc:
        _logger.debug("Dropping malformed %s snapshot (%s): %s", kind, exc, redact_for_log(row))
        return None


def normalize(
    raw: Any,
    *,
    source: ChangeSource,
    kind: EntityKind | None = None,
    forecast_type: str = DEFAULT_FORECAST_TYPE,
) -> ChangeRecord | None:
    """Normalize any transport payload.

    Push payloads are change envelopes; poll payloads are rows of *kind*
    (required for ``ChangeSource.POLL``).
    """
    if source == ChangeSource.PUSH:
        return normalize_push(raw, forecast_type=forecast_type, expected_kind=kind)
    if kind is None:
        raise ValueError("kind is required for polled payloads")
    return normalize_snapshot(kind, raw, source=source, forecast_type=forecast_type)
