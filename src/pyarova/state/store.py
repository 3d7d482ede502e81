"""Authoritative in-memory view.

This is the only component allowed to mutate the view.  Slices are
replaced wholesale, never partially merged, so the view is always either
the last known-good state or a clean replacement.
"""

from __future__ import annotations

import logging
from datetime import datetime

from pydantic import ValidationError

from pyarova.models.forecast import Forecast
from pyarova.models.live_session import LiveSession
from pyarova.state.events import ChangeKind, ChangeRecord, EntityKind
from pyarova.state.policy import should_accept_record

_logger = logging.getLogger(__name__)


class ViewStore:
    """Holds the live session snapshot and the known forecasts.

    Given the same sequence of records, the store produces the same view.
    """

    def __init__(self) -> None:
        self._live_session: LiveSession | None = None
        self._forecasts: dict[str, Forecast] = {}

    def _current_version(self, record: ChangeRecord) -> datetime | None:
        if record.entity_kind == EntityKind.LIVE_SESSION:
            return self._live_session.updated_at if self._live_session is not None else None
        forecast = self._forecasts.get(record.entity_id)
        return forecast.updated_at if forecast is not None else None

    def apply(self, record: ChangeRecord) -> bool:
        """Apply a record.  Returns ``False`` when it was rejected as stale or invalid."""
        if not should_accept_record(
            current_version=self._current_version(record),
            incoming_version=record.version,
        ):
            _logger.debug(
                "Dropping stale %s %s for %s (version %s)",
                record.source,
                record.change_kind,
                record.entity_kind,
                record.version,
            )
            return False

        if record.entity_kind == EntityKind.LIVE_SESSION:
            if record.change_kind == ChangeKind.DELETED:
                self._live_session = None
                return True
            try:
                self._live_session = LiveSession.model_validate(record.payload)
            except ValidationError:
                _logger.warning("Live session payload rejected by view", exc_info=True)
                return False
            return True

        if record.change_kind == ChangeKind.DELETED:
            self._forecasts.pop(record.entity_id, None)
            return True
        try:
            self._forecasts[record.entity_id] = Forecast.model_validate(record.payload)
        except ValidationError:
            _logger.warning("Forecast payload rejected by view", exc_info=True)
            return False
        return True

    @property
    def live_session(self) -> LiveSession | None:
        return self._live_session

    def get_forecast(self, forecast_id: str) -> Forecast | None:
        return self._forecasts.get(forecast_id)

    @property
    def forecasts(self) -> list[Forecast]:
        """Known forecasts, newest first."""
        return sorted(
            self._forecasts.values(),
            key=lambda forecast: (forecast.created_at is not None, forecast.created_at, forecast.id),
            reverse=True,
        )

    def clear(self) -> None:
        self._live_session = None
        self._forecasts.clear()
