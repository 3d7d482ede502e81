"""User-facing notifications.

Message composition is deterministic: the same record payload always
yields the same :class:`~pyarova.models.notification.Notification`.
"""

from __future__ import annotations

import logging
from typing import Protocol

from pydantic import ValidationError

from pyarova._constants import FORECAST_NOTIFICATION_DURATION_MS, LIVE_SESSION_NOTIFICATION_DURATION_MS
from pyarova.models.forecast import Forecast, TradeBias
from pyarova.models.live_session import LiveSession
from pyarova.models.notification import Notification
from pyarova.state.events import ChangeKind, ChangeRecord, EntityKind

_logger = logging.getLogger(__name__)

_BIAS_EMOJI: dict[TradeBias | None, str] = {
    TradeBias.LONG: "📈",
    TradeBias.SHORT: "📉",
}


class NotificationSink(Protocol):
    """Delivery surface for notifications (toast, push, chat...)."""

    def present(self, notification: Notification) -> None: ...


class LoggingNotificationSink:
    """Sink that writes notifications to a logger."""

    def __init__(self, logger: logging.Logger | None = None) -> None:
        self._logger = logger or _logger

    def present(self, notification: Notification) -> None:
        self._logger.info("%s: %s", notification.title, notification.description)


def forecast_notification(forecast: Forecast) -> Notification:
    emoji = _BIAS_EMOJI.get(forecast.trade_bias, "➡️")
    bias = forecast.trade_bias.value.upper() if forecast.trade_bias is not None else "NEUTRAL"
    return Notification(
        title=f"{emoji} New Arova Forecast!",
        description=f"{forecast.currency_pair or 'Market'} - {bias} bias. {forecast.title or 'Check it out!'}",
        duration_ms=FORECAST_NOTIFICATION_DURATION_MS,
    )


def live_session_notification(session: LiveSession) -> Notification:
    if session.is_live:
        return Notification(
            title="🔴 We're live!",
            description=session.title or "Join the live room now.",
            duration_ms=LIVE_SESSION_NOTIFICATION_DURATION_MS,
        )
    if session.scheduled_start is not None:
        description = f"Next session: {session.scheduled_start:%Y-%m-%d %H:%M} UTC"
    else:
        description = "No live session right now."
    return Notification(
        title="Live session offline",
        description=description,
        duration_ms=LIVE_SESSION_NOTIFICATION_DURATION_MS,
    )


def compose_notification(record: ChangeRecord) -> Notification | None:
    """Build the notification for a record, or ``None`` if the change is not user-facing.

    Forecasts notify on insertion only; the live session notifies on every
    new state.  Deletions never notify.
    """
    if record.change_kind == ChangeKind.DELETED:
        return None
    try:
        if record.entity_kind == EntityKind.FORECAST:
            if record.change_kind != ChangeKind.INSERTED:
                return None
            return forecast_notification(Forecast.model_validate(record.payload))
        return live_session_notification(LiveSession.model_validate(record.payload))
    except ValidationError:
        _logger.debug("Cannot compose notification for %s %s", record.entity_kind, record.entity_id, exc_info=True)
        return None
