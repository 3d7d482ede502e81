"""Data models for pyarova."""

from pyarova.models.forecast import Forecast, TradeBias
from pyarova.models.live_session import LiveSession
from pyarova.models.notification import Notification

__all__ = [
    "Forecast",
    "LiveSession",
    "Notification",
    "TradeBias",
]
