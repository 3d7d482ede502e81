"""pyarova - Async realtime sync for the Arova live session and forecast alerts."""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("pyarova")
except PackageNotFoundError:
    __version__ = "0+local"
from pyarova.client import ArovaClient
from pyarova.config import ArovaConfig
from pyarova.coordinator import SyncCoordinator
from pyarova.exceptions import (
    ArovaConfigError,
    ArovaError,
    ArovaTransportError,
    MalformedPayloadError,
    SubscriptionLostError,
    TransportError,
)
from pyarova.ingestion.normalize import normalize
from pyarova.ingestion.poll import PollReconciler
from pyarova.ingestion.push import PushSubscriptionManager, SubscriptionHandle, SubscriptionState
from pyarova.models import Forecast, LiveSession, Notification, TradeBias
from pyarova.notifications import LoggingNotificationSink, NotificationSink
from pyarova.state.dedup import DedupCache, DedupKey
from pyarova.state.events import ChangeKind, ChangeRecord, ChangeSource, EntityKind

__all__ = [
    "__version__",
    "ArovaClient",
    "ArovaConfig",
    "ArovaConfigError",
    "ArovaError",
    "ArovaTransportError",
    "ChangeKind",
    "ChangeRecord",
    "ChangeSource",
    "DedupCache",
    "DedupKey",
    "EntityKind",
    "Forecast",
    "LiveSession",
    "LoggingNotificationSink",
    "MalformedPayloadError",
    "Notification",
    "NotificationSink",
    "PollReconciler",
    "PushSubscriptionManager",
    "SubscriptionHandle",
    "SubscriptionLostError",
    "SubscriptionState",
    "SyncCoordinator",
    "TradeBias",
    "TransportError",
    "normalize",
]
