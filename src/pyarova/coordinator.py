"""Synchronization coordinator.

Owns the authoritative view and the dedup cache.  The snapshot poller and
the push subscription manager are independent producers; both hand their
change records to a single consumer task through an ``asyncio.Queue``, so
every view mutation and dedup check-and-set happens at one serialized point.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import Callable, Sequence
from typing import Any

from pyarova._constants import FORECASTS_TABLE, LIVE_SESSION_TABLE
from pyarova.config import ArovaConfig
from pyarova.ingestion.poll import PollReconciler, SnapshotFetcher
from pyarova.ingestion.push import ChangeFeed, PushSubscriptionManager, SubscriptionHandle
from pyarova.models.forecast import Forecast
from pyarova.models.live_session import LiveSession
from pyarova.models.notification import Notification
from pyarova.notifications import LoggingNotificationSink, NotificationSink, compose_notification
from pyarova.state.dedup import DedupCache, dedup_key, dedup_payload
from pyarova.state.events import ChangeKind, ChangeRecord, EntityKind
from pyarova.state.store import ViewStore

_logger = logging.getLogger(__name__)

DEFAULT_TOPICS: tuple[str, ...] = (LIVE_SESSION_TABLE, FORECASTS_TABLE)


class SyncCoordinator:
    """Keep the live session and forecast view in sync and notify once per change.

    Usage::

        coordinator = SyncCoordinator(fetcher=fetcher, feed=feed, sink=sink)
        await coordinator.start()
        ...
        await coordinator.stop()

    A stopped coordinator is terminal; create a new one to sync again.
    """

    def __init__(
        self,
        *,
        fetcher: SnapshotFetcher,
        feed: ChangeFeed | None = None,
        sink: NotificationSink | None = None,
        config: ArovaConfig | None = None,
        topics: Sequence[str] = DEFAULT_TOPICS,
        on_error: Callable[[Exception], None] | None = None,
        on_new_forecast: Callable[[Forecast], None] | None = None,
    ) -> None:
        self._config = config or ArovaConfig()
        self._sink: NotificationSink = sink or LoggingNotificationSink()
        self._topics = tuple(topics)
        self._on_error = on_error
        self._on_new_forecast = on_new_forecast

        compare_fields = None
        if self._config.live_session_dedup_fields:
            compare_fields = {EntityKind.LIVE_SESSION: self._config.live_session_dedup_fields}
        self._dedup = DedupCache(capacity=self._config.dedup_capacity, compare_fields=compare_fields)
        self._view = ViewStore()
        self._queue: asyncio.Queue[ChangeRecord] = asyncio.Queue()

        self._poller = PollReconciler(
            kind=EntityKind.LIVE_SESSION,
            fetcher=fetcher,
            on_record=self._submit,
            interval=self._config.poll_interval,
            on_error=self._report,
        )
        self._push: PushSubscriptionManager | None = None
        if feed is not None:
            self._push = PushSubscriptionManager(
                feed=feed,
                on_record=self._submit,
                forecast_type=self._config.forecast_type,
                reconnect_initial_delay=self._config.reconnect_initial_delay,
                reconnect_max_delay=self._config.reconnect_max_delay,
                max_reconnect_attempts=self._config.max_reconnect_attempts,
                on_error=self._report,
            )

        self._consumer: asyncio.Task[None] | None = None
        self._opening: asyncio.Task[None] | None = None
        self._running = False
        self._stopped = False

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def __aenter__(self) -> SyncCoordinator:
        await self.start()
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self.stop()

    @property
    def is_running(self) -> bool:
        return self._running

    async def start(self) -> None:
        """Open push subscriptions and poll immediately.

        Returns without waiting for network round trips.  Calling it while
        running is a no-op.
        """
        if self._running:
            return
        if self._stopped:
            _logger.warning("SyncCoordinator.start() called after stop(); ignoring")
            return
        self._running = True
        loop = asyncio.get_running_loop()
        self._consumer = loop.create_task(self._consume())
        if self._push is not None and self._topics:
            self._opening = loop.create_task(self._open_subscriptions(self._push))
        self._poller.start()

    async def stop(self) -> None:
        """Tear down: poll timer, then subscriptions, then dedup cache, then view.

        Idempotent and safe without a prior :meth:`start`.  Nothing queued
        or delivered afterwards touches the view or notifies.
        """
        was_running = self._running
        self._running = False
        self._stopped = True
        if not was_running and self._consumer is None:
            return

        await self._poller.stop()

        opening = self._opening
        self._opening = None
        if opening is not None and not opening.done():
            opening.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await opening
        if self._push is not None:
            await self._push.close_all()

        consumer = self._consumer
        self._consumer = None
        if consumer is not None:
            consumer.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await consumer
        while not self._queue.empty():
            self._queue.get_nowait()
            self._queue.task_done()

        self._dedup.clear()
        self._view.clear()
        _logger.debug("SyncCoordinator stopped")

    async def _open_subscriptions(self, push: PushSubscriptionManager) -> None:
        for topic in self._topics:
            await push.open(topic)

    async def wait_idle(self) -> None:
        """Wait until subscriptions are opened, the in-flight poll finished, and queued records applied."""
        opening = self._opening
        if opening is not None and not opening.done():
            await asyncio.wait({opening})
        await self._poller.wait_idle()
        if self._running:
            await self._queue.join()

    async def refresh(self) -> bool:
        """Poll now.  Returns ``False`` if a poll is already in flight or the coordinator is not running."""
        return await self._poller.tick()

    # ------------------------------------------------------------------
    # View
    # ------------------------------------------------------------------

    def get_view(self) -> LiveSession | None:
        """Current live session snapshot, or ``None`` before the first observation."""
        return self._view.live_session

    @property
    def forecasts(self) -> list[Forecast]:
        return self._view.forecasts

    @property
    def subscriptions(self) -> list[SubscriptionHandle]:
        return self._push.handles if self._push is not None else []

    @property
    def dedup_cache(self) -> DedupCache:
        return self._dedup

    # ------------------------------------------------------------------
    # Serialized mutation point
    # ------------------------------------------------------------------

    def _submit(self, record: ChangeRecord) -> None:
        if not self._running:
            _logger.debug("Dropping %s record for %s received while stopped", record.source, record.entity_kind)
            return
        self._queue.put_nowait(record)

    async def _consume(self) -> None:
        while True:
            record = await self._queue.get()
            try:
                self._apply(record)
            except Exception:
                _logger.exception("Failed to apply %s record for %s", record.source, record.entity_kind)
            finally:
                self._queue.task_done()

    def _apply(self, record: ChangeRecord) -> None:
        if not self._running:
            return
        applied = self._view.apply(record)
        if record.change_kind == ChangeKind.DELETED and record.entity_kind.is_singleton:
            # The next state after a deletion is new even if it matches the old one.
            self._dedup.discard(dedup_key(record))
            return
        is_new_forecast = record.entity_kind == EntityKind.FORECAST and record.change_kind == ChangeKind.INSERTED
        # A forecast insert rejected as stale still alerts: its update overtook it.
        if not applied and not is_new_forecast:
            return
        notification = compose_notification(record)
        if notification is None:
            return
        # Check-and-set with no await in between: concurrent deliveries of
        # one change cannot both pass.
        if not self._dedup.should_notify(dedup_key(record), dedup_payload(record)):
            _logger.debug("Suppressing duplicate %s %s from %s", record.entity_kind, record.entity_id, record.source)
            return
        self._present(notification)
        if is_new_forecast and self._on_new_forecast is not None:
            self._notify_new_forecast(self._on_new_forecast, record)

    def _notify_new_forecast(self, callback: Callable[[Forecast], None], record: ChangeRecord) -> None:
        forecast = self._view.get_forecast(record.entity_id) or Forecast.model_validate(record.payload)
        try:
            callback(forecast)
        except Exception:
            _logger.debug("on_new_forecast callback failed", exc_info=True)

    def _present(self, notification: Notification) -> None:
        try:
            self._sink.present(notification)
        except Exception:
            _logger.warning("Notification sink failed", exc_info=True)

    def _report(self, exc: Exception) -> None:
        if self._on_error is None:
            return
        try:
            self._on_error(exc)
        except Exception:
            _logger.debug("on_error hook failed", exc_info=True)
