"""Push subscription management.

One logical subscription per topic (table).  Each subscription is an
explicit state machine::

    connecting -> open -> (lost -> reconnecting -> open) | closed

A lost subscription is re-established with capped exponential backoff.
The caller keeps the same :class:`SubscriptionHandle` throughout.
Deliveries from a replaced or closed underlying subscription are dropped.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any, Protocol

from pyarova._constants import DEFAULT_FORECAST_TYPE
from pyarova.ingestion.normalize import normalize_push
from pyarova.state.events import ChangeRecord, EntityKind

_logger = logging.getLogger(__name__)


class ChangeFeed(Protocol):
    """Remote subscribe contract.

    Delivery is at-least-once and not ordered across topics.  ``on_error``
    is called when the underlying channel drops.
    """

    async def subscribe(
        self,
        topic: str,
        on_payload: Callable[[Any], None],
        on_error: Callable[[Exception], None],
    ) -> Any: ...

    async def unsubscribe(self, handle: Any) -> None: ...


class SubscriptionState(StrEnum):
    CONNECTING = "connecting"
    OPEN = "open"
    LOST = "lost"
    RECONNECTING = "reconnecting"
    CLOSED = "closed"


@dataclass(eq=False)
class SubscriptionHandle:
    """One open push channel, as seen by the coordinator."""

    topic: str
    kind: EntityKind
    state: SubscriptionState = SubscriptionState.CONNECTING
    last_activity: float | None = None
    reconnect_attempts: int = 0
    _feed_handle: Any = field(default=None, repr=False)
    _generation: int = field(default=0, repr=False)
    _reconnect_task: asyncio.Task[None] | None = field(default=None, repr=False)

    @property
    def is_live(self) -> bool:
        return self.state == SubscriptionState.OPEN

    @property
    def is_closed(self) -> bool:
        return self.state == SubscriptionState.CLOSED

    @property
    def reconnecting(self) -> bool:
        return self._reconnect_task is not None and not self._reconnect_task.done()


class PushSubscriptionManager:
    """Open, maintain, and close push subscriptions.

    Every delivered payload is normalized before it reaches ``on_record``;
    malformed or out-of-scope payloads are dropped here.
    """

    def __init__(
        self,
        *,
        feed: ChangeFeed,
        on_record: Callable[[ChangeRecord], None],
        forecast_type: str = DEFAULT_FORECAST_TYPE,
        reconnect_initial_delay: float = 1.0,
        reconnect_max_delay: float = 60.0,
        max_reconnect_attempts: int = 0,
        clock: Callable[[], float] = time.monotonic,
        on_error: Callable[[Exception], None] | None = None,
    ) -> None:
        self._feed = feed
        self._on_record = on_record
        self._forecast_type = forecast_type
        self._reconnect_initial_delay = reconnect_initial_delay
        self._reconnect_max_delay = reconnect_max_delay
        self._max_reconnect_attempts = max_reconnect_attempts
        self._clock = clock
        self._on_error = on_error
        self._handles: dict[str, SubscriptionHandle] = {}

    @property
    def handles(self) -> list[SubscriptionHandle]:
        return list(self._handles.values())

    def backoff_delay(self, attempt: int) -> float:
        """Delay before resubscribe attempt number *attempt* (0-based)."""
        return min(self._reconnect_initial_delay * (2**attempt), self._reconnect_max_delay)

    async def open(self, topic: str) -> SubscriptionHandle:
        """Open (or return the existing) subscription for *topic*.

        Never raises for transport failures: a subscription that cannot be
        established right away is retried in the background.
        """
        kind = EntityKind.from_table(topic)
        if kind is None:
            raise ValueError(f"unknown topic {topic!r}")

        existing = self._handles.get(topic)
        if existing is not None and not existing.is_closed:
            return existing

        handle = SubscriptionHandle(topic=topic, kind=kind)
        self._handles[topic] = handle
        if not await self._subscribe(handle):
            self._schedule_reconnect(handle)
        return handle

    async def close(self, handle: SubscriptionHandle) -> None:
        """Close a subscription.  Idempotent, safe after a transport failure."""
        if handle.is_closed:
            return
        handle.state = SubscriptionState.CLOSED
        handle._generation += 1
        if self._handles.get(handle.topic) is handle:
            self._handles.pop(handle.topic, None)

        task = handle._reconnect_task
        handle._reconnect_task = None
        if task is not None and not task.done():
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task

        feed_handle = handle._feed_handle
        handle._feed_handle = None
        if feed_handle is not None:
            await self._safe_unsubscribe(feed_handle)
        _logger.debug("Subscription to %s closed", handle.topic)

    async def close_all(self) -> None:
        for handle in list(self._handles.values()):
            await self.close(handle)

    def _report(self, exc: Exception) -> None:
        if self._on_error is None:
            return
        try:
            self._on_error(exc)
        except Exception:
            _logger.debug("on_error hook failed", exc_info=True)

    async def _safe_unsubscribe(self, feed_handle: Any) -> None:
        try:
            await self._feed.unsubscribe(feed_handle)
        except Exception:
            _logger.debug("Unsubscribe failed", exc_info=True)

    async def _subscribe(self, handle: SubscriptionHandle) -> bool:
        handle._generation += 1
        generation = handle._generation

        def on_payload(raw: Any) -> None:
            self._deliver(handle, generation, raw)

        def on_error(exc: Exception) -> None:
            self._lost(handle, generation, exc)

        try:
            feed_handle = await self._feed.subscribe(handle.topic, on_payload, on_error)
        except Exception as exc:
            _logger.warning("Subscribing to %s failed: %s", handle.topic, exc)
            self._report(exc)
            if not handle.is_closed:
                handle.state = SubscriptionState.LOST
            return False

        if handle.is_closed or generation != handle._generation:
            await self._safe_unsubscribe(feed_handle)
            return False

        handle._feed_handle = feed_handle
        if handle.state == SubscriptionState.LOST:
            # Dropped again before subscribe returned; the reconnect loop retries.
            return False

        handle.state = SubscriptionState.OPEN
        handle.reconnect_attempts = 0
        handle.last_activity = self._clock()
        _logger.debug("Subscribed to %s", handle.topic)
        return True

    def _deliver(self, handle: SubscriptionHandle, generation: int, raw: Any) -> None:
        if handle.is_closed or generation != handle._generation:
            _logger.debug("Dropping delivery from stale %s subscription", handle.topic)
            return
        handle.last_activity = self._clock()
        record = normalize_push(raw, forecast_type=self._forecast_type, expected_kind=handle.kind)
        if record is None:
            return
        self._on_record(record)

    def _lost(self, handle: SubscriptionHandle, generation: int, exc: Exception) -> None:
        if handle.is_closed or generation != handle._generation:
            return
        if handle.state != SubscriptionState.LOST:
            _logger.warning("Subscription to %s lost: %s", handle.topic, exc)
            self._report(exc)
        handle.state = SubscriptionState.LOST
        self._schedule_reconnect(handle)

    def _schedule_reconnect(self, handle: SubscriptionHandle) -> None:
        if handle.is_closed or handle.reconnecting:
            return
        handle._reconnect_task = asyncio.get_running_loop().create_task(self._reconnect(handle))

    async def _reconnect(self, handle: SubscriptionHandle) -> None:
        while not handle.is_closed:
            if self._max_reconnect_attempts and handle.reconnect_attempts >= self._max_reconnect_attempts:
                _logger.error(
                    "Giving up on %s after %d resubscribe attempts",
                    handle.topic,
                    handle.reconnect_attempts,
                )
                handle.state = SubscriptionState.LOST
                return

            delay = self.backoff_delay(handle.reconnect_attempts)
            handle.state = SubscriptionState.RECONNECTING
            stale = handle._feed_handle
            handle._feed_handle = None
            if stale is not None:
                await self._safe_unsubscribe(stale)

            await asyncio.sleep(delay)
            if handle.is_closed:
                return

            handle.reconnect_attempts += 1
            _logger.debug("Resubscribing to %s (attempt %d)", handle.topic, handle.reconnect_attempts)
            if await self._subscribe(handle):
                _logger.info("Resubscribed to %s", handle.topic)
                return
