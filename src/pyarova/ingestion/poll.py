"""Snapshot polling ingestion.

This module owns the fixed-cadence poll loop for a singleton entity.  Each
tick fetches the full current snapshot and diffs it against the last one;
only a real transition produces a change record.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import Protocol

from pyarova.exceptions import ArovaTransportError
from pyarova.ingestion.normalize import normalize_snapshot
from pyarova.models.live_session import LiveSession
from pyarova.state.events import ChangeKind, ChangeRecord, ChangeSource, EntityKind

_logger = logging.getLogger(__name__)


class SnapshotFetcher(Protocol):
    """Remote fetch contract.

    Implementations raise :class:`~pyarova.exceptions.ArovaTransportError`
    on network or parse failure.
    """

    async def fetch_snapshot(self, kind: EntityKind) -> LiveSession: ...


@dataclass
class PollCycleState:
    """Last fetched snapshot (``None`` before the first success) and the timer task."""

    last: LiveSession | None = None
    timer: asyncio.Task[None] | None = None


class PollReconciler:
    """Periodically fetch a snapshot and report state transitions.

    At most one fetch is in flight.  A tick that fires while a fetch is
    outstanding is dropped, not queued.
    """

    def __init__(
        self,
        *,
        kind: EntityKind,
        fetcher: SnapshotFetcher,
        on_record: Callable[[ChangeRecord], None],
        interval: float = 30.0,
        on_error: Callable[[Exception], None] | None = None,
    ) -> None:
        if interval <= 0:
            raise ValueError("interval must be positive")
        self._kind = kind
        self._fetcher = fetcher
        self._on_record = on_record
        self._interval = interval
        self._on_error = on_error
        self._state = PollCycleState()
        self._inflight: asyncio.Task[None] | None = None
        self._running = False

    @property
    def kind(self) -> EntityKind:
        return self._kind

    @property
    def last(self) -> LiveSession | None:
        return self._state.last

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def fetch_in_flight(self) -> bool:
        return self._inflight is not None and not self._inflight.done()

    def start(self) -> None:
        """Poll immediately, then every ``interval`` seconds."""
        if self._running:
            return
        self._running = True
        self.trigger()
        self._state.timer = asyncio.get_running_loop().create_task(self._run_timer())

    async def stop(self) -> None:
        """Cancel the timer and any in-flight fetch.  No tick fires after this returns."""
        self._running = False
        tasks = [task for task in (self._state.timer, self._inflight) if task is not None]
        self._state = PollCycleState()
        self._inflight = None
        for task in tasks:
            task.cancel()
        for task in tasks:
            with contextlib.suppress(asyncio.CancelledError):
                await task

    async def _run_timer(self) -> None:
        while True:
            await asyncio.sleep(self._interval)
            self.trigger()

    def trigger(self) -> asyncio.Task[None] | None:
        """Start a fetch unless one is outstanding.  Returns the fetch task, or ``None`` if skipped."""
        if not self._running:
            return None
        if self.fetch_in_flight:
            _logger.debug("Skipping %s poll tick; previous fetch still in flight", self._kind)
            return None
        task = asyncio.get_running_loop().create_task(self._fetch_once())
        self._inflight = task
        return task

    async def tick(self) -> bool:
        """Run one poll tick to completion.  Returns ``False`` if the tick was skipped."""
        task = self.trigger()
        if task is None:
            return False
        await task
        return True

    async def wait_idle(self) -> None:
        """Wait for the in-flight fetch, if any, to finish."""
        task = self._inflight
        if task is not None and not task.done():
            await asyncio.wait({task})

    def _report(self, exc: Exception) -> None:
        if self._on_error is None:
            return
        try:
            self._on_error(exc)
        except Exception:
            _logger.debug("on_error hook failed", exc_info=True)

    async def _fetch_once(self) -> None:
        try:
            snapshot = await self._fetcher.fetch_snapshot(self._kind)
        except ArovaTransportError as exc:
            # Keep the last snapshot; the next tick retries.
            _logger.warning("%s poll failed: %s", self._kind, exc)
            self._report(exc)
            return
        except Exception as exc:
            _logger.exception("%s poll failed unexpectedly", self._kind)
            self._report(exc)
            return

        if not self._running:
            _logger.debug("Discarding %s snapshot fetched after stop", self._kind)
            return

        last = self._state.last
        if last is not None and last.comparison_key() == snapshot.comparison_key():
            return

        record = normalize_snapshot(
            self._kind,
            snapshot,
            change_kind=ChangeKind.UPDATED,
            source=ChangeSource.POLL,
        )
        if record is None:
            return
        self._state.last = snapshot
        self._on_record(record)
