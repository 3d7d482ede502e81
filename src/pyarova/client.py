"""High-level async client for the Arova backend."""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Any

import aiohttp

from pyarova._api.roles import check_role, has_role
from pyarova._api.snapshots import RestSnapshotFetcher, fetch_live_session
from pyarova._mqtt import MqttChangeFeed
from pyarova._transport import RestTransport
from pyarova.config import ArovaConfig
from pyarova.coordinator import SyncCoordinator
from pyarova.exceptions import ArovaError
from pyarova.models.forecast import Forecast
from pyarova.models.live_session import LiveSession
from pyarova.notifications import NotificationSink

_logger = logging.getLogger(__name__)


class ArovaClient:
    """Async client wiring the REST backend, the MQTT change feed, and the coordinator.

    Usage::

        async with ArovaClient(config, sink=my_sink) as client:
            await client.start_sync()
            view = client.coordinator.get_view()
    """

    def __init__(
        self,
        config: ArovaConfig,
        *,
        session: aiohttp.ClientSession | None = None,
        sink: NotificationSink | None = None,
        on_error: Callable[[Exception], None] | None = None,
        on_new_forecast: Callable[[Forecast], None] | None = None,
    ) -> None:
        self._config = config
        self._external_session = session is not None
        self._http_session = session
        self._sink = sink
        self._on_error = on_error
        self._on_new_forecast = on_new_forecast
        self._transport: RestTransport | None = None
        self._coordinator: SyncCoordinator | None = None

    # ------------------------------------------------------------------
    # Context manager lifecycle
    # ------------------------------------------------------------------

    async def __aenter__(self) -> ArovaClient:
        if self._http_session is None:
            self._http_session = aiohttp.ClientSession()
        self._transport = RestTransport(self._config, self._http_session)
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self.stop_sync()
        if not self._external_session and self._http_session is not None:
            await self._http_session.close()
            self._http_session = None
        self._transport = None

    def _require_transport(self) -> RestTransport:
        if self._transport is None:
            raise ArovaError("Client not initialized. Use 'async with ArovaClient(...) as client:'")
        return self._transport

    # ------------------------------------------------------------------
    # Sync
    # ------------------------------------------------------------------

    @property
    def coordinator(self) -> SyncCoordinator:
        if self._coordinator is None:
            raise ArovaError("Sync not started. Call 'await client.start_sync()' first")
        return self._coordinator

    async def start_sync(self) -> SyncCoordinator:
        """Start (or return the running) sync coordinator."""
        if self._coordinator is not None and self._coordinator.is_running:
            return self._coordinator
        transport = self._require_transport()
        feed = MqttChangeFeed(self._config) if self._config.mqtt_enabled else None
        coordinator = SyncCoordinator(
            fetcher=RestSnapshotFetcher(transport),
            feed=feed,
            sink=self._sink,
            config=self._config,
            on_error=self._on_error,
            on_new_forecast=self._on_new_forecast,
        )
        await coordinator.start()
        self._coordinator = coordinator
        return coordinator

    async def stop_sync(self) -> None:
        coordinator = self._coordinator
        if coordinator is not None:
            await coordinator.stop()
            _logger.debug("Sync stopped")

    # ------------------------------------------------------------------
    # Direct reads
    # ------------------------------------------------------------------

    async def get_live_session(self) -> LiveSession:
        """Fetch the live session snapshot once, bypassing the sync view."""
        return await fetch_live_session(self._require_transport())

    async def has_role(self, user_id: str, role: str) -> bool:
        """Raw role check; raises on transport failure."""
        return await has_role(self._require_transport(), user_id, role)

    async def check_role(self, user_id: str | None, role: str = "admin") -> bool:
        """Role guard: ``False`` on denial or any failure."""
        return await check_role(self._require_transport(), user_id, role)
