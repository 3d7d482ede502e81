"""MQTT change-feed runtime (remote subscribe contract).

The backend bridges table changes onto MQTT topics
``<mqtt_topic_prefix>/<table>`` as JSON change envelopes.  paho-mqtt runs its
network loop on its own thread; payloads and connection losses are handed
to the asyncio loop with ``call_soon_threadsafe``.
"""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, cast

import paho.mqtt.client as mqtt

from pyarova._redact import redact_for_log
from pyarova.config import ArovaConfig
from pyarova.exceptions import ArovaTransportError, MalformedPayloadError, SubscriptionLostError


@dataclass(frozen=True)
class MqttTarget:
    """Broker connection details for one subscription."""

    host: str
    port: int
    topic: str
    username: str | None = None
    password: str | None = None
    tls: bool = True
    keepalive: int = 60


def build_topic(config: ArovaConfig, table: str) -> str:
    prefix = config.mqtt_topic_prefix.strip().strip("/")
    return f"{prefix}/{table}" if prefix else table


def decode_change_payload(payload: bytes) -> dict[str, Any]:
    """Decode MQTT payload bytes into a JSON object."""
    try:
        parsed = json.loads(payload.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise MalformedPayloadError("MQTT payload is not valid UTF-8 JSON") from exc
    if not isinstance(parsed, dict):
        raise MalformedPayloadError("MQTT payload decoded to non-object JSON")
    return parsed


class MqttRuntime:
    """Threaded paho-mqtt client for one topic, emitting onto an asyncio loop."""

    def __init__(
        self,
        *,
        loop: asyncio.AbstractEventLoop,
        target: MqttTarget,
        on_payload: Callable[[dict[str, Any]], None],
        on_lost: Callable[[Exception], None],
        logger: logging.Logger | None = None,
    ) -> None:
        self._loop = loop
        self._target = target
        self._on_payload = on_payload
        self._on_lost = on_lost
        self._logger = logger or logging.getLogger(__name__)
        self._client: mqtt.Client | None = None
        self._running = False

    @property
    def is_running(self) -> bool:
        """Whether the broker connection is up or being established."""
        return self._running

    @property
    def topic(self) -> str:
        return self._target.topic

    def _emit_lost(self, message: str) -> None:
        if not self._running:
            return
        exc = SubscriptionLostError(message, topic=self._target.topic)
        self._loop.call_soon_threadsafe(self._on_lost, exc)

    def start(self) -> None:
        """Connect and subscribe.  Blocking; run it in an executor."""
        self.stop()
        target = self._target
        self._logger.debug(
            "MQTT runtime start requested host=%s port=%s topic=%s",
            target.host,
            target.port,
            target.topic,
        )

        client = mqtt.Client(
            callback_api_version=cast(Any, mqtt).CallbackAPIVersion.VERSION2,
            protocol=mqtt.MQTTv5,
        )
        client.enable_logger(self._logger)
        if target.username:
            client.username_pw_set(target.username, target.password)
        if target.tls:
            client.tls_set()

        def on_connect(
            c: mqtt.Client,
            _userdata: Any,
            _flags: Any,
            reason_code: Any,
            _properties: Any,
        ) -> None:
            if reason_code.value != 0:
                self._logger.warning("Change feed connect refused topic=%s: %s", target.topic, reason_code)
                self._emit_lost(f"connect refused: {reason_code}")
                return
            self._logger.debug("MQTT connected, subscribing topic=%s", target.topic)
            c.subscribe(target.topic, qos=1)

        def on_message(_c: mqtt.Client, _userdata: Any, msg: mqtt.MQTTMessage) -> None:
            try:
                parsed = decode_change_payload(msg.payload)
            except MalformedPayloadError:
                self._logger.debug("MQTT payload parse failure topic=%s", msg.topic, exc_info=True)
                return
            self._logger.debug("Received PUBLISH topic=%s parsed=%s", msg.topic, redact_for_log(parsed))
            self._loop.call_soon_threadsafe(self._on_payload, parsed)

        def on_disconnect(
            _client: mqtt.Client,
            _userdata: Any,
            _disconnect_flags: Any,
            reason_code: Any,
            _properties: Any,
        ) -> None:
            self._logger.debug("Change feed disconnected topic=%s: %s", target.topic, reason_code)
            self._emit_lost(f"disconnected: {reason_code}")

        client.on_connect = on_connect
        client.on_message = on_message
        client.on_disconnect = on_disconnect

        self._running = True
        try:
            client.connect(target.host, target.port, keepalive=target.keepalive)
        except (OSError, ValueError) as exc:
            self._running = False
            raise ArovaTransportError(f"MQTT connect to {target.host}:{target.port} failed: {exc}") from exc
        client.loop_start()

        self._client = client
        self._logger.debug("Change feed loop started topic=%s", target.topic)

    def stop(self) -> None:
        """Stop and disconnect the client if running."""
        client = self._client
        self._client = None
        was_running = self._running
        self._running = False

        if client is None:
            return
        try:
            if was_running:
                self._logger.debug("Change feed disconnect topic=%s", self._target.topic)
                client.disconnect()
        finally:
            client.loop_stop()
            self._logger.debug("Change feed loop stopped topic=%s", self._target.topic)


class MqttChangeFeed:
    """:class:`~pyarova.ingestion.push.ChangeFeed` over MQTT, one runtime per topic."""

    def __init__(self, config: ArovaConfig, *, logger: logging.Logger | None = None) -> None:
        self._config = config
        self._logger = logger or logging.getLogger(__name__)

    def _target(self, table: str) -> MqttTarget:
        return MqttTarget(
            host=self._config.mqtt_host,
            port=self._config.mqtt_port,
            topic=build_topic(self._config, table),
            username=self._config.mqtt_username,
            password=self._config.mqtt_password,
            tls=self._config.mqtt_tls,
            keepalive=self._config.mqtt_keepalive,
        )

    async def subscribe(
        self,
        topic: str,
        on_payload: Callable[[Any], None],
        on_error: Callable[[Exception], None],
    ) -> MqttRuntime:
        loop = asyncio.get_running_loop()
        runtime = MqttRuntime(
            loop=loop,
            target=self._target(topic),
            on_payload=on_payload,
            on_lost=on_error,
            logger=self._logger,
        )
        started = loop.run_in_executor(None, runtime.start)
        try:
            await asyncio.shield(started)
        except asyncio.CancelledError:
            # The worker thread cannot be interrupted; stop the runtime once it is up.
            started.add_done_callback(lambda future: self._stop_abandoned(loop, runtime, future))
            raise
        return runtime

    def _stop_abandoned(
        self,
        loop: asyncio.AbstractEventLoop,
        runtime: MqttRuntime,
        future: asyncio.Future[None],
    ) -> None:
        if future.cancelled() or future.exception() is not None:
            return
        self._logger.debug("Stopping change feed runtime abandoned mid-subscribe topic=%s", runtime.topic)
        loop.run_in_executor(None, runtime.stop)

    async def unsubscribe(self, handle: MqttRuntime) -> None:
        await asyncio.get_running_loop().run_in_executor(None, handle.stop)
