from __future__ import annotations

import asyncio
import time

import pytest

from _fakes import FakeFetcher, RecordingSink, live_row, until
from pyarova._mqtt import MqttChangeFeed, MqttRuntime, build_topic, decode_change_payload
from pyarova.config import ArovaConfig
from pyarova.coordinator import SyncCoordinator
from pyarova.exceptions import MalformedPayloadError


def test_build_topic_joins_prefix_and_table() -> None:
    assert build_topic(ArovaConfig(), "forecasts") == "arova/changes/forecasts"
    assert build_topic(ArovaConfig(mqtt_topic_prefix="/realtime/"), "forecasts") == "realtime/forecasts"
    assert build_topic(ArovaConfig(mqtt_topic_prefix=""), "live_stream_config") == "live_stream_config"


def test_decode_change_payload() -> None:
    assert decode_change_payload(b'{"table": "forecasts", "eventType": "INSERT"}') == {
        "table": "forecasts",
        "eventType": "INSERT",
    }


@pytest.mark.parametrize("payload", [b"\xff\xfe", b"{not json", b"[1, 2]", b'"text"'])
def test_decode_change_payload_rejects_malformed(payload: bytes) -> None:
    with pytest.raises(MalformedPayloadError):
        decode_change_payload(payload)


def test_feed_targets_follow_config() -> None:
    config = ArovaConfig(
        mqtt_host="broker.example.com",
        mqtt_port=1883,
        mqtt_tls=False,
        mqtt_username="listener",
        mqtt_password="secret",
        mqtt_keepalive=30,
    )
    feed = MqttChangeFeed(config)

    target = feed._target("forecasts")  # type: ignore[attr-defined]

    assert target.host == "broker.example.com"
    assert target.port == 1883
    assert target.topic == "arova/changes/forecasts"
    assert target.tls is False
    assert target.username == "listener"
    assert target.keepalive == 30


class _SlowRuntime:
    """Replaces the blocking broker connect with a sleep and records lifecycle calls."""

    def __init__(self) -> None:
        self.started: list[str] = []
        self.stopped: list[str] = []

    def start(self, runtime: MqttRuntime) -> None:
        time.sleep(0.2)
        self.started.append(runtime.topic)

    def stop(self, runtime: MqttRuntime) -> None:
        self.stopped.append(runtime.topic)


@pytest.fixture
def slow_runtime(monkeypatch: pytest.MonkeyPatch) -> _SlowRuntime:
    recorder = _SlowRuntime()
    monkeypatch.setattr(MqttRuntime, "start", lambda self: recorder.start(self))
    monkeypatch.setattr(MqttRuntime, "stop", lambda self: recorder.stop(self))
    return recorder


@pytest.mark.asyncio
async def test_cancelled_subscribe_stops_runtime_once_connected(slow_runtime: _SlowRuntime) -> None:
    feed = MqttChangeFeed(ArovaConfig(mqtt_tls=False))

    task = asyncio.create_task(feed.subscribe("forecasts", lambda raw: None, lambda exc: None))
    await asyncio.sleep(0.05)
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task

    await until(lambda: len(slow_runtime.stopped) == 1)
    assert slow_runtime.started == ["arova/changes/forecasts"]
    assert slow_runtime.stopped == ["arova/changes/forecasts"]


@pytest.mark.asyncio
async def test_coordinator_stop_during_subscribe_leaves_no_runtime(slow_runtime: _SlowRuntime) -> None:
    coordinator = SyncCoordinator(
        fetcher=FakeFetcher(live_row()),
        feed=MqttChangeFeed(ArovaConfig(mqtt_tls=False)),
        sink=RecordingSink(),
        config=ArovaConfig(poll_interval=3600.0),
    )

    await coordinator.start()
    await asyncio.sleep(0.05)
    await coordinator.stop()

    await until(lambda: len(slow_runtime.started) == 1 and len(slow_runtime.stopped) == 1)
    await asyncio.sleep(0.25)
    assert len(slow_runtime.started) == len(slow_runtime.stopped) == 1
