from __future__ import annotations

import itertools

import pytest

from _fakes import FakeFeed, change, forecast_row, live_row, until
from pyarova.exceptions import ArovaTransportError, SubscriptionLostError
from pyarova.ingestion.push import PushSubscriptionManager, SubscriptionState
from pyarova.state.events import ChangeKind, ChangeRecord, EntityKind


def _manager(
    feed: FakeFeed,
    records: list[ChangeRecord],
    errors: list[Exception] | None = None,
    **kwargs: object,
) -> PushSubscriptionManager:
    ticks = itertools.count(1)
    kwargs.setdefault("reconnect_initial_delay", 0.001)
    kwargs.setdefault("reconnect_max_delay", 0.004)
    return PushSubscriptionManager(
        feed=feed,
        on_record=records.append,
        clock=lambda: float(next(ticks)),
        on_error=errors.append if errors is not None else None,
        **kwargs,  # type: ignore[arg-type]
    )


def _lost(topic: str) -> SubscriptionLostError:
    return SubscriptionLostError("connection dropped", topic=topic)


@pytest.mark.asyncio
async def test_open_subscribes_and_reports_open(feed: FakeFeed) -> None:
    manager = _manager(feed, [])

    handle = await manager.open("forecasts")

    assert handle.state == SubscriptionState.OPEN
    assert handle.is_live is True
    assert handle.kind == EntityKind.FORECAST
    assert handle.last_activity == 1.0
    assert [sub.topic for sub in feed.subscriptions] == ["forecasts"]
    assert manager.handles == [handle]


@pytest.mark.asyncio
async def test_open_is_idempotent_per_topic(feed: FakeFeed) -> None:
    manager = _manager(feed, [])

    first = await manager.open("forecasts")
    second = await manager.open("forecasts")

    assert first is second
    assert len(feed.subscriptions) == 1


@pytest.mark.asyncio
async def test_open_unknown_topic_raises(feed: FakeFeed) -> None:
    manager = _manager(feed, [])

    with pytest.raises(ValueError):
        await manager.open("journal_entries")


@pytest.mark.asyncio
async def test_delivery_is_normalized_and_updates_activity(feed: FakeFeed) -> None:
    records: list[ChangeRecord] = []
    manager = _manager(feed, records)
    handle = await manager.open("forecasts")

    feed.emit("forecasts", change("forecasts", "INSERT", new=forecast_row()))

    assert len(records) == 1
    assert records[0].change_kind == ChangeKind.INSERTED
    assert records[0].entity_id == "f1"
    assert handle.last_activity == 2.0


@pytest.mark.asyncio
async def test_malformed_and_out_of_scope_deliveries_are_dropped(feed: FakeFeed) -> None:
    records: list[ChangeRecord] = []
    errors: list[Exception] = []
    manager = _manager(feed, records, errors)
    handle = await manager.open("forecasts")

    feed.emit("forecasts", "{not json")
    feed.emit("forecasts", {"eventType": "INSERT"})
    feed.emit("forecasts", change("forecasts", "INSERT", new=forecast_row(forecast_type="community")))
    feed.emit("forecasts", change("live_stream_config", "UPDATE", new=live_row()))

    assert records == []
    assert errors == []
    assert handle.is_live is True


@pytest.mark.asyncio
async def test_lost_subscription_reconnects_with_same_handle(feed: FakeFeed) -> None:
    records: list[ChangeRecord] = []
    errors: list[Exception] = []
    manager = _manager(feed, records, errors)
    handle = await manager.open("live_stream_config")
    original = feed.latest("live_stream_config")

    original.on_error(_lost("live_stream_config"))
    assert handle.state == SubscriptionState.LOST
    assert len(errors) == 1

    await until(lambda: handle.is_live)

    assert manager.handles == [handle]
    assert len(feed.subscriptions) == 2
    assert original in feed.unsubscribed
    assert handle.reconnect_attempts == 0

    # The replaced channel no longer reaches the caller.
    original.on_payload(change("live_stream_config", "UPDATE", new=live_row(is_live=True)))
    assert records == []
    feed.emit("live_stream_config", change("live_stream_config", "UPDATE", new=live_row(is_live=True)))
    assert len(records) == 1


@pytest.mark.asyncio
async def test_repeated_loss_signals_report_once(feed: FakeFeed) -> None:
    errors: list[Exception] = []
    manager = _manager(feed, [], errors, reconnect_initial_delay=10.0, reconnect_max_delay=10.0)
    handle = await manager.open("forecasts")
    sub = feed.latest("forecasts")

    sub.on_error(_lost("forecasts"))
    sub.on_error(_lost("forecasts"))

    assert len(errors) == 1
    assert handle.reconnecting is True
    await manager.close(handle)


@pytest.mark.asyncio
async def test_subscribe_failure_on_open_is_retried(feed: FakeFeed) -> None:
    errors: list[Exception] = []
    feed.fail_subscribes = 2
    manager = _manager(feed, [], errors)

    handle = await manager.open("forecasts")
    assert handle.state == SubscriptionState.LOST

    await until(lambda: handle.is_live)

    assert len(feed.subscriptions) == 1
    assert len(errors) == 2
    assert all(isinstance(exc, ArovaTransportError) for exc in errors)


@pytest.mark.asyncio
async def test_gives_up_after_max_reconnect_attempts(feed: FakeFeed) -> None:
    feed.fail_subscribes = 10
    manager = _manager(feed, [], max_reconnect_attempts=2)

    handle = await manager.open("forecasts")
    await until(lambda: not handle.reconnecting)

    assert handle.state == SubscriptionState.LOST
    assert handle.reconnect_attempts == 2
    assert feed.subscriptions == []
    assert feed.fail_subscribes == 7


def test_backoff_is_exponential_and_capped() -> None:
    manager = PushSubscriptionManager(
        feed=FakeFeed(),
        on_record=lambda record: None,
        reconnect_initial_delay=1.0,
        reconnect_max_delay=8.0,
    )

    assert [manager.backoff_delay(attempt) for attempt in range(6)] == [1.0, 2.0, 4.0, 8.0, 8.0, 8.0]


@pytest.mark.asyncio
async def test_close_is_idempotent_and_drops_later_deliveries(feed: FakeFeed) -> None:
    records: list[ChangeRecord] = []
    manager = _manager(feed, records)
    handle = await manager.open("forecasts")
    sub = feed.latest("forecasts")

    await manager.close(handle)
    await manager.close(handle)

    assert handle.state == SubscriptionState.CLOSED
    assert feed.unsubscribed == [sub]
    assert manager.handles == []

    sub.on_payload(change("forecasts", "INSERT", new=forecast_row()))
    sub.on_error(_lost("forecasts"))
    assert records == []
    assert handle.state == SubscriptionState.CLOSED


@pytest.mark.asyncio
async def test_close_after_transport_failure_is_safe(feed: FakeFeed) -> None:
    feed.fail_subscribes = 100
    manager = _manager(feed, [], reconnect_initial_delay=10.0, reconnect_max_delay=10.0)
    handle = await manager.open("forecasts")
    assert handle.reconnecting is True

    await manager.close(handle)

    assert handle.is_closed is True
    assert handle.reconnecting is False
    assert feed.unsubscribed == []


@pytest.mark.asyncio
async def test_unsubscribe_error_does_not_escape_close(feed: FakeFeed) -> None:
    manager = _manager(feed, [])
    handle = await manager.open("forecasts")
    feed.fail_unsubscribe = True

    await manager.close(handle)

    assert handle.is_closed is True


@pytest.mark.asyncio
async def test_reopen_after_close_creates_fresh_handle(feed: FakeFeed) -> None:
    manager = _manager(feed, [])
    first = await manager.open("forecasts")
    await manager.close(first)

    second = await manager.open("forecasts")

    assert second is not first
    assert second.is_live is True
    assert len(feed.subscriptions) == 2


@pytest.mark.asyncio
async def test_close_all_closes_every_topic(feed: FakeFeed) -> None:
    manager = _manager(feed, [])
    forecasts = await manager.open("forecasts")
    live = await manager.open("live_stream_config")

    await manager.close_all()

    assert forecasts.is_closed and live.is_closed
    assert len(feed.unsubscribed) == 2
