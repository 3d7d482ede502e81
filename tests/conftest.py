from __future__ import annotations

import pytest

from _fakes import FakeFeed, RecordingSink


@pytest.fixture
def sink() -> RecordingSink:
    return RecordingSink()


@pytest.fixture
def feed() -> FakeFeed:
    return FakeFeed()
