"""Shared fixtures for the client tests."""

from __future__ import annotations

from typing import Iterator

import pytest

from helpers import FakeTransport
from viewray.connections import ConnectionManager


@pytest.fixture
def transport() -> FakeTransport:
    return FakeTransport()


@pytest.fixture
def manager(transport: FakeTransport) -> Iterator[ConnectionManager]:
    manager = ConnectionManager(transport)
    manager.init()
    yield manager
    manager.shutdown()
