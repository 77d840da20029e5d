"""Unit test fixtures."""

from __future__ import annotations

import pytest

from fakes import FakeEventStore


@pytest.fixture
def store() -> FakeEventStore:
    return FakeEventStore()
