"""Shared fixtures for the reminders test suite."""

from __future__ import annotations

import pytest

from tests._fakes import FakeGateway, FakePlatform


@pytest.fixture
def gateway() -> FakeGateway:
    return FakeGateway()


@pytest.fixture
def platform() -> FakePlatform:
    return FakePlatform()
