"""Shared fixtures."""

from __future__ import annotations

import pytest

from fakes import FakeAppsApi


@pytest.fixture()
def fake_apps() -> FakeAppsApi:
    """An empty in-memory apps/v1 API."""
    return FakeAppsApi()
