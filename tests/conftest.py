"""Shared test fixtures for all test modules."""

from collections.abc import Callable
from typing import Any

import httpx
import pytest

from snapcraft_exporter.config import Settings
from snapcraft_exporter.registry import MetricRegistry
from tests.helpers import StubTransport


@pytest.fixture
def registry() -> MetricRegistry:
    """Registry for a single-snap deployment, no entity label."""
    return MetricRegistry()


@pytest.fixture
def entity_registry() -> MetricRegistry:
    """Registry that labels every sample with its snap id."""
    return MetricRegistry(entity_label='snap_id')


@pytest.fixture
def stub_transport() -> StubTransport:
    """Transport answering every pair with an empty response."""
    return StubTransport()


@pytest.fixture
def make_settings() -> Callable[..., Settings]:
    """Factory for settings isolated from any local .env file."""

    def _make(**overrides: Any) -> Settings:
        values: dict[str, Any] = {
            'SNAP_IDS': 'foo',
            'TRANSPORT': 'cli',
        }
        values.update(overrides)
        return Settings(_env_file=None, **values)

    return _make


@pytest.fixture
def asgi_test_client():
    """Factory fixture that creates an httpx.AsyncClient for an ASGI app.

    Usage:
        async def test_something(asgi_test_client):
            async with asgi_test_client(app) as client:
                response = await client.get('/metrics')
    """

    def _get_client(app):
        return httpx.AsyncClient(
            transport=httpx.ASGITransport(app=app), base_url='http://test'
        )

    return _get_client
