"""Pytest configuration and shared fixtures.

Organization:
    - Environment Fixtures: isolate settings from the developer's shell
    - Consul Fixtures: in-memory agent, client and discovery facade

Tests never talk to a real Consul agent; every HTTP request is answered by
MockConsulAgent through httpx.MockTransport.
"""

from __future__ import annotations

import os
from collections.abc import AsyncGenerator

import pytest

from consul_discovery.core.settings import ConsulSettings, clear_all_caches
from consul_discovery.infra.discovery import ConsulClient, ConsulServiceDiscovery, MockConsulAgent

# ============================================================================
# Environment Fixtures
# ============================================================================


@pytest.fixture(autouse=True)
def isolated_env(monkeypatch, tmp_path):
    """Drop CONSUL_* and LOG_* variables and any local .env file.

    Settings loaders are cached, so caches are cleared before and after each
    test.
    """
    for name in list(os.environ):
        if name.startswith(("CONSUL_", "LOG_")):
            monkeypatch.delenv(name, raising=False)
    monkeypatch.chdir(tmp_path)

    clear_all_caches()
    yield
    clear_all_caches()


# ============================================================================
# Consul Fixtures
# ============================================================================


@pytest.fixture
def consul_settings() -> ConsulSettings:
    """Settings pointing at the default local agent, with a fast retry interval."""
    return ConsulSettings(watch_wait="1s", watch_retry_interval=0.0)


@pytest.fixture
def agent() -> MockConsulAgent:
    """Fresh in-memory Consul agent."""
    return MockConsulAgent()


@pytest.fixture
async def consul(agent: MockConsulAgent, consul_settings: ConsulSettings) -> AsyncGenerator[ConsulClient]:
    """ConsulClient wired to the in-memory agent.

    Example:
        async def test_register(agent, consul):
            await consul.agent.register_service(Service(id="web-1", name="web"))
            assert "web-1" in agent.services
    """
    async with ConsulClient(consul_settings, transport=agent.transport()) as client:
        yield client


@pytest.fixture
async def discovery(consul: ConsulClient) -> AsyncGenerator[ConsulServiceDiscovery]:
    """Discovery facade over the in-memory agent, closed after the test."""
    async with ConsulServiceDiscovery(consul) as facade:
        yield facade
