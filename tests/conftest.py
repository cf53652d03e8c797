"""
This file contains shared fixtures for all tests.
"""
import logging
from unittest.mock import AsyncMock, MagicMock

import pytest

from cassandra_operator.operator.datacenter.store import KubernetesStore
from cassandra_operator.operator.sidecar.client import NodeControlProxy
from tests.helpers import FakeSession


@pytest.fixture
def logger() -> logging.Logger:
    return logging.getLogger("tests")


@pytest.fixture
def fake_session() -> FakeSession:
    return FakeSession()


@pytest.fixture
def mock_store() -> AsyncMock:
    """A KubernetesStore whose every coroutine is an AsyncMock."""
    store = AsyncMock(spec=KubernetesStore)
    store.read_secret_data.return_value = {}
    store.apply_service.return_value = False
    return store


@pytest.fixture
def mock_proxy() -> AsyncMock:
    return AsyncMock(spec=NodeControlProxy)


@pytest.fixture
def mock_cache() -> MagicMock:
    cache = MagicMock()
    cache.get = AsyncMock(return_value=[])
    return cache
