"""Pytest configuration and fixtures."""

import pytest
from unittest.mock import AsyncMock, MagicMock

import config as config_module
from config import DefaultConnection
from fakes import FakeContext, FakeRabbitClient
from plugins.registry import reset_registry


@pytest.fixture(autouse=True)
def _reset_globals():
    """Keep process-wide config and registry singletons out of other tests."""
    config_module.reset_config()
    reset_registry()
    yield
    config_module.reset_config()
    reset_registry()


@pytest.fixture
def mock_pool():
    """Create a mock asyncpg pool."""
    pool = AsyncMock()
    pool.acquire = MagicMock()
    return pool


@pytest.fixture
def mock_connection():
    """Create a mock asyncpg connection."""
    conn = AsyncMock()
    return conn


@pytest.fixture
def rabbit():
    """An empty in-memory broker."""
    return FakeRabbitClient()


@pytest.fixture
def ctx():
    """An empty in-memory reconciler context."""
    return FakeContext()


@pytest.fixture
def defaults():
    """Connection defaults pointing at a local broker."""
    return DefaultConnection(
        scheme="http",
        host="rabbit.local",
        port=15672,
        username="admin",
        password="adminpass",
    )


@pytest.fixture
def sample_resource():
    """Sample RabbitVhost resource as stored."""
    return {
        "id": 1,
        "kind": "RabbitVhost",
        "namespace": "default",
        "name": "testing",
        "spec": {"vhostName": "testing"},
        "spec_hash": "abc123",
        "conditions": [],
        "finalizers": ["rabbitmq-operator"],
        "owner_id": None,
        "status": "pending",
        "status_message": None,
        "generation": 1,
        "observed_generation": 0,
        "retry_count": 0,
        "last_reconcile_time": None,
        "next_reconcile_time": None,
    }
