"""
Core layer test fixtures.

Core tests verify scheduling and wiring, so the monitoring services are
mocked.
"""
from unittest.mock import AsyncMock, MagicMock

import pytest

from signal_sentinel.core.scheduler import SchedulerConfig


# =============================================================================
# Database Fixtures
# =============================================================================


@pytest.fixture
def mock_db():
    """Mock database for unit tests."""
    db = AsyncMock()
    db.execute = AsyncMock(return_value="DELETE 0")
    db.fetch = AsyncMock(return_value=[])
    db.fetchrow = AsyncMock(return_value=None)
    db.fetchval = AsyncMock(return_value=None)
    return db


# =============================================================================
# Service Fixtures
# =============================================================================


@pytest.fixture
def mock_heartbeat_service():
    service = MagicMock()
    service.run = AsyncMock(return_value=MagicMock(rules_checked=3))
    return service


@pytest.fixture
def mock_ratio_service():
    service = MagicMock()
    service.check_all = AsyncMock(return_value=MagicMock(monitors_checked=1))
    return service


@pytest.fixture
def mock_cleanup_service():
    service = MagicMock()
    service.run = AsyncMock(return_value=MagicMock(total_deleted=0))
    return service


@pytest.fixture
def fast_config():
    """Short intervals for fast tests; cleanup only fires on its cron slot."""
    return SchedulerConfig(
        heartbeat_interval_seconds=0.05,
        ratio_check_interval_seconds=0,
        cleanup_cron="0 3 * * *",
        shutdown_timeout_seconds=1,
    )
