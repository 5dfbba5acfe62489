"""
Global pytest configuration and fixtures for strata tests

Provides:
- Test markers
- Temporary migration stores
- SQLite target databases under tmp_path
"""

import pytest

from strata.database import TargetDatabase
from strata.migrations.store import MigrationStore


# ============================================================================
# Pytest Configuration
# ============================================================================

def pytest_configure(config):
    """Configure pytest with custom settings"""
    config.addinivalue_line("markers", "unit: Unit tests")
    config.addinivalue_line("markers", "integration: Integration tests")


# ============================================================================
# Store and target fixtures
# ============================================================================

@pytest.fixture
def store(tmp_path):
    """Empty migration store in a temporary directory"""
    return MigrationStore(tmp_path / "migrations")


@pytest.fixture
def target(tmp_path):
    """SQLite target database file, disposed after the test"""
    database = TargetDatabase(tmp_path / "target.db")
    yield database
    database.dispose()
