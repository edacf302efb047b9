"""
Global pytest configuration and fixtures for RescueLink testing.
"""
import tempfile
from pathlib import Path

import pytest

from rescuelink.core.database import DatabaseManager


@pytest.fixture
def temp_dir():
    """Create a temporary directory for test files."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def database(temp_dir):
    """Fresh migrated database in a temporary directory."""
    db = DatabaseManager(str(temp_dir / "test.db"), max_connections=8)
    yield db
    db.close()
