"""
Root conftest to ensure proper import paths.

This file exists at the project root so that the project directory is on
Python's sys.path before pytest starts collecting tests (``chorus`` and the
shared ``tests.chorus.fakes`` helpers are imported from there).
"""

import sys
from pathlib import Path
from unittest.mock import MagicMock

import pytest
import structlog

# Ensure project root is in Python path
project_root = Path(__file__).parent
if str(project_root) not in sys.path:
    sys.path.insert(0, str(project_root))


@pytest.fixture(autouse=True)
def _reset_structlog():
    """Undo any structlog configuration a test applied (the CLI configures it)."""
    yield
    structlog.reset_defaults()


@pytest.fixture
def mock_logger():
    """Create a mock logger conforming to the structlog bound-logger API.

    The logger supports:
    - bind(**kwargs) -> logger (returns itself with context)
    - debug/info/warning/error/exception methods
    """
    logger = MagicMock()
    logger.bind.return_value = logger
    return logger
