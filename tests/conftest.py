"""Global pytest configuration and fixtures."""

# Standard library imports
import logging
from collections.abc import Generator

# Third-party imports
import pytest

# Local imports
from niorm.infrastructure.config import reset_config
from tests.helpers import Clock, RecordingExecutor


@pytest.fixture
def executor() -> RecordingExecutor:
    """Provides a recording executor with no canned rows."""
    return RecordingExecutor()


@pytest.fixture
def clock() -> Clock:
    """Provides a fixed clock."""
    return Clock()


@pytest.fixture(autouse=True)
def reset_niorm_state() -> Generator[None, None, None]:
    """Reset the cached configuration and the niorm logger around each test."""
    reset_config()
    logger = logging.getLogger("niorm")
    handlers, level, propagate = logger.handlers[:], logger.level, logger.propagate
    yield
    reset_config()
    for handler in logger.handlers[:]:
        logger.removeHandler(handler)
        handler.close()
    for handler in handlers:
        logger.addHandler(handler)
    logger.setLevel(level)
    logger.propagate = propagate
