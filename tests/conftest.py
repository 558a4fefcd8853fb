"""
pytest configuration for telemetry ETL tests.

Adds src directory to Python path for imports and provides shared fixtures.
"""

import sys
from pathlib import Path

import pytest

# Add src directory to Python path
src_dir = Path(__file__).parent.parent / "src"
if str(src_dir) not in sys.path:
    sys.path.insert(0, str(src_dir))

from config.config import reset_config  # noqa: E402
from core.logging.context import clear_log_context  # noqa: E402
from core.logging.message_context import clear_message_context  # noqa: E402


@pytest.fixture(autouse=True)
def reset_global_state():
    """Reset config singleton and logging context between tests."""
    reset_config()
    clear_log_context()
    clear_message_context()
    yield
    reset_config()
    clear_log_context()
    clear_message_context()
