"""
Pytest configuration and shared fixtures.
"""

import pytest
import sys
from pathlib import Path

# Add src (package) and the project root (tests.mocks) to path for imports
PROJ_ROOT = Path(__file__).resolve().parent.parent
SRC_DIR = PROJ_ROOT / "src"
for path in (SRC_DIR, PROJ_ROOT):
    if str(path) not in sys.path:
        sys.path.insert(0, str(path))

from tests.mocks.factories import make_account, make_messages


@pytest.fixture
def account():
    """Account with a small seen-set and a short fetch timeout."""
    return make_account(seen_set_capacity=3, fetch_timeout_ms=500, interval_ms=50)


@pytest.fixture
def sample_candidates():
    """Three distinct candidates."""
    return make_messages("<a@example.com>", "<b@example.com>", "<c@example.com>")
