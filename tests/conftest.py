"""
Root conftest.py - Global configuration for all test layers.

Test Layers:
    - component/: Component tests (mocked store and product catalog)
    - unit/     : Unit tests (pure functions, no I/O)
"""
import os
import sys

import pytest

# Add project root to path
PROJECT_ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
sys.path.insert(0, PROJECT_ROOT)

os.environ.setdefault("ENV", "testing")


def pytest_configure(config):
    """Register markers shared by every layer"""
    config.addinivalue_line("markers", "unit: marks tests as unit tests")
    config.addinivalue_line("markers", "component: marks tests as component tests")
    config.addinivalue_line("markers", "slow: marks tests as slow")


@pytest.fixture(scope="session")
def project_root() -> str:
    return PROJECT_ROOT
