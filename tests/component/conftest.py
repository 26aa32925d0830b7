"""
Component Test Layer Configuration

Structure:
    tests/component/
    └── order_service/   Service, repository and reporting with mocked I/O

Usage:
    pytest tests/component -v
    pytest tests/component/order_service -v
"""
import os
import sys

# Set testing environment BEFORE any imports
os.environ["ENV"] = "testing"
os.environ["ENVIRONMENT"] = "testing"

# Add project root
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.dirname(os.path.abspath(__file__)))))


# =============================================================================
# Pytest Configuration
# =============================================================================

def pytest_configure(config):
    """Configure custom markers"""
    config.addinivalue_line(
        "markers", "component: marks tests as component tests"
    )
