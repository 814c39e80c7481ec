"""
Pytest configuration for strategy engine tests.

Sets up paths for imports and resets the cached engine config between tests
that point STRATEGY_ENGINE_CONFIG somewhere else.
"""

import sys
import os

import pytest

# Add project root to path for imports
# Go up from tests/ -> strategy/ -> lib/ -> project root
project_root = os.path.dirname(os.path.dirname(os.path.dirname(os.path.dirname(os.path.abspath(__file__)))))
if project_root not in sys.path:
    sys.path.insert(0, project_root)


@pytest.fixture
def fresh_config():
    """Clear the cached engine config before and after the test."""
    from lib.strategy.config import get_engine_config

    get_engine_config.cache_clear()
    yield get_engine_config
    get_engine_config.cache_clear()
