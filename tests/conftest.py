"""
Pytest configuration and shared fixtures.
"""

import logging
import os

import pytest


@pytest.fixture(autouse=True, scope="function")
def reset_auth_module():
    """
    Reset auth module state before each test.

    Tests run with API_AUTH_ENABLED=false unless they set it explicitly.
    """
    original_auth_enabled = os.environ.get("API_AUTH_ENABLED")
    original_api_key = os.environ.get("API_KEY")
    original_api_keys = os.environ.pop("API_KEYS", None)

    os.environ["API_AUTH_ENABLED"] = "false"

    yield

    if original_auth_enabled is not None:
        os.environ["API_AUTH_ENABLED"] = original_auth_enabled
    elif "API_AUTH_ENABLED" in os.environ:
        del os.environ["API_AUTH_ENABLED"]

    if original_api_key is not None:
        os.environ["API_KEY"] = original_api_key
    elif "API_KEY" in os.environ:
        del os.environ["API_KEY"]

    if original_api_keys is not None:
        os.environ["API_KEYS"] = original_api_keys
    else:
        os.environ.pop("API_KEYS", None)

    import importlib
    import sys
    import src.api.dependencies.auth as auth_module
    importlib.reload(auth_module)

    # The app binds the auth dependency at import time
    if "src.api.main" in sys.modules:
        importlib.reload(sys.modules["src.api.main"])


@pytest.fixture(autouse=True)
def reset_package_logger():
    """Undo setup_logging so caplog sees package records."""
    yield
    logger = logging.getLogger("src")
    for handler in logger.handlers:
        handler.close()
    logger.handlers.clear()
    logger.propagate = True
    logger.setLevel(logging.NOTSET)
