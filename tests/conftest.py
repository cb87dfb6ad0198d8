"""Shared pytest configuration and fixtures for provider gateway tests."""

import os

import pytest

# Import HTTP mocking fixtures from fixtures module
pytest_plugins = ["tests.fixtures.mock_http"]

TEST_SECRET = "test-gateway-secret"
TEST_GATEWAY_KEY = "gw-test-key"
TEST_USER = "user-1"

_MANAGED_ENV = (
    "GATEWAY_SECRET",
    "GATEWAY_API_KEYS",
    "ACCOUNTS_FILE",
    "DISABLED_MODELS",
    "MAX_ACCOUNT_RETRIES",
    "FAILURE_POLICY",
    "TOKEN_REFRESH_INTERVAL_SECONDS",
    "LOG_REQUEST_METRICS",
    "SYNC_MODEL_CATALOGS",
    "IFLOW_CLIENT_SECRET",
)


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line("markers", "unit: marks tests as unit tests (fast, no external deps)")
    config.addinivalue_line(
        "markers", "integration: marks tests as integration tests (requires services)"
    )


def pytest_collection_modifyitems(config, items):
    """Add markers to tests based on their location."""
    for item in items:
        if "tests/integration/" in str(item.fspath):
            item.add_marker(pytest.mark.integration)
        else:
            item.add_marker(pytest.mark.unit)


@pytest.fixture(scope="function", autouse=True)
def setup_test_environment():
    """Give every test a known, file-free configuration.

    Provider calls never leave the process: RESPX mocks all HTTP requests.
    """
    original_env = {key: os.environ.get(key) for key in _MANAGED_ENV}
    try:
        for key in _MANAGED_ENV:
            os.environ.pop(key, None)
        os.environ.update(
            {
                "GATEWAY_SECRET": TEST_SECRET,
                "GATEWAY_API_KEYS": f"{TEST_GATEWAY_KEY}={TEST_USER}",
                "TOKEN_REFRESH_INTERVAL_SECONDS": "0",
                "IFLOW_CLIENT_SECRET": "iflow-test-secret",
            }
        )

        from gateway.core.config import Config

        Config.reset_singleton()
        yield
    finally:
        for key, value in original_env.items():
            if value is None:
                os.environ.pop(key, None)
            else:
                os.environ[key] = value


@pytest.fixture
def clock():
    """Controllable clock: call it for the time, set ``.now`` to move it."""

    class FakeClock:
        def __init__(self) -> None:
            self.now = 1_700_000_000.0

        def __call__(self) -> float:
            return self.now

        def advance(self, seconds: float) -> None:
            self.now += seconds

    return FakeClock()
