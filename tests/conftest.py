import pytest
import structlog


@pytest.fixture(autouse=True)
def _reset_structlog():
    # configure_logging binds the current stderr; later tests must not inherit it
    yield
    structlog.reset_defaults()
