import pytest

# Import fixtures so they're available to all tests
from tests.fixtures.database import (
    test_engine,
    test_session_maker,
    test_session,
    test_settings,
    services,
    make_user,
    requester,
    counterpart,
)

from tests.fixtures.bot import (
    mock_bot,
    mock_state,
    registry,
)


# Configure pytest
def pytest_configure(config):
    config.addinivalue_line(
        "markers", "matchmaking: tests related to finding a counterpart"
    )
    config.addinivalue_line(
        "markers", "session_lifecycle: tests related to opening and closing chat sessions"
    )
    config.addinivalue_line(
        "markers", "reveal: tests related to the identity reveal handshake"
    )
    config.addinivalue_line(
        "markers", "bot: tests related to the Telegram handlers"
    )
