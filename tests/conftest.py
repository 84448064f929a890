import pytest

from fakes import FakeSessionFactory, MockWebSocket


@pytest.fixture
def mock_websocket():
    """Fixture providing a mock downstream WebSocket."""
    return MockWebSocket()


@pytest.fixture
def session_factory():
    """Fixture providing a factory of ready fake upstream sessions."""
    return FakeSessionFactory()
