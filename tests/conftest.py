"""Pytest configuration and fixtures for route_mocker tests."""

import asyncio
from pathlib import Path
from typing import AsyncGenerator, Callable, Dict, List, Optional, Tuple, Union

import pytest

from route_mocker.core.config.settings import LoggingConfig, MockingConfig
from route_mocker.core.events.event_bus import NetworkEventBus
from route_mocker.core.interception.page import PageInterceptor
from route_mocker.core.interception.session import InterceptionSession
from route_mocker.core.models.http import AbortReason, CapturedRequest, Headers, ResponseDescriptor
from route_mocker.utils.logging import configure_logging

BASE_URL = "https://app.test"


class FakeTransport:
    """Scripted ``NetworkTransport`` standing in for the real network.

    Responses are keyed by ``(method, url)``; unknown requests get a 200
    JSON echo of the request. ``delay`` suspends every send.
    """

    def __init__(self, delay: float = 0.0):
        self.routes: Dict[Tuple[str, str], Union[ResponseDescriptor, Callable]] = {}
        self.sent: List[CapturedRequest] = []
        self.timeouts: List[Optional[float]] = []
        self.delay = delay

    def add(self, method: str, url: str, status: int = 200,
            headers=None, body: bytes = b"") -> ResponseDescriptor:
        response = ResponseDescriptor(
            status=status, headers=Headers(headers), body=body, from_real_fetch=True, url=url
        )
        self.routes[(method.upper(), url)] = response
        return response

    def fail(self, method: str, url: str, reason: AbortReason) -> None:
        self.routes[(method.upper(), url)] = ResponseDescriptor.failure(reason, url)

    async def send(self, request: CapturedRequest, *, timeout: Optional[float] = None) -> ResponseDescriptor:
        self.sent.append(request)
        self.timeouts.append(timeout)
        if self.delay:
            await asyncio.sleep(self.delay)

        scripted = self.routes.get((request.method, request.url))
        if callable(scripted):
            return scripted(request)
        if scripted is not None:
            return scripted
        return ResponseDescriptor(
            status=200,
            headers=Headers([("Content-Type", "application/json"), ("X-Real", "1")]),
            body=b'{"echo":"%s %s"}' % (request.method.encode(), request.url.encode()),
            from_real_fetch=True,
            url=request.url,
            status_text="OK",
        )


def build_request(method: str = "GET", path: str = "/api/items", body=None,
                  headers=None, base_url: str = BASE_URL) -> CapturedRequest:
    """Build a captured request for ``base_url + path``."""
    url = path if "://" in path else base_url + path
    if headers is None and body is not None and not isinstance(body, (bytes, str)):
        headers = {"Content-Type": "application/json"}
    return CapturedRequest(method=method, url=url, headers=Headers(headers), body=body)


@pytest.fixture
def test_config() -> MockingConfig:
    """Create a test configuration."""
    config = MockingConfig()

    # Override with test-specific values
    config.interception.base_url = BASE_URL
    config.fetch.timeout = 5.0
    config.events.wait_timeout = 2.0
    config.events.history_size = 100
    config.logging.level = "DEBUG"

    return config


@pytest.fixture
def fake_transport() -> FakeTransport:
    return FakeTransport()


@pytest.fixture
async def session(test_config: MockingConfig,
                  fake_transport: FakeTransport) -> AsyncGenerator[InterceptionSession, None]:
    """Create a started interception session on the fake network."""
    interception_session = InterceptionSession(test_config, transport=fake_transport, context_id="ctx-test")
    await interception_session.start()
    yield interception_session
    await interception_session.close()


@pytest.fixture
async def page(session: InterceptionSession) -> PageInterceptor:
    """Open a page in the test session."""
    return await session.new_page("page-1")


@pytest.fixture
async def event_bus() -> AsyncGenerator[NetworkEventBus, None]:
    """Create a started network event bus."""
    bus = NetworkEventBus(history_size=50)
    await bus.start()
    yield bus
    await bus.stop()


@pytest.fixture(autouse=True)
def setup_test_logging():
    """Set up logging for tests."""
    configure_logging(LoggingConfig(
        level="DEBUG",
        format="simple",
        redact_sensitive_data=False,  # Disable for easier testing
    ))


@pytest.fixture
def temp_test_dir(tmp_path: Path) -> Path:
    """Create a temporary directory for test files."""
    test_dir = tmp_path / "routemock_test"
    test_dir.mkdir(parents=True, exist_ok=True)
    return test_dir


class AsyncContextManager:
    """Helper class for creating async context managers in tests."""

    def __init__(self, return_value=None):
        self.return_value = return_value

    async def __aenter__(self):
        return self.return_value

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        pass


@pytest.fixture
def async_context_manager():
    """Factory for creating async context managers."""
    return AsyncContextManager


@pytest.fixture
def make_request():
    """Factory for captured requests against the test base URL."""
    return build_request
