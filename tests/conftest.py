"""
Shared test helpers: fake clock, no-op sleep, settings and mock HTTP clients.
"""

import httpx
import pytest

from config import EbaySettings, Settings


class FakeClock:
    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class SleepRecorder:
    """Stands in for asyncio.sleep; records requested delays"""

    def __init__(self):
        self.delays = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


def make_settings(**ebay_fields) -> Settings:
    ebay = {"client_id": "test-client", "client_secret": "test-secret"}
    ebay.update(ebay_fields)
    settings = Settings(ebay=EbaySettings(**ebay))
    settings.enrichment.html_delay_range = (0.0, 0.0)
    return settings


def mock_client(handler) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def sleeper():
    return SleepRecorder()


@pytest.fixture
def settings():
    return make_settings()
