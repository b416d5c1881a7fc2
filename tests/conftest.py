"""Shared fixtures: a controllable clock, stores and a fake HTTP session."""

import json
from unittest.mock import Mock

import pytest

from cache import MemoryStore
from config import Credentials, LoadedConfig


class FakeClock:
    """Epoch seconds that only move when a test says so."""

    def __init__(self, start: float = 1_760_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


def make_response(status_code: int = 200, payload=None, text: str = None):
    """Mock requests.Response with a JSON body."""
    response = Mock()
    response.status_code = status_code
    if payload is None:
        response.content = b""
        response.text = text or ""
        response.json.side_effect = ValueError("no body")
    else:
        body = json.dumps(payload)
        response.content = body.encode()
        response.text = body
        response.json.return_value = payload
    return response


TOKEN_PAYLOAD = {"access_token": "test_token_123", "expires_in": 1799}


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store(clock):
    return MemoryStore(clock=clock)


@pytest.fixture
def credentials():
    return Credentials(key="test_api_key", secret="test_api_secret", environment="test")


@pytest.fixture
def config(credentials):
    return LoadedConfig(
        credentials=credentials,
        currency_code="USD",
        booking_page_url="https://example.com/booking",
        hotel_search_enabled=True,
        nonce_secret="nonce-secret-for-tests",
    )


@pytest.fixture
def session():
    """Fake requests.Session: token POSTs succeed, API calls return {"data": []}."""
    s = Mock()
    s.headers = {}
    s.post.return_value = make_response(200, TOKEN_PAYLOAD)
    s.request.return_value = make_response(200, {"data": []})
    return s
