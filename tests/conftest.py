"""
Shared pytest fixtures for the session replication test suite.

Builders for small but realistic session states and a canned Gemini client.
"""

import pytest
from unittest.mock import AsyncMock, MagicMock

from models.assets import Asset
from models.characters import Character
from models.session import Player, initial_state


# ---------------------------------------------------------------------------
# Gemini Mock Helpers (reusable classes)
# ---------------------------------------------------------------------------

class MockGeminiResponse:
    """Simulates a Gemini response with .text property."""

    def __init__(self, text: str):
        self.text = text


class MockGeminiClient:
    """Mock Gemini client that returns canned text responses.

    Usage:
        client = MockGeminiClient(["response1", "response2"])
        resp = await client.aio.models.generate_content(model=..., contents=...)
        assert resp.text == "response1"
    """

    def __init__(self, responses=None):
        self._responses = responses or []
        self._call_count = 0
        self.calls = []

    @property
    def aio(self):
        return self

    @property
    def models(self):
        return self

    async def generate_content(self, **kwargs):
        self.calls.append(kwargs)
        if self._call_count < len(self._responses):
            resp = self._responses[self._call_count]
        else:
            resp = '{"error": "no more canned responses"}'
        self._call_count += 1
        if isinstance(resp, str):
            return MockGeminiResponse(resp)
        # Allow passing pre-built response objects
        return resp


# ---------------------------------------------------------------------------
# State builders
# ---------------------------------------------------------------------------

def make_state(players=("Amy", "Ben"), characters=(("hero", "Aria"),), assets=()):
    """Narrator + the given cast, roster and assets.

    Players get ids ``p-<name lowercased>``; assets are ``(id, type)`` pairs.
    """
    state = initial_state("Test Story")
    return state.model_copy(update={
        "players": [Player(id=f"p-{name.lower()}", name=name) for name in players],
        "characters": state.characters + [
            Character(id=cid, name=name, max_health=20, health=20) for cid, name in characters
        ],
        "assets": [
            Asset(id=aid, type=atype, url=f"https://img.example/{aid}.png", name=aid)
            for aid, atype in assets
        ],
    })


# ---------------------------------------------------------------------------
# Pytest fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def state():
    return make_state(assets=(("bg1", "background"), ("a1", "characterSprite"), ("a2", "characterSprite")))


@pytest.fixture
def mock_gemini_limiter():
    """AsyncMock for the rate limiter — patches acquire() as a no-op."""
    limiter = MagicMock()
    limiter.acquire = AsyncMock()
    return limiter


@pytest.fixture
def state_factory():
    """``make_state`` as a fixture, for tests that need a custom cast or roster."""
    return make_state


@pytest.fixture
def gemini_client():
    """Factory for ``MockGeminiClient``: ``gemini_client(["reply", ...])``."""
    return MockGeminiClient
