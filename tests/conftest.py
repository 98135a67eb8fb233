"""Shared fixtures for the chatrelay test suite."""

from __future__ import annotations

import pytest

from chatrelay.config import RelayConfig
from chatrelay.runtime.catalog import ModelCatalog


class FakeClock:
    """Manually advanced clock for TTL and window tests."""

    def __init__(self, start: float = 1_700_000_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def relay_config():
    """Config with every provider credential set and fast retries."""
    return RelayConfig.model_validate(
        {
            "hosted": {"token": "gh-test-token", "endpoint": "https://hosted.test/inference"},
            "groq": {"api_key": "groq-test-key"},
            "gemini": {"api_key": "gemini-test-key", "api_url": "https://gemini.test/v1beta/models"},
            "transport": {"max_retries": 2, "retry_delay_ms": 0, "max_retry_delay_ms": 0},
            "storage": {"db_path": ":memory:"},
        }
    )


@pytest.fixture
def catalog():
    return ModelCatalog()
