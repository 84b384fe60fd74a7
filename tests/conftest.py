"""Shared fixtures for the callfabric test suite."""

import asyncio
from types import SimpleNamespace

import httpx
import pytest

from callfabric.config import ClientSettings
from callfabric.dedupe import DedupeRegistry


class FakeTransport:
    """Records every dispatch and answers from a list of outcomes.

    Each outcome is a ``(status_code, json_body)`` tuple or an exception to
    raise. Outcomes are used in order; the last one repeats.
    """

    def __init__(self, *outcomes, delay: float = 0.0):
        self.outcomes = list(outcomes) or [(200, {"ok": True})]
        self.delay = delay
        self.calls = []

    async def __call__(self, url, request):
        self.calls.append(
            SimpleNamespace(
                url=url,
                method=request.method,
                headers=dict(request.headers or {}),
                body=request.body,
            )
        )
        outcome = self.outcomes[min(len(self.calls), len(self.outcomes)) - 1]
        if self.delay:
            await asyncio.sleep(self.delay)
        if isinstance(outcome, BaseException):
            raise outcome
        status_code, json_body = outcome
        return httpx.Response(
            status_code,
            json=json_body,
            request=httpx.Request(request.method or "GET", url),
        )


@pytest.fixture
def settings():
    """Fixture for ClientSettings without retry delays."""
    return ClientSettings(retry_delay=0.0)


@pytest.fixture
def registry():
    """Fixture for an isolated DedupeRegistry."""
    return DedupeRegistry()


@pytest.fixture
def fake_transport():
    """Fixture for a FakeTransport answering 200 with {"ok": true}."""
    return FakeTransport()


@pytest.fixture
def make_transport():
    """Fixture returning the FakeTransport class, for custom outcomes."""
    return FakeTransport
