"""Shared test fixtures."""
from __future__ import annotations

import asyncio
import json
from collections.abc import Awaitable, Callable
from datetime import datetime, timezone
from typing import Any

import httpx
import pytest

from kairos.core.types import Build, BuildSpec, CallbackSpec, ObjectMeta
from kairos.store.memory import InMemoryStore

FIXED_NOW = datetime(2026, 10, 19, 12, 0, 0, tzinfo=timezone.utc)


def fixed_clock() -> datetime:
    return FIXED_NOW


def make_spec(
    *,
    callback_url: str | None = None,
    auth_token: str | None = None,
    **overrides: Any,
) -> BuildSpec:
    fields: dict[str, Any] = {
        "context_url": "https://git.example.com/team/app.git",
        "output_image": "registry.example.com/team/app:1.0",
    }
    fields.update(overrides)
    if callback_url is not None:
        fields["callback"] = CallbackSpec(url=callback_url, auth_token=auth_token)
    return BuildSpec(**fields)


def make_build(name: str = "app", namespace: str = "default", **spec_fields: Any) -> Build:
    return Build(
        metadata=ObjectMeta(name=name, namespace=namespace),
        spec=make_spec(**spec_fields),
    )


class RecordingTransport(httpx.AsyncBaseTransport):
    """Mock transport that records every request and answers from a handler."""

    def __init__(
        self,
        handler: Callable[[httpx.Request], httpx.Response] | None = None,
    ) -> None:
        self.requests: list[httpx.Request] = []
        self._handler = handler or (lambda request: httpx.Response(200))

    async def handle_async_request(self, request: httpx.Request) -> httpx.Response:
        await request.aread()
        self.requests.append(request)
        return self._handler(request)

    def payloads(self) -> list[dict[str, Any]]:
        return [json.loads(r.content) for r in self.requests]


async def wait_for(
    predicate: Callable[[], Awaitable[bool]],
    timeout: float = 2.0,
    interval: float = 0.01,
) -> None:
    """Poll *predicate* until it holds, failing the test after *timeout* seconds."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not await predicate():
        if loop.time() > deadline:
            pytest.fail("condition not met before timeout")
        await asyncio.sleep(interval)


@pytest.fixture
def store() -> InMemoryStore:
    return InMemoryStore()


@pytest.fixture
def transport() -> RecordingTransport:
    return RecordingTransport()


@pytest.fixture
async def http_client(transport: RecordingTransport) -> Any:
    client = httpx.AsyncClient(transport=transport)
    yield client
    await client.aclose()
