"""Callback dispatcher — one webhook POST per terminal build, no retries."""
from __future__ import annotations

import asyncio
import json
from collections.abc import Callable
from datetime import datetime, timezone
from typing import Any

import httpx
import structlog
from pydantic import BaseModel, Field

from kairos.core.constants import BuildPhase, CallbackStatus
from kairos.core.exceptions import CallbackError
from kairos.core.types import Build, utcnow

logger = structlog.get_logger(__name__)

DEFAULT_TIMEOUT_SECONDS = 10.0


class CallbackOutcome(BaseModel):
    """Result of a single callback attempt."""

    status: CallbackStatus
    response_status: int | None = None
    error: str | None = None
    attempted_at: datetime = Field(default_factory=utcnow)

    @property
    def succeeded(self) -> bool:
        return self.status == CallbackStatus.SUCCESS


def format_timestamp(value: datetime) -> str:
    """RFC 3339 in UTC with a ``Z`` suffix."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


def build_payload(build: Build, phase: BuildPhase, timestamp: datetime) -> dict[str, Any]:
    """Body of the completion webhook."""
    return {
        "name": build.metadata.name,
        "namespace": build.metadata.namespace,
        "phase": str(phase),
        "image": build.spec.output_image,
        "timestamp": format_timestamp(timestamp),
    }


class CallbackDispatcher:
    """Sends the completion webhook of a build.

    Network errors, timeouts, non-2xx responses and callback settings httpx
    cannot send (a malformed URL, a non-ASCII token) are all reported as a
    :attr:`CallbackStatus.FAILED` outcome; nothing is raised and nothing is
    retried here. Re-dispatching is up to the reconciler. ``timeout`` bounds
    the whole attempt, not just each network phase.
    """

    def __init__(
        self,
        http_client: httpx.AsyncClient | None = None,
        *,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._http_client = http_client
        self._owns_client = http_client is None
        self._timeout = timeout
        self._clock = clock

    def _client(self) -> httpx.AsyncClient:
        if self._http_client is None:
            self._http_client = httpx.AsyncClient()
        return self._http_client

    async def aclose(self) -> None:
        if self._owns_client and self._http_client is not None:
            await self._http_client.aclose()
            self._http_client = None

    async def dispatch(self, build: Build, phase: BuildPhase) -> CallbackOutcome:
        """POST the completion payload for *build* to its callback URL.

        Raises:
            CallbackError: If the build has no callback configured.
        """
        callback = build.spec.callback
        if callback is None:
            raise CallbackError(
                f"Build {build.key} has no callback configured",
                code="NO_CALLBACK",
            )

        payload = build_payload(build, phase, self._clock())
        headers = {"Content-Type": "application/json"}
        if callback.auth_token:
            headers["Authorization"] = f"Bearer {callback.auth_token}"

        try:
            # httpx timeouts apply per phase; the deadline caps the whole exchange.
            async with asyncio.timeout(self._timeout):
                response = await self._client().post(
                    callback.url,
                    content=json.dumps(payload).encode("utf-8"),
                    headers=headers,
                    timeout=self._timeout,
                )
        except (httpx.HTTPError, httpx.InvalidURL, UnicodeEncodeError, TimeoutError) as exc:
            logger.warning(
                "callback_error",
                build=str(build.key),
                url=callback.url,
                error=str(exc) or type(exc).__name__,
            )
            return CallbackOutcome(
                status=CallbackStatus.FAILED,
                error=str(exc) or type(exc).__name__,
            )

        if not 200 <= response.status_code < 300:
            logger.warning(
                "callback_rejected",
                build=str(build.key),
                url=callback.url,
                status=response.status_code,
            )
            return CallbackOutcome(
                status=CallbackStatus.FAILED,
                response_status=response.status_code,
                error=f"HTTP {response.status_code}",
            )

        logger.info(
            "callback_delivered",
            build=str(build.key),
            url=callback.url,
            phase=str(phase),
            status=response.status_code,
        )
        return CallbackOutcome(
            status=CallbackStatus.SUCCESS,
            response_status=response.status_code,
        )
