"""Display label from a one-shot network metadata lookup.

The label only decorates share links and startup output. It is fetched once
in the background at startup; while that fetch is in flight, subscription
requests wait for it, and after a failure each subscription request retries
once before falling back to ``Unknown``.
"""

from __future__ import annotations

import asyncio
import contextlib
from collections.abc import Awaitable, Callable
from enum import Enum

import httpx
import structlog

logger = structlog.get_logger()

UNKNOWN_LABEL = "Unknown"


class LabelState(Enum):
    PENDING = "pending"
    FAILED = "failed"
    READY = "ready"


async def fetch_isp_label(
    url: str,
    timeout: float = 5.0,
    transport: httpx.AsyncBaseTransport | None = None,
) -> str:
    """Fetch ``{country}-{asOrganization}`` with spaces replaced by underscores.

    Raises:
        httpx.HTTPError: On transport errors or a non-200 status.
        ValueError: If the body is not the expected JSON object.
    """
    async with httpx.AsyncClient(timeout=timeout, transport=transport) as client:
        response = await client.get(url)
    if response.status_code != 200:
        raise httpx.HTTPStatusError(
            f"HTTP {response.status_code}", request=response.request, response=response
        )
    info = response.json()
    if not isinstance(info, dict):
        raise ValueError("metadata response is not an object")
    return f"{info.get('country')}-{info.get('asOrganization')}".replace(" ", "_")


class LabelCache:
    """Process-wide label holder with an explicit PENDING/FAILED/READY state."""

    def __init__(
        self,
        url: str,
        timeout: float = 5.0,
        fetcher: Callable[[str, float], Awaitable[str]] = fetch_isp_label,
    ) -> None:
        self._url = url
        self._timeout = timeout
        self._fetcher = fetcher
        self._inflight: asyncio.Task | None = None
        self.state = LabelState.PENDING
        self.label: str | None = None

    @property
    def display(self) -> str:
        return self.label if self.state is LabelState.READY and self.label else UNKNOWN_LABEL

    def start(self) -> None:
        """Kick off the startup lookup without waiting for it."""
        if self._inflight is None and self.state is LabelState.PENDING:
            self._inflight = asyncio.create_task(self._load("startup"))

    async def get(self) -> str:
        if self._inflight is not None:
            await self._inflight
        if self.state is not LabelState.READY:
            await self._load("subscription")
        return self.display

    async def stop(self) -> None:
        task, self._inflight = self._inflight, None
        if task is not None and not task.done():
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task

    async def _load(self, trigger: str) -> None:
        try:
            label = await self._fetcher(self._url, self._timeout)
        except (httpx.HTTPError, httpx.InvalidURL, ValueError) as e:
            self.state = LabelState.FAILED
            logger.info("Label lookup failed", trigger=trigger, error=str(e) or type(e).__name__)
        else:
            self.label = label
            self.state = LabelState.READY
            logger.info("Label lookup succeeded", trigger=trigger, label=label)
        finally:
            if trigger == "startup":
                self._inflight = None
