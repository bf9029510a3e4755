"""Reporting peer: sends signed pings so the listener sees our address."""

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Optional

import aiohttp

from ipsync.auth import AUTH_HEADER, Signer
from ipsync.errors import ReportError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ReportResult:
    """Listener response to a report."""

    status: int
    body: str

    @property
    def ok(self) -> bool:
        return self.status == 200


class Reporter:
    """Sends authenticated ``GET`` requests to the listener.

    The listener reads our address from the connection itself, so the
    request carries nothing but the Authentication header.
    """

    REQUEST_TIMEOUT = 10.0  # seconds

    def __init__(
        self,
        signer: Signer,
        listener_url: str,
        http_session: Optional[aiohttp.ClientSession] = None,
        request_timeout: float = REQUEST_TIMEOUT,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        """Initialize reporter.

        Args:
            signer: Signs each request.
            listener_url: Full URL of the listener's ping route.
            http_session: Optional aiohttp session (for testing).
            request_timeout: Per-request timeout in seconds.
            clock: Injectable UTC clock.
        """
        self._signer = signer
        self._url = listener_url
        self._session = http_session
        self._owns_session = http_session is None
        self._timeout = request_timeout
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._running = False

    async def __aenter__(self):
        """Enter async context, creating session if needed."""
        if self._session is None:
            self._session = aiohttp.ClientSession()
        return self

    async def __aexit__(self, *args):
        """Exit async context, closing owned session."""
        await self.close()

    @property
    def is_running(self) -> bool:
        """Whether the periodic loop is active."""
        return self._running

    async def report_once(self) -> ReportResult:
        """Sign a fresh header and send one report.

        Returns:
            The listener's status code and body.

        Raises:
            ReportError: If the request could not be completed.
        """
        if self._session is None:
            raise RuntimeError("Reporter not initialized - use async context manager")

        header = self._signer.create_header(self._clock())
        try:
            async with self._session.get(
                self._url,
                headers={AUTH_HEADER: header},
                timeout=aiohttp.ClientTimeout(total=self._timeout),
            ) as resp:
                body = await resp.text()
                result = ReportResult(status=resp.status, body=body)
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise ReportError(f"Could not reach listener at {self._url}: {e}") from e

        if result.ok:
            logger.info("Listener accepted report")
            logger.debug(f"Listener sees us as {result.body}")
        else:
            logger.warning(f"Listener returned {result.status}: {result.body[:100]}")
        return result

    async def run(self, interval: float) -> None:
        """Report every ``interval`` seconds until stop() is called.

        Failures are logged and the loop keeps going.
        """
        self._running = True
        while self._running:
            try:
                await self.report_once()
            except ReportError as e:
                logger.warning(f"Report failed: {e}")
            await asyncio.sleep(interval)

    def stop(self) -> None:
        """Stop the periodic loop after the current iteration."""
        self._running = False

    async def close(self) -> None:
        """Close the HTTP session if owned."""
        if self._owns_session and self._session:
            await self._session.close()
            self._session = None
