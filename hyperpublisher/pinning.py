"""Client for registering drives with a remote pinning service.

A pinning service keeps a drive online after the publisher exits. The
service speaks the DEP-0003 style HTTP API: POST /v1/dats/add with the
drive URL and an optional name.
"""

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any

import httpx

from .config import PinningConfig

logger = logging.getLogger(__name__)


class PinStatus(Enum):
    """Status of a pin request."""

    PINNED = "pinned"
    FAILED = "failed"
    OFFLINE = "offline"  # Service unavailable
    SKIPPED = "skipped"  # No service configured


@dataclass
class PinResult:
    """Result of a pin request."""

    status: PinStatus
    url: str
    error: str | None = None
    timestamp: datetime | None = None


class PinningClient:
    """Registers drive URLs with a pinning service.

    Retries server errors and connection failures with exponential backoff;
    client errors are returned immediately.
    """

    def __init__(
        self,
        config: PinningConfig,
        transport: httpx.AsyncBaseTransport | None = None,
        backoff_seconds: float = 1.0,
    ):
        """Initialize the pinning client.

        Args:
            config: Service URL, credentials and retry settings.
            transport: Optional httpx transport (used by tests).
            backoff_seconds: Delay before the first retry; doubles each time.
        """
        self.config = config
        self._transport = transport
        self._backoff = backoff_seconds

    @property
    def enabled(self) -> bool:
        return bool(self.config.url)

    def _headers(self) -> dict[str, str]:
        if self.config.token:
            return {"Authorization": f"Bearer {self.config.token}"}
        return {}

    async def _request_with_retry(
        self,
        method: str,
        path: str,
        json_data: Any = None,
    ) -> tuple[Any, str | None]:
        """Make HTTP request with exponential backoff retry.

        Returns:
            Tuple of (response_data, error_message).
        """
        url = f"{self.config.url.rstrip('/')}{path}"
        backoff = self._backoff
        responded = False

        async with httpx.AsyncClient(
            timeout=self.config.timeout,
            transport=self._transport,
            headers=self._headers(),
        ) as client:
            for attempt in range(self.config.max_retries):
                try:
                    response = await client.request(method, url, json=json_data)
                    responded = True

                    if response.status_code in (200, 201, 204):
                        return (response.json() if response.content else {}), None

                    elif response.status_code >= 500:
                        # Server error, retry
                        logger.warning(
                            f"Pinning service error {response.status_code}, "
                            f"attempt {attempt + 1}/{self.config.max_retries}"
                        )
                    else:
                        # Client error, don't retry
                        return None, f"HTTP {response.status_code}: {response.text}"

                except httpx.ConnectError:
                    logger.warning(
                        f"Connection failed, attempt {attempt + 1}/{self.config.max_retries}"
                    )
                except httpx.TimeoutException:
                    logger.warning(
                        f"Request timeout, attempt {attempt + 1}/{self.config.max_retries}"
                    )

                # Exponential backoff
                if attempt < self.config.max_retries - 1:
                    await asyncio.sleep(backoff)
                    backoff *= 2

        if responded:
            return None, f"Max retries ({self.config.max_retries}) exceeded"
        return None, f"Connection failed: max retries ({self.config.max_retries}) exceeded"

    async def pin(self, url: str, name: str | None = None) -> PinResult:
        """Ask the service to keep a drive online."""
        if not self.enabled:
            return PinResult(status=PinStatus.SKIPPED, url=url)

        payload = {"url": url}
        if name or self.config.name:
            payload["name"] = name or self.config.name

        _, error = await self._request_with_retry("POST", "/v1/dats/add", payload)
        if error:
            logger.warning(f"Could not pin {url}: {error}")
            return PinResult(
                status=PinStatus.OFFLINE if "Connection" in error else PinStatus.FAILED,
                url=url,
                error=error,
            )

        logger.info(f"Pinned {url} at {self.config.url}")
        return PinResult(status=PinStatus.PINNED, url=url, timestamp=datetime.now())

