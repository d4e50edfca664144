"""Tests for the pinning service client."""

import json

import httpx
import pytest

from hyperpublisher.config import PinningConfig
from hyperpublisher.pinning import PinningClient, PinStatus

URL = "hyper://" + "ab" * 32


def make_client(handler, **config):
    config.setdefault("url", "https://pins.example.org")
    return PinningClient(
        PinningConfig(**config),
        transport=httpx.MockTransport(handler),
        backoff_seconds=0.0,
    )


class TestPinningClient:
    """Tests for PinningClient."""

    @pytest.mark.asyncio
    async def test_disabled_without_url(self):
        client = PinningClient(PinningConfig())

        result = await client.pin(URL)

        assert not client.enabled
        assert result.status == PinStatus.SKIPPED

    @pytest.mark.asyncio
    async def test_pin_success(self):
        requests = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            return httpx.Response(200, json={})

        client = make_client(handler, name="my-site", token="secret")

        result = await client.pin(URL)

        assert result.status == PinStatus.PINNED
        assert result.timestamp is not None
        assert len(requests) == 1
        assert requests[0].method == "POST"
        assert requests[0].url.path == "/v1/dats/add"
        assert requests[0].headers["Authorization"] == "Bearer secret"
        assert json.loads(requests[0].content) == {"url": URL, "name": "my-site"}

    @pytest.mark.asyncio
    async def test_server_error_retries(self):
        """Test 5xx responses are retried up to max_retries."""
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            if len(calls) < 3:
                return httpx.Response(503)
            return httpx.Response(201, json={"ok": True})

        client = make_client(handler, max_retries=3)

        result = await client.pin(URL)

        assert result.status == PinStatus.PINNED
        assert len(calls) == 3

    @pytest.mark.asyncio
    async def test_client_error_not_retried(self):
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            return httpx.Response(401, text="unauthorized")

        client = make_client(handler)

        result = await client.pin(URL)

        assert result.status == PinStatus.FAILED
        assert "401" in result.error
        assert len(calls) == 1

    @pytest.mark.asyncio
    async def test_unreachable_service(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        client = make_client(handler, max_retries=2)

        result = await client.pin(URL)

        assert result.status == PinStatus.OFFLINE
        assert "max retries (2)" in result.error

    @pytest.mark.asyncio
    async def test_server_errors_exhaust_retries(self):
        """Test a reachable service that keeps failing is FAILED, not OFFLINE."""
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            return httpx.Response(503)

        client = make_client(handler, max_retries=2)

        result = await client.pin(URL)

        assert result.status == PinStatus.FAILED
        assert result.error == "Max retries (2) exceeded"
        assert len(calls) == 2
