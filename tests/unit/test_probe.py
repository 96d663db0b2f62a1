"""Tests for the HTTP liveness prober."""

from __future__ import annotations

import httpx
import pytest

from shipline.collaborators.probe import HttpLivenessProber


def _prober(handler) -> HttpLivenessProber:
    return HttpLivenessProber(timeout=1.0, transport=httpx.MockTransport(handler))


@pytest.mark.asyncio()
async def test_ok_response_is_reachable() -> None:
    prober = _prober(lambda request: httpx.Response(200, text="ok"))

    assert await prober.probe("http://localhost:8080/") is True


@pytest.mark.asyncio()
async def test_error_status_is_unreachable() -> None:
    prober = _prober(lambda request: httpx.Response(503))

    assert await prober.probe("http://localhost:8080/") is False


@pytest.mark.asyncio()
async def test_redirect_is_followed() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path == "/":
            return httpx.Response(302, headers={"Location": "/login"})
        return httpx.Response(200)

    prober = _prober(handler)

    assert await prober.probe("http://localhost:8080/") is True


@pytest.mark.asyncio()
async def test_connection_refused_is_unreachable() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("Connection refused", request=request)

    assert await _prober(handler).probe("http://localhost:8080/") is False


@pytest.mark.asyncio()
async def test_timeout_is_unreachable() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("timed out", request=request)

    assert await _prober(handler).probe("http://localhost:8080/") is False
