import socket
import ssl

import httpx
import pytest

from uptimewatch.services.prober import (
    ERROR_CERT_EXPIRED,
    ERROR_DNS,
    ERROR_REDIRECTS,
    ERROR_REFUSED,
    ERROR_TIMEOUT,
    ProbeService,
    ProbeTarget,
    classify_transport_error,
)


def _prober(handler) -> ProbeService:
    return ProbeService(user_agent="UptimeWatch/test", transport=httpx.MockTransport(handler))


@pytest.mark.asyncio
async def test_matching_status_is_success_with_header_snapshot():
    def handler(request):
        return httpx.Response(200, headers={"X-Served-By": "edge-1"}, text="ok")

    outcome = await _prober(handler).probe(ProbeTarget(url="https://example.com/health"))

    assert outcome.success is True
    assert outcome.status_code == 200
    assert outcome.error_message is None
    assert outcome.response_time_ms >= 0
    assert outcome.response_headers["x-served-by"] == "edge-1"


@pytest.mark.asyncio
async def test_unexpected_status_is_failure():
    outcome = await _prober(lambda request: httpx.Response(503)).probe(
        ProbeTarget(url="https://example.com/health", expected_status_code=200)
    )

    assert outcome.success is False
    assert outcome.status_code == 503
    assert outcome.error_message == "Expected status 200, got 503"


@pytest.mark.asyncio
async def test_expected_non_200_status_counts_as_up():
    outcome = await _prober(lambda request: httpx.Response(204)).probe(
        ProbeTarget(url="https://example.com/ping", method="HEAD", expected_status_code=204)
    )
    assert outcome.success is True


@pytest.mark.asyncio
async def test_method_user_agent_and_custom_headers_are_sent():
    seen = {}

    def handler(request):
        seen["method"] = request.method
        seen["headers"] = request.headers
        return httpx.Response(200)

    await _prober(handler).probe(ProbeTarget(
        url="https://example.com/hook",
        method="POST",
        headers={"Authorization": "Bearer abc"},
    ))

    assert seen["method"] == "POST"
    assert seen["headers"]["user-agent"] == "UptimeWatch/test"
    assert seen["headers"]["authorization"] == "Bearer abc"


@pytest.mark.asyncio
async def test_connection_refused_is_classified():
    def handler(request):
        raise httpx.ConnectError("[Errno 111] Connection refused", request=request)

    outcome = await _prober(handler).probe(ProbeTarget(url="https://down.example.com"))

    assert outcome.success is False
    assert outcome.status_code is None
    assert outcome.error_message == ERROR_REFUSED


@pytest.mark.asyncio
async def test_timeout_is_classified():
    def handler(request):
        raise httpx.ReadTimeout("timed out", request=request)

    outcome = await _prober(handler).probe(ProbeTarget(url="https://slow.example.com"))
    assert outcome.error_message == ERROR_TIMEOUT


@pytest.mark.asyncio
async def test_redirect_loop_is_classified():
    def handler(request):
        return httpx.Response(302, headers={"Location": str(request.url)})

    outcome = await _prober(handler).probe(ProbeTarget(url="https://loop.example.com/"))
    assert outcome.success is False
    assert outcome.error_message == ERROR_REDIRECTS


@pytest.mark.asyncio
async def test_redirects_are_followed():
    def handler(request):
        if request.url.path == "/old":
            return httpx.Response(301, headers={"Location": "https://example.com/new"})
        return httpx.Response(200)

    outcome = await _prober(handler).probe(ProbeTarget(url="https://example.com/old"))
    assert outcome.success is True
    assert outcome.status_code == 200


def test_classify_dns_failure_from_cause_chain():
    err = httpx.ConnectError("connect failed")
    err.__cause__ = socket.gaierror(-2, "Name or service not known")
    assert classify_transport_error(err) == ERROR_DNS


def test_classify_expired_certificate():
    err = httpx.ConnectError("connect failed")
    err.__cause__ = ssl.SSLCertVerificationError(
        1, "[SSL: CERTIFICATE_VERIFY_FAILED] certificate verify failed: certificate has expired"
    )
    assert classify_transport_error(err) == ERROR_CERT_EXPIRED


def test_classify_unknown_error_names_the_type():
    assert classify_transport_error(RuntimeError("boom")) == "request failed: RuntimeError"
