"""Probe service - performs one HTTP request against a monitor's target."""
import asyncio
import logging
import socket
import ssl
import time
from dataclasses import dataclass, field
from typing import Dict, Iterator, Optional

import httpx

from ..config import settings
from ..policy import MAX_REDIRECTS

logger = logging.getLogger(__name__)

ERROR_TIMEOUT = "timeout"
ERROR_DNS = "dns resolution failed"
ERROR_REFUSED = "connection refused"
ERROR_CERT_EXPIRED = "tls certificate expired"
ERROR_TLS = "tls handshake failed"
ERROR_REDIRECTS = "too many redirects"

_DNS_MARKERS = (
    "name or service not known",
    "nodename nor servname",
    "getaddrinfo failed",
    "temporary failure in name resolution",
    "no address associated with hostname",
)
_REFUSED_MARKERS = ("connection refused", "connect call failed", "errno 111")


@dataclass
class ProbeTarget:
    """What to probe and how the answer is judged."""
    url: str
    method: str = "GET"
    timeout_seconds: int = 30
    expected_status_code: int = 200
    headers: Dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_monitor(cls, monitor) -> "ProbeTarget":
        return cls(
            url=monitor.url,
            method=monitor.method or "GET",
            timeout_seconds=monitor.timeout_seconds,
            expected_status_code=monitor.expected_status_code,
            headers=monitor.header_map(),
        )


@dataclass
class ProbeOutcome:
    """Classified result of a single probe."""
    success: bool
    response_time_ms: int
    status_code: Optional[int] = None
    error_message: Optional[str] = None
    response_headers: Dict[str, str] = field(default_factory=dict)


def _exception_chain(exc: BaseException) -> Iterator[BaseException]:
    seen = set()
    while exc is not None and id(exc) not in seen:
        seen.add(id(exc))
        yield exc
        exc = exc.__cause__ or exc.__context__


def classify_transport_error(exc: BaseException) -> str:
    """Map a transport failure to a short human-readable category."""
    if isinstance(exc, (httpx.TimeoutException, asyncio.TimeoutError)):
        return ERROR_TIMEOUT
    if isinstance(exc, httpx.TooManyRedirects):
        return ERROR_REDIRECTS

    chain = list(_exception_chain(exc))
    for err in chain:
        if isinstance(err, socket.gaierror):
            return ERROR_DNS
        if isinstance(err, ConnectionRefusedError):
            return ERROR_REFUSED
        if isinstance(err, ssl.SSLCertVerificationError):
            if "expired" in str(err).lower():
                return ERROR_CERT_EXPIRED
            return ERROR_TLS
        if isinstance(err, ssl.SSLError):
            return ERROR_TLS

    # httpcore often flattens the OS error into the message text
    text = " ".join(str(err).lower() for err in chain)
    if any(marker in text for marker in _DNS_MARKERS):
        return ERROR_DNS
    if any(marker in text for marker in _REFUSED_MARKERS):
        return ERROR_REFUSED
    if "certificate has expired" in text:
        return ERROR_CERT_EXPIRED
    if "certificate verify failed" in text or "ssl" in text:
        return ERROR_TLS
    return f"request failed: {type(exc).__name__}"


def snapshot_headers(headers: httpx.Headers) -> Dict[str, str]:
    """Flatten response headers, joining repeated ones (e.g. set-cookie) with ', '."""
    return {key: ", ".join(headers.get_list(key)) for key in headers.keys()}


class ProbeService:
    """Issues exactly one request per call; never retries and never raises for transport errors."""

    def __init__(
        self,
        user_agent: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.user_agent = user_agent or settings.user_agent
        self.transport = transport

    async def probe(self, target: ProbeTarget) -> ProbeOutcome:
        headers = {"User-Agent": self.user_agent}
        headers.update(target.headers)

        start = time.monotonic()
        try:
            async with httpx.AsyncClient(
                timeout=target.timeout_seconds,
                follow_redirects=True,
                max_redirects=MAX_REDIRECTS,
                transport=self.transport,
            ) as client:
                # httpx timeouts are per phase; bound the whole exchange as well
                response = await asyncio.wait_for(
                    client.request(target.method, target.url, headers=headers),
                    timeout=target.timeout_seconds,
                )
        except Exception as e:
            elapsed = int((time.monotonic() - start) * 1000)
            error_message = classify_transport_error(e)
            logger.debug(f"Probe {target.method} {target.url} failed: {error_message} ({e!r})")
            return ProbeOutcome(
                success=False,
                response_time_ms=elapsed,
                error_message=error_message,
            )

        elapsed = int((time.monotonic() - start) * 1000)
        success = response.status_code == target.expected_status_code
        return ProbeOutcome(
            success=success,
            response_time_ms=elapsed,
            status_code=response.status_code,
            error_message=None if success else (
                f"Expected status {target.expected_status_code}, got {response.status_code}"
            ),
            response_headers=snapshot_headers(response.headers),
        )
