"""
Shared fixtures for the probe pipeline unit tests.

Transports are in-memory fakes so dispatcher and orchestrator tests never
touch the network; time-dependent components take a FakeClock.
"""
import asyncio
import os
import tempfile
from urllib.parse import unquote_plus

import pytest

os.environ.setdefault("XSSPROBE_LOG_DIR", tempfile.mkdtemp(prefix="xssprobe-logs-"))

from xssprobe.core.config import (  # noqa: E402
    RequestLimitConfig,
    RequestQueueConfig,
    ScanConfig,
    ScanTargetsConfig,
    TargetRule,
)
from xssprobe.core.exceptions import TransportFailure  # noqa: E402
from xssprobe.core.transport import ProbeTransport  # noqa: E402


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class EchoTransport(ProbeTransport):
    """Reflects the decoded request URL and body back as the response."""

    def __init__(self):
        self.requests = []

    async def send(self, request):
        self.requests.append(request)
        return f"<html><body>{unquote_plus(request.url)} {unquote_plus(request.body or '')}</body></html>"


class StaticTransport(ProbeTransport):
    """Returns the same body for every probe."""

    def __init__(self, body: str = "<html>ok</html>"):
        self.body = body
        self.requests = []

    async def send(self, request):
        self.requests.append(request)
        return self.body


class FailingTransport(ProbeTransport):
    """Always fails with a transient error; the fallback channel answers ``signal_value``."""

    def __init__(self, signal_value: bool = True):
        self.signal_value = signal_value
        self.send_calls = 0
        self.signal_calls = 0

    async def send(self, request):
        self.send_calls += 1
        raise TransportFailure("connection reset", url=request.url)

    async def signal(self, request):
        self.signal_calls += 1
        return self.signal_value


class GatedTransport(ProbeTransport):
    """Holds every probe until the gate opens."""

    def __init__(self):
        self.gate = asyncio.Event()
        self.started = 0

    async def send(self, request):
        self.started += 1
        await self.gate.wait()
        return "<html>released</html>"


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def scan_config():
    """Scan configuration targeting example.com with no pacing."""
    return ScanConfig(
        scan_targets=ScanTargetsConfig(targets=[TargetRule(domain="example.com")]),
        request_limit=RequestLimitConfig(request_delay=0, max_requests_per_minute=600, max_concurrent_requests=5),
        request_queue=RequestQueueConfig(batch_size=10, retry_attempts=2),
    )


@pytest.fixture
def echo_transport():
    return EchoTransport()


@pytest.fixture
def static_transport():
    return StaticTransport()


@pytest.fixture
def failing_transport():
    return FailingTransport()


@pytest.fixture
def gated_transport():
    return GatedTransport()
