"""Shared pytest fixtures."""
import pytest
from datetime import datetime

from digiprobe.database import Database
from digiprobe.models import (
    Config,
    GeoPosition,
    Metrics,
    OrchestratorConfig,
    Sample,
    TestConfiguration,
    TestMode,
)


class FakeClock:
    """Monotonic clock that only moves when told to."""

    def __init__(self, start: float = 100.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeTransport:
    """Records requests; each request takes *latency* seconds on the fake clock."""

    def __init__(self, clock=None, latency: float = 0.1, fail: bool = False, responses=None) -> None:
        self.clock = clock
        self.latency = latency
        self.fail = fail
        self.responses = responses or {}
        self.calls = []

    async def _respond(self, method: str, url: str, body=None) -> bytes:
        self.calls.append((method, url, len(body) if body is not None else None))
        if self.clock is not None:
            self.clock.advance(self.latency)
        if self.fail:
            raise OSError("network unreachable")
        response = self.responses.get(url, b"")
        if isinstance(response, Exception):
            raise response
        return response

    async def get(self, url: str) -> bytes:
        return await self._respond("GET", url)

    async def post(self, url: str, body: bytes) -> bytes:
        return await self._respond("POST", url, body)


class StubProbes:
    """Returns fixed metrics and counts probe cycles."""

    def __init__(self, metrics: Metrics, on_cycle=None) -> None:
        self.metrics = metrics
        self.on_cycle = on_cycle
        self.cycles = 0

    async def run_cycle(self) -> Metrics:
        self.cycles += 1
        if self.on_cycle is not None:
            self.on_cycle(self.cycles)
        return self.metrics


@pytest.fixture
def excellent_metrics():
    return Metrics(ping=12.0, download_speed=25.0, upload_speed=8.0, browsing_time=320.0, video_mos=4.6)


@pytest.fixture
def poor_metrics():
    return Metrics(ping=180.0, download_speed=0.6, upload_speed=0.3, browsing_time=2400.0, video_mos=1.4)


@pytest.fixture
def sample_position():
    return GeoPosition(latitude=-7.7956, longitude=110.3695, accuracy=8.0)


@pytest.fixture
def sample(excellent_metrics, sample_position):
    return Sample(
        metrics=excellent_metrics,
        timestamp=datetime(2024, 1, 15, 10, 0, 0),
        position=sample_position,
        loop=1,
    )


@pytest.fixture
def static_config():
    return TestConfiguration(
        operator_label="Telkomsel",
        test_mode=TestMode.STATIC,
        activity="Routine Monitoring",
        remark="",
        poi_name="Tugu Jogja",
    )


@pytest.fixture
def drive_config():
    return TestConfiguration(
        operator_label="XL Axiata",
        test_mode=TestMode.DRIVE,
        activity="Coverage Survey",
    )


@pytest.fixture
def fast_timings():
    return OrchestratorConfig(
        static_pause_seconds=0,
        drive_pause_seconds=0,
        settle_seconds=0,
        geolocation_timeout_seconds=1.0,
    )


@pytest.fixture
def db():
    """In-memory SQLite database, fresh per test."""
    return Database(":memory:")


@pytest.fixture
def default_config():
    return Config.default()
