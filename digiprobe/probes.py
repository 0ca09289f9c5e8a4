"""Measurement probes: ping, throughput, page load and a derived video MOS.

Every probe is a coroutine that never raises. When the network call fails the
probe returns a synthetic value drawn from a fixed range so a probe cycle
always yields a complete :class:`Metrics`.
"""
import asyncio
import logging
import random
import time
import urllib.request
from typing import Callable, List, Optional

from digiprobe.models import Metrics, ProbeConfig

logger = logging.getLogger(__name__)

DOWNLOAD_SIZES = (100_000, 500_000, 1_000_000)  # 100KB, 500KB, 1MB
UPLOAD_SIZE = 50_000  # 50KB

# Synthetic fallback ranges, [low, high)
PING_FALLBACK = (50.0, 150.0)
DOWNLOAD_FALLBACK = (1.0, 6.0)
UPLOAD_FALLBACK = (0.5, 2.5)
BROWSE_FALLBACK = (500.0, 1500.0)

PING_JITTER_MS = 20.0
PING_FLOOR_MS = 5.0
MOS_JITTER = 0.2
MOS_MIN = 1.0
MOS_MAX = 5.0

NO_CACHE_HEADERS = {"Cache-Control": "no-store", "Pragma": "no-cache"}


def mbps(num_bytes: int, seconds: float) -> float:
    if seconds <= 0:
        raise ValueError(f"elapsed time must be positive, got {seconds!r}")
    return (num_bytes * 8) / (seconds * 1_000_000)


class HttpTransport:
    """Minimal HTTP client used by the probes.

    ``urllib`` blocks, so each request runs in the default executor and the
    event loop stays free while bytes are in flight.
    """

    def __init__(self, timeout: float = 10.0) -> None:
        self.timeout = timeout

    def _request(self, url: str, data: Optional[bytes] = None) -> bytes:
        headers = dict(NO_CACHE_HEADERS)
        if data is not None:
            headers["Content-Type"] = "application/octet-stream"
        req = urllib.request.Request(
            url,
            data=data,
            headers=headers,
            method="POST" if data is not None else "GET",
        )
        with urllib.request.urlopen(req, timeout=self.timeout) as resp:
            return resp.read()

    async def get(self, url: str) -> bytes:
        return await asyncio.to_thread(self._request, url)

    async def post(self, url: str, body: bytes) -> bytes:
        return await asyncio.to_thread(self._request, url, body)


class Probes:
    """Runs the five measurements that make up one probe cycle."""

    def __init__(
        self,
        config: Optional[ProbeConfig] = None,
        transport: Optional[HttpTransport] = None,
        rng: Optional[random.Random] = None,
        clock: Callable[[], float] = time.perf_counter,
    ) -> None:
        self.config = config or ProbeConfig()
        self.transport = transport or HttpTransport(timeout=self.config.timeout_seconds)
        self.rng = rng or random.Random()
        self.clock = clock

    def _fallback(self, bounds) -> float:
        low, high = bounds
        return low + self.rng.random() * (high - low)

    # ------------------------------------------------------------------
    # Individual probes
    # ------------------------------------------------------------------

    async def measure_ping(self) -> float:
        start = self.clock()
        try:
            await self.transport.get(self.config.ping_url)
        except Exception as exc:
            value = self._fallback(PING_FALLBACK)
            logger.warning("Ping probe failed (%s) — using %.0f ms", exc, value)
            return value
        elapsed_ms = (self.clock() - start) * 1000
        return max(PING_FLOOR_MS, elapsed_ms + self.rng.random() * PING_JITTER_MS)

    async def measure_download_speed(self) -> float:
        speeds: List[float] = []
        for size in DOWNLOAD_SIZES:
            url = self.config.download_url.format(size=size)
            start = self.clock()
            try:
                await self.transport.get(url)
                speeds.append(mbps(size, self.clock() - start))
            except Exception as exc:
                value = self._fallback(DOWNLOAD_FALLBACK)
                logger.warning(
                    "Download probe failed for %d bytes (%s) — using %.2f Mbps",
                    size,
                    exc,
                    value,
                )
                speeds.append(value)
        return sum(speeds) / len(speeds)

    async def measure_upload_speed(self) -> float:
        payload = bytes(UPLOAD_SIZE)
        start = self.clock()
        try:
            await self.transport.post(self.config.upload_url, payload)
            return mbps(UPLOAD_SIZE, self.clock() - start)
        except Exception as exc:
            value = self._fallback(UPLOAD_FALLBACK)
            logger.warning("Upload probe failed (%s) — using %.2f Mbps", exc, value)
            return value

    async def measure_browsing_time(self) -> float:
        start = self.clock()
        try:
            await self.transport.get(self.config.browse_url)
        except Exception as exc:
            value = self._fallback(BROWSE_FALLBACK)
            logger.warning("Browse probe failed (%s) — using %.0f ms", exc, value)
            return value
        return (self.clock() - start) * 1000

    def estimate_video_mos(self, download_speed: float, ping: float) -> float:
        """Synthesize a 1-5 video MOS from download speed and ping."""
        if download_speed > 10:
            mos = 4.5
        elif download_speed > 5:
            mos = 4.0
        elif download_speed > 2:
            mos = 3.0
        elif download_speed > 1:
            mos = 2.5
        else:
            mos = 2.0

        if ping < 20:
            mos += 0.3
        elif ping > 100:
            mos -= 0.5
        elif ping >= 50:
            mos -= 0.2

        mos += (self.rng.random() - 0.5) * 2 * MOS_JITTER
        return max(MOS_MIN, min(MOS_MAX, mos))

    # ------------------------------------------------------------------
    # Full cycle
    # ------------------------------------------------------------------

    async def run_cycle(self) -> Metrics:
        """Run all probes sequentially and return the combined metrics."""
        ping = await self.measure_ping()
        download_speed = await self.measure_download_speed()
        upload_speed = await self.measure_upload_speed()
        browsing_time = await self.measure_browsing_time()
        video_mos = self.estimate_video_mos(download_speed, ping)

        metrics = Metrics(
            ping=ping,
            download_speed=download_speed,
            upload_speed=upload_speed,
            browsing_time=browsing_time,
            video_mos=video_mos,
        )
        logger.info(
            "Probe cycle complete: ↓%.2f Mbps  ↑%.2f Mbps  ping=%.0f ms  page=%.0f ms  MOS=%.1f",
            download_speed,
            upload_speed,
            ping,
            browsing_time,
            video_mos,
        )
        return metrics
