"""Persists a running test: one session per configured test, one row per sample."""
import asyncio
import logging
from typing import List, Optional, Tuple

from digiprobe.database import Database
from digiprobe.models import MapMarker, NetworkInfo, Sample, TestConfiguration
from digiprobe.quality import border_color_of, glyph_of

logger = logging.getLogger(__name__)


class SessionRecorder:
    """Sample sink and completion callback for :class:`TestOrchestrator`.

    Store failures never stop a run: the sample is dropped from durable
    storage and a notification is recorded instead.
    """

    MAX_RETRIES = 3

    def __init__(
        self,
        db: Database,
        retries: int = MAX_RETRIES,
        retry_base_delay: float = 1.0,
    ) -> None:
        self.db = db
        self.retries = retries
        self.retry_base_delay = retry_base_delay
        self.session_id: Optional[int] = None
        self.config: Optional[TestConfiguration] = None
        self.result_ids: List[int] = []
        self.markers: List[MapMarker] = []
        self.notifications: List[Tuple[str, str]] = []

    def notify(self, level: str, message: str) -> None:
        self.notifications.append((level, message))
        log = logger.info if level == "success" else logger.warning
        log("[%s] %s", level, message)

    # ------------------------------------------------------------------
    # Session lifecycle
    # ------------------------------------------------------------------

    def open(self, config: TestConfiguration, network_info: Optional[NetworkInfo] = None) -> int:
        """Create the session row for *config* and reset per-session state."""
        errors = config.validate()
        if errors:
            raise ValueError("; ".join(errors))

        info = network_info or NetworkInfo()
        try:
            session_id = self.db.create_session(config, info.isp, info.ip)
        except Exception as exc:
            logger.error("Error creating session: %s", exc)
            self.notify("error", "Failed to create test session")
            raise

        self.session_id = session_id
        self.config = config
        self.result_ids = []
        self.markers = []
        logger.info(
            "Session %d opened: %s (%s)",
            session_id,
            config.operator_label,
            config.test_mode.value,
        )
        return session_id

    async def on_sample(self, sample: Sample) -> Optional[int]:
        """Store *sample*, retrying with exponential backoff; returns the result ID."""
        if self.session_id is None:
            logger.warning("Sample for run %d received with no open session", sample.loop)
            return None

        for attempt in range(self.retries):
            try:
                result_id = await asyncio.to_thread(
                    self.db.append_result, self.session_id, sample
                )
                break
            except Exception as exc:
                if attempt == self.retries - 1:
                    logger.warning(
                        "Database error (attempt %d/%d): %s",
                        attempt + 1,
                        self.retries,
                        exc,
                    )
                else:
                    wait = self.retry_base_delay * 2 ** attempt
                    logger.warning(
                        "Database error (attempt %d/%d): %s — retrying in %ss",
                        attempt + 1,
                        self.retries,
                        exc,
                        wait,
                    )
                    await asyncio.sleep(wait)
        else:
            logger.error("Failed to store run %d after %d attempts", sample.loop, self.retries)
            self.notify("error", "Failed to save test result")
            return None

        self.result_ids.append(result_id)
        self._add_marker(result_id, sample)
        return result_id

    async def on_complete(self) -> None:
        if self.session_id is None:
            return
        try:
            await asyncio.to_thread(self.db.close_session, self.session_id)
        except Exception as exc:
            logger.error("Error completing session %d: %s", self.session_id, exc)
            return
        self.notify("success", "Test completed and saved!")

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _add_marker(self, result_id: int, sample: Sample) -> None:
        if sample.position is None or self.config is None:
            return
        glyph = glyph_of(self.config.operator_label)
        color = sample.category_color
        self.markers.append(
            MapMarker(
                id=result_id,
                lat=sample.position.latitude,
                lng=sample.position.longitude,
                operator_label=self.config.operator_label,
                letter=glyph["letter"],
                letter_color=glyph["color"],
                category_color=color,
                border_color=border_color_of(color),
                metrics=sample.metrics,
                timestamp=sample.timestamp,
            )
        )
