from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional, List
import yaml


class QualityCategory(str, Enum):
    EXCELLENT = "excellent"
    GOOD = "good"
    FAIR = "fair"
    POOR = "poor"


class CategoryColor(str, Enum):
    BLUE = "blue"
    GREEN = "green"
    YELLOW = "yellow"
    RED = "red"


class TestMode(str, Enum):
    STATIC = "static"
    DRIVE = "drive"


TestMode.__test__ = False  # not a pytest test class


class RunStatus(str, Enum):
    READY = "ready"
    RECORDING = "recording"
    STOPPING = "stopping"
    SAVED = "saved"


@dataclass(frozen=True)
class Metrics:
    """Measurements produced by one complete probe cycle."""

    ping: float
    download_speed: float
    upload_speed: float
    browsing_time: float
    video_mos: float

    def to_dict(self) -> dict:
        return {
            "ping": round(self.ping, 1),
            "download_speed": round(self.download_speed, 2),
            "upload_speed": round(self.upload_speed, 2),
            "browsing_time": round(self.browsing_time, 1),
            "video_mos": round(self.video_mos, 2),
        }


@dataclass(frozen=True)
class GeoPosition:
    latitude: float
    longitude: float
    accuracy: Optional[float] = None
    timestamp: Optional[datetime] = None

    def to_dict(self) -> dict:
        return {
            "lat": self.latitude,
            "lng": self.longitude,
            "accuracy": self.accuracy,
        }


@dataclass(frozen=True)
class Sample:
    """One run's metrics plus where and when it was taken.

    The quality category and color are always derived from ``metrics``.
    """

    metrics: Metrics
    timestamp: datetime
    position: Optional[GeoPosition] = None
    loop: int = 0

    @property
    def category(self) -> QualityCategory:
        from digiprobe.quality import classify

        return classify(self.metrics)

    @property
    def category_color(self) -> CategoryColor:
        from digiprobe.quality import color_of

        return color_of(self.category)

    def to_dict(self) -> dict:
        return {
            "loop": self.loop,
            "timestamp": self.timestamp.isoformat(),
            "metrics": self.metrics.to_dict(),
            "category": self.category.value,
            "category_color": self.category_color.value,
            "position": self.position.to_dict() if self.position else None,
        }


@dataclass(frozen=True)
class TestConfiguration:
    """Operator/activity metadata describing one test session."""

    __test__ = False  # not a pytest test class

    operator_label: str
    test_mode: TestMode = TestMode.STATIC
    activity: str = ""
    remark: str = ""
    poi_name: str = ""

    def __post_init__(self) -> None:
        object.__setattr__(self, "test_mode", TestMode(self.test_mode))

    def validate(self) -> List[str]:
        errors: List[str] = []
        if not self.operator_label.strip():
            errors.append("operator_label must not be empty")
        if self.test_mode == TestMode.STATIC and not self.poi_name.strip():
            errors.append("poi_name is required for static tests")
        return errors


@dataclass
class NetworkInfo:
    ip: str = ""
    isp: str = ""
    country: Optional[str] = None
    region: Optional[str] = None
    city: Optional[str] = None
    loading: bool = False
    error: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "ip": self.ip,
            "isp": self.isp,
            "country": self.country,
            "region": self.region,
            "city": self.city,
            "loading": self.loading,
            "error": self.error,
        }


@dataclass
class TestSession:
    """A persisted test session."""

    __test__ = False

    id: int
    operator_label: str
    test_mode: TestMode
    isp_name: Optional[str] = None
    public_ip: Optional[str] = None
    activity: Optional[str] = None
    remark: Optional[str] = None
    poi_name: Optional[str] = None
    is_active: bool = True
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "operator_label": self.operator_label,
            "test_mode": self.test_mode.value,
            "isp_name": self.isp_name,
            "public_ip": self.public_ip,
            "activity": self.activity,
            "remark": self.remark,
            "poi_name": self.poi_name,
            "is_active": self.is_active,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }


@dataclass
class StoredResult:
    """A persisted sample."""

    id: int
    session_id: int
    created_at: datetime
    ping: float
    download_speed: float
    upload_speed: float
    browsing_time: float
    video_mos: float
    category_color: CategoryColor
    lat: Optional[float] = None
    lng: Optional[float] = None

    @property
    def metrics(self) -> Metrics:
        return Metrics(
            ping=self.ping,
            download_speed=self.download_speed,
            upload_speed=self.upload_speed,
            browsing_time=self.browsing_time,
            video_mos=self.video_mos,
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "session_id": self.session_id,
            "created_at": self.created_at.isoformat(),
            "lat": self.lat,
            "lng": self.lng,
            **self.metrics.to_dict(),
            "category_color": self.category_color.value,
        }


@dataclass
class MapMarker:
    id: int
    lat: float
    lng: float
    operator_label: str
    letter: str
    letter_color: str
    category_color: CategoryColor
    border_color: str
    metrics: Metrics
    timestamp: datetime

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "lat": self.lat,
            "lng": self.lng,
            "operator_label": self.operator_label,
            "glyph": {"letter": self.letter, "color": self.letter_color},
            "category_color": self.category_color.value,
            "border_color": self.border_color,
            "metrics": self.metrics.to_dict(),
            "timestamp": self.timestamp.isoformat(),
        }


@dataclass
class Statistics:
    """Aggregate statistics for one session."""

    avg_download_mbps: float
    avg_upload_mbps: float
    avg_ping_ms: float
    avg_browsing_ms: float
    avg_video_mos: float

    min_download_mbps: float
    max_download_mbps: float
    min_upload_mbps: float
    max_upload_mbps: float
    min_ping_ms: float
    max_ping_ms: float

    total_samples: int
    color_counts: dict = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "averages": {
                "download_mbps": round(self.avg_download_mbps, 2),
                "upload_mbps": round(self.avg_upload_mbps, 2),
                "ping_ms": round(self.avg_ping_ms, 1),
                "browsing_ms": round(self.avg_browsing_ms, 1),
                "video_mos": round(self.avg_video_mos, 2),
            },
            "download": {
                "min": round(self.min_download_mbps, 2),
                "max": round(self.max_download_mbps, 2),
            },
            "upload": {
                "min": round(self.min_upload_mbps, 2),
                "max": round(self.max_upload_mbps, 2),
            },
            "ping": {
                "min": round(self.min_ping_ms, 1),
                "max": round(self.max_ping_ms, 1),
            },
            "samples": {
                "total": self.total_samples,
                "by_color": dict(self.color_counts),
            },
        }

    @classmethod
    def from_results(cls, results: List[StoredResult]) -> Optional["Statistics"]:
        if not results:
            return None
        downloads = [r.download_speed for r in results]
        uploads = [r.upload_speed for r in results]
        pings = [r.ping for r in results]
        counts = {color.value: 0 for color in CategoryColor}
        for r in results:
            counts[r.category_color.value] += 1
        n = len(results)
        return cls(
            avg_download_mbps=sum(downloads) / n,
            avg_upload_mbps=sum(uploads) / n,
            avg_ping_ms=sum(pings) / n,
            avg_browsing_ms=sum(r.browsing_time for r in results) / n,
            avg_video_mos=sum(r.video_mos for r in results) / n,
            min_download_mbps=min(downloads),
            max_download_mbps=max(downloads),
            min_upload_mbps=min(uploads),
            max_upload_mbps=max(uploads),
            min_ping_ms=min(pings),
            max_ping_ms=max(pings),
            total_samples=n,
            color_counts=counts,
        )


# ---------------------------------------------------------------------------
# Configuration dataclasses
# ---------------------------------------------------------------------------


@dataclass
class ProbeConfig:
    ping_url: str = "https://www.google.com/generate_204"
    download_url: str = "https://httpbin.org/bytes/{size}"
    upload_url: str = "https://httpbin.org/post"
    browse_url: str = "https://httpbin.org/html"
    timeout_seconds: float = 10.0


@dataclass
class OrchestratorConfig:
    static_loops: int = 5
    static_pause_seconds: float = 1.0
    drive_pause_seconds: float = 3.0
    settle_seconds: float = 0.5
    geolocation_timeout_seconds: float = 5.0


@dataclass
class GeolocationConfig:
    # Without a fixed survey point no position is captured.
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    accuracy: Optional[float] = None


@dataclass
class DatabaseConfig:
    path: str = "/data/digiprobe.db"
    retention_days: int = 90


@dataclass
class DashboardConfig:
    port: int = 8080
    url_prefix: str = ""


@dataclass
class LoggingConfig:
    level: str = "INFO"


def _optional_float(value: Optional[str]) -> Optional[float]:
    if value is None or value.strip() == "":
        return None
    return float(value)


@dataclass
class Config:
    """Main configuration model."""

    probes: ProbeConfig = field(default_factory=ProbeConfig)
    orchestrator: OrchestratorConfig = field(default_factory=OrchestratorConfig)
    geolocation: GeolocationConfig = field(default_factory=GeolocationConfig)
    database: DatabaseConfig = field(default_factory=DatabaseConfig)
    dashboard: DashboardConfig = field(default_factory=DashboardConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    @classmethod
    def default(cls) -> "Config":
        return cls()

    @classmethod
    def from_env(cls) -> "Config":
        """Load configuration from environment variables."""
        import os

        probes = ProbeConfig()
        orchestrator = OrchestratorConfig()
        return cls(
            probes=ProbeConfig(
                ping_url=os.environ.get("PROBE_PING_URL", probes.ping_url),
                download_url=os.environ.get("PROBE_DOWNLOAD_URL", probes.download_url),
                upload_url=os.environ.get("PROBE_UPLOAD_URL", probes.upload_url),
                browse_url=os.environ.get("PROBE_BROWSE_URL", probes.browse_url),
                timeout_seconds=float(os.environ.get("PROBE_TIMEOUT_SECONDS", "10")),
            ),
            orchestrator=OrchestratorConfig(
                static_loops=int(os.environ.get("STATIC_LOOPS", str(orchestrator.static_loops))),
                static_pause_seconds=float(os.environ.get("STATIC_PAUSE_SECONDS", "1.0")),
                drive_pause_seconds=float(os.environ.get("DRIVE_PAUSE_SECONDS", "3.0")),
                settle_seconds=float(os.environ.get("SETTLE_SECONDS", "0.5")),
                geolocation_timeout_seconds=float(os.environ.get("GEOLOCATION_TIMEOUT_SECONDS", "5.0")),
            ),
            geolocation=GeolocationConfig(
                latitude=_optional_float(os.environ.get("SURVEY_LATITUDE")),
                longitude=_optional_float(os.environ.get("SURVEY_LONGITUDE")),
                accuracy=_optional_float(os.environ.get("SURVEY_ACCURACY")),
            ),
            database=DatabaseConfig(
                path=os.environ.get("DB_PATH", "/data/digiprobe.db"),
                retention_days=int(os.environ.get("DB_RETENTION_DAYS", "90")),
            ),
            dashboard=DashboardConfig(
                port=int(os.environ.get("DASHBOARD_PORT", "8080")),
                url_prefix=os.environ.get("URL_PREFIX", ""),
            ),
            logging=LoggingConfig(
                level=os.environ.get("LOG_LEVEL", "INFO"),
            ),
        )

    @classmethod
    def load(cls, path: str) -> "Config":
        """Load configuration from YAML file, applying defaults for missing fields."""
        with open(path, "r") as f:
            data = yaml.safe_load(f) or {}

        def section(name: str, kind):
            values = data.get(name, {}) or {}
            return kind(**{k: v for k, v in values.items() if k in kind.__dataclass_fields__})

        return cls(
            probes=section("probes", ProbeConfig),
            orchestrator=section("orchestrator", OrchestratorConfig),
            geolocation=section("geolocation", GeolocationConfig),
            database=section("database", DatabaseConfig),
            dashboard=section("dashboard", DashboardConfig),
            logging=section("logging", LoggingConfig),
        )

    def validate(self) -> List[str]:
        """Validate configuration, returning a list of error messages."""
        errors: List[str] = []

        if "{size}" not in self.probes.download_url:
            errors.append("download_url must contain a {size} placeholder")

        if self.probes.timeout_seconds <= 0:
            errors.append("timeout_seconds must be positive")

        if self.orchestrator.static_loops < 1:
            errors.append("static_loops must be at least 1")

        for name in ("static_pause_seconds", "drive_pause_seconds",
                     "settle_seconds", "geolocation_timeout_seconds"):
            if getattr(self.orchestrator, name) < 0:
                errors.append(f"{name} must be non-negative")

        if (self.geolocation.latitude is None) != (self.geolocation.longitude is None):
            errors.append("latitude and longitude must be set together")
        elif self.geolocation.latitude is not None:
            if not (-90 <= self.geolocation.latitude <= 90):
                errors.append(f"Invalid latitude: {self.geolocation.latitude}")
            if not (-180 <= self.geolocation.longitude <= 180):
                errors.append(f"Invalid longitude: {self.geolocation.longitude}")

        if self.database.retention_days < 0:
            errors.append("retention_days must be non-negative")

        if not (1 <= self.dashboard.port <= 65535):
            errors.append(f"Invalid port number: {self.dashboard.port}")

        return errors

    def to_dict(self) -> dict:
        """Serialise to a plain dict (YAML-compatible)."""
        return {
            "probes": {
                "ping_url": self.probes.ping_url,
                "download_url": self.probes.download_url,
                "upload_url": self.probes.upload_url,
                "browse_url": self.probes.browse_url,
                "timeout_seconds": self.probes.timeout_seconds,
            },
            "orchestrator": {
                "static_loops": self.orchestrator.static_loops,
                "static_pause_seconds": self.orchestrator.static_pause_seconds,
                "drive_pause_seconds": self.orchestrator.drive_pause_seconds,
                "settle_seconds": self.orchestrator.settle_seconds,
                "geolocation_timeout_seconds": self.orchestrator.geolocation_timeout_seconds,
            },
            "geolocation": {
                "latitude": self.geolocation.latitude,
                "longitude": self.geolocation.longitude,
                "accuracy": self.geolocation.accuracy,
            },
            "database": {
                "path": self.database.path,
                "retention_days": self.database.retention_days,
            },
            "dashboard": {
                "port": self.dashboard.port,
                "url_prefix": self.dashboard.url_prefix,
            },
            "logging": {"level": self.logging.level},
        }
