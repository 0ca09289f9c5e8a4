"""Quality classifier: turns raw metrics into a category, a color and map glyphs."""
from typing import Dict, Tuple

from digiprobe.models import CategoryColor, Metrics, QualityCategory

DEFAULT_GLYPH_COLOR = "#0EA5E9"
DEFAULT_GLYPH_LETTER = "W"

# Checked in order; the first group whose keywords appear in the label wins.
OPERATOR_GROUPS: Tuple[Tuple[Tuple[str, ...], str, str], ...] = (
    (("telkomsel", "telekomunikasi selular"), "T", "#ef4444"),
    (("indosat", "ooredoo", "hutchison"), "H", "#eab308"),
    (("xl", "smartfren", "axiata"), "X", "#a855f7"),
)

_CATEGORY_COLORS: Dict[QualityCategory, CategoryColor] = {
    QualityCategory.EXCELLENT: CategoryColor.BLUE,
    QualityCategory.GOOD: CategoryColor.GREEN,
    QualityCategory.FAIR: CategoryColor.YELLOW,
    QualityCategory.POOR: CategoryColor.RED,
}

_BORDER_COLORS: Dict[CategoryColor, str] = {
    CategoryColor.BLUE: "#0EA5E9",
    CategoryColor.GREEN: "#22c55e",
    CategoryColor.YELLOW: "#eab308",
    CategoryColor.RED: "#ef4444",
}


def classify(metrics: Metrics) -> QualityCategory:
    """Return the quality category for *metrics*.

    The bands are checked in order and do not cover the whole input space:
    anything that misses all three falls through to ``POOR``.
    """
    download = metrics.download_speed
    ping = metrics.ping
    mos = metrics.video_mos

    if download > 5 and ping < 20 and mos > 4:
        return QualityCategory.EXCELLENT

    if 2.5 <= download <= 5 and 20 <= ping <= 50 and 3 <= mos <= 4:
        return QualityCategory.GOOD

    if 1 <= download < 2.5 and 50 <= ping <= 100 and 2 <= mos < 3:
        return QualityCategory.FAIR

    return QualityCategory.POOR


def color_of(category: QualityCategory) -> CategoryColor:
    return _CATEGORY_COLORS[QualityCategory(category)]


def border_color_of(color: CategoryColor) -> str:
    """Hex color used to outline a map marker of the given category color."""
    return _BORDER_COLORS[CategoryColor(color)]


def glyph_of(operator_label: str) -> Dict[str, str]:
    """Return the marker letter and its color for an operator label."""
    label = operator_label.lower()
    for keywords, letter, color in OPERATOR_GROUPS:
        if any(keyword in label for keyword in keywords):
            return {"letter": letter, "color": color}

    # Non-cellular / WiFi
    first = operator_label[:1].upper()
    return {"letter": first or DEFAULT_GLYPH_LETTER, "color": DEFAULT_GLYPH_COLOR}


# ---------------------------------------------------------------------------
# Display helpers
# ---------------------------------------------------------------------------


def format_speed(speed_mbps: float) -> str:
    if speed_mbps >= 1:
        return f"{speed_mbps:.2f} Mbps"
    return f"{speed_mbps * 1000:.0f} Kbps"


def format_ping(ping_ms: float) -> str:
    return f"{ping_ms:.0f} ms"


def format_mos(mos: float) -> str:
    return f"{mos:.1f}"
