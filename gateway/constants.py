"""
gateway/constants.py

Tiling, dispatch and presentation constants used by the alert pipeline.
All numeric values must be referenced from this module.
Magic numbers in business logic are prohibited.
"""

# ── Geo tiling ───────────────────────────────────────────────
TILE_STEP_DEG: float = 0.05  # ~5.5 km at the equator
METERS_PER_DEG_LAT: float = 111_320.0
TILE_SIZE_M: float = TILE_STEP_DEG * METERS_PER_DEG_LAT
DEFAULT_TILE_RING: int = 1  # 3x3 neighborhood
MAX_TILE_RING: int = 3  # 7x7 neighborhood
TILE_TOPIC_PREFIX: str = "missing_geo_"
EARTH_RADIUS_M: float = 6_371_000.0

# ── Push dispatch ────────────────────────────────────────────
PUSH_BATCH_SIZE: int = 100
DEFAULT_PUSH_TTL_SECONDS: int = 900
MAX_RECIPIENTS: int = 10_000
PUBLIC_ALERT_CHANNEL_ID: str = "alerts-high"
MISSING_ALERT_CHANNEL_ID: str = "missing_alerts"

# ── Recipient selection fallbacks ────────────────────────────
WIDEN_FACTOR: float = 1.3
MAX_WIDEN_STEPS: int = 2
CITY_SAMPLE_LIMIT: int = 1000

# ── Alert footprints ─────────────────────────────────────────
FOOTPRINT_RETENTION_DAYS: int = 90
FOOTPRINT_DEFAULT_RADIUS_M: int = 1000
FOOTPRINT_DEFAULT_LIMIT: int = 2000
FOOTPRINT_MAX_LIMIT: int = 10_000

# ── Alert presentation ───────────────────────────────────────
DEFAULT_SEVERITY: str = "medium"
DEFAULT_KIND: str = "publicIncident"
DEFAULT_RADIUS_M: int = 1000
RADIUS_BY_KIND: dict[str, int] = {
    "publicIncident": 1000,
    "missingChild": 3000,
    "missingAnimal": 3000,
    "lostObject": 3000,
    "missing": 3000,
}
MISSING_KINDS: frozenset[str] = frozenset(
    {"missingChild", "missingAnimal", "lostObject", "missing"}
)
COLOR_HIGH_SEVERITY: str = "#DC3545"
COLOR_DEFAULT: str = "#FFA500"
HIGH_SEVERITIES: frozenset[str] = frozenset({"high", "grave"})
LOW_SEVERITIES: frozenset[str] = frozenset({"low", "minor"})
APP_NAME: str = "VigiApp"
FALLBACK_LOCAL_LABEL: str = "sua região"

# ── Alert categories / log methods ───────────────────────────
CATEGORY_PUBLIC: str = "publicAlert"
CATEGORY_MISSING: str = "missing"

# ── Device registry ──────────────────────────────────────────
FCM_TOKEN_MARKER: str = ":APA91"
FCM_TOKEN_MIN_LEN: int = 80
CEP_DIGITS: int = 8
DEFAULT_CHANNELS: dict[str, bool] = {"publicAlerts": True, "missingAlerts": True}
