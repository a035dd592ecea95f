"""Shared constants for FormGuard.

All score thresholds, page sizes, limits and display ladders used across
modules are defined here. No magic numbers in other modules; import from here.
"""

# ─── Risk level buckets ──────────────────────────────────────────────────────

# Lower bounds (inclusive) of each risk bucket. Buckets are contiguous and
# exhaustive over [0, 100]: anything below RISK_MEDIUM_MIN is "low".
RISK_CRITICAL_MIN: int = 90
RISK_HIGH_MIN: int = 70
RISK_MEDIUM_MIN: int = 50

RISK_SCORE_MIN: int = 0
RISK_SCORE_MAX: int = 100

# Fallback risk score for blocks written before risk_score was persisted.
# Keyed by the block's detection_confidence; anything else maps to the default.
CONFIDENCE_RISK_SCORES: dict[str, int] = {
    "high": 100,
    "medium": 80,
    "low": 70,
}
CONFIDENCE_RISK_SCORE_DEFAULT: int = 50

# ─── Pagination ──────────────────────────────────────────────────────────────

DEFAULT_PAGE_SIZE: int = 15
MAX_PAGE_SIZE: int = 100

# ─── Source limits ───────────────────────────────────────────────────────────

# Recent detections pulled per refresh (the blocked-validations ?limit= param).
DEFAULT_DETECTION_LIMIT: int = 100
MAX_DETECTION_LIMIT: int = 1_000

# ─── Export ──────────────────────────────────────────────────────────────────

DEFAULT_EXPORT_LIMIT: int = 1_000
MIN_EXPORT_LIMIT: int = 1
MAX_EXPORT_LIMIT: int = 5_000

# ─── Time window ─────────────────────────────────────────────────────────────

# Dashboard date range when the caller does not supply one.
DEFAULT_WINDOW_DAYS: int = 7

# ─── Urgency tiers (seconds remaining before an active block expires) ────────

URGENCY_IMMINENT_S: int = 15 * 60
URGENCY_SOON_S: int = 60 * 60

# ─── Progressive timeout ladder ──────────────────────────────────────────────

# Block duration applied by the enforcement system for the Nth offense within
# 24 hours. Offenses beyond the ladder stay on the last rung.
PROGRESSIVE_TIMEOUTS: tuple[str, ...] = ("1h", "4h", "8h", "12h", "24h")

# ─── Display ─────────────────────────────────────────────────────────────────

# Triggers longer than this are truncated (with "...") in event payloads.
TRIGGER_DISPLAY_MAX_CHARS: int = 80

# ─── Refresh ─────────────────────────────────────────────────────────────────

DEFAULT_REFRESH_INTERVAL_S: float = 30.0
MIN_REFRESH_INTERVAL_S: float = 5.0
DEFAULT_SOURCE_TIMEOUT_S: float = 10.0
