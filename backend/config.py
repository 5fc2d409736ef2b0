"""AegisGrid Backend — Configuration & Constants"""

import os
from pathlib import Path
from dotenv import load_dotenv

# Load .env from project root (one level up from backend/)
_env_path = Path(__file__).resolve().parent.parent / ".env"
load_dotenv(_env_path)

# ── Server ──
PORT = int(os.environ.get("PORT", "3000"))
HOST = os.environ.get("HOST", "0.0.0.0")
LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO").upper()
RATE_LIMIT = int(os.environ.get("RATE_LIMIT", "60"))  # requests per minute per IP
HTTP_TIMEOUT = float(os.environ.get("HTTP_TIMEOUT", "15"))
# Comma-separated browser origins; empty = the local dev servers below
CORS_ORIGINS = [
    o.strip() for o in os.environ.get("CORS_ORIGINS", "").split(",") if o.strip()
] or [
    f"http://{host}:{port}"
    for host in ("localhost", "127.0.0.1")
    for port in (*range(3000, 3010), *range(5173, 5180))
]

# ── Upstream services ──
# Nominatim usage policy requires an identifying User-Agent.
NOMINATIM_USER_AGENT = os.environ.get(
    "NOMINATIM_USER_AGENT", "AegisGrid/0.1 (contact: you@example.com)"
)
NOMINATIM_BASE = os.environ.get("NOMINATIM_BASE", "https://nominatim.openstreetmap.org")
# Public OSRM demo server (driving profile)
OSRM_BASE = os.environ.get("OSRM_BASE", "https://router.project-osrm.org")

# ── AI SOS (optional) ──
GEMINI_API_KEY = os.environ.get("GEMINI_API_KEY", "")
GEMINI_MODEL = os.environ.get("GEMINI_MODEL", "gemini-2.0-flash")

# ── Storage / caching ──
CACHE_TTL_SECONDS = int(os.environ.get("CACHE_TTL_SECONDS", "300"))
PROXY_CACHE_SIZE = int(os.environ.get("PROXY_CACHE_SIZE", "500"))
REPORTS_PATH = os.environ.get("REPORTS_PATH", "")  # empty = memory only
MAX_REPORTS = int(os.environ.get("MAX_REPORTS", "1000"))

# ── Risk model ──
# Time-of-day bands: (start_hour inclusive, end_hour exclusive, baseline 0..1)
TIME_OF_DAY_BANDS = [
    (0, 5, 0.95),
    (5, 7, 0.60),
    (7, 17, 0.25),
    (17, 20, 0.55),
    (20, 24, 0.85),
]
DEFAULT_BASELINE = 0.50
BASELINE_SCALE = 35.0

EARTH_RADIUS_M = 6_371_000.0
DECAY_RADIUS_M = 70.0
DEFAULT_SEVERITY = 2
MAX_ROUTE_SAMPLES = 50

REPORT_CATEGORIES = [
    "Broken streetlight",
    "Harassment hotspot",
    "Stalking / followed",
    "CCTV not working",
    "Unsafe alley / poor visibility",
    "Other",
]

# Exact category → weight
CATEGORY_WEIGHTS = {
    "Broken streetlight": 10.0,
    "Harassment hotspot": 18.0,
    "Stalking / followed": 20.0,
    "CCTV not working": 12.0,
    "Unsafe alley / poor visibility": 14.0,
    "Other": 12.0,
}

# Keyword fallback for labels outside the closed set, checked in order
CATEGORY_KEYWORD_WEIGHTS = [
    ("Harassment", 18.0),
    ("Stalking", 20.0),
    ("Broken", 10.0),
    ("CCTV", 12.0),
    ("Unsafe", 14.0),
]
DEFAULT_CATEGORY_WEIGHT = 12.0

# ── SOS ──
SOS_NEARBY_RADIUS_M = 150.0
SOS_NEARBY_LIMIT = 5

# Fallback guidance when no AI key is configured
SOS_TEMPLATE_GUIDANCE = [
    "If you are in immediate danger: call local emergency number (e.g., UK 999/112).",
    "Move to a well-lit, populated area if it's safe to do so. Stay on the line with a trusted contact.",
    "If followed: enter a public place, ask staff for help, and avoid going home directly.",
]

# Guidance used when the AI reply cannot be parsed
SOS_PARSE_FAILURE_GUIDANCE = [
    "If in immediate danger, call local emergency services now.",
    "Move to a safer, populated place if it's safe.",
    "Stay on the line with someone you trust; keep sharing your location.",
]
