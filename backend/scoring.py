"""AegisGrid Backend — Route Risk Scoring & Selection

Distance-decayed, category-weighted, time-modulated additive risk model.
Every function here is pure: the hour of day is always passed in, and the
report set is only read. Malformed input degrades to a defined default
instead of raising.
"""

import logging
import math
import numbers
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Iterable, Optional, Sequence

import numpy as np

from config import (
    TIME_OF_DAY_BANDS, DEFAULT_BASELINE, BASELINE_SCALE,
    EARTH_RADIUS_M, DECAY_RADIUS_M, DEFAULT_SEVERITY, MAX_ROUTE_SAMPLES,
    CATEGORY_WEIGHTS, CATEGORY_KEYWORD_WEIGHTS, DEFAULT_CATEGORY_WEIGHT,
    SOS_NEARBY_RADIUS_M, SOS_NEARBY_LIMIT,
)

logger = logging.getLogger("aegisgrid.scoring")

RISK_MIN = 0.0
RISK_MAX = 100.0


def _field(obj: Any, name: str, default: Any = None) -> Any:
    """Read a field from either a dict (raw JSON) or a model instance."""
    if isinstance(obj, dict):
        return obj.get(name, default)
    return getattr(obj, name, default)


def _clamp(value: float, lo: float = RISK_MIN, hi: float = RISK_MAX) -> float:
    return max(lo, min(hi, value))


def current_hour() -> int:
    """Local wall-clock hour (0-23). Callers resolve this once per request."""
    return datetime.now().hour


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
#  Building blocks
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━

def haversine_m(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Great-circle distance in meters (Haversine formula)."""
    dlat = math.radians(lat2 - lat1)
    dlon = math.radians(lon2 - lon1)
    a = (math.sin(dlat / 2) ** 2
         + math.cos(math.radians(lat1))
         * math.cos(math.radians(lat2))
         * math.sin(dlon / 2) ** 2)
    # Floating-point overshoot can push `a` just past 1
    a = max(0.0, min(1.0, a))
    return 2 * EARTH_RADIUS_M * math.asin(math.sqrt(a))


def time_of_day_baseline(hour: int) -> float:
    """Baseline risk component for an hour of day (max 0.95 * 35 = 33.25).

    Anything that is not an integer hour gets the 0.50 default band.
    """
    if isinstance(hour, bool) or not isinstance(hour, numbers.Integral):
        return DEFAULT_BASELINE * BASELINE_SCALE
    for start, end, level in TIME_OF_DAY_BANDS:
        if start <= hour < end:
            return level * BASELINE_SCALE
    return DEFAULT_BASELINE * BASELINE_SCALE


def category_weight(category: Any) -> float:
    """Severity weight for a report category.

    Known categories resolve by exact label. Anything else falls back to the
    legacy keyword match so older or free-text labels keep their weight.
    """
    if not isinstance(category, str):
        return DEFAULT_CATEGORY_WEIGHT
    weight = CATEGORY_WEIGHTS.get(category)
    if weight is not None:
        return weight
    for keyword, kw_weight in CATEGORY_KEYWORD_WEIGHTS:
        if keyword in category:
            return kw_weight
    return DEFAULT_CATEGORY_WEIGHT


def effective_severity(severity: Any) -> float:
    """Report severity as a positive finite number, else the default (2)."""
    if isinstance(severity, bool):
        return float(DEFAULT_SEVERITY)
    try:
        value = float(severity)
    except (TypeError, ValueError):
        return float(DEFAULT_SEVERITY)
    if not math.isfinite(value) or value <= 0:
        return float(DEFAULT_SEVERITY)
    return value


def spatial_decay(distance_m: float) -> float:
    """Gaussian falloff with a 70 m characteristic radius."""
    return math.exp(-((distance_m / DECAY_RADIUS_M) ** 2))


def _report_coords(report: Any) -> Optional[tuple[float, float]]:
    try:
        lat = float(_field(report, "lat"))
        lon = float(_field(report, "lon"))
    except (TypeError, ValueError):
        return None
    if not (math.isfinite(lat) and math.isfinite(lon)):
        return None
    return lat, lon


def report_contribution(lat: float, lon: float, report: Any) -> float:
    """Risk added by a single report at a point. 0 for unusable reports."""
    coords = _report_coords(report)
    if coords is None:
        return 0.0
    distance = haversine_m(lat, lon, coords[0], coords[1])
    if not math.isfinite(distance):
        return 0.0
    weight = category_weight(_field(report, "category"))
    severity = effective_severity(_field(report, "severity"))
    return (weight * severity / 3.0) * spatial_decay(distance)


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
#  Point & route risk
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━

def _coord_pair(point: Any) -> Optional[tuple[float, float]]:
    """First two items of `point` as finite floats, else None."""
    try:
        a, b = float(point[0]), float(point[1])
    except (TypeError, ValueError, IndexError, KeyError):
        return None
    if not (math.isfinite(a) and math.isfinite(b)):
        return None
    return a, b


def point_risk(point: Sequence[float], hour: int, reports: Iterable[Any]) -> float:
    """Instantaneous risk (0-100) at a (lat, lon) point for the given hour.

    A point that is not a pair of finite numbers scores 0.
    """
    coords = _coord_pair(point)
    if coords is None:
        return 0.0
    lat, lon = coords
    score = time_of_day_baseline(hour)
    for report in reports or ():
        score += report_contribution(lat, lon, report)
    if not math.isfinite(score):
        return RISK_MAX
    return _clamp(score)


def _geometry_points(geometry: Any) -> list:
    """Accept a GeoJSON LineString dict or a bare list of [lon, lat] pairs."""
    if geometry is None:
        return []
    if isinstance(geometry, dict):
        coords = geometry.get("coordinates")
        return list(coords) if isinstance(coords, (list, tuple)) else []
    try:
        return list(geometry)
    except TypeError:
        return []


def sample_indices(point_count: int, max_samples: int = MAX_ROUTE_SAMPLES) -> range:
    """Evenly strided indices, never more than `max_samples` of them."""
    if point_count <= 0:
        return range(0)
    stride = max(1, point_count // max_samples)
    if math.ceil(point_count / stride) > max_samples:
        stride = math.ceil(point_count / max_samples)
    return range(0, point_count, stride)


def route_risk(
    geometry: Any,
    reports: Iterable[Any],
    hour: int,
    point_risk_fn: Optional[Callable[[Sequence[float], int, Sequence[Any]], float]] = None,
) -> float:
    """Mean point risk (0-100) over at most 50 samples of a route polyline.

    `geometry` coordinates are (lon, lat) as GeoJSON orders them.
    Routes with fewer than 2 points score 0.
    """
    points = _geometry_points(geometry)
    if len(points) < 2:
        return 0.0

    risk_fn = point_risk_fn or point_risk
    report_list = list(reports)

    samples = []
    for i in sample_indices(len(points)):
        # GeoJSON order is (lon, lat)
        lonlat = _coord_pair(points[i])
        if lonlat is None:
            continue
        samples.append(risk_fn((lonlat[1], lonlat[0]), hour, report_list))

    if not samples:
        return 0.0
    return _clamp(float(np.mean(samples)))


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
#  Route selection
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━

@dataclass(frozen=True)
class RouteSelection:
    fastest: Any
    safest: Any
    fastest_index: int
    safest_index: int

    @property
    def same_route(self) -> bool:
        # Index identity: two distinct routes may share duration and risk
        return self.fastest_index == self.safest_index


def _metric(candidate: Any, name: str) -> float:
    try:
        value = float(_field(candidate, name))
    except (TypeError, ValueError):
        return math.inf
    return value if math.isfinite(value) else math.inf


def select_fastest_and_safest(candidates: Sequence[Any]) -> Optional[RouteSelection]:
    """Pick the fastest and safest of scored candidates.

    Each candidate exposes `duration` (seconds) and `risk` (0-100).
    Fastest: lowest duration, first in input order on ties.
    Safest: lowest risk, then lowest duration, then input order.
    Returns None for an empty list.
    """
    if not candidates:
        return None

    indexed = list(enumerate(candidates))
    fastest_idx, fastest = min(indexed, key=lambda ic: (_metric(ic[1], "duration"), ic[0]))
    safest_idx, safest = min(
        indexed,
        key=lambda ic: (_metric(ic[1], "risk"), _metric(ic[1], "duration"), ic[0]),
    )
    return RouteSelection(
        fastest=fastest,
        safest=safest,
        fastest_index=fastest_idx,
        safest_index=safest_idx,
    )


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
#  SOS context
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━

def nearby_reports(
    lat: float,
    lon: float,
    reports: Iterable[Any],
    radius_m: float = SOS_NEARBY_RADIUS_M,
    limit: int = SOS_NEARBY_LIMIT,
) -> list[dict]:
    """Closest reports within `radius_m`, summarised for an SOS message."""
    found = []
    for r in reports:
        coords = _report_coords(r)
        if coords is None:
            continue
        d = haversine_m(lat, lon, coords[0], coords[1])
        if d <= radius_m:
            found.append((d, r))
    found.sort(key=lambda dr: dr[0])
    return [
        {
            "category": _field(r, "category", "Other"),
            "severity": _field(r, "severity", DEFAULT_SEVERITY),
            "meters_away": round(d),
            "createdAt": _field(r, "createdAt", 0),
        }
        for d, r in found[:limit]
    ]
