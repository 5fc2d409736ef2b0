"""AegisGrid Backend — Upstream Fetchers (Nominatim geocoding, OSRM routing)"""

import re
import logging
import threading
from typing import Any, Optional

import httpx
from cachetools import TTLCache

from config import (
    NOMINATIM_BASE, NOMINATIM_USER_AGENT, OSRM_BASE, HTTP_TIMEOUT,
    CACHE_TTL_SECONDS, PROXY_CACHE_SIZE,
)
from errors import ApiError, INVALID_INPUT, UPSTREAM_ERROR, UPSTREAM_TIMEOUT

logger = logging.getLogger("aegisgrid.fetchers")

# Shared async HTTP client
client = httpx.AsyncClient(timeout=HTTP_TIMEOUT)

# Upstream proxy responses (geocode, reverse, route). Errors are never stored.
proxy_cache = TTLCache(maxsize=PROXY_CACHE_SIZE, ttl=CACHE_TTL_SECONDS)
_PROXY_CACHE_LOCK = threading.Lock()

_COORD_RE = re.compile(r"^-?\d+(\.\d+)?,-?\d+(\.\d+)?$")

_NOMINATIM_HEADERS = {
    "User-Agent": NOMINATIM_USER_AGENT,
    "Accept-Language": "en",
}


def clamp_str(value: Any, max_len: int) -> str:
    """Non-strings become "", long strings are truncated."""
    if not isinstance(value, str):
        return ""
    return value[:max_len]


def is_valid_coord(value: str) -> bool:
    """True for a plain "lon,lat" pair of decimal numbers."""
    return bool(_COORD_RE.match(str(value)))


async def _get_json(url: str, label: str, params: Optional[dict] = None,
                    headers: Optional[dict] = None) -> Any:
    """GET a JSON document, mapping transport failures onto ApiError kinds."""
    try:
        r = await client.get(url, params=params, headers=headers)
    except httpx.TimeoutException as e:
        logger.warning(f"{label} timed out: {e}")
        raise ApiError(UPSTREAM_TIMEOUT, f"{label} timed out", str(e))
    except httpx.HTTPError as e:
        logger.warning(f"{label} transport error: {e}")
        raise ApiError(UPSTREAM_ERROR, f"{label} failed", str(e))

    if r.status_code != 200:
        logger.warning(f"{label} returned {r.status_code}: {r.text[:200]}")
        raise ApiError(UPSTREAM_ERROR, f"{label} failed", r.text[:500])

    try:
        return r.json()
    except ValueError as e:
        raise ApiError(UPSTREAM_ERROR, f"{label} failed", f"invalid JSON: {e}")


async def _cached_get_json(cache_key: str, url: str, label: str,
                           params: Optional[dict] = None,
                           headers: Optional[dict] = None) -> Any:
    with _PROXY_CACHE_LOCK:
        cached = proxy_cache.get(cache_key)
    if cached is not None:
        logger.debug(f"Cache hit: {cache_key}")
        return cached

    data = await _get_json(url, label, params=params, headers=headers)
    with _PROXY_CACHE_LOCK:
        proxy_cache[cache_key] = data
    return data


# ─────────────────────────── Geocoding (Nominatim) ──────────────

async def geocode_search(query: str) -> list[dict]:
    """Forward-geocode free text. Returns Nominatim's result list (max 5)."""
    q = clamp_str(query, 160).strip()
    if not q:
        raise ApiError(INVALID_INPUT, "Missing q")

    return await _cached_get_json(
        f"geocode:{q}",
        f"{NOMINATIM_BASE}/search",
        "Geocode",
        params={"format": "json", "limit": 5, "q": q},
        headers=_NOMINATIM_HEADERS,
    )


async def reverse_geocode(lat: float, lon: float) -> dict:
    """Reverse-geocode a point. Cached on 5-decimal rounded coordinates."""
    return await _cached_get_json(
        f"reverse:{lat:.5f},{lon:.5f}",
        f"{NOMINATIM_BASE}/reverse",
        "Reverse geocode",
        params={"format": "json", "lat": lat, "lon": lon},
        headers=_NOMINATIM_HEADERS,
    )


# ─────────────────────────── Routing (OSRM) ─────────────────────

async def fetch_osrm_route(start: str, end: str, alternatives: bool = True) -> dict:
    """Raw OSRM driving route response for "lon,lat" endpoints."""
    start = clamp_str(start, 64)
    end = clamp_str(end, 64)
    if not is_valid_coord(start) or not is_valid_coord(end):
        raise ApiError(INVALID_INPUT, "Invalid start/end. Use lon,lat.")

    return await _cached_get_json(
        f"route:{start}->{end}:alt={alternatives}",
        f"{OSRM_BASE}/route/v1/driving/{start};{end}",
        "Route",
        params={
            "overview": "full",
            "geometries": "geojson",
            "steps": "false",
            "alternatives": "true" if alternatives else "false",
        },
        headers={"User-Agent": NOMINATIM_USER_AGENT},
    )


def _drawable_geometry(geometry: Any) -> bool:
    if not isinstance(geometry, dict):
        return False
    coords = geometry.get("coordinates")
    return isinstance(coords, list) and len(coords) >= 2


def parse_osrm_routes(data: Any) -> list[dict]:
    """Extract usable candidates from an OSRM response.

    Each candidate: {index, geometry, duration, distance}. Routes without a
    numeric duration or without a polyline of at least 2 points are dropped;
    `index` keeps the router's position.
    """
    if not isinstance(data, dict) or data.get("code") != "Ok":
        return []
    candidates = []
    for i, route in enumerate(data.get("routes") or []):
        if not isinstance(route, dict):
            continue
        duration = route.get("duration")
        if not isinstance(duration, (int, float)):
            continue
        geometry = route.get("geometry")
        if not _drawable_geometry(geometry):
            logger.warning(f"Dropping OSRM route {i}: no usable geometry")
            continue
        distance = route.get("distance")
        candidates.append({
            "index": i,
            "geometry": geometry,
            "duration": float(duration),
            "distance": float(distance) if isinstance(distance, (int, float)) else None,
        })
    return candidates
