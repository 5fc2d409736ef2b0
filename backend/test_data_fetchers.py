"""Upstream fetcher tests: httpx.MockTransport stands in for Nominatim/OSRM."""

import asyncio

import httpx
import pytest
from cachetools import TTLCache

import data_fetchers
from data_fetchers import (
    clamp_str, is_valid_coord, parse_osrm_routes,
    geocode_search, reverse_geocode, fetch_osrm_route, proxy_cache,
)
from errors import ApiError


def _mock_client(monkeypatch, handler):
    calls = []

    def _record(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        return handler(request)

    monkeypatch.setattr(
        data_fetchers, "client", httpx.AsyncClient(transport=httpx.MockTransport(_record))
    )
    return calls


# ─────────────────────────── Helpers ────────────────────────────

def test_clamp_str():
    assert clamp_str("abcdef", 3) == "abc"
    assert clamp_str("ab", 3) == "ab"
    assert clamp_str(None, 3) == ""
    assert clamp_str(12, 3) == ""


@pytest.mark.parametrize("value, ok", [
    ("-0.1278,51.5074", True),
    ("13,52", True),
    ("-0.1278, 51.5074", False),
    ("abc,def", False),
    ("1.2.3,4", False),
    ("", False),
])
def test_is_valid_coord(value, ok):
    assert is_valid_coord(value) is ok


def test_parse_osrm_routes_keeps_router_index():
    data = {
        "code": "Ok",
        "routes": [
            {"duration": 600, "distance": 4000, "geometry": {"type": "LineString", "coordinates": [[0, 0], [1, 1]]}},
            {"distance": 100},  # no duration → dropped
            {"duration": 900.5, "geometry": {"type": "LineString", "coordinates": [[0, 0], [0, 1], [1, 1]]}},
        ],
    }
    routes = parse_osrm_routes(data)
    assert [r["index"] for r in routes] == [0, 2]
    assert routes[0]["distance"] == 4000.0
    assert routes[1]["distance"] is None
    assert routes[1]["duration"] == 900.5


@pytest.mark.parametrize("geometry", [
    None,
    "encoded-polyline",
    {"type": "LineString"},
    {"type": "LineString", "coordinates": []},
    {"type": "LineString", "coordinates": [[0, 0]]},
])
def test_parse_osrm_routes_drops_undrawable_geometry(geometry):
    route = {"duration": 300}
    if geometry is not None:
        route["geometry"] = geometry
    data = {"code": "Ok", "routes": [
        route,
        {"duration": 600, "geometry": {"type": "LineString", "coordinates": [[0, 0], [1, 1]]}},
    ]}
    assert [r["index"] for r in parse_osrm_routes(data)] == [1]


@pytest.mark.parametrize("data", [None, [], {"code": "NoRoute"}, {"code": "Ok", "routes": []}, {"code": "Ok"}])
def test_parse_osrm_routes_empty(data):
    assert parse_osrm_routes(data) == []


# ─────────────────────────── Nominatim ──────────────────────────

def test_geocode_requires_query():
    with pytest.raises(ApiError) as exc:
        asyncio.run(geocode_search("   "))
    assert exc.value.kind == "invalid_input"
    assert exc.value.status_code == 400


def test_geocode_sends_user_agent_and_caches(monkeypatch):
    calls = _mock_client(monkeypatch, lambda req: httpx.Response(200, json=[{"lat": "51.5", "lon": "-0.1"}]))

    first = asyncio.run(geocode_search("  London  "))
    second = asyncio.run(geocode_search("London"))

    assert first == second == [{"lat": "51.5", "lon": "-0.1"}]
    assert len(calls) == 1
    req = calls[0]
    assert req.url.path == "/search"
    assert req.url.params["q"] == "London"
    assert req.url.params["limit"] == "5"
    assert "User-Agent" in req.headers
    assert req.headers["Accept-Language"] == "en"


def test_geocode_clamps_long_query(monkeypatch):
    calls = _mock_client(monkeypatch, lambda req: httpx.Response(200, json=[]))
    asyncio.run(geocode_search("x" * 500))
    assert len(calls[0].url.params["q"]) == 160


def test_reverse_cache_key_rounds_coordinates(monkeypatch):
    calls = _mock_client(monkeypatch, lambda req: httpx.Response(200, json={"display_name": "Somewhere"}))
    asyncio.run(reverse_geocode(51.5074001, -0.1278001))
    asyncio.run(reverse_geocode(51.5074002, -0.1278002))
    assert len(calls) == 1
    assert calls[0].url.path == "/reverse"


def test_upstream_error_status(monkeypatch):
    _mock_client(monkeypatch, lambda req: httpx.Response(503, text="overloaded"))
    with pytest.raises(ApiError) as exc:
        asyncio.run(reverse_geocode(1.0, 2.0))
    assert exc.value.kind == "upstream_error"
    assert exc.value.status_code == 502
    assert exc.value.detail == "overloaded"
    assert not exc.value.retryable


def test_upstream_timeout_is_retryable(monkeypatch):
    def _timeout(req):
        raise httpx.ReadTimeout("slow", request=req)

    _mock_client(monkeypatch, _timeout)
    with pytest.raises(ApiError) as exc:
        asyncio.run(geocode_search("Paris"))
    assert exc.value.kind == "upstream_timeout"
    assert exc.value.status_code == 504
    assert exc.value.retryable


def test_errors_are_not_cached(monkeypatch):
    _mock_client(monkeypatch, lambda req: httpx.Response(500, text="boom"))
    with pytest.raises(ApiError):
        asyncio.run(geocode_search("Rome"))
    assert proxy_cache.get("geocode:Rome") is None


# ─────────────────────────── OSRM ───────────────────────────────

def test_osrm_rejects_bad_coordinates(monkeypatch):
    calls = _mock_client(monkeypatch, lambda req: httpx.Response(200, json={}))
    with pytest.raises(ApiError) as exc:
        asyncio.run(fetch_osrm_route("nope", "-0.1,51.5"))
    assert exc.value.kind == "invalid_input"
    assert calls == []


def test_osrm_request_shape(monkeypatch):
    body = {"code": "Ok", "routes": []}
    calls = _mock_client(monkeypatch, lambda req: httpx.Response(200, json=body))

    assert asyncio.run(fetch_osrm_route("-0.1,51.5", "-0.2,51.6", alternatives=False)) == body
    req = calls[0]
    assert req.url.path == "/route/v1/driving/-0.1,51.5;-0.2,51.6"
    assert req.url.params["alternatives"] == "false"
    assert req.url.params["geometries"] == "geojson"
    assert req.url.params["overview"] == "full"


def test_osrm_cache_distinguishes_alternatives(monkeypatch):
    calls = _mock_client(monkeypatch, lambda req: httpx.Response(200, json={"code": "Ok", "routes": []}))
    asyncio.run(fetch_osrm_route("1,2", "3,4", True))
    asyncio.run(fetch_osrm_route("1,2", "3,4", True))
    asyncio.run(fetch_osrm_route("1,2", "3,4", False))
    assert len(calls) == 2


def test_invalid_json_is_upstream_error(monkeypatch):
    _mock_client(monkeypatch, lambda req: httpx.Response(200, text="<html>"))
    with pytest.raises(ApiError) as exc:
        asyncio.run(fetch_osrm_route("1,2", "3,4"))
    assert exc.value.kind == "upstream_error"


# ─────────────────────────── Proxy cache ────────────────────────

def test_proxy_cache_entries_expire(monkeypatch):
    now = [1000.0]
    monkeypatch.setattr(data_fetchers, "proxy_cache", TTLCache(maxsize=10, ttl=300, timer=lambda: now[0]))
    calls = _mock_client(monkeypatch, lambda req: httpx.Response(200, json=[]))

    asyncio.run(geocode_search("Leeds"))
    now[0] += 299
    asyncio.run(geocode_search("Leeds"))
    assert len(calls) == 1

    now[0] += 2
    asyncio.run(geocode_search("Leeds"))
    assert len(calls) == 2


def test_proxy_cache_is_bounded(monkeypatch):
    monkeypatch.setattr(data_fetchers, "proxy_cache", TTLCache(maxsize=2, ttl=300))
    _mock_client(monkeypatch, lambda req: httpx.Response(200, json=[]))
    for q in ("a", "b", "c"):
        asyncio.run(geocode_search(q))
    assert len(data_fetchers.proxy_cache) == 2
    assert "geocode:a" not in data_fetchers.proxy_cache
