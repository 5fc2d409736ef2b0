"""AegisGrid Backend — FastAPI Routes"""

import asyncio
import logging
import math
import time
from datetime import datetime, timezone

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from config import RATE_LIMIT, GEMINI_API_KEY, CORS_ORIGINS
from models import (
    ReportCreate, Report, ReportListResponse, ClearReportsResponse,
    SafeRouteRequest, SafeRouteResponse, ScoredRoute,
    RouteSummary, RouteSummaryItem, SOSRequest, SOSResponse,
)
from data_fetchers import (
    geocode_search, reverse_geocode, fetch_osrm_route, parse_osrm_routes,
)
from errors import ApiError, INVALID_INPUT, NO_ROUTES, RATE_LIMITED, INTERNAL_ERROR
from report_store import report_store
from scoring import (
    route_risk, select_fastest_and_safest, nearby_reports, current_hour,
)
from sos import generate_sos

logger = logging.getLogger("aegisgrid")


# ─────────────────────────── App Setup ──────────────────────────

app = FastAPI(title="AegisGrid Safe Routing API", version="0.1.0")

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.on_event("startup")
async def startup_event():
    logger.info(f"AegisGrid backend ready ({len(report_store)} reports loaded)")
    logger.info(f"AI SOS enabled: {bool(GEMINI_API_KEY)} (set GEMINI_API_KEY to enable)")


# ─────────────────────────── Error Envelope ─────────────────────

@app.exception_handler(ApiError)
async def api_error_handler(request: Request, exc: ApiError):
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    detail = "; ".join(
        f"{'.'.join(str(p) for p in err.get('loc', ()))}: {err.get('msg', '')}"
        for err in exc.errors()
    )
    err = ApiError(INVALID_INPUT, "Invalid request", detail)
    return JSONResponse(status_code=err.status_code, content=err.to_dict())


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.exception(f"Unhandled error on {request.url.path}")
    err = ApiError(INTERNAL_ERROR, "Internal error", str(exc))
    return JSONResponse(status_code=err.status_code, content=err.to_dict())


# ─────────────────────────── Rate Limiting ──────────────────────

_rate_store: dict[str, list[float]] = {}
RATE_WINDOW = 60  # seconds
_RATE_EVICT_INTERVAL = 300  # evict stale IPs every 5 minutes
_last_rate_evict = 0.0


@app.middleware("http")
async def rate_limit_middleware(request: Request, call_next):
    client_ip = request.client.host if request.client else "unknown"
    now = time.time()

    # Periodically evict stale IPs to prevent memory leak
    global _last_rate_evict
    if now - _last_rate_evict > _RATE_EVICT_INTERVAL:
        stale_ips = [ip for ip, timestamps in _rate_store.items()
                     if not timestamps or now - timestamps[-1] > RATE_WINDOW * 2]
        for ip in stale_ips:
            del _rate_store[ip]
        _last_rate_evict = now

    recent = [t for t in _rate_store.get(client_ip, []) if now - t < RATE_WINDOW]
    _rate_store[client_ip] = recent

    if len(recent) >= RATE_LIMIT:
        logger.warning(
            f"Rate limit hit: {client_ip} made {len(recent)} requests in {RATE_WINDOW}s "
            f"({request.method} {request.url.path})"
        )
        err = ApiError(RATE_LIMITED, "Rate limit exceeded", "Try again in a minute.")
        return JSONResponse(status_code=err.status_code, content=err.to_dict())

    recent.append(now)
    return await call_next(request)


# ─────────────────────────── Utility Endpoints ──────────────────

@app.get("/api/health")
async def health():
    return {"ok": True, "time": datetime.now(timezone.utc).isoformat()}


@app.get("/api/geocode")
async def geocode(q: str = ""):
    return await geocode_search(q)


@app.get("/api/reverse")
async def reverse(lat: float, lon: float):
    if not (math.isfinite(lat) and math.isfinite(lon)):
        raise ApiError(INVALID_INPUT, "Missing/invalid lat/lon")
    return await reverse_geocode(lat, lon)


# ─────────────────────────── Routing ────────────────────────────

@app.get("/api/route")
async def route_proxy(start: str = "", end: str = "", alternatives: str = "1"):
    """Raw OSRM proxy: /api/route?start=lon,lat&end=lon,lat&alternatives=1"""
    return await fetch_osrm_route(start, end, alternatives == "1")


def _minutes(seconds: float) -> float:
    return round(seconds / 60 * 10) / 10


def _score_candidates(candidates: list[dict], reports, hour: int) -> list[ScoredRoute]:
    return [
        ScoredRoute(
            index=c["index"],
            duration=c["duration"],
            distance=c["distance"],
            risk=route_risk(c["geometry"], reports, hour),
            geometry=c["geometry"],
        )
        for c in candidates
    ]


@app.post("/api/route/safe", response_model=SafeRouteResponse)
async def safe_route(req: SafeRouteRequest):
    """Score every OSRM alternative against current reports; pick fastest & safest."""
    data = await fetch_osrm_route(req.start, req.end, req.alternatives)
    candidates = parse_osrm_routes(data)
    if not candidates:
        code = str(data.get("code", "")) if isinstance(data, dict) else ""
        detail = "No route had usable geometry" if code == "Ok" else code
        raise ApiError(NO_ROUTES, "No routes returned.", detail)

    hour = req.hour if req.hour is not None else current_hour()
    reports = report_store.snapshot()

    # Scoring is CPU-bound; run it off the event loop
    loop = asyncio.get_running_loop()
    scored = await loop.run_in_executor(None, _score_candidates, candidates, reports, hour)
    selection = select_fastest_and_safest(scored)
    fastest, safest = selection.fastest, selection.safest

    logger.info(
        f"Route selection: {len(scored)} candidates, {len(reports)} reports, hour {hour} → "
        f"fastest #{fastest.index} ({fastest.risk:.1f}), safest #{safest.index} ({safest.risk:.1f})"
    )

    return SafeRouteResponse(
        fastest=fastest,
        safest=safest,
        sameRoute=selection.same_route,
        routeCount=len(scored),
        hour=hour,
        summary=RouteSummary(
            fastest=RouteSummaryItem(durationMin=_minutes(fastest.duration), risk=round(fastest.risk)),
            safest=RouteSummaryItem(durationMin=_minutes(safest.duration), risk=round(safest.risk)),
        ),
    )


# ─────────────────────────── User Reports ───────────────────────

@app.get("/api/reports", response_model=ReportListResponse)
async def list_reports():
    reports = list(report_store.snapshot())
    return ReportListResponse(reports=reports, count=len(reports))


@app.post("/api/reports", response_model=Report)
async def submit_report(report: ReportCreate):
    return report_store.add(report)


@app.delete("/api/reports", response_model=ClearReportsResponse)
async def clear_reports():
    return ClearReportsResponse(cleared=report_store.clear())


# ─────────────────────────── SOS ────────────────────────────────

@app.post("/api/sos", response_model=SOSResponse)
async def sos_message(req: SOSRequest):
    """Generate an SOS message; AI-written when a Gemini key is configured."""
    if not req.reportsNearby:
        nearby = nearby_reports(req.lat, req.lon, report_store.snapshot())
        req = req.model_copy(update={"reportsNearby": nearby})
    return await generate_sos(req)
