"""AegisGrid Backend — Pydantic Models"""

from typing import Optional
from pydantic import BaseModel, ConfigDict, Field, field_validator

from config import REPORT_CATEGORIES


class ReportCreate(BaseModel):
    lat: float = Field(ge=-90, le=90, allow_inf_nan=False)
    lon: float = Field(ge=-180, le=180, allow_inf_nan=False)
    category: str
    severity: int = Field(default=2, ge=1, le=3)
    note: str = Field(default="", max_length=500)

    @field_validator("category")
    @classmethod
    def _known_category(cls, v: str) -> str:
        if v not in REPORT_CATEGORIES:
            raise ValueError(f"category must be one of: {', '.join(REPORT_CATEGORIES)}")
        return v


class Report(BaseModel):
    """A stored safety report. Never mutated after creation."""

    model_config = ConfigDict(frozen=True)

    id: str
    lat: float
    lon: float
    category: str
    severity: int = 2
    note: str = ""
    createdAt: int  # epoch milliseconds


class ReportListResponse(BaseModel):
    reports: list[Report]
    count: int


class ClearReportsResponse(BaseModel):
    cleared: int


class SafeRouteRequest(BaseModel):
    start: str  # "lon,lat"
    end: str    # "lon,lat"
    alternatives: bool = True
    hour: Optional[int] = Field(default=None, ge=0, le=23)  # defaults to server local hour


class ScoredRoute(BaseModel):
    index: int  # position in the router's response
    duration: float  # seconds
    distance: Optional[float] = None  # meters
    risk: float
    geometry: dict  # GeoJSON LineString


class RouteSummaryItem(BaseModel):
    durationMin: float
    risk: int


class RouteSummary(BaseModel):
    fastest: RouteSummaryItem
    safest: RouteSummaryItem


class SafeRouteResponse(BaseModel):
    fastest: ScoredRoute
    safest: ScoredRoute
    sameRoute: bool
    routeCount: int
    hour: int
    summary: RouteSummary


class NearbyReport(BaseModel):
    category: str
    severity: int
    meters_away: int
    createdAt: int


class SOSRequest(BaseModel):
    lat: float = Field(allow_inf_nan=False)
    lon: float = Field(allow_inf_nan=False)
    address: str = ""
    situation: str = ""
    notes: str = ""
    routeRisk: Optional[float] = None
    reportsNearby: list[dict] = []


class SOSResponse(BaseModel):
    sos: str
    guidance: list[str]
    share: str
    used_ai: bool
    parsing_failed: bool = False
    raw: Optional[str] = None


class ErrorResponse(BaseModel):
    error: str
    kind: str
    detail: str = ""
    retryable: bool = False
