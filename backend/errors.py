"""AegisGrid Backend — API error taxonomy

Proxy and collaborator layers fail fast with an `ApiError`; the FastAPI
handler in routes.py turns it into a JSON envelope:
    {"error": ..., "kind": ..., "detail": ..., "retryable": ...}
"""

INVALID_INPUT = "invalid_input"
UPSTREAM_ERROR = "upstream_error"
UPSTREAM_TIMEOUT = "upstream_timeout"
NO_ROUTES = "no_routes"
RATE_LIMITED = "rate_limited"
INTERNAL_ERROR = "internal_error"

# kind -> (HTTP status, retryable)
ERROR_KINDS: dict[str, tuple[int, bool]] = {
    INVALID_INPUT: (400, False),
    UPSTREAM_ERROR: (502, False),
    UPSTREAM_TIMEOUT: (504, True),
    NO_ROUTES: (502, False),
    RATE_LIMITED: (429, True),
    INTERNAL_ERROR: (500, False),
}


class ApiError(Exception):
    """An error with a machine-readable kind and a human-readable detail."""

    def __init__(self, kind: str, error: str, detail: str = ""):
        if kind not in ERROR_KINDS:
            kind = INTERNAL_ERROR
        super().__init__(f"{kind}: {error}")
        self.kind = kind
        self.error = error
        self.detail = detail

    @property
    def status_code(self) -> int:
        return ERROR_KINDS[self.kind][0]

    @property
    def retryable(self) -> bool:
        return ERROR_KINDS[self.kind][1]

    def to_dict(self) -> dict:
        return {
            "error": self.error,
            "kind": self.kind,
            "detail": self.detail,
            "retryable": self.retryable,
        }
