"""
ShieldLedger FastAPI Service

Thin HTTP adapter over the ledger facade. Carries no semantics of its own and
performs no authentication; callers are assumed already authenticated.

Endpoints:
    GET  /health          - Liveness probe
    GET  /version         - Version info
    /api/reserve/...      - Stake, unstake, yield, reserve totals
    /api/policies/...     - Policy lifecycle and coverage
    /api/claims/...       - Claim submission, adjudication, payout
    /api/accounts/...     - Registration, status, KYC

Errors are returned as {"error": {...}} with the ledger error code:
    validation 400 (NotFound 404), resource 409, concurrency 503, internal 500
"""

import json
import logging
import os
import time
import uuid
from datetime import datetime, timezone

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from shieldledger import Ledger, LedgerError, NotFoundError, __version__, load_config
from shieldledger.exceptions import CONCURRENCY, INTERNAL, RESOURCE, VALIDATION, InvalidInputError

from service import dependencies
from service.routers import accounts, claims, policies, reserve

# =============================================================================
# Configuration
# =============================================================================

SL_CONFIG = os.getenv("SL_CONFIG")
SL_LOG_LEVEL = os.getenv("SL_LOG_LEVEL", "INFO")
SL_DOCS_ENABLED = os.getenv("SL_DOCS_ENABLED", "true").lower() == "true"
SL_MAX_REQUEST_SIZE = int(os.getenv("SL_MAX_REQUEST_SIZE", "65536"))

# =============================================================================
# Logging Setup (Structured JSON)
# =============================================================================

LOG_FIELDS = (
    "request_id",
    "operation",
    "address",
    "policy_id",
    "claim_id",
    "amount",
    "error_code",
    "duration_ms",
)


class JSONFormatter(logging.Formatter):
    """JSON log formatter for structured logging."""

    def format(self, record):
        log_entry = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        # Add extra fields if present
        for field in LOG_FIELDS:
            if hasattr(record, field):
                log_entry[field] = getattr(record, field)
        if record.exc_info:
            log_entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(log_entry, default=str)


logger = logging.getLogger("shieldledger")
logger.setLevel(getattr(logging, SL_LOG_LEVEL.upper(), logging.INFO))
if not any(isinstance(h.formatter, JSONFormatter) for h in logger.handlers):
    handler = logging.StreamHandler()
    handler.setFormatter(JSONFormatter())
    logger.addHandler(handler)

# =============================================================================
# FastAPI App
# =============================================================================

app = FastAPI(
    title="ShieldLedger",
    description="Reserve & Policy Ledger for parametric micro-insurance",
    version=__version__,
    docs_url="/docs" if SL_DOCS_ENABLED else None,
    redoc_url="/redoc" if SL_DOCS_ENABLED else None,
    openapi_url="/openapi.json" if SL_DOCS_ENABLED else None,
)

app.include_router(reserve.router)
app.include_router(policies.router)
app.include_router(claims.router)
app.include_router(accounts.router)

# =============================================================================
# Response Models
# =============================================================================

class HealthResponse(BaseModel):
    """Liveness probe response."""
    status: str
    timestamp: str
    version: str


class VersionResponse(BaseModel):
    """Version info response."""
    version: str
    ledger_id: str
    token_decimals: int
    yield_period_seconds: int


# =============================================================================
# Error Mapping
# =============================================================================

STATUS_BY_CATEGORY = {
    VALIDATION: 400,
    RESOURCE: 409,
    CONCURRENCY: 503,
    INTERNAL: 500,
}


def http_status_for(error: LedgerError) -> int:
    if isinstance(error, NotFoundError):
        return 404
    return STATUS_BY_CATEGORY.get(error.category, 500)


@app.exception_handler(LedgerError)
async def ledger_error_handler(request: Request, exc: LedgerError):
    if exc.request_id is None:
        exc.request_id = getattr(request.state, "request_id", None)
    return JSONResponse(status_code=http_status_for(exc), content={"error": exc.to_dict()})


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    error = InvalidInputError(
        "Request validation failed",
        details={
            "errors": [
                {"loc": [str(p) for p in err.get("loc", ())], "msg": err.get("msg")}
                for err in exc.errors()
            ],
        },
        request_id=getattr(request.state, "request_id", None),
    )
    return JSONResponse(status_code=400, content={"error": error.to_dict()})


# =============================================================================
# Middleware
# =============================================================================

@app.middleware("http")
async def limit_request_size(request: Request, call_next):
    """Limit request body size."""
    if request.method in ("POST", "PUT"):
        content_length = request.headers.get("content-length")
        try:
            size = int(content_length) if content_length else 0
        except ValueError:
            error = InvalidInputError(
                "Malformed Content-Length header",
                details={"content_length": content_length},
                request_id=getattr(request.state, "request_id", None),
            )
            return JSONResponse(status_code=400, content={"error": error.to_dict()})
        if size > SL_MAX_REQUEST_SIZE:
            error = InvalidInputError(
                "Request too large",
                details={"max_size": SL_MAX_REQUEST_SIZE},
                request_id=getattr(request.state, "request_id", None),
            )
            return JSONResponse(status_code=413, content={"error": error.to_dict()})
    return await call_next(request)


@app.middleware("http")
async def add_request_id(request: Request, call_next):
    """Add request ID to all requests."""
    request_id = str(uuid.uuid4())[:8]
    request.state.request_id = request_id
    request.state.start_time = time.time()

    response = await call_next(request)

    response.headers["X-Request-ID"] = request_id
    return response


# =============================================================================
# Health Endpoints
# =============================================================================

@app.get("/health", response_model=HealthResponse, tags=["Health"])
async def health_check():
    """Liveness probe - checks if process is alive."""
    return HealthResponse(
        status="healthy",
        timestamp=datetime.now(timezone.utc).isoformat(),
        version=__version__,
    )


@app.get("/version", response_model=VersionResponse, tags=["Info"])
def version_info():
    """Return version and ledger settings."""
    config = dependencies.get_ledger().config
    return VersionResponse(
        version=__version__,
        ledger_id=config.ledger_id,
        token_decimals=config.token_decimals,
        yield_period_seconds=config.yield_period_seconds,
    )


# =============================================================================
# Lifecycle
# =============================================================================

@app.on_event("startup")
async def startup_event():
    """Open the ledger unless one was injected already."""
    if dependencies._ledger is None:
        config = load_config(SL_CONFIG)
        dependencies.set_ledger(Ledger(config))
        logger.info(
            "ShieldLedger starting",
            extra={"request_id": "startup", "operation": "startup"},
        )
        logger.info(f"Ledger: {config.ledger_id} (wal={config.wal_path or 'memory'})")
        logger.info(f"Yield rate: {config.yield_rate_bps} bps per {config.yield_period_seconds}s")


@app.on_event("shutdown")
async def shutdown_event():
    """Close the ledger's write-ahead log."""
    logger.info("ShieldLedger shutting down")
    if dependencies._ledger is not None:
        dependencies._ledger.close()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
