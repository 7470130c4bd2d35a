import logging
import os
import time
from contextlib import asynccontextmanager
from datetime import datetime, timezone

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from spotcheck import __version__, database
from spotcheck.errors import AuthenticationFailure, SpotCheckError, ValidationFailure
from spotcheck.limits import limiter
from spotcheck.metrics import metrics
from spotcheck.redis_client import redis_client
from spotcheck.routes_device import router as device_router
from spotcheck.routes_parent import router as parent_router
from spotcheck.settings import settings

logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Engine is created here, not at import, so reload children and tests pick up env changes.
    database.init_engine()
    if settings.auto_create_schema:
        await database.create_schema()
    redis_client.connect()
    logger.info("SpotCheck API %s started", __version__)
    try:
        yield
    finally:
        redis_client.close()
        await database.dispose_engine()


app = FastAPI(
    title="SpotCheck",
    version=__version__,
    description="Hotspot / Wi-Fi protection policy service for child devices and parent apps",
    lifespan=lifespan,
    openapi_tags=[
        {"name": "device", "description": "Child device endpoints (shared-secret or signed auth)"},
        {"name": "pairing", "description": "One-time pairing code redemption"},
        {"name": "parent", "description": "Parent / admin management API"},
    ],
)
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(AuthenticationFailure)
async def unauthorized(request: Request, exc: AuthenticationFailure):
    return JSONResponse({"error": "unauthorized"}, status_code=401)


@app.exception_handler(ValidationFailure)
async def invalid_request(request: Request, exc: ValidationFailure):
    return JSONResponse({"error": exc.code, "field": exc.field, "detail": exc.detail}, status_code=exc.status_code)


@app.exception_handler(SpotCheckError)
async def domain_error(request: Request, exc: SpotCheckError):
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.code)
    return JSONResponse({"error": exc.code}, status_code=exc.status_code)


# Global JSON fallback so crashes never return an empty body
@app.exception_handler(Exception)
async def unhandled(request: Request, exc: Exception):
    logger.exception("UNHANDLED %s %s", request.method, request.url.path)
    return JSONResponse({"error": "internal_error"}, status_code=500)


app.include_router(device_router)
app.include_router(parent_router)


@app.get("/healthz", include_in_schema=False)
async def healthz():
    return {"ok": True}


@app.get("/health")
async def health_check():
    """Health check with Redis connectivity status"""
    redis_status = redis_client.get_connection_status()
    overall = "ok"
    if redis_status["require_redis"] and not redis_status["connected"]:
        overall = "degraded"
    elif redis_status["enabled"] and not redis_status["connected"]:
        overall = "warning"
    return {
        "status": overall,
        "redis": redis_status,
        "notifications_dropped": metrics.counter("notification_enqueue_errors"),
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


@app.get("/metrics-lite")
async def get_metrics():
    stream = redis_client.get_stream_info()
    metrics.set_gauge("notification_stream_length", stream["length"])
    return metrics.snapshot()


@app.get("/__version", include_in_schema=False)
def version():
    return {"version": __version__, "pid": os.getpid(), "ts": int(time.time())}
