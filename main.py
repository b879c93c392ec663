"""
main.py
MindWell Clinic API application.

Wires the clinic routers together with JSON logging, request tracing,
a per-IP throttle on the public booking/payment/contact forms and the
error envelope every domain error is rendered through.
"""

import json
import logging
import os
import time
import uuid
from contextlib import asynccontextmanager
from logging import LogRecord
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse
from prometheus_fastapi_instrumentator import Instrumentator
from sqlalchemy import text
from tenacity import before_sleep_log, retry, stop_after_attempt, wait_exponential

import config.redis_client as redis_state
from config.database import AsyncSessionLocal, close_db, init_db
from config.redis_client import RedisCache, close_redis, init_redis
from config.settings import settings
from services.notification.notifier import notifier
from shared.exceptions import ClinicError

from services.appointment.router import router as appointment_router
from services.auth.router import router as auth_router
from services.calendar.router import router as calendar_router
from services.contact.router import router as contact_router
from services.notification.router import router as notification_router
from services.payment.router import router as payment_router

ROUTERS = (
    auth_router,
    calendar_router,
    appointment_router,
    payment_router,
    contact_router,
    notification_router,
)

# Anonymous POSTs to these prefixes count against the per-IP budget
THROTTLED_PREFIXES = ("/appointments", "/payments", "/contact", "/auth/login")


# ── Logging ──────────────────────────────────────────────────

class JSONFormatter(logging.Formatter):
    """One JSON object per log line."""

    def format(self, record: LogRecord) -> str:
        entry = {
            "timestamp": self.formatTime(record),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "instance": os.getenv("INSTANCE_NAME", "unknown"),
        }
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry)


def configure_logging() -> None:
    handler = logging.StreamHandler()
    handler.setFormatter(JSONFormatter())
    root = logging.getLogger()
    root.handlers = [handler]
    root.setLevel(logging.DEBUG if settings.DEBUG else logging.INFO)


configure_logging()
logger = logging.getLogger(__name__)


def _request_id(request: Request) -> Optional[str]:
    return getattr(request.state, "request_id", None)


def _is_throttled(request: Request) -> bool:
    if request.method != "POST":
        return False
    if request.headers.get("Authorization", "").startswith("Bearer "):
        return False
    return request.url.path.startswith(THROTTLED_PREFIXES)


# ── Health probes ─────────────────────────────────────────────

async def _probe_database() -> None:
    async with AsyncSessionLocal() as session:
        await session.execute(text("SELECT 1"))


async def _probe_redis() -> None:
    if redis_state.redis_client:
        await redis_state.redis_client.ping()


HEALTH_PROBES = {"database": _probe_database, "redis": _probe_redis}


# ── Startup ───────────────────────────────────────────────────

# Postgres and Redis may still be starting when the API boots
startup_retry = retry(
    stop=stop_after_attempt(settings.STARTUP_RETRY_ATTEMPTS),
    wait=wait_exponential(multiplier=0.5, max=10),
    before_sleep=before_sleep_log(logger, logging.WARNING),
    reraise=True,
)


@startup_retry
async def connect_database() -> None:
    await init_db()


@startup_retry
async def connect_redis() -> None:
    await init_redis()


# ── Lifespan ──────────────────────────────────────────────────

@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info(f"{settings.APP_NAME} {settings.APP_VERSION} starting in {settings.APP_ENV}")
    await connect_database()
    await connect_redis()
    logger.info("Database and Redis ready")

    yield

    # Let in-flight notification dispatches finish before the pools go away
    await notifier.drain()
    await close_redis()
    await close_db()
    logger.info("Shutdown complete")


# ── App Factory ───────────────────────────────────────────────

def create_app() -> FastAPI:
    app = FastAPI(
        title=settings.APP_NAME,
        version=settings.APP_VERSION,
        description=(
            "Booking and payment backend for the MindWell practice. "
            "Clients look up open slots, request appointments and upload payment receipts "
            "without an account; the admin signs in at `/auth/login` to manage the calendar, "
            "verify or reject payments and read the contact inbox."
        ),
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["X-Request-ID", "X-Process-Time"],
    )
    app.add_middleware(GZipMiddleware, minimum_size=500)

    @app.middleware("http")
    async def throttle_public_forms(request: Request, call_next):
        if not (_is_throttled(request) and redis_state.redis_client):
            return await call_next(request)

        client_ip = request.client.host if request.client else "unknown"
        try:
            allowed = await RedisCache(redis_state.redis_client).check_rate_limit(
                f"rate:unauth:{client_ip}", settings.RATE_LIMIT_UNAUTH_PER_MINUTE
            )
        except Exception as e:
            # Redis trouble must not block bookings
            logger.error(f"Rate limit check failed for {client_ip}: {e}")
            allowed = True

        if not allowed:
            logger.warning(f"Throttled {request.method} {request.url.path} from {client_ip}")
            return JSONResponse(
                status_code=429,
                content={
                    "detail": "Too many requests. Please try again in a minute.",
                    "code": "rate_limited",
                    "context": {},
                    "request_id": _request_id(request),
                },
                headers={"Retry-After": "60"},
            )
        return await call_next(request)

    @app.middleware("http")
    async def trace_requests(request: Request, call_next):
        """Tag each request with an id and report how long it took."""
        request_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex
        request.state.request_id = request_id
        started = time.perf_counter()
        response = await call_next(request)
        elapsed_ms = (time.perf_counter() - started) * 1000
        response.headers["X-Request-ID"] = request_id
        response.headers["X-Process-Time"] = f"{elapsed_ms:.2f}ms"
        return response

    @app.exception_handler(ClinicError)
    async def clinic_error_handler(request: Request, exc: ClinicError):
        request_id = _request_id(request)
        logger.info(f"[{request_id}] {exc.code}: {exc.detail} {exc.context}")
        return JSONResponse(
            status_code=exc.status_code,
            content={**exc.to_dict(), "request_id": request_id},
        )

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception):
        request_id = _request_id(request)
        logger.error(f"[{request_id}] Unhandled {type(exc).__name__}: {exc}", exc_info=True)
        return JSONResponse(
            status_code=500,
            content={
                "detail": str(exc) if settings.DEBUG else "An internal server error occurred",
                "code": "internal_error",
                "context": {},
                "request_id": request_id,
            },
        )

    @app.get("/health", tags=["Health"], include_in_schema=False)
    async def health_check():
        report = {"status": "ok", "version": settings.APP_VERSION}
        for name, probe in HEALTH_PROBES.items():
            try:
                await probe()
                report[name] = "ok"
            except Exception as e:
                logger.warning(f"Health probe {name} failed: {e}")
                report[name] = "error"
                report["status"] = "degraded"
        return JSONResponse(content=report, status_code=200 if report["status"] == "ok" else 503)

    @app.get("/", include_in_schema=False)
    async def root():
        return {"name": settings.APP_NAME, "version": settings.APP_VERSION, "health": "/health"}

    for router in ROUTERS:
        app.include_router(router)

    Instrumentator().instrument(app).expose(app, endpoint="/metrics", tags=["Monitoring"])
    return app


app = create_app()

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "main:app",
        host=settings.HOST,
        port=settings.PORT,
        reload=settings.DEBUG,
        workers=1 if settings.DEBUG else settings.WORKERS,
        log_level="debug" if settings.DEBUG else "info",
    )
