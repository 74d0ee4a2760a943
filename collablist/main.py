# collablist/main.py
# PURPOSE: build the FastAPI app: lifespan (tables, channel manager, push,
# scheduler), routers, error handlers, rate limiting, middleware and ops endpoints.

from contextlib import asynccontextmanager
import logging
import time
import uuid

from fastapi import FastAPI, HTTPException, Request, status
from fastapi.middleware.cors import CORSMiddleware
from prometheus_fastapi_instrumentator import Instrumentator
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from . import db_models  # noqa: F401  (registers tables on Base.metadata)
from .api.errors import register_exception_handlers
from .api.v1.router import api_router
from .config import settings
from .db import Base, engine, get_session_factory
from .logging_utils import request_logger, setup_logging
from .push import PushDelivery
from .rate_limit import limiter, _rate_limit_exceeded_handler
from .realtime import ChannelManager
from .routers import auth as auth_router
from .routers import invites as invites_router
from .routers import lists as lists_router
from .routers import realtime as realtime_router
from .routers import subscriptions as subscriptions_router
from .routers import tasks as tasks_router
from .scheduler import ReminderScheduler

logger = logging.getLogger(__name__)


def _session_factory(app: FastAPI):
    # Honour a test override of the dependency for background components too
    return app.dependency_overrides.get(get_session_factory, get_session_factory)()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """App startup/shutdown lifecycle."""
    # --- Startup ---
    setup_logging(settings.LOG_LEVEL)
    if settings.DB_AUTO_CREATE:
        Base.metadata.create_all(bind=engine)

    session_factory = _session_factory(app)
    channels = ChannelManager()
    await channels.start()
    app.state.channels = channels
    app.state.push = PushDelivery.from_settings(settings, session_factory)

    scheduler = None
    if settings.SCHEDULER_ENABLED:
        scheduler = ReminderScheduler(
            session_factory,
            channels,
            app.state.push,
            interval_seconds=settings.sweep_interval_seconds,
            retention_seconds=settings.LEDGER_RETENTION_SECONDS,
        )
        scheduler.start()
    app.state.scheduler = scheduler

    try:
        yield
    finally:
        # --- Shutdown ---
        if scheduler is not None:
            await scheduler.stop()
        await channels.shutdown()


tags_metadata = [
    {"name": "auth", "description": "Signup, login, me."},
    {"name": "lists", "description": "Lists, members and sharing."},
    {"name": "tasks", "description": "Tasks of a list: CRUD and reordering."},
    {"name": "invites", "description": "Accept e-mailed invitations."},
    {"name": "push", "description": "Web push subscriptions."},
]

app = FastAPI(
    title="CollabList API",
    version="1.0.0",
    description=(
        "Shared task lists with role-based access, realtime updates over /ws "
        "and due-date reminders. Endpoints are served at the root and under /api/v1."
    ),
    openapi_tags=tags_metadata,
    lifespan=lifespan,
)


@app.get("/health")
def health():
    """Simple healthcheck endpoint."""
    return {"status": "ok"}


# Mount routers
app.include_router(auth_router.router)
app.include_router(lists_router.router)
app.include_router(tasks_router.router)
app.include_router(tasks_router.all_router)
app.include_router(invites_router.router)
app.include_router(subscriptions_router.router)
app.include_router(realtime_router.router)

# Versioned JSON API (parallel namespace)
app.include_router(api_router)

# Unified error handlers
register_exception_handlers(app)

# Rate limiting (global middleware + handler)
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
app.add_middleware(SlowAPIMiddleware)


# Request ID + access log middleware
@app.middleware("http")
async def request_id_and_logging(request: Request, call_next):
    start = time.perf_counter()
    incoming = request.headers.get(settings.REQUEST_ID_HEADER)
    req_id = incoming or uuid.uuid4().hex
    request.state.request_id = req_id
    response = await call_next(request)
    response.headers.setdefault(settings.REQUEST_ID_HEADER, req_id)
    duration_ms = int((time.perf_counter() - start) * 1000)
    request_logger().info(
        "method=%s path=%s status=%s duration_ms=%s request_id=%s",
        request.method,
        request.url.path,
        getattr(response, "status_code", "-"),
        duration_ms,
        req_id,
    )
    return response


# --- Security: CORS and security headers ---

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ALLOW_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def security_headers(request, call_next):
    response = await call_next(request)
    response.headers.setdefault("X-Content-Type-Options", "nosniff")
    response.headers.setdefault("X-Frame-Options", "DENY")
    response.headers.setdefault("Referrer-Policy", "no-referrer")
    response.headers.setdefault("Permissions-Policy", "camera=(), microphone=(), geolocation=()")
    if settings.SECURITY_CSP:
        csp = settings.SECURITY_CSP
        if request.url.path.startswith(("/docs", "/redoc")):
            # Swagger/ReDoc need inline scripts and styles + CDN assets
            csp = (
                "default-src 'self'; "
                "script-src 'self' https://cdn.jsdelivr.net 'unsafe-inline'; "
                "style-src 'self' https://cdn.jsdelivr.net 'unsafe-inline'; "
                "img-src 'self' https: data:; "
                "connect-src 'self'; "
                "frame-ancestors 'none'"
            )
        response.headers["Content-Security-Policy"] = csp
    if settings.SECURITY_ENABLE_HSTS:
        response.headers.setdefault("Strict-Transport-Security", "max-age=15552000; includeSubDomains; preload")
    return response


# --- Observability: liveness, readiness, metrics ---


@app.get("/live")
def live():
    return {"status": "live"}


@app.get("/ready")
def ready():
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
    except SQLAlchemyError as exc:
        logger.warning("readiness check failed error=%s", exc)
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="not ready") from exc
    return {
        "status": "ready",
        "connections": app.state.channels.connection_count() if hasattr(app.state, "channels") else 0,
    }


# Expose Prometheus metrics at /metrics
Instrumentator().instrument(app).expose(app, include_in_schema=False)
