from fastapi import FastAPI, Request
from contextlib import asynccontextmanager
import structlog
import time

from app.core.config import settings
from app.core.database import get_event_store, init_models
from app.services.sql_store import SqlAlchemyEventStore
from app.middleware.rate_limit import rate_limit_middleware
from app.api import events, stats

# Configure structured logging
structlog.configure(
    processors=[
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.JSONRenderer()
    ]
)

logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifecycle events"""
    store = get_event_store()
    logger.info("application_startup", app_name=settings.app_name, event_store=settings.event_store)

    # SQLite has no migrations; create the table in place
    if isinstance(store, SqlAlchemyEventStore) and store.dialect == "sqlite":
        await init_models()

    yield
    logger.info("application_shutdown")


app = FastAPI(
    title=settings.app_name,
    debug=settings.debug,
    lifespan=lifespan
)

app.middleware("http")(rate_limit_middleware)


# Middleware for logging requests
@app.middleware("http")
async def log_requests(request: Request, call_next):
    start_time = time.time()

    response = await call_next(request)

    duration = time.time() - start_time
    logger.info(
        "request_completed",
        method=request.method,
        path=request.url.path,
        status_code=response.status_code,
        duration_ms=round(duration * 1000, 2)
    )

    return response


# Include routers
app.include_router(events.router)
app.include_router(stats.router)


@app.get("/health")
async def health_check():
    """Health check endpoint"""
    return {"status": "healthy", "app": settings.app_name}


@app.get("/")
async def root():
    """Root endpoint"""
    return {
        "message": "Machine Telemetry API",
        "endpoints": {
            "health": "/health",
            "ingest": "/events/batch",
            "stats": "/stats",
            "top_defect_lines": "/stats/top-defect-lines",
            "docs": "/docs"
        }
    }
