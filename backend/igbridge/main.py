"""FastAPI application entry point"""
import logging
from contextlib import asynccontextmanager

import httpx
from fastapi import FastAPI, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from igbridge import __version__
from igbridge.core.config import settings
from igbridge.core.errors import BrokerError
from igbridge.core.logging import setup_logging
from igbridge.core.otel import (
    initialize_otel, instrument_fastapi, instrument_httpx, instrument_sqlalchemy, setup_otel_logging
)
from igbridge.db.session import engine, init_db
from igbridge.services.graph_client import InstagramGraphClient
from igbridge.tasks.token_refresh import TokenRefreshScheduler

# Import routers
from igbridge.api import accounts, licenses, oauth, posts

setup_logging()

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan event handler for startup and shutdown"""
    # Startup
    otel_initialized = initialize_otel()
    if otel_initialized:
        if setup_otel_logging():
            logger.info(f"OpenTelemetry fully initialized, exporting to {settings.OTEL_EXPORTER_OTLP_ENDPOINT}")
        else:
            logger.warning("OpenTelemetry metrics/traces initialized but logging setup failed")
        instrument_sqlalchemy(engine)
    else:
        logger.info("OpenTelemetry not configured - running without distributed tracing")

    logger.info("Initializing database...")
    try:
        init_db()
        logger.info("Database initialized successfully")
    except Exception as e:
        logger.error(f"Database initialization failed: {e}")
        raise

    http_client = httpx.AsyncClient(timeout=settings.GRAPH_API_TIMEOUT_SECONDS)
    app.state.graph_client = InstagramGraphClient(http_client)
    app.state.token_scheduler = TokenRefreshScheduler(app.state.graph_client)

    if settings.TOKEN_REFRESH_ENABLED:
        app.state.token_scheduler.start()
    else:
        logger.info("Token refresh scheduler disabled")

    yield

    # Shutdown
    logger.info("Shutting down...")
    app.state.token_scheduler.stop()
    await http_client.aclose()


# Create FastAPI app
app = FastAPI(
    title="igbridge",
    description="Instagram credential broker and licensed publishing API",
    version=__version__,
    lifespan=lifespan
)

if settings.OTEL_EXPORTER_OTLP_ENDPOINT:
    instrument_fastapi(app)
    instrument_httpx()

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.allowed_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(oauth.router)
app.include_router(accounts.router)
app.include_router(posts.router)
app.include_router(licenses.router)


@app.exception_handler(BrokerError)
async def broker_error_handler(request: Request, exc: BrokerError):
    """Render structured errors; provider detail is withheld in production"""
    log = logger.error if exc.status_code >= 500 else logger.warning
    log(f"{request.method} {request.url.path} -> {exc.status_code} {exc.code}: {exc.message}"
        + (f" ({exc.detail})" if exc.detail else ""))
    return JSONResponse(
        status_code=exc.status_code,
        content=exc.to_payload(include_detail=not settings.is_production),
    )


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    missing = [".".join(str(part) for part in err["loc"][1:]) for err in exc.errors()]
    payload = {"success": False, "error": f"Invalid or missing parameters: {', '.join(missing)}", "code": "MISSING_PARAMS"}
    if not settings.is_production:
        payload["detail"] = str(exc.errors())
    return JSONResponse(status_code=400, content=payload)


# Global exception handler
@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Global exception handler"""
    logger.error(f"Unhandled exception: {exc}", exc_info=True)
    return JSONResponse(
        status_code=500,
        content={"success": False, "error": "Internal server error", "code": "INTERNAL_ERROR"}
    )


# Prometheus metrics endpoint
@app.get("/metrics")
def metrics_endpoint():
    """Prometheus metrics endpoint"""
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)


# Health check endpoint
@app.get("/health")
def health_check():
    """Health check endpoint"""
    return {"status": "healthy"}
