"""FastAPI application entry point"""
import logging
import time
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from app.core.config import settings
from app.core.errors import LedgerError
from app.core.logging import setup_logging
from app.core.otel import initialize_otel, instrument_fastapi, instrument_sqlalchemy
from app.core.security import log_api_access
from app.db.session import engine, init_db
from app.models import Base  # noqa: F401 - registers all models with Base.metadata

# Import routers
from app.api import admin, chat, credits, subscriptions

setup_logging()
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan event handler for startup and shutdown"""
    if initialize_otel():
        logger.info(f"OpenTelemetry initialized, exporting to {settings.OTEL_EXPORTER_OTLP_ENDPOINT}")
    else:
        logger.info("OpenTelemetry not configured - running without distributed tracing")

    logger.info("Initializing database...")
    try:
        init_db()
        logger.info("Database initialized successfully")
    except Exception as e:
        logger.error(f"Database initialization failed: {e}")
        raise

    instrument_sqlalchemy(engine)

    yield

    logger.info("Shutting down...")


# Create FastAPI app
app = FastAPI(
    title="Credit Ledger",
    description="Credit and subscription ledger for chat usage",
    version="1.0.0",
    lifespan=lifespan
)

instrument_fastapi(app)

# CORS middleware
allowed_origins = [settings.FRONTEND_URL]
if settings.ENVIRONMENT == "development":
    allowed_origins.extend([
        "http://localhost:3000",
        "http://127.0.0.1:3000"
    ])

app.add_middleware(
    CORSMiddleware,
    allow_origins=allowed_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(credits.router)
app.include_router(chat.router)
app.include_router(subscriptions.router)
app.include_router(admin.router)


@app.middleware("http")
async def access_log_middleware(request: Request, call_next):
    """API access logging"""
    started = time.perf_counter()
    status_code = 500
    try:
        response = await call_next(request)
        status_code = response.status_code
        return response
    finally:
        if request.url.path not in ("/health", "/metrics"):
            log_api_access(request, status_code=status_code, duration_ms=(time.perf_counter() - started) * 1000)


@app.exception_handler(LedgerError)
async def ledger_error_handler(request: Request, exc: LedgerError):
    """Ledger errors become {"code", "message"} with the status for their kind"""
    return JSONResponse(status_code=exc.err.status_code, content=exc.err.to_dict())


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    logger.error(f"Unhandled error on {request.method} {request.url.path}: {exc}", exc_info=True)
    return JSONResponse(
        status_code=500,
        content={"code": "internal_error", "message": "Internal server error"}
    )


@app.get("/health")
def health():
    return {"status": "healthy"}


@app.get("/metrics")
def metrics():
    """Prometheus metrics endpoint"""
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)
