"""Watchpost FastAPI application."""

import json
import logging
from contextlib import asynccontextmanager
from importlib.metadata import PackageNotFoundError
from importlib.metadata import version as pkg_version

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from app.api import oidc, user_auth
from app.config import settings as app_settings
from app.database import db_session, init_db
from app.dependencies.rate_limit import limiter
from app.realtime import channel
from app.services.scheduler import MaintenanceScheduler
from app.services.settings_manager import SettingsManager

# Configure logging
logging.basicConfig(
    level=getattr(logging, app_settings.log_level.upper(), logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)

logger = logging.getLogger(__name__)


# Filter to exclude health check endpoints from access logs
class EndpointFilter(logging.Filter):
    """Filter to exclude specific endpoints from uvicorn access logs."""

    def __init__(self, excluded_paths: list[str]) -> None:
        super().__init__()
        self.excluded_paths = excluded_paths

    def filter(self, record: logging.LogRecord) -> bool:
        """Return False if the log record is for an excluded endpoint."""
        message = record.getMessage()
        return not any(path in message for path in self.excluded_paths)


logging.getLogger("uvicorn.access").addFilter(EndpointFilter(["/health"]))

# Global instances
scheduler = None


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan events."""
    global scheduler

    # Startup
    logger.info(f"Starting {app_settings.app_name}...")
    await init_db()
    logger.info("Database initialized")

    async with db_session() as db:
        settings_manager = SettingsManager(db)
        await settings_manager.initialize_defaults()
        logger.info("Default settings initialized")

    scheduler = MaintenanceScheduler()
    scheduler.start()

    yield

    # Shutdown
    logger.info(f"Shutting down {app_settings.app_name}...")
    if scheduler:
        scheduler.stop()


# Read version from installed package metadata
try:
    _APP_VERSION = pkg_version("watchpost")
except PackageNotFoundError:
    _APP_VERSION = "0.0.0"

# Create FastAPI app
app = FastAPI(
    title=app_settings.app_name,
    description="Entra ID single sign-on and role-based access for the Watchpost dashboard",
    version=_APP_VERSION,
    lifespan=lifespan,
)

# Rate limiter setup
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)  # type: ignore[arg-type]

# CORS middleware - load allowed origins from settings
cors_origins_default = ["http://localhost:3000", "http://localhost:5173"]
try:
    cors_origins = json.loads(app_settings.cors_origins)
except json.JSONDecodeError:
    cors_origins = cors_origins_default

logger.info(f"CORS allowed origins: {cors_origins}")

app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE"],
    allow_headers=["*"],
    max_age=600,  # Cache preflight requests for 10 minutes
)


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "healthy", "service": app_settings.app_name}


# Include routers
app.include_router(oidc.router)  # Prefix already defined in router
app.include_router(user_auth.router, prefix="/api/v1", tags=["User Authentication"])
app.include_router(channel.router)
