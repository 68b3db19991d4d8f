"""
FastAPI application entry point for the Storefront backend.
"""

# Load environment variables FIRST before any other imports
from pathlib import Path
from dotenv import load_dotenv

current_file = Path(__file__)
project_root = current_file.parent.parent.parent.parent  # src/storefront/api/main.py -> root
env_file = project_root / ".env"
if env_file.exists():
    load_dotenv(env_file)

from contextlib import asynccontextmanager
import os

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware

from storefront import __version__
from storefront.api.routes import affiliates, admin_affiliates, marketplaces, health
from storefront.api.middleware.error_handler import ErrorHandlerMiddleware, register_exception_handlers
from storefront.monitoring import MetricsMiddleware, get_metrics, metrics_endpoint
from storefront.services.scheduler import get_scheduler
from storefront.utils.config import get_config
from storefront.utils.logger import get_logger, setup_logging

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager."""
    setup_logging()
    config = get_config()
    logger.info(f"Starting Storefront API ({config.environment})...")

    get_metrics()

    scheduler = None
    if config.scheduler.enabled:
        scheduler = get_scheduler()
        scheduler.start()
    else:
        logger.info("Scheduler disabled (SCHEDULER_ENABLED=false)")

    logger.info("API started successfully")

    yield

    logger.info("Shutting down Storefront API...")
    if scheduler is not None:
        scheduler.stop()


# Create FastAPI application
app = FastAPI(
    title="Storefront API",
    description="Affiliate program and marketplace order ingestion for the storefront",
    version=__version__,
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url="/openapi.json",
    lifespan=lifespan
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=get_config().app.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# GZip compression
app.add_middleware(GZipMiddleware, minimum_size=1000)

# Custom middlewares (order matters!)
app.add_middleware(ErrorHandlerMiddleware)
app.add_middleware(MetricsMiddleware)

register_exception_handlers(app)

# Register routes
app.include_router(affiliates.router, prefix="/api/v1/affiliates", tags=["Affiliates"])
app.include_router(admin_affiliates.router, prefix="/api/v1/admin/affiliates", tags=["Admin: Affiliates"])
app.include_router(marketplaces.router, prefix="/api/v1/admin/marketplaces", tags=["Admin: Marketplaces"])
app.include_router(health.router, prefix="/api/v1/health", tags=["Health"])

app.add_api_route("/metrics", metrics_endpoint, methods=["GET"], tags=["Monitoring"], include_in_schema=False)


@app.get("/", tags=["Root"])
async def root():
    """Root endpoint."""
    return {
        "name": "Storefront API",
        "version": __version__,
        "status": "operational",
        "docs": "/docs"
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "storefront.api.main:app",
        host=os.getenv("API_HOST", "0.0.0.0"),
        port=int(os.getenv("API_PORT", 8000)),
        reload=get_config().debug_mode
    )
