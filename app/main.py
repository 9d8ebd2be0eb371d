"""
Storefront Insights
Main FastAPI application
"""
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from starlette.middleware.gzip import GZipMiddleware
from contextlib import asynccontextmanager

from app.config import get_settings
from app.utils.logger import log
from app import __version__

# Import routers
from app.api import health, auth, dashboard, inventory, connections
from app.middleware.auth_middleware import AuthMiddleware

settings = get_settings()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown events"""
    # Startup
    log.info(f"Starting {settings.app_name} v{__version__}")
    log.info(f"Environment: {settings.environment}")

    from app.models.base import init_db
    init_db()
    log.info("Database initialized")

    if not settings.encryption_key:
        log.error("ENCRYPTION_KEY is not set; provider connections cannot be stored or read")

    yield

    # Shutdown
    log.info("Shutting down application")


# Create FastAPI app
app = FastAPI(
    title=settings.app_name,
    version=__version__,
    description="""
    Storefront performance dashboard for merchants

    Combines, per merchant and period:
    - Shopify sales, order counts, average order value and daily sales trend
    - Google Analytics 4 sessions, active users and traffic channels
    - Conversion rate across both
    - Inventory insights: stockout risks and promotion candidates
    """,
    lifespan=lifespan
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Configure appropriately for production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Session-based authentication middleware
app.add_middleware(AuthMiddleware)

# Gzip compression
app.add_middleware(GZipMiddleware, minimum_size=500)

# Include routers
app.include_router(health.router, tags=["health"])
app.include_router(auth.router)
app.include_router(dashboard.router)
app.include_router(inventory.router)
app.include_router(connections.router)


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "app.main:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=settings.debug,
    )
