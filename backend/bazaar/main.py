"""
Bazaar Backend Application.

FastAPI application for a multi-seller marketplace: catalog, cart,
checkout with Stripe or cash on delivery, seller dashboards and reviews.
"""

from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncGenerator

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import ORJSONResponse
from fastapi.staticfiles import StaticFiles
from loguru import logger

from bazaar.api.v1 import router as api_v1_router
from bazaar.core.config import settings
from bazaar.core.database import close_db, init_db
from bazaar.core.exceptions import AppError, app_error_handler
from bazaar.core.logging import setup_logging
from bazaar.modules.shop.cart import close_cart_service
from bazaar.modules.shop.orders import ReservationSweeper


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan manager."""
    setup_logging()
    logger.info("Starting Bazaar Backend...")

    # Initialize database
    await init_db()
    logger.info("Database initialized")

    # Release reservations of abandoned online checkouts
    sweeper = ReservationSweeper()
    await sweeper.start()

    logger.info("Bazaar Backend started successfully")

    yield

    # Shutdown
    logger.info("Shutting down Bazaar Backend...")

    await sweeper.stop()
    await close_cart_service()

    # Close database
    await close_db()

    logger.info("Shutdown complete")


# Create FastAPI application
app = FastAPI(
    title=settings.app_name,
    version=settings.app_version,
    description="""
    Bazaar Marketplace Backend

    ## Features

    - **Auth**: Email verification, JWT access and refresh tokens
    - **Catalog**: Categories, products, image uploads
    - **Cart**: Redis-backed shopping cart
    - **Orders**: Stripe checkout or cash on delivery, with stock reservations
    - **Sellers**: Dashboard and order management
    - **Reviews**: Ratings from customers who received the product

    ## Documentation

    - [API Docs](/docs) - Interactive Swagger UI
    - [ReDoc](/redoc) - Alternative documentation
    """,
    openapi_url=f"{settings.api_v1_prefix}/openapi.json",
    docs_url="/docs",
    redoc_url="/redoc",
    default_response_class=ORJSONResponse,
    lifespan=lifespan,
)

app.add_exception_handler(AppError, app_error_handler)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include API router
app.include_router(api_v1_router, prefix=settings.api_v1_prefix)

# Uploaded product images
Path(settings.upload_dir).mkdir(parents=True, exist_ok=True)
app.mount("/uploads", StaticFiles(directory=settings.upload_dir), name="uploads")


@app.get("/health", tags=["System"])
async def health_check() -> dict:
    """Health check endpoint for monitoring."""
    return {
        "status": "healthy",
        "version": settings.app_version,
    }


@app.get("/", tags=["System"])
async def root() -> dict:
    """Root endpoint with API information."""
    return {
        "name": settings.app_name,
        "version": settings.app_version,
        "docs": "/docs",
        "api": settings.api_v1_prefix,
    }
