import logging

from fastapi import FastAPI
from fastapi.staticfiles import StaticFiles

from campaign_layout.api.v1.routes import router as api_v1_router
from campaign_layout.config import get_settings


def create_app() -> FastAPI:
    """
    Application factory for the Campaign Layout API.

    Logging is configured from settings here rather than at import time, so
    tests can build fresh apps with their own dependency overrides.
    """
    settings = get_settings()
    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    app = FastAPI(
        title="Campaign Layout API",
        version="0.1.0",
        description="Image analysis, SKU matching and layout recommendations for campaign assets.",
    )

    # Infrastructure-level health check (non-versioned) primarily for ops.
    @app.get("/health", tags=["health"])
    async def root_health_check() -> dict:
        """Simple root health check endpoint."""
        return {"status": "ok"}

    # Stored session assets, addressed by the `url` of each asset reference.
    app.mount("/uploads", StaticFiles(directory=settings.storage_dir, check_dir=False), name="uploads")

    # Public, versioned API routes.
    app.include_router(api_v1_router)

    return app


app = create_app()
