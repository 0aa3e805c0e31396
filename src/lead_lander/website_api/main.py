"""FastAPI application factory for the lead intake and admin API."""

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .. import __version__
from ..config import settings
from ..pipeline import Pipeline
from .middleware.cors import allowed_origins
from .routes.admin import router as admin_router
from .routes.health import router as health_router
from .routes.quiz import router as quiz_router
from .routes.submissions import router as submissions_router

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler."""
    logger.info("Starting Lead Lander API")
    if app.state.pipeline is None:
        app.state.pipeline = Pipeline.from_settings()

    # Optionally drain the delivery queue in-process
    pool = None
    if settings.run_worker_in_api:
        pool = app.state.pipeline.worker_pool()
        pool.start()

    yield

    # Shutdown
    if pool:
        pool.stop()
    logger.info("Lead Lander API shutting down")


def create_app(pipeline: Optional[Pipeline] = None) -> FastAPI:
    """Create and configure the FastAPI application."""
    app = FastAPI(
        title="Lead Lander API",
        description="Lead capture, quiz routing and CRM delivery",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.pipeline = pipeline

    # CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=allowed_origins(),
        allow_credentials=True,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["*"],
        expose_headers=["X-Request-ID"],
    )

    # Routes
    app.include_router(health_router)
    app.include_router(submissions_router)
    app.include_router(quiz_router)
    app.include_router(admin_router)

    return app


# Module-level app instance for uvicorn
app = create_app()
