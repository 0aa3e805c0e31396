"""Health check routes."""

from fastapi import APIRouter, Depends

from ... import __version__
from ...pipeline import Pipeline
from ..dependencies import get_pipeline

router = APIRouter(tags=["health"])


@router.get("/health")
async def health():
    return {"status": "healthy", "service": "lead-lander-api", "version": __version__}


@router.get("/ready")
async def ready(pipeline: Pipeline = Depends(get_pipeline)):
    """Readiness check - verifies database is accessible."""
    try:
        with pipeline.db.connection() as conn:
            conn.execute("SELECT 1")
        return {"status": "ready"}
    except Exception as e:
        return {"status": "not_ready", "detail": str(e)}
