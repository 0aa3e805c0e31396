"""CORS configuration."""

from ...config import settings


def allowed_origins():
    return settings.allowed_origins
