"""Request-scoped access to the application's pipeline."""

from fastapi import Request

from ..pipeline import Pipeline


def get_pipeline(request: Request) -> Pipeline:
    return request.app.state.pipeline
