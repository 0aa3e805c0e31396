"""Run with: python -m lead_lander.website_api"""

import uvicorn
from .main import create_app
from ..config import settings

if __name__ == "__main__":
    settings.require_api_secret()
    app = create_app()
    uvicorn.run(app, host=settings.host, port=settings.port, log_level="debug" if settings.debug else "info")
