"""
Entry point to run the FastAPI application.

This script starts the web server.
"""

import uvicorn
from viewing_scheduler.core.config import settings

if __name__ == "__main__":
    # reload only in development
    uvicorn.run(
        "viewing_scheduler.main:app",
        host="0.0.0.0",
        port=settings.port,
        reload=settings.debug,
        log_level="debug" if settings.debug else "info"
    )
