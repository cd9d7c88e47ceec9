"""
Script to run the CDC metric stream server.

This script starts the FastAPI application using uvicorn.
"""

import logging
import os

import uvicorn

from app.config import settings

logger = logging.getLogger(__name__)

if __name__ == "__main__":
    reload = os.getenv("API_RELOAD", "false").lower() == "true"

    logger.info(f"Starting CDC Metric Stream on {settings.HOST}:{settings.PORT}")

    # The pipeline and hub live in process memory, so a single worker.
    uvicorn.run(
        "app.api.main:app",
        host=settings.HOST,
        port=settings.PORT,
        reload=reload,
        workers=1,
        log_level=settings.LOG_LEVEL.lower(),
    )
