"""
Script to run the AttributeSpace notification API server.

This script starts the FastAPI application using uvicorn.
"""

import logging

import uvicorn

from attrspace.config import settings

logger = logging.getLogger(__name__)

if __name__ == "__main__":
    logger.info(f"Starting AttributeSpace notification API on {settings.HOST}:{settings.PORT}")
    logger.info("API Documentation available at /docs")

    # The bus is in-process state, so a single worker serves all clients
    uvicorn.run(
        "attrspace.api.main:app",
        host=settings.HOST,
        port=settings.PORT,
        reload=settings.DEBUG,
        workers=1,
        log_level=settings.LOG_LEVEL.lower(),
    )
