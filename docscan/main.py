"""
main.py

This is the main entry point of the FastAPI application.
Here we create the FastAPI app and register all API routes.

This file does NOT contain business logic.
It only wires everything together.
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

# Import API routers
from docscan.api.health import router as health_router
from docscan.api.scan import router as scan_router
from docscan.config import OCR_ENGINE, OCR_POOL_SIZE
from docscan.logging_config import configure_logging
from docscan.services.recognizer import RecognizerPool, create_engine

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Own the recognizer pool for the lifetime of the process.

    Engines are created lazily on the first scans and disposed here
    on shutdown.
    """
    pool = RecognizerPool(factory=lambda: create_engine(OCR_ENGINE), size=OCR_POOL_SIZE)
    app.state.pool = pool
    logger.info(f"Recognizer pool ready: engine={OCR_ENGINE}, size={OCR_POOL_SIZE}")
    try:
        yield
    finally:
        pool.close()
        logger.info("Recognizer pool closed")


def create_app() -> FastAPI:
    """
    Creates and returns the FastAPI application instance.
    This function helps keep the app creation clean and testable.
    """
    configure_logging()

    app = FastAPI(
        title="Document Scan Service",
        description="OCR field extraction for patient ID cards and medical documents",
        version="1.0.0",
        lifespan=lifespan,
    )

    # Register API routes
    app.include_router(health_router, prefix="/health", tags=["Health"])
    app.include_router(scan_router, prefix="/scan", tags=["Scan"])

    return app


# Create the FastAPI app instance
app = create_app()
