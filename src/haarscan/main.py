"""FastAPI application entry point."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from haarscan.api.routes import router
from haarscan.config import get_settings
from haarscan.ml.inference import InferencePool
from haarscan.ml.model_manager import FileCascadeManager

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Application lifespan: initialize on startup, clean up on shutdown."""
    settings = get_settings()
    app.state.settings = settings

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )

    logger.info(
        "Starting HaarScan (max_concurrent=%s, scan_workers=%s, cascades_dir=%s, default=%s)",
        settings.max_concurrent,
        settings.scan_workers,
        settings.cascades_dir,
        settings.default_cascade,
    )

    inference_pool = InferencePool(settings)
    app.state.inference_pool = inference_pool
    cascade_manager = FileCascadeManager(settings)
    app.state.cascade_manager = cascade_manager

    logger.info("HaarScan ready (%d cascades available)", len(cascade_manager.list_available()))
    yield

    logger.info("Shutting down HaarScan")
    inference_pool.shutdown()
    cascade_manager.shutdown()
    logger.info("HaarScan shutdown complete")


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    application = FastAPI(
        title="HaarScan",
        description="Haar cascade object detection API",
        version="0.1.0",
        lifespan=lifespan,
    )

    application.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    application.include_router(router)
    return application


app = create_app()
