"""API route definitions."""

from __future__ import annotations

import asyncio
import time
from typing import TYPE_CHECKING

from fastapi import APIRouter, Depends, HTTPException, Request, UploadFile, status
from pydantic import ValidationError

from haarscan.api.middleware import verify_api_key
from haarscan.api.schemas import (
    CascadeInfo,
    CascadesResponse,
    DetectResponse,
    Detection,
    ErrorResponse,
    HealthResponse,
)
from haarscan.errors import ConfigError, InputError, ScanDeadlineExceeded
from haarscan.ml.detector import CascadeDetector
from haarscan.ml.loader import load_cascade
from haarscan.ml.preprocessing import decode_image
from haarscan.ml.scanner import ScanConfig

if TYPE_CHECKING:
    import threading

    from haarscan.config import Settings
    from haarscan.ml.inference import InferencePool
    from haarscan.ml.integral import PixelBuffer
    from haarscan.ml.merger import DetectionSet
    from haarscan.ml.model_manager import CascadeManager

router = APIRouter(prefix="/api/v1", dependencies=[Depends(verify_api_key)])


def _get_settings(request: Request) -> Settings:
    settings: Settings = request.app.state.settings
    return settings


def _get_inference_pool(request: Request) -> InferencePool:
    pool: InferencePool = request.app.state.inference_pool
    return pool


def _get_cascade_manager(request: Request) -> CascadeManager:
    manager: CascadeManager = request.app.state.cascade_manager
    return manager


def _run_detection(
    detector: CascadeDetector,
    image_bytes: bytes,
    max_pixels: int,
    deadline: float,
    *,
    cancel_event: threading.Event,
) -> tuple[PixelBuffer, DetectionSet]:
    pixels = decode_image(image_bytes, max_pixels)
    # The deadline runs from request arrival, so queue and decode time count.
    remaining = max(deadline - time.monotonic(), 0.0)
    return pixels, detector.detect(pixels, cancel_event=cancel_event, timeout=remaining)


@router.post(
    "/detect",
    response_model=DetectResponse,
    responses={
        status.HTTP_400_BAD_REQUEST: {"model": ErrorResponse},
        status.HTTP_404_NOT_FOUND: {"model": ErrorResponse},
        status.HTTP_413_REQUEST_ENTITY_TOO_LARGE: {"model": ErrorResponse},
        status.HTTP_422_UNPROCESSABLE_ENTITY: {"model": ErrorResponse},
        status.HTTP_503_SERVICE_UNAVAILABLE: {"model": ErrorResponse},
        status.HTTP_504_GATEWAY_TIMEOUT: {"model": ErrorResponse},
    },
    summary="Detect objects in an image",
)
async def detect(
    request: Request,
    file: UploadFile,
    cascade: str | None = None,
    scale_factor: float | None = None,
    min_window_size: int | None = None,
    max_window_size: int | None = None,
    step_fraction: float | None = None,
    overlap_threshold: float | None = None,
    min_neighbors: int | None = None,
) -> DetectResponse:
    """Run a cascade over an uploaded image and return merged detections."""
    settings = _get_settings(request)
    manager = _get_cascade_manager(request)
    pool = _get_inference_pool(request)
    deadline = time.monotonic() + settings.detection_timeout

    try:
        config = ScanConfig.from_settings(
            settings,
            scale_factor=scale_factor,
            min_window_size=min_window_size,
            max_window_size=max_window_size,
            step_fraction=step_fraction,
            overlap_threshold=overlap_threshold,
            min_neighbors=min_neighbors,
        )
    except ValidationError as exc:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=f"Invalid scan parameters: {exc.error_count()} error(s)",
        ) from exc

    image_bytes = await file.read(settings.max_file_size + 1)
    if len(image_bytes) > settings.max_file_size:
        raise HTTPException(
            status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
            detail=f"File exceeds {settings.max_file_size} bytes",
        )

    manager.unload_idle_cascades()
    name = cascade or settings.default_cascade
    try:
        model = await asyncio.to_thread(manager.get_cascade, name)
    except KeyError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Unknown cascade: {name}") from exc
    except ConfigError as exc:
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(exc)) from exc
    except OSError as exc:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Cascade {name} could not be read",
        ) from exc

    detector = CascadeDetector(model, config)
    started = time.monotonic()
    try:
        pixels, detections = await pool.run(_run_detection, detector, image_bytes, settings.max_image_pixels, deadline)
    except InputError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    except ScanDeadlineExceeded as exc:
        raise HTTPException(
            status_code=status.HTTP_504_GATEWAY_TIMEOUT,
            detail=f"Detection exceeded {settings.detection_timeout} s",
        ) from exc
    except TimeoutError as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Detection capacity exhausted, retry later",
        ) from exc

    return DetectResponse(
        cascade=model.name,
        image_width=pixels.width,
        image_height=pixels.height,
        elapsed_ms=(time.monotonic() - started) * 1000,
        detections=[
            Detection(x=d.x, y=d.y, width=d.width, height=d.height, score=d.score, scale=d.scale)
            for d in detections
        ],
    )


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Health check",
)
async def health(request: Request) -> HealthResponse:
    """Return service health status."""
    manager = _get_cascade_manager(request)
    pool = _get_inference_pool(request)
    return HealthResponse(
        status="ok",
        cascades_loaded=manager.get_loaded_cascades(),
        concurrent_requests=pool.active_count,
        queue_depth=pool.queue_depth,
        cancelled_requests=pool.cancelled_count,
    )


@router.get(
    "/cascades",
    response_model=CascadesResponse,
    summary="List available cascades",
)
async def list_cascades(request: Request) -> CascadesResponse:
    """Return every cascade on disk with its shape and status."""
    settings = _get_settings(request)
    manager = _get_cascade_manager(request)
    loaded = set(manager.get_loaded_cascades())

    cascades: list[CascadeInfo] = []
    for name in manager.list_available():
        try:
            if name in loaded:
                model = await asyncio.to_thread(manager.get_cascade, name)
            else:
                model = await asyncio.to_thread(load_cascade, manager.ensure_available(name))
        except (ConfigError, KeyError, OSError):
            cascades.append(CascadeInfo(name=name, status="invalid", default=name == settings.default_cascade))
            continue

        cascades.append(
            CascadeInfo(
                name=name,
                status="loaded" if name in loaded else "available",
                window_width=model.window_width,
                window_height=model.window_height,
                stages=len(model.stages),
                default=name == settings.default_cascade,
            )
        )

    return CascadesResponse(cascades=cascades)
