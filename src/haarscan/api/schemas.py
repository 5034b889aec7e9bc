"""Pydantic request/response schemas for the HaarScan API."""

from __future__ import annotations

from pydantic import BaseModel, Field


class Detection(BaseModel):
    """A single merged detection in original image pixel coordinates."""

    x: int
    y: int
    width: int
    height: int
    score: float = Field(description="Aggregate vote of the final cascade stage")
    scale: float = Field(description="Scale of the canonical window that matched")


class DetectResponse(BaseModel):
    """Response for the detection endpoint."""

    cascade: str
    image_width: int
    image_height: int
    elapsed_ms: float
    detections: list[Detection]


class HealthResponse(BaseModel):
    """Health check response."""

    status: str = "ok"
    cascades_loaded: list[str]
    concurrent_requests: int
    queue_depth: int
    cancelled_requests: int = 0


class CascadeInfo(BaseModel):
    """Information about a cascade file."""

    name: str
    status: str = Field(description="Cascade status: 'loaded', 'available', or 'invalid'")
    window_width: int | None = None
    window_height: int | None = None
    stages: int | None = None
    default: bool = False


class CascadesResponse(BaseModel):
    """Response for the cascade listing endpoint."""

    cascades: list[CascadeInfo]


class ErrorResponse(BaseModel):
    """Standard error response."""

    detail: str
