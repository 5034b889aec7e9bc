"""Multi-scale sliding-window scan.

The image stays fixed and feature rectangles are scaled instead: level ``k``
evaluates the canonical window scaled by ``scale_factor ** k`` against a
single integral image built once per scan. Levels and row bands of window
positions are independent units of work that only read the shared cascade and
integral image, so they can run on a worker pool without locks; each unit
returns its own list and the lists are joined in scan order afterwards.

Cancellation and the deadline are checked once per unit of work, never per
window.
"""

from __future__ import annotations

import logging
import math
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import TYPE_CHECKING

from pydantic import BaseModel, ConfigDict, Field

from haarscan.errors import ScanCancelledError, ScanDeadlineExceeded
from haarscan.ml.cascade import DEFAULT_VARIANCE_EPSILON, classify
from haarscan.ml.features import Rectangle
from haarscan.ml.integral import build_integral_image, partition_range

if TYPE_CHECKING:
    import threading

    from haarscan.config import Settings
    from haarscan.ml.cascade import CascadeModel, DetectionWindow
    from haarscan.ml.integral import IntegralImage, PixelBuffer

logger = logging.getLogger(__name__)


class ScanConfig(BaseModel):
    """Parameters of one detection pass."""

    model_config = ConfigDict(frozen=True)

    scale_factor: float = Field(default=1.1, gt=1.0)
    min_window_size: int = Field(default=1, ge=1)
    max_window_size: int | None = Field(default=None, ge=1)
    step_fraction: float = Field(default=0.1, gt=0.0, le=1.0)
    overlap_threshold: float = Field(default=0.3, gt=0.0, le=1.0)
    min_neighbors: int = Field(default=0, ge=0)
    variance_epsilon: float = Field(default=DEFAULT_VARIANCE_EPSILON, ge=0.0)
    workers: int = Field(default=1, ge=1)

    @classmethod
    def from_settings(cls, settings: Settings, **overrides: object) -> ScanConfig:
        """Scan defaults from application settings, with per-call overrides."""
        values: dict[str, object] = {
            "scale_factor": settings.scale_factor,
            "min_window_size": settings.min_window_size,
            "max_window_size": settings.max_window_size,
            "step_fraction": settings.step_fraction,
            "overlap_threshold": settings.overlap_threshold,
            "min_neighbors": settings.min_neighbors,
            "variance_epsilon": settings.variance_epsilon,
            "workers": settings.scan_workers,
        }
        values.update({key: value for key, value in overrides.items() if value is not None})
        return cls.model_validate(values)


@dataclass(frozen=True)
class ScaleLevel:
    index: int
    scale: float
    window_width: int
    window_height: int
    step_x: int
    step_y: int


def _next_growth(side: int, current: int, scale_factor: float, index: int) -> int:
    """First level index above ``index`` at which ``side`` truncates past ``current``."""
    target = math.ceil(math.log((current + 1) / side) / math.log(scale_factor))
    k = max(index + 1, target)
    # Float rounding can put the estimate one level off either way.
    while k - 1 > index and int(side * scale_factor ** (k - 1)) > current:
        k -= 1
    while int(side * scale_factor**k) <= current:
        k += 1
    return k


def scale_levels(
    cascade: CascadeModel,
    image_width: int,
    image_height: int,
    config: ScanConfig,
) -> list[ScaleLevel]:
    """Enumerate the scale levels that fit the image and the size limits.

    Levels whose window is smaller than ``min_window_size``, or truncates to
    the same size as the previous level, are skipped. The progression stops
    at the first level that exceeds ``max_window_size`` (default: the smaller
    image dimension) or no longer fits the image.

    Runs of repeated window sizes are jumped over in one step, so the cost
    is bounded by the number of distinct sizes even for a ``scale_factor``
    barely above 1.
    """
    max_size = config.max_window_size or min(image_width, image_height)
    levels: list[ScaleLevel] = []
    index = 0
    while True:
        scale = config.scale_factor**index
        win_w = int(cascade.window_width * scale)
        win_h = int(cascade.window_height * scale)
        if max(win_w, win_h) > max_size or win_w > image_width or win_h > image_height:
            logger.debug("Stopping at level %d: %dx%d window does not fit", index, win_w, win_h)
            break
        if min(win_w, win_h) >= config.min_window_size:
            levels.append(
                ScaleLevel(
                    index=index,
                    scale=scale,
                    window_width=win_w,
                    window_height=win_h,
                    step_x=max(1, round(win_w * config.step_fraction)),
                    step_y=max(1, round(win_h * config.step_fraction)),
                )
            )
        index = min(
            _next_growth(cascade.window_width, win_w, config.scale_factor, index),
            _next_growth(cascade.window_height, win_h, config.scale_factor, index),
        )
    return levels


@dataclass(frozen=True)
class _WorkUnit:
    level: ScaleLevel
    rows: tuple[int, ...]


def _plan_units(levels: list[ScaleLevel], image_height: int, bands: int) -> list[_WorkUnit]:
    units: list[_WorkUnit] = []
    for level in levels:
        rows = tuple(range(0, image_height - level.window_height + 1, level.step_y))
        for start, stop in partition_range(len(rows), bands):
            units.append(_WorkUnit(level=level, rows=rows[start:stop]))
    return units


def _scan_unit(
    cascade: CascadeModel,
    integral: IntegralImage,
    unit: _WorkUnit,
    variance_epsilon: float,
    cancel_event: threading.Event | None,
    deadline: float | None,
) -> list[DetectionWindow]:
    if cancel_event is not None and cancel_event.is_set():
        raise ScanCancelledError(f"Scan cancelled at level {unit.level.index}")
    if deadline is not None and time.monotonic() > deadline:
        raise ScanDeadlineExceeded(f"Scan deadline passed at level {unit.level.index}")

    level = unit.level
    last_x = integral.width - level.window_width
    found: list[DetectionWindow] = []
    for y in unit.rows:
        for x in range(0, last_x + 1, level.step_x):
            window = Rectangle(x, y, level.window_width, level.window_height)
            detection = classify(cascade, integral, window, level.scale, variance_epsilon=variance_epsilon)
            if detection is not None:
                found.append(detection)
    return found


def scan(
    cascade: CascadeModel,
    image: PixelBuffer,
    config: ScanConfig,
    *,
    cancel_event: threading.Event | None = None,
    deadline: float | None = None,
) -> list[DetectionWindow]:
    """Run the cascade over every scale level and window position.

    Args:
        cascade: Loaded cascade, read-only for the duration of the scan.
        image: Grayscale pixel buffer.
        config: Scan parameters; ``workers > 1`` runs units on a thread pool.
        cancel_event: Cooperative cancellation flag.
        deadline: ``time.monotonic()`` value after which the scan gives up.

    Returns:
        Raw accepted windows in scan order (level, then row, then column).

    Raises:
        InputError: If the image is empty.
        ScanCancelledError: If ``cancel_event`` was set.
        ScanDeadlineExceeded: If ``deadline`` passed.
    """
    image.to_array()  # fail fast on empty or short buffers
    levels = scale_levels(cascade, image.width, image.height, config)
    if not levels:
        logger.debug("No scale level fits a %dx%d image", image.width, image.height)
        return []

    if config.workers <= 1:
        integral = build_integral_image(image)
        units = _plan_units(levels, image.height, bands=1)
        results = [
            _scan_unit(cascade, integral, unit, config.variance_epsilon, cancel_event, deadline) for unit in units
        ]
    else:
        with ThreadPoolExecutor(max_workers=config.workers, thread_name_prefix="cascade-scan") as executor:
            integral = build_integral_image(image, executor=executor, partitions=config.workers)
            units = _plan_units(levels, image.height, bands=config.workers)
            futures = [
                executor.submit(
                    _scan_unit, cascade, integral, unit, config.variance_epsilon, cancel_event, deadline
                )
                for unit in units
            ]
            try:
                # Barrier: merging needs every unit's detections.
                results = [future.result() for future in futures]
            except (ScanCancelledError, ScanDeadlineExceeded):
                for future in futures:
                    future.cancel()
                raise

    detections = [detection for found in results for detection in found]
    logger.debug(
        "Scanned %d levels (%d units) of a %dx%d image: %d raw detections",
        len(levels),
        len(units),
        image.width,
        image.height,
        len(detections),
    )
    return detections
