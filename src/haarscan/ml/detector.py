"""Top-level detection call: validate, scan all scales, merge."""

from __future__ import annotations

import logging
import time
from typing import TYPE_CHECKING

from haarscan.ml.merger import merge
from haarscan.ml.scanner import ScanConfig, scan

if TYPE_CHECKING:
    import threading

    from haarscan.ml.cascade import CascadeModel
    from haarscan.ml.integral import PixelBuffer
    from haarscan.ml.merger import DetectionSet

logger = logging.getLogger(__name__)


class CascadeDetector:
    """Runs one cascade over pixel buffers with a fixed scan configuration."""

    def __init__(self, cascade: CascadeModel, config: ScanConfig | None = None) -> None:
        self._cascade = cascade
        self._config = config or ScanConfig()

    @property
    def cascade(self) -> CascadeModel:
        return self._cascade

    @property
    def config(self) -> ScanConfig:
        return self._config

    def detect(
        self,
        pixels: PixelBuffer,
        *,
        cancel_event: threading.Event | None = None,
        timeout: float | None = None,
    ) -> DetectionSet:
        """Detect objects in a grayscale image.

        Args:
            pixels: Image to scan; borrowed for the duration of the call.
            cancel_event: Cooperative cancellation flag, checked per unit of work.
            timeout: Seconds after which the scan is abandoned.

        Returns:
            Merged detections in original image coordinates, highest score first.

        Raises:
            InputError: If the image is empty (raised before any scanning).
            ScanCancelledError: If ``cancel_event`` was set.
            ScanDeadlineExceeded: If ``timeout`` elapsed.
        """
        started = time.monotonic()
        deadline = started + timeout if timeout is not None else None

        raw = scan(self._cascade, pixels, self._config, cancel_event=cancel_event, deadline=deadline)
        detections = merge(raw, self._config.overlap_threshold, min_neighbors=self._config.min_neighbors)

        logger.info(
            "Cascade %s on %dx%d image: %d raw, %d merged detections in %.1f ms",
            self._cascade.name,
            pixels.width,
            pixels.height,
            len(raw),
            len(detections),
            (time.monotonic() - started) * 1000,
        )
        return detections
