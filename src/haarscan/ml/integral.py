"""Pixel buffers and integral images (summed-area tables).

The integral image stores, at padded index ``[y + 1, x + 1]``, the sum of
every pixel with coordinates <= (x, y). Row 0 and column 0 are zero, so any
axis-aligned rectangle sum takes exactly four lookups.

A parallel integral of squared intensities is built alongside so that the
variance of any window is also O(1).
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

import numpy as np

from haarscan.errors import InputError

if TYPE_CHECKING:
    from concurrent.futures import Executor

    from numpy.typing import NDArray

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PixelBuffer:
    """Borrowed 8-bit grayscale samples, ``stride`` bytes per row."""

    width: int
    height: int
    stride: int
    data: bytes

    @classmethod
    def from_array(cls, array: NDArray[np.uint8]) -> PixelBuffer:
        """Wrap a 2-D uint8 array (copied into a contiguous buffer)."""
        if array.ndim != 2:
            raise InputError(f"Expected a 2-D grayscale array, got shape {array.shape}")
        contiguous = np.ascontiguousarray(array, dtype=np.uint8)
        height, width = contiguous.shape
        return cls(width=width, height=height, stride=width, data=contiguous.tobytes())

    def to_array(self) -> NDArray[np.uint8]:
        """Return a read-only HxW view over the buffer.

        Raises:
            InputError: If the buffer is empty or too short for its geometry.
        """
        if self.width <= 0 or self.height <= 0:
            raise InputError(f"Pixel buffer must be non-empty, got {self.width}x{self.height}")
        if self.stride < self.width:
            raise InputError(f"Stride {self.stride} is smaller than width {self.width}")
        needed = self.stride * (self.height - 1) + self.width
        if len(self.data) < needed:
            raise InputError(f"Pixel buffer holds {len(self.data)} bytes, {needed} required")
        array: NDArray[np.uint8] = np.ndarray(
            shape=(self.height, self.width),
            dtype=np.uint8,
            buffer=self.data,
            strides=(self.stride, 1),
        )
        return array


@dataclass(frozen=True)
class IntegralImage:
    """Padded (height+1) x (width+1) prefix sums of intensities and their squares."""

    sums: NDArray[np.int64]
    squares: NDArray[np.int64]

    @property
    def width(self) -> int:
        return int(self.sums.shape[1]) - 1

    @property
    def height(self) -> int:
        return int(self.sums.shape[0]) - 1

    def at(self, x: int, y: int) -> int:
        """Sum of all pixels with coordinates <= (x, y), inclusive."""
        return int(self.sums[y + 1, x + 1])

    def rectangle_sum(self, x: int, y: int, width: int, height: int) -> int:
        """Sum of the pixels in ``[x, x + width) x [y, y + height)``."""
        s = self.sums
        x2 = x + width
        y2 = y + height
        return int(s[y2, x2] - s[y, x2] - s[y2, x] + s[y, x])

    def rectangle_square_sum(self, x: int, y: int, width: int, height: int) -> int:
        """Sum of squared intensities in ``[x, x + width) x [y, y + height)``."""
        q = self.squares
        x2 = x + width
        y2 = y + height
        return int(q[y2, x2] - q[y, x2] - q[y2, x] + q[y, x])


def build_integral_image(
    pixels: PixelBuffer,
    *,
    executor: Executor | None = None,
    partitions: int = 1,
) -> IntegralImage:
    """Build the integral image (and integral of squares) of a pixel buffer.

    With an executor and ``partitions > 1`` the row pass runs as row ranges,
    all of which finish before the column pass starts as column ranges. The
    result is identical to the sequential build.

    Raises:
        InputError: If the buffer has zero width or height.
    """
    values = pixels.to_array().astype(np.int64)
    if executor is None or partitions <= 1:
        sums = _prefix_sums(values)
        squares = _prefix_sums(values * values)
    else:
        sums = _parallel_prefix_sums(values, executor, partitions)
        squares = _parallel_prefix_sums(values * values, executor, partitions)
    logger.debug("Built %dx%d integral image", pixels.width, pixels.height)
    return IntegralImage(sums=sums, squares=squares)


def _prefix_sums(values: NDArray[np.int64]) -> NDArray[np.int64]:
    height, width = values.shape
    table = np.zeros((height + 1, width + 1), dtype=np.int64)
    table[1:, 1:] = np.cumsum(np.cumsum(values, axis=1), axis=0)
    return table


def _parallel_prefix_sums(
    values: NDArray[np.int64],
    executor: Executor,
    partitions: int,
) -> NDArray[np.int64]:
    height, width = values.shape
    table = np.zeros((height + 1, width + 1), dtype=np.int64)

    row_jobs = [
        executor.submit(_row_pass, values, table, start, stop) for start, stop in partition_range(height, partitions)
    ]
    # Barrier: every column total depends on all rows.
    for job in row_jobs:
        job.result()

    column_jobs = [
        executor.submit(_column_pass, table, start, stop) for start, stop in partition_range(width, partitions)
    ]
    for job in column_jobs:
        job.result()
    return table


def _row_pass(values: NDArray[np.int64], table: NDArray[np.int64], start: int, stop: int) -> None:
    table[start + 1 : stop + 1, 1:] = np.cumsum(values[start:stop], axis=1)


def _column_pass(table: NDArray[np.int64], start: int, stop: int) -> None:
    columns = table[1:, start + 1 : stop + 1]
    columns[...] = np.cumsum(columns, axis=0)


def partition_range(length: int, parts: int) -> list[tuple[int, int]]:
    """Split ``range(length)`` into at most ``parts`` contiguous non-empty ranges."""
    parts = max(1, min(parts, length))
    base, extra = divmod(length, parts)
    ranges: list[tuple[int, int]] = []
    start = 0
    for index in range(parts):
        stop = start + base + (1 if index < extra else 0)
        if stop > start:
            ranges.append((start, stop))
        start = stop
    return ranges
