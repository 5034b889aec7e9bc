"""Haar-like feature templates and their evaluation against an integral image."""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import TYPE_CHECKING

from haarscan.errors import ConfigError

if TYPE_CHECKING:
    from haarscan.ml.integral import IntegralImage


@dataclass(frozen=True)
class Rectangle:
    """Integer axis-aligned rectangle."""

    x: int
    y: int
    width: int
    height: int

    @property
    def right(self) -> int:
        return self.x + self.width

    @property
    def bottom(self) -> int:
        return self.y + self.height

    @property
    def area(self) -> int:
        return self.width * self.height

    def contains(self, other: Rectangle) -> bool:
        """Return True if ``other`` lies entirely inside this rectangle."""
        return (
            other.x >= self.x and other.y >= self.y and other.right <= self.right and other.bottom <= self.bottom
        )


@dataclass(frozen=True)
class WeightedRectangle:
    rect: Rectangle
    weight: float


@dataclass(frozen=True)
class HaarFeatureTemplate:
    """Ordered weighted rectangles relative to the canonical window origin."""

    rects: tuple[WeightedRectangle, ...]

    def __post_init__(self) -> None:
        object.__setattr__(self, "rects", tuple(self.rects))
        if not self.rects:
            raise ConfigError("Feature template must contain at least one rectangle")
        for weighted in self.rects:
            rect = weighted.rect
            if rect.width <= 0 or rect.height <= 0 or rect.x < 0 or rect.y < 0:
                raise ConfigError(f"Invalid feature rectangle {rect}")


def evaluate_feature(
    integral: IntegralImage,
    origin: tuple[int, int],
    scale: float,
    template: HaarFeatureTemplate,
    normalizer: float = 1.0,
) -> float:
    """Weighted sum of the template's rectangle sums, divided by ``normalizer``.

    Rectangles are placed at ``origin`` with their edges (not their sizes)
    scaled and floored, so a rectangle inside a canonical window of width W
    stays inside the scaled window of width ``floor(W * scale)``.
    """
    s = integral.sums
    ox, oy = origin
    total = 0.0
    for weighted in template.rects:
        rect = weighted.rect
        x1 = ox + int(rect.x * scale)
        y1 = oy + int(rect.y * scale)
        x2 = ox + int(rect.right * scale)
        y2 = oy + int(rect.bottom * scale)
        total += weighted.weight * float(s[y2, x2] - s[y1, x2] - s[y2, x1] + s[y1, x1])
    return total / normalizer


def window_variance(integral: IntegralImage, window: Rectangle) -> float:
    """Intensity variance of ``window`` from the sum and square-sum integrals."""
    area = window.area
    mean = integral.rectangle_sum(window.x, window.y, window.width, window.height) / area
    mean_square = integral.rectangle_square_sum(window.x, window.y, window.width, window.height) / area
    return max(mean_square - mean * mean, 0.0)


def window_normalizer(integral: IntegralImage, window: Rectangle, epsilon: float) -> float:
    """Divisor that makes feature values invariant to window size and contrast.

    Returns ``area * stddev`` of the window, or 1.0 when the variance is at
    most ``epsilon``; flat windows are then scored on their raw sums.
    """
    variance = window_variance(integral, window)
    if variance <= epsilon:
        return 1.0
    return window.area * math.sqrt(variance)
