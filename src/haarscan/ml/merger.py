"""Greedy non-maximum suppression over raw detections."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Sequence

    from haarscan.ml.cascade import DetectionWindow
    from haarscan.ml.features import Rectangle

logger = logging.getLogger(__name__)

DetectionSet = list["DetectionWindow"]


def iou(a: Rectangle, b: Rectangle) -> float:
    """Intersection-over-Union of two rectangles (0.0 when disjoint or empty)."""
    inter_w = min(a.right, b.right) - max(a.x, b.x)
    inter_h = min(a.bottom, b.bottom) - max(a.y, b.y)
    if inter_w <= 0 or inter_h <= 0:
        return 0.0
    intersection = inter_w * inter_h
    union = a.area + b.area - intersection
    return intersection / union if union > 0 else 0.0


def merge(
    raw: Sequence[DetectionWindow],
    overlap_threshold: float,
    *,
    min_neighbors: int = 0,
) -> DetectionSet:
    """Collapse overlapping detections, keeping the best-scoring one per cluster.

    Detections are visited in descending score order, ties in their original
    (scan) order. Every remaining detection whose IoU with a kept one is at
    least ``overlap_threshold`` is dropped. With ``min_neighbors > 0`` a kept
    detection is only emitted when its cluster has more than ``min_neighbors``
    members.

    Merging a merged set returns it unchanged only when ``min_neighbors`` is
    0; otherwise every kept detection is a cluster of one on the second pass
    and is dropped.

    Raises:
        ValueError: If ``overlap_threshold`` is outside (0, 1].
    """
    if not 0.0 < overlap_threshold <= 1.0:
        raise ValueError(f"overlap_threshold must be in (0, 1], got {overlap_threshold}")

    remaining = sorted(raw, key=lambda d: d.score, reverse=True)
    merged: DetectionSet = []
    while remaining:
        best = remaining[0]
        survivors = []
        cluster_size = 1
        for other in remaining[1:]:
            if iou(best.rect, other.rect) >= overlap_threshold:
                cluster_size += 1
            else:
                survivors.append(other)
        remaining = survivors
        if cluster_size > min_neighbors:
            merged.append(best)

    logger.debug("Merged %d raw detections into %d", len(raw), len(merged))
    return merged
