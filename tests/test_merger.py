"""Tests for IoU and greedy non-maximum suppression."""

from __future__ import annotations

import numpy as np
import pytest

from haarscan.ml.cascade import DetectionWindow
from haarscan.ml.features import Rectangle
from haarscan.ml.merger import iou, merge


def _det(x: int, y: int, w: int, h: int, score: float) -> DetectionWindow:
    return DetectionWindow(x=x, y=y, width=w, height=h, scale=1.0, score=score)


def _random_detections(seed: int, count: int = 60) -> list[DetectionWindow]:
    rng = np.random.default_rng(seed)
    detections = []
    for _ in range(count):
        size = int(rng.integers(8, 30))
        detections.append(
            _det(int(rng.integers(0, 80)), int(rng.integers(0, 80)), size, size, float(rng.integers(0, 5)))
        )
    return detections


class TestIoU:
    def test_identical(self) -> None:
        assert iou(Rectangle(1, 1, 5, 5), Rectangle(1, 1, 5, 5)) == 1.0

    def test_disjoint_and_touching(self) -> None:
        assert iou(Rectangle(0, 0, 5, 5), Rectangle(10, 10, 5, 5)) == 0.0
        assert iou(Rectangle(0, 0, 5, 5), Rectangle(5, 0, 5, 5)) == 0.0

    def test_partial_overlap(self) -> None:
        # Intersection 5x10 = 50, union 150.
        assert iou(Rectangle(0, 0, 10, 10), Rectangle(5, 0, 10, 10)) == pytest.approx(1 / 3)

    def test_symmetric(self) -> None:
        a, b = Rectangle(0, 0, 10, 10), Rectangle(3, 4, 6, 9)
        assert iou(a, b) == iou(b, a)


class TestMerge:
    def test_high_overlap_keeps_best(self) -> None:
        best = _det(0, 0, 10, 10, 0.9)
        other = _det(0, 0, 10, 9, 0.4)
        assert iou(best.rect, other.rect) == pytest.approx(0.9)

        assert merge([other, best], 0.5) == [best]

    def test_low_overlap_keeps_both(self) -> None:
        first = _det(0, 0, 10, 10, 0.9)
        second = _det(0, 0, 10, 1, 0.4)
        assert iou(first.rect, second.rect) == pytest.approx(0.1)

        assert merge([second, first], 0.5) == [first, second]

    def test_overlap_equal_to_threshold_is_suppressed(self) -> None:
        first = _det(0, 0, 10, 10, 2.0)
        second = _det(0, 0, 10, 5, 1.0)
        assert merge([first, second], 0.5) == [first]

    def test_empty_input(self) -> None:
        assert merge([], 0.5) == []

    def test_ties_keep_scan_order(self) -> None:
        first = _det(0, 0, 10, 10, 1.0)
        second = _det(1, 0, 10, 10, 1.0)
        third = _det(2, 0, 10, 10, 1.0)
        assert merge([first, second, third], 0.5) == [first]
        assert merge([third, second, first], 0.5) == [third]

    def test_transitive_chains_are_not_merged(self) -> None:
        # a overlaps b and b overlaps c, but a and c are disjoint.
        a = _det(0, 0, 10, 10, 3.0)
        b = _det(6, 0, 10, 10, 2.0)
        c = _det(12, 0, 10, 10, 1.0)
        assert merge([a, b, c], 0.2) == [a, c]

    @pytest.mark.parametrize("seed", [0, 1, 2])
    @pytest.mark.parametrize("threshold", [0.1, 0.3, 0.5, 1.0])
    def test_idempotent(self, seed: int, threshold: float) -> None:
        raw = _random_detections(seed)
        once = merge(raw, threshold)
        assert merge(once, threshold) == once

    @pytest.mark.parametrize("seed", [0, 1, 2])
    def test_output_sorted_by_descending_score(self, seed: int) -> None:
        merged = merge(_random_detections(seed), 0.3)
        scores = [d.score for d in merged]
        assert scores == sorted(scores, reverse=True)

    def test_kept_detections_do_not_overlap_beyond_threshold(self) -> None:
        merged = merge(_random_detections(5), 0.4)
        for i, a in enumerate(merged):
            for b in merged[i + 1 :]:
                assert iou(a.rect, b.rect) < 0.4

    @pytest.mark.parametrize("threshold", [0.0, -0.1, 1.01])
    def test_invalid_threshold_raises(self, threshold: float) -> None:
        with pytest.raises(ValueError, match="overlap_threshold"):
            merge([_det(0, 0, 1, 1, 1.0)], threshold)


class TestMinNeighbors:
    def test_isolated_detection_dropped(self) -> None:
        cluster = [_det(0, 0, 10, 10, 2.0), _det(1, 0, 10, 10, 1.0), _det(0, 1, 10, 10, 1.0)]
        lonely = _det(50, 50, 10, 10, 5.0)

        assert merge([*cluster, lonely], 0.5, min_neighbors=1) == [cluster[0]]
        assert merge([*cluster, lonely], 0.5, min_neighbors=2) == [cluster[0]]
        assert merge([*cluster, lonely], 0.5, min_neighbors=3) == []

    def test_zero_keeps_everything(self) -> None:
        lonely = _det(50, 50, 10, 10, 5.0)
        assert merge([lonely], 0.5, min_neighbors=0) == [lonely]

    def test_remerging_drops_survivors(self) -> None:
        cluster = [_det(0, 0, 10, 10, 2.0), _det(1, 0, 10, 10, 1.0)]

        once = merge(cluster, 0.5, min_neighbors=1)

        assert once == [cluster[0]]
        assert merge(once, 0.5, min_neighbors=1) == []
        assert merge(once, 0.5) == once
