"""Shared fixtures: a tiny centre-surround cascade and images it can find.

The cascade has an 8x8 canonical window and a single feature that weighs a
4x4 centre block against the whole window. On a dark image holding one 4x4
bright block, only the window centred on the block passes both weak
classifiers (score 2.0); the four windows shifted by one pixel pass one
(score 1.0); every other window is rejected.
"""

from __future__ import annotations

import io
import json
from typing import TYPE_CHECKING, Any

import numpy as np
import pytest
from PIL import Image

from haarscan.ml.cascade import CascadeModel, StageClassifierModel, WeakClassifier
from haarscan.ml.features import HaarFeatureTemplate, Rectangle, WeightedRectangle
from haarscan.ml.integral import PixelBuffer
from haarscan.ml.loader import cascade_from_dict

if TYPE_CHECKING:
    from pathlib import Path

SQUARE_ORIGIN = 12
SQUARE_SIZE = 4
SQUARE_INTENSITY = 200


def weighted(x: int, y: int, width: int, height: int, weight: float) -> WeightedRectangle:
    return WeightedRectangle(Rectangle(x, y, width, height), weight)


def always_accept_stage() -> StageClassifierModel:
    """A stage whose only classifier votes for every window."""
    classifier = WeakClassifier(
        template=HaarFeatureTemplate((weighted(0, 0, 2, 2, 1.0),)),
        threshold=1e12,
        polarity=1,
        weight=1.0,
    )
    return StageClassifierModel(classifiers=(classifier,), threshold=1.0)


def always_reject_stage() -> StageClassifierModel:
    """A stage whose only classifier never votes."""
    classifier = WeakClassifier(
        template=HaarFeatureTemplate((weighted(0, 0, 2, 2, 1.0),)),
        threshold=-1e12,
        polarity=1,
        weight=1.0,
    )
    return StageClassifierModel(classifiers=(classifier,), threshold=1.0)


def square_cascade_document() -> dict[str, Any]:
    centre_surround = [
        {"x": 0, "y": 0, "width": 8, "height": 8, "weight": -1.0},
        {"x": 2, "y": 2, "width": 4, "height": 4, "weight": 4.0},
    ]
    return {
        "name": "square",
        "window": {"width": 8, "height": 8},
        "stages": [
            {
                "threshold": 1.0,
                "classifiers": [
                    {"threshold": 1.0, "polarity": -1, "weight": 1.0, "rects": centre_surround},
                    {"threshold": 1.5, "polarity": -1, "weight": 1.0, "rects": centre_surround},
                ],
            }
        ],
    }


def square_array(size: int = 32) -> np.ndarray:
    image = np.zeros((size, size), dtype=np.uint8)
    end = SQUARE_ORIGIN + SQUARE_SIZE
    image[SQUARE_ORIGIN:end, SQUARE_ORIGIN:end] = SQUARE_INTENSITY
    return image


def png_bytes(array: np.ndarray) -> bytes:
    buffer = io.BytesIO()
    Image.fromarray(array).save(buffer, format="PNG")
    return buffer.getvalue()


@pytest.fixture()
def square_cascade() -> CascadeModel:
    return cascade_from_dict(square_cascade_document())


@pytest.fixture()
def square_image() -> PixelBuffer:
    return PixelBuffer.from_array(square_array())


@pytest.fixture()
def noise_image() -> PixelBuffer:
    rng = np.random.default_rng(7)
    return PixelBuffer.from_array(rng.integers(0, 256, size=(40, 48), dtype=np.uint8))


@pytest.fixture()
def cascades_dir(tmp_path: Path) -> Path:
    """A cascade directory holding ``square.json`` and ``frontalface.json``."""
    directory = tmp_path / "cascades"
    directory.mkdir()
    document = square_cascade_document()
    (directory / "square.json").write_text(json.dumps(document))
    (directory / "frontalface.json").write_text(json.dumps({**document, "name": "frontalface"}))
    return directory
