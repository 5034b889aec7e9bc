"""Cascade persistence: JSON files parsed into an immutable CascadeModel.

File layout::

    {
      "name": "frontalface",
      "window": {"width": 24, "height": 24},
      "stages": [
        {"threshold": 0.5,
         "classifiers": [
           {"threshold": 0.1, "polarity": 1, "weight": 0.8,
            "rects": [{"x": 0, "y": 0, "width": 12, "height": 24, "weight": -1.0}, ...]}
         ]}
      ]
    }

Every shape or consistency problem is reported as ``ConfigError``.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from haarscan.errors import ConfigError
from haarscan.ml.cascade import CascadeModel, StageClassifierModel, WeakClassifier
from haarscan.ml.features import HaarFeatureTemplate, Rectangle, WeightedRectangle

logger = logging.getLogger(__name__)

CASCADE_SUFFIX = ".json"


# ---------------------------------------------------------------------------
# File schema
# ---------------------------------------------------------------------------


class _Schema(BaseModel):
    model_config = ConfigDict(extra="forbid")


class RectSpec(_Schema):
    x: int
    y: int
    width: int
    height: int
    weight: float


class ClassifierSpec(_Schema):
    threshold: float
    polarity: int
    weight: float
    rects: list[RectSpec]


class StageSpec(_Schema):
    threshold: float
    classifiers: list[ClassifierSpec]


class WindowSpec(_Schema):
    width: int
    height: int


class CascadeFile(_Schema):
    name: str | None = None
    window: WindowSpec
    stages: list[StageSpec] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Conversion
# ---------------------------------------------------------------------------


def _build_model(spec: CascadeFile, default_name: str) -> CascadeModel:
    stages = tuple(
        StageClassifierModel(
            classifiers=tuple(
                WeakClassifier(
                    template=HaarFeatureTemplate(
                        rects=tuple(
                            WeightedRectangle(Rectangle(r.x, r.y, r.width, r.height), r.weight) for r in c.rects
                        )
                    ),
                    threshold=c.threshold,
                    polarity=c.polarity,
                    weight=c.weight,
                )
                for c in stage.classifiers
            ),
            threshold=stage.threshold,
        )
        for stage in spec.stages
    )
    cascade = CascadeModel(
        stages=stages,
        window_width=spec.window.width,
        window_height=spec.window.height,
        name=spec.name or default_name,
    )

    counts = cascade.feature_counts
    if any(later < earlier for earlier, later in zip(counts, counts[1:], strict=False)):
        logger.warning("Cascade %s has decreasing stage complexity: %s", cascade.name, counts)
    return cascade


def cascade_from_dict(data: dict[str, Any], *, default_name: str = "cascade") -> CascadeModel:
    """Validate a decoded cascade document and build the model.

    Raises:
        ConfigError: If the document is malformed or inconsistent.
    """
    try:
        spec = CascadeFile.model_validate(data)
    except ValidationError as exc:
        raise ConfigError(f"Malformed cascade: {exc}") from exc
    return _build_model(spec, default_name)


def load_cascade(path: str | Path) -> CascadeModel:
    """Load a cascade JSON file; its stem is the default cascade name.

    Raises:
        ConfigError: If the file is not a valid cascade.
        OSError: If the file cannot be read.
    """
    path = Path(path)
    try:
        spec = CascadeFile.model_validate_json(path.read_bytes())
    except ValidationError as exc:
        raise ConfigError(f"Malformed cascade file {path}: {exc}") from exc

    cascade = _build_model(spec, path.stem)
    logger.info(
        "Loaded cascade %s (%dx%d, %d stages, %d features)",
        cascade.name,
        cascade.window_width,
        cascade.window_height,
        len(cascade.stages),
        sum(cascade.feature_counts),
    )
    return cascade
