"""Cascade model and its evaluation.

A cascade is an ordered list of boosted stages. A window is accepted only if
every stage accepts it; the first rejecting stage ends evaluation, which is
what keeps scanning cheap since most windows are background and fail within
the first one or two stages.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum
from typing import TYPE_CHECKING, NamedTuple

from haarscan.errors import ConfigError
from haarscan.ml.features import Rectangle, evaluate_feature, window_normalizer

if TYPE_CHECKING:
    from haarscan.ml.features import HaarFeatureTemplate
    from haarscan.ml.integral import IntegralImage

DEFAULT_VARIANCE_EPSILON: float = 1e-6


# ---------------------------------------------------------------------------
# Model
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class WeakClassifier:
    """Single-feature threshold classifier with a signed polarity."""

    template: HaarFeatureTemplate
    threshold: float
    polarity: int
    weight: float

    def __post_init__(self) -> None:
        if self.polarity not in (1, -1):
            raise ConfigError(f"Polarity must be +1 or -1, got {self.polarity}")

    def votes(self, value: float) -> bool:
        """Return True if ``value`` falls on the positive side of the threshold."""
        return self.polarity * value < self.polarity * self.threshold


@dataclass(frozen=True)
class StageClassifierModel:
    classifiers: tuple[WeakClassifier, ...]
    threshold: float

    def __post_init__(self) -> None:
        object.__setattr__(self, "classifiers", tuple(self.classifiers))
        if not self.classifiers:
            raise ConfigError("Stage must contain at least one weak classifier")


@dataclass(frozen=True)
class CascadeModel:
    """Immutable trained cascade with its canonical window size."""

    stages: tuple[StageClassifierModel, ...]
    window_width: int
    window_height: int
    name: str = "cascade"

    def __post_init__(self) -> None:
        object.__setattr__(self, "stages", tuple(self.stages))
        if not self.stages:
            raise ConfigError("Cascade must contain at least one stage")
        if self.window_width <= 0 or self.window_height <= 0:
            raise ConfigError(f"Canonical window must be positive, got {self.window_width}x{self.window_height}")
        canonical = Rectangle(0, 0, self.window_width, self.window_height)
        for stage_index, stage in enumerate(self.stages):
            for classifier in stage.classifiers:
                for weighted in classifier.template.rects:
                    if not canonical.contains(weighted.rect):
                        raise ConfigError(
                            f"Stage {stage_index}: rectangle {weighted.rect} lies outside the "
                            f"{self.window_width}x{self.window_height} canonical window"
                        )

    @property
    def feature_counts(self) -> list[int]:
        """Number of weak classifiers per stage, in cascade order."""
        return [len(stage.classifiers) for stage in self.stages]


@dataclass(frozen=True)
class DetectionWindow:
    """An accepted window in original image coordinates."""

    x: int
    y: int
    width: int
    height: int
    scale: float
    score: float

    @property
    def rect(self) -> Rectangle:
        return Rectangle(self.x, self.y, self.width, self.height)

    def as_tuple(self) -> tuple[int, int, int, int, float]:
        return (self.x, self.y, self.width, self.height, self.score)


# ---------------------------------------------------------------------------
# Evaluation
# ---------------------------------------------------------------------------


class CascadeState(StrEnum):
    SCANNING = "scanning"
    REJECTED = "rejected"
    ACCEPTED = "accepted"


class StageResult(NamedTuple):
    accepted: bool
    score: float


class CascadeOutcome(NamedTuple):
    """Where a window left the cascade.

    ``stages_passed`` is the reject level: the index of the rejecting stage,
    or the stage count when the window was accepted.
    """

    state: CascadeState
    stages_passed: int
    score: float


def evaluate_stage(
    stage: StageClassifierModel,
    integral: IntegralImage,
    origin: tuple[int, int],
    scale: float,
    normalizer: float = 1.0,
) -> StageResult:
    """Sum the weighted votes of a stage's weak classifiers for one window.

    The aggregate vote is returned as the score even when the stage rejects.
    """
    vote = 0.0
    for classifier in stage.classifiers:
        value = evaluate_feature(integral, origin, scale, classifier.template, normalizer)
        if classifier.votes(value):
            vote += classifier.weight
    return StageResult(accepted=vote >= stage.threshold, score=vote)


def run_cascade(
    cascade: CascadeModel,
    integral: IntegralImage,
    window: Rectangle,
    scale: float,
    *,
    variance_epsilon: float = DEFAULT_VARIANCE_EPSILON,
) -> CascadeOutcome:
    """Run the stages in order until one rejects or all accept."""
    origin = (window.x, window.y)
    normalizer = window_normalizer(integral, window, variance_epsilon)

    state = CascadeState.SCANNING
    passed = 0
    score = 0.0
    for stage in cascade.stages:
        result = evaluate_stage(stage, integral, origin, scale, normalizer)
        score = result.score
        if not result.accepted:
            state = CascadeState.REJECTED
            break
        passed += 1
    else:
        state = CascadeState.ACCEPTED
    return CascadeOutcome(state=state, stages_passed=passed, score=score)


def classify(
    cascade: CascadeModel,
    integral: IntegralImage,
    window: Rectangle,
    scale: float,
    *,
    variance_epsilon: float = DEFAULT_VARIANCE_EPSILON,
) -> DetectionWindow | None:
    """Return a detection carrying the final stage's score, or None if rejected.

    Raises:
        ValueError: If the window does not fit inside the integral image.
    """
    if window.x < 0 or window.y < 0 or window.right > integral.width or window.bottom > integral.height:
        raise ValueError(f"Window {window} lies outside the {integral.width}x{integral.height} image")

    outcome = run_cascade(cascade, integral, window, scale, variance_epsilon=variance_epsilon)
    if outcome.state is not CascadeState.ACCEPTED:
        return None
    return DetectionWindow(
        x=window.x,
        y=window.y,
        width=window.width,
        height=window.height,
        scale=scale,
        score=outcome.score,
    )
