"""Ease curves mapping normalised centerline distance to density."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Sequence, Tuple, Union

import numpy as np

from .errors import PreconditionError

EaseFunction = Callable[[float], float]


@dataclass(frozen=True)
class EaseCurve:
    """Piecewise-linear curve over ``[0, 1]`` defined by control points.

    Inputs outside the first and last control point hold the end value,
    matching how a baked editor curve is sampled.
    """

    points: Tuple[Tuple[float, float], ...]

    def __post_init__(self) -> None:
        if not self.points:
            raise PreconditionError("EaseCurve requires at least one control point")
        xs = [x for x, _ in self.points]
        if any(b <= a for a, b in zip(xs, xs[1:])):
            raise PreconditionError("EaseCurve control points must have increasing x")
        ys = [y for _, y in self.points]
        rising = all(b >= a for a, b in zip(ys, ys[1:]))
        falling = all(b <= a for a, b in zip(ys, ys[1:]))
        if not (rising or falling):
            raise PreconditionError("EaseCurve must be monotonic")
        if any(y < 0.0 or y > 1.0 for y in ys):
            raise PreconditionError("EaseCurve values must lie in [0, 1]")

    def sample(self, x: Union[float, np.ndarray]) -> Union[float, np.ndarray]:
        xs = [p[0] for p in self.points]
        ys = [p[1] for p in self.points]
        result = np.interp(x, xs, ys)
        if np.ndim(result) == 0:
            return float(result)
        return result

    __call__ = sample


def default_ease_curve() -> EaseCurve:
    """Full density out to 60% of the radius, then a linear fall-off."""

    return EaseCurve(points=((0.6, 1.0), (1.0, 0.0)))


def linear_falloff() -> EaseCurve:
    return EaseCurve(points=((0.0, 1.0), (1.0, 0.0)))


def sample_ease(ease: Union[EaseCurve, EaseFunction], values: np.ndarray) -> np.ndarray:
    """Evaluate ``ease`` over an array, vectorising plain callables."""

    if isinstance(ease, EaseCurve):
        return np.asarray(ease.sample(values), dtype=np.float64)
    if values.size == 0:
        return np.zeros_like(values, dtype=np.float64)
    return np.vectorize(ease, otypes=[np.float64])(values)


def curve_from_points(points: Sequence[Sequence[float]]) -> EaseCurve:
    return EaseCurve(points=tuple((float(x), float(y)) for x, y in points))
