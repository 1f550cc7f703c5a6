"""Tests for ease curves."""
from __future__ import annotations

import numpy as np
import pytest

from tunnel3d.easing import EaseCurve, curve_from_points, default_ease_curve, linear_falloff, sample_ease
from tunnel3d.errors import PreconditionError


def test_default_curve_holds_full_density_then_falls_off():
    curve = default_ease_curve()
    assert curve(0.0) == pytest.approx(1.0)
    assert curve(0.6) == pytest.approx(1.0)
    assert curve(0.8) == pytest.approx(0.5)
    assert curve(1.0) == pytest.approx(0.0)


def test_curve_samples_arrays():
    values = linear_falloff().sample(np.array([0.0, 0.25, 1.0]))
    assert isinstance(values, np.ndarray)
    assert values == pytest.approx([1.0, 0.75, 0.0])


def test_sample_ease_vectorises_plain_callables():
    values = sample_ease(lambda x: 1.0 - x * x, np.array([[0.0, 0.5], [1.0, 0.1]]))
    assert values.shape == (2, 2)
    assert values == pytest.approx(np.array([[1.0, 0.75], [0.0, 0.99]]))


def test_curve_from_json_points():
    curve = curve_from_points([[0, 1], [0.5, 0.2], [1, 0]])
    assert curve.points == ((0.0, 1.0), (0.5, 0.2), (1.0, 0.0))


@pytest.mark.parametrize(
    "points",
    [
        (),
        ((0.5, 1.0), (0.5, 0.0)),
        ((0.0, 0.0), (0.5, 1.0), (1.0, 0.0)),
        ((0.0, 1.5), (1.0, 0.0)),
    ],
)
def test_invalid_curves_are_rejected(points):
    with pytest.raises(PreconditionError):
        EaseCurve(points=points)
