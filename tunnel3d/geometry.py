"""Closest-distance primitives shared by graph synthesis and rasterization."""
from __future__ import annotations

from dataclasses import dataclass

import numpy as np

from .vector import Vector3


@dataclass(frozen=True)
class Segment:
    """Straight tunnel centerline bounded by two node positions."""

    origin: Vector3
    endpoint: Vector3

    @property
    def direction(self) -> Vector3:
        return self.endpoint - self.origin

    def point_at(self, t: float) -> Vector3:
        return self.origin + self.direction * t

    def length(self) -> float:
        return self.direction.length()

    def is_degenerate(self) -> bool:
        return self.direction.is_zero()


def _clamp01(value: float) -> float:
    return max(0.0, min(1.0, value))


def distance_point_to_point(a: Vector3, b: Vector3) -> float:
    return (b - a).length()


def distance_segment_to_point(segment: Segment, point: Vector3) -> float:
    """Distance from ``point`` to the closest point of ``segment``.

    The projection parameter onto the infinite line is clamped to the
    segment bounds. A zero-length segment behaves as its origin point.
    """

    direction = segment.direction
    length_sq = direction.dot(direction)
    if length_sq == 0.0:
        return distance_point_to_point(segment.origin, point)
    t = _clamp01(direction.dot(point - segment.origin) / length_sq)
    return distance_point_to_point(segment.origin + direction * t, point)


def _endpoint_distance(first: Segment, second: Segment) -> float:
    # //1.- Exhaustive endpoint check used when the closest-approach system is singular.
    return min(
        distance_segment_to_point(first, second.origin),
        distance_segment_to_point(first, second.endpoint),
        distance_segment_to_point(second, first.origin),
        distance_segment_to_point(second, first.endpoint),
    )


def distance_segment_to_segment(first: Segment, second: Segment, *, epsilon: float = 1e-12) -> float:
    """Minimum distance between two bounded segments.

    Solves the 2x2 system obtained by zeroing the derivative of the
    squared distance with respect to both segment parameters. Degenerate
    segments collapse to point queries; parallel or coincident segments
    fall back to an endpoint search.
    """

    # //1.- Degenerate segments reduce to point-to-point or segment-to-point queries.
    first_degenerate = first.is_degenerate()
    second_degenerate = second.is_degenerate()
    if first_degenerate and second_degenerate:
        return distance_point_to_point(first.origin, second.origin)
    if first_degenerate:
        return distance_segment_to_point(second, first.origin)
    if second_degenerate:
        return distance_segment_to_point(first, second.origin)

    # //2.- Build the simultaneous equations a*T - b*U = c and b*T - e*U = f.
    t_dir = first.direction
    u_dir = second.direction
    offset = second.origin - first.origin
    a = t_dir.dot(t_dir)
    b = t_dir.dot(u_dir)
    e = u_dir.dot(u_dir)
    c = t_dir.dot(offset)
    f = u_dir.dot(offset)
    denominator = a * e - b * b

    # //3.- A vanishing determinant means the segments are parallel.
    if abs(denominator) <= epsilon * a * e:
        return _endpoint_distance(first, second)

    t_value = (c * e - b * f) / denominator
    u_value = (b * c - a * f) / denominator
    t_in_range = 0.0 <= t_value <= 1.0
    u_in_range = 0.0 <= u_value <= 1.0

    t_point = first.point_at(_clamp01(t_value))
    u_point = second.point_at(_clamp01(u_value))
    distance = distance_point_to_point(t_point, u_point)

    # //4.- Clamped parameters may miss the true closest pair, so test the other segment too.
    if not u_in_range:
        distance = min(distance, distance_segment_to_point(first, u_point))
    if not t_in_range:
        distance = min(distance, distance_segment_to_point(second, t_point))
    return distance


def distance_segment_to_points(segment: Segment, points: np.ndarray) -> np.ndarray:
    """Vectorised :func:`distance_segment_to_point` over an ``(..., 3)`` array."""

    origin = np.asarray(segment.origin.to_tuple(), dtype=np.float64)
    direction = np.asarray(segment.direction.to_tuple(), dtype=np.float64)
    relative = np.asarray(points, dtype=np.float64) - origin
    length_sq = float(direction @ direction)
    if length_sq == 0.0:
        return np.linalg.norm(relative, axis=-1)
    t = np.clip((relative @ direction) / length_sq, 0.0, 1.0)
    closest = t[..., np.newaxis] * direction
    return np.linalg.norm(relative - closest, axis=-1)
