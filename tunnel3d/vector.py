"""Lightweight 3D vector math utilities.

Node positions, bounding boxes and volume sizes are all expressed with
:class:`Vector3` so the graph stage stays free of array plumbing. Bulk
voxel work converts to numpy arrays through :meth:`Vector3.to_tuple`.
"""
from __future__ import annotations

from dataclasses import dataclass
import math
from typing import Iterable, Tuple


@dataclass(frozen=True)
class Vector3:
    """Immutable 3D vector with a handful of math helpers."""

    x: float
    y: float
    z: float

    def __add__(self, other: "Vector3") -> "Vector3":
        return Vector3(self.x + other.x, self.y + other.y, self.z + other.z)

    def __sub__(self, other: "Vector3") -> "Vector3":
        return Vector3(self.x - other.x, self.y - other.y, self.z - other.z)

    def __mul__(self, scalar: float) -> "Vector3":
        return Vector3(self.x * scalar, self.y * scalar, self.z * scalar)

    def __getitem__(self, axis: int) -> float:
        return (self.x, self.y, self.z)[axis]

    def dot(self, other: "Vector3") -> float:
        return self.x * other.x + self.y * other.y + self.z * other.z

    def length(self) -> float:
        return math.sqrt(self.dot(self))

    def horizontal(self) -> "Vector3":
        """Return the vector projected onto the XZ plane."""

        return Vector3(self.x, 0.0, self.z)

    def is_zero(self) -> bool:
        return self.x == 0.0 and self.y == 0.0 and self.z == 0.0

    def to_tuple(self) -> Tuple[float, float, float]:
        return (self.x, self.y, self.z)

    @staticmethod
    def zero() -> "Vector3":
        return Vector3(0.0, 0.0, 0.0)

    @staticmethod
    def splat(value: float) -> "Vector3":
        return Vector3(value, value, value)

    @staticmethod
    def from_iter(values: Iterable[float]) -> "Vector3":
        x, y, z = values
        return Vector3(float(x), float(y), float(z))
