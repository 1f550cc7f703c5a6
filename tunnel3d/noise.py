"""Seeded gradient noise used to roughen tunnel walls."""
from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Callable, Tuple

from .errors import PreconditionError

NoiseSampler = Callable[[float, float, float], float]

# Lattice corner offsets in trilinear blend order: x varies fastest.
_CORNERS: Tuple[Tuple[int, int, int], ...] = tuple(
    (dx, dy, dz) for dz in (0, 1) for dy in (0, 1) for dx in (0, 1)
)


def _lattice_hash(seed: int, x: int, y: int, z: int) -> int:
    h = seed ^ (x * 374761393) ^ (y * 668265263) ^ (z * 2147483647)
    h = (h ^ (h >> 13)) * 1274126177
    return (h ^ (h >> 16)) & 0xFFFFFFFF


def _lattice_gradient(seed: int, x: int, y: int, z: int) -> Tuple[float, float, float]:
    h = _lattice_hash(seed, x, y, z)
    components = [((h >> shift) & 0xFF) / 127.5 - 1.0 for shift in (0, 8, 16)]
    norm = math.sqrt(sum(c * c for c in components)) or 1.0
    return components[0] / norm, components[1] / norm, components[2] / norm


def _quintic(t: float) -> float:
    return t * t * t * (t * (t * 6.0 - 15.0) + 10.0)


def gradient_noise(seed: int, x: float, y: float, z: float) -> float:
    """Single-octave gradient noise; zero on every integer lattice point."""

    cell = (math.floor(x), math.floor(y), math.floor(z))
    local = (x - cell[0], y - cell[1], z - cell[2])

    values = []
    for offset in _CORNERS:
        gx, gy, gz = _lattice_gradient(seed, cell[0] + offset[0], cell[1] + offset[1], cell[2] + offset[2])
        values.append(
            (local[0] - offset[0]) * gx + (local[1] - offset[1]) * gy + (local[2] - offset[2]) * gz
        )

    # //1.- Collapse the eight corner contributions one axis at a time.
    for axis in range(3):
        weight = _quintic(local[axis])
        values = [a + (b - a) * weight for a, b in zip(values[0::2], values[1::2])]
    return values[0]


@dataclass(frozen=True)
class PerlinNoise:
    """Seeded fractal noise sampler returning values in ``[-1, 1]``.

    ``octaves`` layers of :func:`gradient_noise` are summed, each at
    ``lacunarity`` times the previous frequency and ``gain`` times its
    amplitude, then normalised by the total amplitude. The rasterizer
    multiplies positions by 100 before sampling, so a frequency near
    ``0.01`` gives features roughly one world unit wide.
    """

    seed: int = 0
    frequency: float = 0.01
    octaves: int = 1
    lacunarity: float = 2.0
    gain: float = 0.5

    def __post_init__(self) -> None:
        if self.octaves < 1:
            raise PreconditionError("octaves must be >= 1")
        if self.gain <= 0.0:
            raise PreconditionError("gain must be positive")

    def __call__(self, x: float, y: float, z: float) -> float:
        total = 0.0
        amplitude = 1.0
        norm = 0.0
        frequency = self.frequency
        for octave in range(self.octaves):
            total += amplitude * gradient_noise(self.seed + octave, x * frequency, y * frequency, z * frequency)
            norm += amplitude
            amplitude *= self.gain
            frequency *= self.lacunarity
        return max(-1.0, min(1.0, total / norm))
