"""Rasterization of tunnel connections into a chunked density grid."""
from __future__ import annotations

import logging
import math
import threading
from concurrent.futures import Executor, ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from typing import List, Optional, Tuple, Union

import numpy as np

from .connections import TunnelGraph
from .easing import EaseCurve, EaseFunction, default_ease_curve, sample_ease
from .errors import ConsistencyError, PreconditionError
from .geometry import Segment, distance_segment_to_points
from .noise import NoiseSampler
from .vector import Vector3

LOGGER = logging.getLogger(__name__)

IntTriple = Tuple[int, int, int]

# World positions are scaled before noise lookups so samplers tuned for
# frequencies near 1.0 produce detail at voxel scale.
NOISE_POSITION_SCALE = 100.0


@dataclass(frozen=True)
class TunnelShape:
    """Cross-section settings applied to every tunnel connection."""

    radius: float = 1.0
    ease: Union[EaseCurve, EaseFunction, None] = field(default_factory=default_ease_curve)
    noise: Optional[NoiseSampler] = None
    noise_intensity: float = 0.0

    def __post_init__(self) -> None:
        if not self.radius > 0.0:
            raise PreconditionError("tunnel radius must be positive")
        if not 0.0 <= self.noise_intensity <= 1.0:
            raise PreconditionError("noise_intensity must be between 0 and 1")

    @property
    def uses_noise(self) -> bool:
        return self.noise is not None and self.noise_intensity != 0.0


@dataclass(frozen=True)
class VoxelParams:
    """Grid layout shared by the rasterizer and the mesh extractor.

    The volume is centred on the origin. Voxel ``(x, y, z)`` sits at
    ``(index / dimension - 0.5) * volume_size`` on each axis.
    """

    volume_size: Vector3 = field(default_factory=lambda: Vector3.splat(16.0))
    voxel_count: IntTriple = (8, 8, 8)
    chunk_count: IntTriple = (4, 4, 4)
    iso_level: float = 0.5
    invert: bool = False

    def __post_init__(self) -> None:
        if any(axis <= 0.0 for axis in self.volume_size.to_tuple()):
            raise PreconditionError("volume_size must be positive on every axis")
        if len(self.voxel_count) != 3 or any(int(v) < 1 for v in self.voxel_count):
            raise PreconditionError("voxel_count must hold three positive integers")
        if len(self.chunk_count) != 3 or any(int(c) < 1 for c in self.chunk_count):
            raise PreconditionError("chunk_count must hold three positive integers")
        if not 0.0 <= self.iso_level <= 1.0:
            raise PreconditionError("iso_level must be between 0 and 1")

    @property
    def dimensions(self) -> IntTriple:
        vx, vy, vz = self.voxel_count
        cx, cy, cz = self.chunk_count
        return (vx * cx, vy * cy, vz * cz)

    @property
    def total_voxels(self) -> int:
        width, height, depth = self.dimensions
        return width * height * depth

    @property
    def total_chunks(self) -> int:
        cx, cy, cz = self.chunk_count
        return cx * cy * cz

    @property
    def voxel_size(self) -> Vector3:
        width, height, depth = self.dimensions
        size = self.volume_size
        return Vector3(size.x / width, size.y / height, size.z / depth)

    def chunk_coordinates(self, chunk_index: int) -> IntTriple:
        cx, cy, cz = self.chunk_count
        return (
            chunk_index % cx,
            chunk_index // cx % cy,
            chunk_index // cx // cy % cz,
        )

    def chunk_origin(self, chunk_index: int) -> Vector3:
        """World position of the first voxel of ``chunk_index``."""

        x, y, z = self.chunk_coordinates(chunk_index)
        cx, cy, cz = self.chunk_count
        size = self.volume_size
        return Vector3(
            (x / cx - 0.5) * size.x,
            (y / cy - 0.5) * size.y,
            (z / cz - 0.5) * size.z,
        )

    def voxel_position(self, x: int, y: int, z: int) -> Vector3:
        width, height, depth = self.dimensions
        size = self.volume_size
        return Vector3(
            (x / width - 0.5) * size.x,
            (y / height - 0.5) * size.y,
            (z / depth - 0.5) * size.z,
        )


@dataclass(frozen=True)
class DensityField:
    """Flat ``uint8`` density grid addressed as ``x + y*W + z*W*H``."""

    params: VoxelParams
    values: np.ndarray

    def __post_init__(self) -> None:
        if self.values is None:
            raise PreconditionError("density values are missing")
        if self.values.dtype != np.uint8:
            raise PreconditionError(f"density values must be uint8, got {self.values.dtype}")
        if self.values.size != self.params.total_voxels:
            raise ConsistencyError(
                f"density grid holds {self.values.size} voxels, "
                f"expected {self.params.total_voxels} for {self.params.dimensions}"
            )

    @classmethod
    def empty(cls, params: VoxelParams) -> "DensityField":
        return cls(params=params, values=np.zeros(params.total_voxels, dtype=np.uint8))

    @property
    def dimensions(self) -> IntTriple:
        return self.params.dimensions

    def grid(self) -> np.ndarray:
        """Return a ``(z, y, x)`` view over the flat values."""

        width, height, depth = self.dimensions
        return self.values.reshape(depth, height, width)

    def index(self, x: int, y: int, z: int) -> int:
        width, height, _ = self.dimensions
        return x + y * width + z * width * height

    def read(self, x: int, y: int, z: int) -> int:
        """Density byte at a voxel, or 0 outside the grid."""

        width, height, depth = self.dimensions
        if not (0 <= x < width and 0 <= y < height and 0 <= z < depth):
            return 0
        return int(self.values[self.index(x, y, z)])


@dataclass(frozen=True)
class VoxelBounds:
    """Half-open voxel index box ``[lower, upper)``."""

    lower: IntTriple
    upper: IntTriple

    @property
    def is_empty(self) -> bool:
        return any(hi <= lo for lo, hi in zip(self.lower, self.upper))


def voxel_bounds_for_edge(segment: Segment, radius: float, params: VoxelParams) -> VoxelBounds:
    """Voxel box covering ``segment`` inflated by ``radius``, clamped to the grid."""

    dimensions = params.dimensions
    size = params.volume_size
    lower: List[int] = []
    upper: List[int] = []
    for axis in range(3):
        half = size[axis] / 2.0
        low = min(segment.origin[axis], segment.endpoint[axis]) - radius
        high = max(segment.origin[axis], segment.endpoint[axis]) + radius
        low = max(-half, min(half, low))
        high = max(-half, min(half, high))
        low_voxel = (low + half) / size[axis] * dimensions[axis]
        high_voxel = (high + half) / size[axis] * dimensions[axis]
        # Clamp again so floating point overshoot never leaves the grid.
        lower.append(max(0, min(dimensions[axis], int(math.floor(low_voxel)))))
        upper.append(max(0, min(dimensions[axis], int(math.ceil(high_voxel)))))
    return VoxelBounds(lower=tuple(lower), upper=tuple(upper))


class _StripedGrid:
    """Density grid guarded by one lock per z-slab."""

    def __init__(self, params: VoxelParams) -> None:
        width, height, depth = params.dimensions
        self.values = np.zeros(params.total_voxels, dtype=np.uint8)
        self._grid = self.values.reshape(depth, height, width)
        self._locks = [threading.Lock() for _ in range(depth)]

    def combine_max(self, bounds: VoxelBounds, block: np.ndarray) -> None:
        (x0, y0, z0), (x1, y1, z1) = bounds.lower, bounds.upper
        for offset, z in enumerate(range(z0, z1)):
            with self._locks[z]:
                target = self._grid[z, y0:y1, x0:x1]
                np.maximum(target, block[offset], out=target)


def edge_density_block(
    segment: Segment,
    bounds: VoxelBounds,
    shape: TunnelShape,
    params: VoxelParams,
) -> np.ndarray:
    """Density bytes for every voxel in ``bounds`` as a ``(z, y, x)`` block."""

    width, height, depth = params.dimensions
    size = params.volume_size
    axes = []
    for axis, dimension in enumerate((width, height, depth)):
        indices = np.arange(bounds.lower[axis], bounds.upper[axis], dtype=np.float64)
        axes.append((indices / dimension - 0.5) * size[axis])
    zs, ys, xs = np.meshgrid(axes[2], axes[1], axes[0], indexing="ij")
    positions = np.stack((xs, ys, zs), axis=-1)

    normalised = distance_segment_to_points(segment, positions) / shape.radius
    density = sample_ease(shape.ease, np.clip(normalised, 0.0, 1.0))

    if shape.uses_noise:
        # //1.- Only voxels inside the tunnel radius receive the noise contribution.
        inside = normalised < 1.0
        scaled = positions[inside] * NOISE_POSITION_SCALE
        samples = np.fromiter(
            (shape.noise(px, py, pz) for px, py, pz in scaled),
            dtype=np.float64,
            count=scaled.shape[0],
        )
        density[inside] += (samples + 1.0) / 2.0 * shape.noise_intensity

    return np.floor(np.clip(density, 0.0, 1.0) * 255.0 + 0.5).astype(np.uint8)


def _rasterize_edge(
    grid: _StripedGrid,
    segment: Segment,
    shape: TunnelShape,
    params: VoxelParams,
) -> None:
    bounds = voxel_bounds_for_edge(segment, shape.radius, params)
    if bounds.is_empty:
        return
    grid.combine_max(bounds, edge_density_block(segment, bounds, shape, params))


def rasterize_tunnels(
    graph: Optional[TunnelGraph],
    shape: TunnelShape,
    params: VoxelParams,
    *,
    executor: Optional[Executor] = None,
) -> DensityField:
    """Rasterize every accepted connection of ``graph`` into a density field.

    Each connection is an independent unit of work submitted to
    ``executor`` (a private thread pool when omitted). The call returns
    only after every unit finished; the first failure is re-raised.
    """

    if graph is None:
        raise PreconditionError("tunnel graph is missing")
    if shape.ease is None:
        raise PreconditionError("tunnel ease function is missing")
    if graph.node_count == 0:
        LOGGER.warning("Tunnel graph has no nodes; producing an empty density grid")
        return DensityField.empty(params)
    if graph.adjacency.size != graph.node_count * graph.node_count:
        raise ConsistencyError("adjacency matrix size does not match the tunnel node count")

    segments = [graph.segment(i, j) for i, j in graph.edges()]
    grid = _StripedGrid(params)
    if executor is None:
        with ThreadPoolExecutor() as pool:
            _run_units(pool, grid, segments, shape, params)
    else:
        _run_units(executor, grid, segments, shape, params)

    LOGGER.info(
        "Rasterized %d tunnel(s) into a %dx%dx%d grid",
        len(segments),
        *params.dimensions,
    )
    return DensityField(params=params, values=grid.values)


def _run_units(
    executor: Executor,
    grid: _StripedGrid,
    segments: List[Segment],
    shape: TunnelShape,
    params: VoxelParams,
) -> None:
    futures = [executor.submit(_rasterize_edge, grid, segment, shape, params) for segment in segments]
    wait(futures)
    for future in futures:
        future.result()
