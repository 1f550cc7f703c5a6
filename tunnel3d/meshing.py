"""Per-chunk Marching Cubes extraction over a :class:`DensityField`."""
from __future__ import annotations

import logging
from concurrent.futures import Executor, ThreadPoolExecutor, wait
from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple

import numpy as np

from .errors import PreconditionError
from .tables import CORNER_OFFSETS, EDGE_CORNERS, END, TRIANGULATION_TABLE
from .vector import Vector3
from .voxels import DensityField

LOGGER = logging.getLogger(__name__)

# Vertices closer than this share one smoothed normal.
NORMAL_MERGE_DECIMALS = 6


@dataclass(frozen=True, eq=False)
class ChunkMesh:
    """Triangle soup for one chunk, in world space.

    Every three consecutive vertices form a triangle. An empty mesh is a
    committed result with no surface, as opposed to a chunk that was
    never extracted.
    """

    chunk_index: int
    origin: Vector3
    vertices: np.ndarray
    normals: np.ndarray

    @classmethod
    def empty(cls, chunk_index: int, origin: Vector3) -> "ChunkMesh":
        return cls(
            chunk_index=chunk_index,
            origin=origin,
            vertices=np.zeros((0, 3), dtype=np.float64),
            normals=np.zeros((0, 3), dtype=np.float64),
        )

    @property
    def is_empty(self) -> bool:
        return self.vertices.shape[0] == 0

    @property
    def surface_count(self) -> int:
        return 0 if self.is_empty else 1

    @property
    def vertex_count(self) -> int:
        return int(self.vertices.shape[0])

    @property
    def triangle_count(self) -> int:
        return self.vertex_count // 3


def _inverse_lerp(start: float, end: float, value: float) -> float:
    span = end - start
    if span == 0.0:
        return 0.5
    return (value - start) / span


def _sample_block(field: DensityField, offset: Tuple[int, int, int]) -> np.ndarray:
    """Normalised densities for a chunk and the corners of its margin cells.

    The returned ``(z, y, x)`` block starts at global voxel ``offset - 1``
    and reads zero outside the grid.
    """

    params = field.params
    vx, vy, vz = params.voxel_count
    shape = (vz + 3, vy + 3, vx + 3)
    block = np.zeros(shape, dtype=np.float64)
    grid = field.grid()
    source = []
    target = []
    for start, size, limit in zip(
        (offset[2] - 1, offset[1] - 1, offset[0] - 1), shape, grid.shape
    ):
        lo = max(start, 0)
        hi = min(start + size, limit)
        source.append(slice(lo, hi))
        target.append(slice(lo - start, hi - start))
    block[tuple(target)] = grid[tuple(source)] / 255.0
    if params.invert:
        block = 1.0 - block
    return block


def smooth_normals(vertices: np.ndarray) -> np.ndarray:
    """Per-vertex normals from accumulated face normals.

    Vertices at the same position share the sum of their adjacent face
    normals. Degenerate faces contribute nothing.
    """

    if vertices.shape[0] == 0:
        return np.zeros((0, 3), dtype=np.float64)
    triangles = vertices.reshape(-1, 3, 3)
    v0 = triangles[:, 0]
    faces = np.cross(triangles[:, 2] - v0, triangles[:, 1] - v0)
    lengths = np.linalg.norm(faces, axis=1, keepdims=True)
    faces = np.divide(faces, lengths, out=np.zeros_like(faces), where=lengths > 0.0)

    keys = np.round(vertices, decimals=NORMAL_MERGE_DECIMALS)
    _, inverse = np.unique(keys, axis=0, return_inverse=True)
    inverse = inverse.reshape(-1)
    accumulated = np.zeros((int(inverse.max()) + 1, 3), dtype=np.float64)
    np.add.at(accumulated, inverse, np.repeat(faces, 3, axis=0))

    normals = accumulated[inverse]
    lengths = np.linalg.norm(normals, axis=1, keepdims=True)
    return np.divide(normals, lengths, out=np.zeros_like(normals), where=lengths > 0.0)


def extract_chunk_mesh(field: DensityField, chunk_index: int) -> ChunkMesh:
    """Run Marching Cubes over one chunk of ``field``.

    Cells from ``-1`` to ``voxel_count`` inclusive are walked so normals
    stay continuous across chunk seams; vertices emitted by those margin
    cells are dropped after the normals are computed.
    """

    if field is None:
        raise PreconditionError("density field is missing")
    params = field.params
    if not 0 <= chunk_index < params.total_chunks:
        raise PreconditionError(
            f"chunk index {chunk_index} outside [0, {params.total_chunks})"
        )

    vx, vy, vz = params.voxel_count
    cx, cy, cz = params.chunk_coordinates(chunk_index)
    origin = params.chunk_origin(chunk_index)
    block = _sample_block(field, (cx * vx, cy * vy, cz * vz))
    iso = params.iso_level

    # //1.- Classify every cell at once; corner i contributes bit i.
    cells = (vz + 2, vy + 2, vx + 2)
    corners = [
        block[dz:dz + cells[0], dy:dy + cells[1], dx:dx + cells[2]]
        for dx, dy, dz in CORNER_OFFSETS
    ]
    cube = np.zeros(cells, dtype=np.int32)
    for bit, values in enumerate(corners):
        cube |= (values > iso).astype(np.int32) << bit
    active = np.nonzero((cube != 0) & (cube != 255))

    # //2.- Walk the surface cells in z, y, x order emitting interpolated edge crossings.
    positions: List[Tuple[float, float, float]] = []
    margin_flags: List[bool] = []
    voxel = params.voxel_size
    for bz, by, bx in zip(*active):
        x, y, z = int(bx) - 1, int(by) - 1, int(bz) - 1
        margin = x in (-1, vx) or y in (-1, vy) or z in (-1, vz)
        weights = [float(values[bz, by, bx]) for values in corners]
        for edge in TRIANGULATION_TABLE[int(cube[bz, by, bx])]:
            if edge == END:
                break
            a, b = EDGE_CORNERS[edge]
            t = _inverse_lerp(weights[a], weights[b], iso)
            ax, ay, az = CORNER_OFFSETS[a]
            bxo, byo, bzo = CORNER_OFFSETS[b]
            positions.append((
                origin.x + (x + ax + (bxo - ax) * t) * voxel.x,
                origin.y + (y + ay + (byo - ay) * t) * voxel.y,
                origin.z + (z + az + (bzo - az) * t) * voxel.z,
            ))
            margin_flags.append(margin)

    if all(margin_flags):
        return ChunkMesh.empty(chunk_index, origin)

    # //3.- Normals see the margin triangles; the margin vertices are stripped afterwards.
    vertices = np.asarray(positions, dtype=np.float64)
    normals = smooth_normals(vertices)
    keep = ~np.asarray(margin_flags, dtype=bool)
    return ChunkMesh(
        chunk_index=chunk_index,
        origin=origin,
        vertices=vertices[keep],
        normals=normals[keep],
    )


def extract_meshes(
    field: DensityField,
    *,
    executor: Optional[Executor] = None,
    chunk_indices: Optional[Sequence[int]] = None,
) -> List[ChunkMesh]:
    """Extract every chunk of ``field`` and return the meshes in chunk order."""

    if field is None:
        raise PreconditionError("density field is missing")
    indices = list(range(field.params.total_chunks)) if chunk_indices is None else list(chunk_indices)
    if executor is None:
        with ThreadPoolExecutor() as pool:
            meshes = _run_units(pool, field, indices)
    else:
        meshes = _run_units(executor, field, indices)
    LOGGER.info(
        "Extracted %d chunk mesh(es), %d non-empty",
        len(meshes),
        sum(1 for mesh in meshes if not mesh.is_empty),
    )
    return meshes


def _run_units(executor: Executor, field: DensityField, indices: Sequence[int]) -> List[ChunkMesh]:
    futures = [executor.submit(extract_chunk_mesh, field, index) for index in indices]
    wait(futures)
    return [future.result() for future in futures]
