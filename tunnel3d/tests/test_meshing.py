"""Tests for per-chunk Marching Cubes extraction."""
from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from dataclasses import replace

import numpy as np
import pytest

from tunnel3d.connections import TunnelGraph, build_candidate_weights
from tunnel3d.easing import linear_falloff
from tunnel3d.errors import PreconditionError
from tunnel3d.meshing import extract_chunk_mesh, extract_meshes, smooth_normals
from tunnel3d.tables import END, TRIANGULATION_TABLE
from tunnel3d.vector import Vector3
from tunnel3d.voxels import DensityField, TunnelShape, VoxelParams, rasterize_tunnels


def single_voxel_field(params: VoxelParams, voxel) -> DensityField:
    field = DensityField.empty(params)
    x, y, z = voxel
    field.values[field.index(x, y, z)] = 255
    return field


@pytest.fixture(scope="module")
def tunnel_field() -> DensityField:
    nodes = [Vector3(-6.0, 0.0, 0.0), Vector3(6.0, 0.0, 0.0)]
    graph = TunnelGraph(
        nodes=tuple(nodes),
        adjacency=np.array([[0, 1], [1, 0]], dtype=np.uint8),
        weights=build_candidate_weights(nodes, 0.0),
    )
    return rasterize_tunnels(graph, TunnelShape(radius=1.5, ease=linear_falloff()), VoxelParams())


def test_triangulation_table_shape():
    assert len(TRIANGULATION_TABLE) == 256
    assert TRIANGULATION_TABLE[0][0] == END
    assert TRIANGULATION_TABLE[255][0] == END
    for row in TRIANGULATION_TABLE:
        edges = row[: row.index(END)] if END in row else row
        assert len(edges) % 3 == 0
        assert all(0 <= edge < 12 for edge in edges)


def test_empty_field_produces_empty_meshes():
    params = VoxelParams()
    meshes = extract_meshes(DensityField.empty(params))
    assert len(meshes) == params.total_chunks
    assert [mesh.chunk_index for mesh in meshes] == list(range(params.total_chunks))
    assert all(mesh.is_empty and mesh.surface_count == 0 for mesh in meshes)


def test_single_voxel_produces_octahedron():
    params = VoxelParams(volume_size=Vector3.splat(4.0), voxel_count=(4, 4, 4), chunk_count=(1, 1, 1))
    mesh = extract_chunk_mesh(single_voxel_field(params, (2, 2, 2)), 0)
    assert mesh.origin == Vector3(-2.0, -2.0, -2.0)
    assert mesh.vertex_count == 24
    assert mesh.triangle_count == 8
    # //1.- Each vertex lies half a voxel from the filled voxel along exactly one axis.
    assert np.all(np.count_nonzero(np.abs(mesh.vertices) > 1e-9, axis=1) == 1)
    assert np.abs(mesh.vertices).max(axis=1) == pytest.approx(np.full(24, 0.5))
    # //2.- The four faces around each tip average out to the axis direction.
    axis_normals = (np.abs(mesh.vertices) > 1e-9).astype(np.float64)
    assert np.abs(mesh.normals) == pytest.approx(axis_normals, abs=1e-9)


def test_margin_cells_are_trimmed_from_the_neighbour_chunk():
    params = VoxelParams(volume_size=Vector3(8.0, 4.0, 4.0), voxel_count=(4, 4, 4), chunk_count=(2, 1, 1))
    field = single_voxel_field(params, (3, 2, 2))
    owner, neighbour = extract_meshes(field)
    assert owner.vertex_count == 24
    assert neighbour.is_empty


def test_tunnel_meshes_are_well_formed(tunnel_field):
    params = tunnel_field.params
    meshes = extract_meshes(tunnel_field)
    non_empty = [mesh for mesh in meshes if not mesh.is_empty]
    assert non_empty
    for mesh in non_empty:
        assert mesh.vertex_count % 3 == 0
        assert mesh.normals.shape == mesh.vertices.shape
        lengths = np.linalg.norm(mesh.normals, axis=1)
        assert np.all((np.abs(lengths - 1.0) < 1e-9) | (lengths == 0.0))
        # //1.- Kept vertices never leave the chunk they belong to.
        lower = np.asarray(mesh.origin.to_tuple())
        upper = lower + np.asarray(params.voxel_count) * np.asarray(params.voxel_size.to_tuple())
        assert np.all(mesh.vertices >= lower - 1e-9)
        assert np.all(mesh.vertices <= upper + 1e-9)


def test_tunnel_surface_sits_at_the_iso_radius(tunnel_field):
    vertices = np.concatenate([mesh.vertices for mesh in extract_meshes(tunnel_field)])
    body = vertices[np.abs(vertices[:, 0]) < 5.0]
    assert body.shape[0] > 0
    # //1.- Linear fall-off over radius 1.5 crosses the 0.5 iso level at 0.75.
    radial = np.hypot(body[:, 1], body[:, 2])
    assert np.all(np.abs(radial - 0.75) < 0.5)


def test_extraction_is_deterministic(tunnel_field):
    first = extract_meshes(tunnel_field)
    with ThreadPoolExecutor(max_workers=3) as pool:
        second = extract_meshes(tunnel_field, executor=pool)
    for a, b in zip(first, second):
        assert a.vertices.tobytes() == b.vertices.tobytes()
        assert a.normals.tobytes() == b.normals.tobytes()


def test_inverted_field_meshes_the_same_surface(tunnel_field):
    inverted = DensityField(params=replace(tunnel_field.params, invert=True), values=tunnel_field.values)
    normal_meshes = extract_meshes(tunnel_field)
    inverted_meshes = extract_meshes(inverted)
    assert [m.is_empty for m in normal_meshes] == [m.is_empty for m in inverted_meshes]
    for plain, flipped in zip(normal_meshes, inverted_meshes):
        if flipped.is_empty:
            continue
        gaps = np.linalg.norm(flipped.vertices[:, np.newaxis, :] - plain.vertices[np.newaxis, :, :], axis=-1)
        assert np.all(gaps.min(axis=1) < 1e-6)


def test_chunk_subset_keeps_requested_order(tunnel_field):
    meshes = extract_meshes(tunnel_field, chunk_indices=[21, 5, 42])
    assert [mesh.chunk_index for mesh in meshes] == [21, 5, 42]


@pytest.mark.parametrize("chunk_index", [-1, 64])
def test_chunk_index_out_of_range(chunk_index, tunnel_field):
    with pytest.raises(PreconditionError):
        extract_chunk_mesh(tunnel_field, chunk_index)


def test_missing_field_is_rejected():
    with pytest.raises(PreconditionError):
        extract_meshes(None)


def test_smooth_normals_of_flat_quad_point_one_way():
    vertices = np.array(
        [
            [0.0, 0.0, 0.0], [1.0, 0.0, 0.0], [0.0, 1.0, 0.0],
            [1.0, 0.0, 0.0], [1.0, 1.0, 0.0], [0.0, 1.0, 0.0],
        ]
    )
    normals = smooth_normals(vertices)
    assert np.abs(normals) == pytest.approx(np.tile([0.0, 0.0, 1.0], (6, 1)))
    assert np.all(normals[:, 2] == normals[0, 2])
