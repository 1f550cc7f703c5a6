"""Tests for run metrics and the demo harness."""
from __future__ import annotations

import json

import numpy as np
import pytest

from tunnel3d.connections import TunnelGraph, build_candidate_weights
from tunnel3d.demo import main
from tunnel3d.meshing import extract_meshes
from tunnel3d.metrics import (
    collect_generation_metrics,
    count_crossing_pairs,
    export_generation_metrics,
)
from tunnel3d.vector import Vector3
from tunnel3d.voxels import TunnelShape, VoxelParams, rasterize_tunnels


def crossing_graph() -> TunnelGraph:
    nodes = [
        Vector3(-4.0, 0.0, 0.0),
        Vector3(4.0, 0.0, 0.0),
        Vector3(0.0, 0.0, -4.0),
        Vector3(0.0, 0.0, 4.0),
        Vector3(6.0, 0.0, 0.0),
    ]
    adjacency = np.zeros((5, 5), dtype=np.uint8)
    for i, j in ((0, 1), (2, 3), (1, 4)):
        adjacency[i, j] = adjacency[j, i] = 1
    return TunnelGraph(nodes=tuple(nodes), adjacency=adjacency, weights=build_candidate_weights(nodes, 0.0))


def test_crossing_pairs_ignore_shared_nodes():
    graph = crossing_graph()
    assert count_crossing_pairs(graph, 1.0) == 1
    assert count_crossing_pairs(graph, 0.0) == 0


def test_collect_metrics_over_all_stages():
    graph = crossing_graph()
    params = VoxelParams(voxel_count=(4, 4, 4), chunk_count=(2, 2, 2))
    field = rasterize_tunnels(graph, TunnelShape(radius=1.0), params)
    meshes = extract_meshes(field)
    metrics = collect_generation_metrics(graph, threshold_radius=1.0, field=field, meshes=meshes)
    assert metrics.node_count == 5
    assert metrics.edge_count == 3
    assert metrics.total_tunnel_length == pytest.approx(18.0)
    assert metrics.min_degree == 1
    assert metrics.crossing_pairs == 1
    assert metrics.filled_voxels == int(np.count_nonzero(field.values))
    assert metrics.vertex_count == sum(mesh.vertex_count for mesh in meshes)


def test_graph_only_metrics_leave_later_counts_at_zero():
    metrics = collect_generation_metrics(TunnelGraph.empty(), threshold_radius=1.0)
    assert metrics.node_count == 0
    assert metrics.min_degree == 0
    assert metrics.filled_voxels == 0
    assert metrics.non_empty_chunks == 0


def test_export_metrics_writes_json(tmp_path):
    metrics = collect_generation_metrics(crossing_graph(), threshold_radius=1.0)
    output = tmp_path / "metrics.json"
    export_generation_metrics(metrics, filepath=str(output))
    payload = json.loads(output.read_text(encoding="utf-8"))
    assert payload["edge_count"] == 3
    assert payload["crossing_pairs"] == 1


def test_demo_runs_with_bundled_config(tmp_path):
    output = tmp_path / "run.json"
    assert main(["--seed", "5", "--workers", "2", "--metrics-out", str(output)]) == 0
    payload = json.loads(output.read_text(encoding="utf-8"))
    assert payload["node_count"] == 8
    assert payload["min_degree"] >= 1
    assert payload["vertex_count"] > 0
