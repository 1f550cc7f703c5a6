"""Tests for tunnel graph synthesis."""
from __future__ import annotations

import logging
import random

import numpy as np
import pytest

from tunnel3d.connections import (
    ConnectionParams,
    TunnelGraph,
    build_candidate_weights,
    connection_weight,
    generate_tunnel_graph,
    place_nodes,
)
from tunnel3d.errors import ConsistencyError, PreconditionError
from tunnel3d.metrics import count_crossing_pairs
from tunnel3d.vector import Vector3

SQUARE_CORNERS = (
    Vector3(-4.0, 0.0, -4.0),
    Vector3(4.0, 0.0, 4.0),
    Vector3(-4.0, 0.0, 4.0),
    Vector3(4.0, 0.0, -4.0),
)


def make_params(**overrides) -> ConnectionParams:
    """Build deterministic connection parameters for graph tests."""

    base = {
        "bounds_lower": Vector3.splat(-8.0),
        "bounds_upper": Vector3.splat(8.0),
        "generated_node_count": 8,
        "generated_connection_count": 10,
        "test_intersections": True,
        "threshold_radius": 1.0,
        "seed": 1234,
        "node_separation_distance": 2.0,
        "elevation_aspect": 0.5,
    }
    base.update(overrides)
    return ConnectionParams(**base)


def adjacency_matrix(graph: TunnelGraph) -> np.ndarray:
    return graph.adjacency.reshape(graph.node_count, graph.node_count)


def test_two_preset_nodes_form_single_connection():
    params = make_params(
        preset_nodes=(Vector3(0.0, 0.0, 0.0), Vector3(5.0, 0.0, 0.0)),
        generated_node_count=0,
        generated_connection_count=0,
        test_intersections=False,
        elevation_aspect=0.0,
    )
    graph = generate_tunnel_graph(params)
    assert graph.nodes == params.preset_nodes
    assert adjacency_matrix(graph).tolist() == [[0, 1], [1, 0]]
    assert graph.weights.tolist() == [[0.0, 5.0], [5.0, 0.0]]


@pytest.mark.parametrize("seed", [0, 1, 7, 42, 1337])
def test_graph_is_symmetric_and_every_node_is_connected(seed):
    graph = generate_tunnel_graph(make_params(seed=seed))
    matrix = adjacency_matrix(graph)
    assert graph.node_count == 8
    assert np.array_equal(matrix, matrix.T)
    assert np.array_equal(graph.weights, graph.weights.T)
    assert not np.any(np.diag(matrix))
    assert all(graph.degree(node) >= 1 for node in range(graph.node_count))


def test_generation_is_deterministic_for_a_seed():
    first = generate_tunnel_graph(make_params(seed=99))
    second = generate_tunnel_graph(make_params(seed=99))
    assert first.nodes == second.nodes
    assert np.array_equal(first.adjacency, second.adjacency)
    assert np.array_equal(first.weights, second.weights)


def test_connection_count_is_reached_without_intersection_tests():
    graph = generate_tunnel_graph(
        make_params(generated_node_count=6, generated_connection_count=8, test_intersections=False)
    )
    assert len(list(graph.edges())) == 8


def test_spanning_tree_when_connection_count_is_small():
    graph = generate_tunnel_graph(
        make_params(generated_node_count=6, generated_connection_count=2, test_intersections=False)
    )
    assert len(list(graph.edges())) == 5
    assert all(graph.degree(node) >= 1 for node in range(6))


def test_crossing_candidate_is_rejected_once_its_rival_is_accepted():
    params = make_params(
        preset_nodes=SQUARE_CORNERS,
        generated_node_count=0,
        generated_connection_count=6,
        threshold_radius=3.0,
        elevation_aspect=0.0,
    )
    graph = generate_tunnel_graph(params)
    # //1.- All four sides plus exactly one of the two crossing diagonals survive.
    assert sorted(graph.edges()) == [(0, 1), (0, 2), (0, 3), (1, 2), (1, 3)]
    assert count_crossing_pairs(graph, params.threshold_radius) == 0


def test_disabling_intersection_tests_keeps_crossing_connections():
    params = make_params(
        preset_nodes=SQUARE_CORNERS,
        generated_node_count=0,
        generated_connection_count=6,
        threshold_radius=3.0,
        test_intersections=False,
        elevation_aspect=0.0,
    )
    graph = generate_tunnel_graph(params)
    assert len(list(graph.edges())) == 6
    assert count_crossing_pairs(graph, params.threshold_radius) == 1


@pytest.mark.parametrize("seed", [3, 11, 23])
def test_accepted_connections_do_not_cross_unless_forced(seed, caplog):
    params = make_params(seed=seed, threshold_radius=0.5, node_separation_distance=3.0)
    with caplog.at_level(logging.WARNING, logger="tunnel3d.connections"):
        graph = generate_tunnel_graph(params)
    if "Forced" not in caplog.text:
        assert count_crossing_pairs(graph, params.threshold_radius) == 0


def test_elevation_weight_penalises_slopes():
    a = Vector3(0.0, 0.0, 0.0)
    assert connection_weight(a, Vector3(3.0, 4.0, 0.0), 0.0) == pytest.approx(5.0)
    assert connection_weight(a, Vector3(3.0, 4.0, 0.0), 0.5) == pytest.approx(5.0 * (1.0 + 0.5 * 4.0 / 3.0))
    assert connection_weight(a, Vector3(0.0, 2.0, 0.0), 0.5) == pytest.approx(2.0 * (1.0 + 0.5 * 1000.0))
    assert connection_weight(a, Vector3(3.0, 0.0, 4.0), 2.0) == pytest.approx(5.0)


def test_candidate_weights_are_symmetric_with_zero_diagonal():
    nodes = [Vector3(0.0, 0.0, 0.0), Vector3(1.0, 0.0, 0.0), Vector3(0.0, 0.0, 2.0)]
    weights = build_candidate_weights(nodes, 0.0)
    assert np.array_equal(weights, weights.T)
    assert np.all(np.diag(weights) == 0.0)
    assert weights[1, 2] == pytest.approx(np.sqrt(5.0))


@pytest.mark.parametrize(
    "presets, generated",
    [((), 0), ((Vector3(1.0, 2.0, 3.0),), 0), ((), 1)],
)
def test_fewer_than_two_nodes_gives_empty_graph(presets, generated):
    graph = generate_tunnel_graph(make_params(preset_nodes=presets, generated_node_count=generated))
    assert graph.node_count == 0
    assert list(graph.edges()) == []


def test_placed_nodes_stay_inside_bounds_after_presets():
    preset = Vector3(20.0, 20.0, 20.0)
    params = make_params(preset_nodes=(preset,), generated_node_count=12, node_separation_distance=50.0)
    nodes = place_nodes(params, random.Random(params.seed))
    assert nodes[0] == preset
    assert len(nodes) == 13
    for node in nodes[1:]:
        for axis in range(3):
            assert params.bounds_lower[axis] <= node[axis] <= params.bounds_upper[axis]


def test_node_placement_terminates_when_separation_is_impossible():
    params = make_params(
        bounds_lower=Vector3.splat(-0.1),
        bounds_upper=Vector3.splat(0.1),
        generated_node_count=5,
        node_separation_distance=100.0,
        separation_attempts=3,
    )
    assert len(place_nodes(params, random.Random(0))) == 5


def test_graph_rejects_mismatched_matrix_sizes():
    nodes = (Vector3.zero(), Vector3.splat(1.0))
    with pytest.raises(ConsistencyError):
        TunnelGraph(nodes=nodes, adjacency=np.zeros((3, 3), dtype=np.uint8), weights=np.zeros((2, 2)))
    with pytest.raises(ConsistencyError):
        TunnelGraph(nodes=nodes, adjacency=np.zeros((2, 2), dtype=np.uint8), weights=np.zeros(5))


@pytest.mark.parametrize(
    "overrides",
    [
        {"generated_node_count": -1},
        {"generated_connection_count": -2},
        {"threshold_radius": -0.5},
        {"elevation_aspect": -1.0},
        {"separation_attempts": 0},
        {"bounds_lower": Vector3(9.0, 0.0, 0.0)},
    ],
)
def test_invalid_parameters_raise_precondition_error(overrides):
    with pytest.raises(PreconditionError):
        make_params(**overrides)
