"""Tunnel graph synthesis.

Nodes are placed by rejection sampling inside a bounding box, then
joined by a modified Prim's algorithm that prefers connections which do
not pass close to other candidate tunnels. The output is a
:class:`TunnelGraph` holding node positions plus symmetric adjacency and
weight matrices.
"""
from __future__ import annotations

import heapq
import itertools
import logging
import math
import random
from dataclasses import dataclass, field, replace
from typing import Iterator, List, Sequence, Set, Tuple

import numpy as np

from .errors import ConsistencyError, PreconditionError
from .geometry import Segment, distance_segment_to_point, distance_segment_to_segment
from .vector import Vector3

LOGGER = logging.getLogger(__name__)

SLOPE_CEILING = 1000.0


@dataclass(frozen=True)
class ConnectionParams:
    """Knob set for :func:`generate_tunnel_graph`.

    ``generated_connection_count`` is a lower bound on the edge count; a
    spanning tree over every node is always produced first. The
    separation distance shrinks linearly over ``separation_attempts``
    samples, after which the last sample is accepted unconditionally.
    """

    bounds_lower: Vector3 = field(default_factory=lambda: Vector3.splat(-8.0))
    bounds_upper: Vector3 = field(default_factory=lambda: Vector3.splat(8.0))
    preset_nodes: Tuple[Vector3, ...] = ()
    generated_node_count: int = 0
    generated_connection_count: int = 0
    test_intersections: bool = True
    threshold_radius: float = 3.0
    seed: int = 0
    node_separation_distance: float = 0.0
    elevation_aspect: float = 0.0
    separation_attempts: int = 10

    def __post_init__(self) -> None:
        if self.generated_node_count < 0:
            raise PreconditionError("generated_node_count must be >= 0")
        if self.generated_connection_count < 0:
            raise PreconditionError("generated_connection_count must be >= 0")
        if self.threshold_radius < 0.0:
            raise PreconditionError("threshold_radius must be >= 0")
        if self.node_separation_distance < 0.0:
            raise PreconditionError("node_separation_distance must be >= 0")
        if self.elevation_aspect < 0.0:
            raise PreconditionError("elevation_aspect must be >= 0")
        if self.separation_attempts < 1:
            raise PreconditionError("separation_attempts must be >= 1")
        for axis in range(3):
            if self.bounds_lower[axis] > self.bounds_upper[axis]:
                raise PreconditionError("bounds_lower must not exceed bounds_upper on any axis")

    @property
    def node_count(self) -> int:
        return len(self.preset_nodes) + self.generated_node_count


@dataclass(frozen=True)
class TunnelGraph:
    """Committed output of the graph stage."""

    nodes: Tuple[Vector3, ...]
    adjacency: np.ndarray
    weights: np.ndarray

    def __post_init__(self) -> None:
        count = len(self.nodes)
        if self.adjacency.size != count * count:
            raise ConsistencyError(
                f"adjacency matrix holds {self.adjacency.size} entries, expected {count * count}"
            )
        if self.weights.size != count * count:
            raise ConsistencyError(
                f"weight matrix holds {self.weights.size} entries, expected {count * count}"
            )

    @classmethod
    def empty(cls) -> "TunnelGraph":
        return cls(
            nodes=(),
            adjacency=np.zeros((0, 0), dtype=np.uint8),
            weights=np.zeros((0, 0), dtype=np.float64),
        )

    @property
    def node_count(self) -> int:
        return len(self.nodes)

    def edges(self) -> Iterator[Tuple[int, int]]:
        """Yield accepted connections as ``(i, j)`` pairs with ``i < j``."""

        matrix = self.adjacency.reshape(self.node_count, self.node_count)
        for i in range(self.node_count):
            for j in range(i + 1, self.node_count):
                if matrix[i, j]:
                    yield i, j

    def degree(self, node: int) -> int:
        matrix = self.adjacency.reshape(self.node_count, self.node_count)
        return int(np.count_nonzero(matrix[node]))

    def segment(self, i: int, j: int) -> Segment:
        return Segment(self.nodes[i], self.nodes[j])


@dataclass(frozen=True)
class _Candidate:
    node1: int
    node2: int
    weight: float
    reshuffled: bool = False


class _CandidateQueue:
    """Min-priority queue with insertion-order tie-breaking."""

    def __init__(self) -> None:
        self._heap: List[Tuple[float, int, _Candidate]] = []
        self._counter = itertools.count()

    def push(self, candidate: _Candidate, priority: float) -> None:
        heapq.heappush(self._heap, (priority, next(self._counter), candidate))

    def pop(self) -> _Candidate:
        return heapq.heappop(self._heap)[2]

    def __len__(self) -> int:
        return len(self._heap)


def place_nodes(params: ConnectionParams, rng: random.Random) -> List[Vector3]:
    """Return preset nodes followed by rejection-sampled random nodes."""

    nodes: List[Vector3] = list(params.preset_nodes)
    lower = params.bounds_lower
    upper = params.bounds_upper
    attempts = params.separation_attempts
    for _ in range(params.generated_node_count):
        iterations = 0
        while True:
            # //1.- Shrink the separation requirement so sampling always terminates.
            separation = params.node_separation_distance * max(
                0.0, min(1.0, (attempts - iterations) / attempts)
            )
            candidate = Vector3(
                lower.x + (upper.x - lower.x) * rng.random(),
                lower.y + (upper.y - lower.y) * rng.random(),
                lower.z + (upper.z - lower.z) * rng.random(),
            )
            iterations += 1
            if _is_separated(nodes, candidate, separation) or iterations >= attempts:
                break
        nodes.append(candidate)
    return nodes


def _is_separated(nodes: Sequence[Vector3], point: Vector3, separation: float) -> bool:
    for first, second in itertools.combinations(range(len(nodes)), 2):
        if distance_segment_to_point(Segment(nodes[first], nodes[second]), point) <= separation:
            return False
    return True


def connection_weight(a: Vector3, b: Vector3, elevation_aspect: float) -> float:
    """Euclidean length inflated by the slope between ``a`` and ``b``."""

    difference = a - b
    distance = difference.length()
    horizontal = difference.horizontal().length()
    rise = abs(difference.y)
    if horizontal > 0.0:
        slope = min(rise / horizontal, SLOPE_CEILING)
    else:
        slope = SLOPE_CEILING if rise > 0.0 else 0.0
    return distance + distance * slope * elevation_aspect


def build_candidate_weights(nodes: Sequence[Vector3], elevation_aspect: float) -> np.ndarray:
    """Return the symmetric weight matrix of the complete graph over ``nodes``."""

    count = len(nodes)
    weights = np.zeros((count, count), dtype=np.float64)
    for i, j in itertools.combinations(range(count), 2):
        weight = connection_weight(nodes[i], nodes[j], elevation_aspect)
        weights[i, j] = weight
        weights[j, i] = weight
    return weights


class _ConnectionSelector:
    """Modified Prim's walk over the complete candidate graph."""

    def __init__(self, params: ConnectionParams, nodes: Sequence[Vector3], weights: np.ndarray) -> None:
        self._params = params
        self._count = len(nodes)
        self._weights = weights
        self._adjacency = np.zeros((self._count, self._count), dtype=np.uint8)
        self._segments = {
            (i, j): Segment(nodes[i], nodes[j])
            for i, j in itertools.combinations(range(self._count), 2)
        }
        max_weight = float(weights.max()) if weights.size else 0.0
        self._penalty_unit = math.floor(max_weight) + 1.0
        self._queue = _CandidateQueue()
        self._buffer: List[_Candidate] = []
        self._visited: Set[int] = set()

    def select(self) -> np.ndarray:
        for i, j in itertools.combinations(range(self._count), 2):
            weight = float(self._weights[i, j])
            self._queue.push(_Candidate(i, j, weight), weight)

        tree_size = self._count - 1
        target = max(tree_size, self._params.generated_connection_count)
        accepted = 0
        buffer_stuck = False
        while accepted < target:
            # //1.- Release deferred candidates once the tree is done or the queue ran dry.
            if accepted > tree_size or (self._buffer and not self._queue and not buffer_stuck):
                buffer_stuck = True
                self._flush_buffer()
            if not self._queue:
                break

            current = self._queue.pop()
            # //2.- Until the spanning tree is complete only frontier edges may be accepted.
            if not self._bridges(current) and accepted != 0 and accepted < tree_size:
                self._buffer.append(current)
                continue

            if self._params.test_intersections:
                crossings, valid = self._intersections(current)
                if not valid:
                    buffer_stuck = False
                    continue
                if crossings and not current.reshuffled:
                    buffer_stuck = False
                    penalised = replace(current, reshuffled=True)
                    self._queue.push(penalised, current.weight + self._penalty_unit * crossings)
                    continue

            self._accept(current)
            accepted += 1
            buffer_stuck = False

        if accepted < target:
            LOGGER.debug("Candidate queue exhausted after %d of %d connections", accepted, target)
        if len(self._visited) < self._count:
            self._complete_tree()
        return self._adjacency

    def _complete_tree(self) -> None:
        # //3.- Rejections can starve the queue; join leftover nodes by their cheapest bridge.
        forced = 0
        while len(self._visited) < self._count:
            best = None
            for i in self._visited:
                for j in range(self._count):
                    if j in self._visited:
                        continue
                    weight = float(self._weights[i, j])
                    if best is None or weight < best.weight:
                        best = _Candidate(min(i, j), max(i, j), weight)
            if best is None:
                break
            self._accept(best)
            forced += 1
        LOGGER.warning(
            "Forced %d intersecting connection(s) to keep every node reachable", forced
        )

    def _bridges(self, candidate: _Candidate) -> bool:
        return (candidate.node1 in self._visited) != (candidate.node2 in self._visited)

    def _intersections(self, candidate: _Candidate) -> Tuple[int, bool]:
        """Count tunnels passing within the threshold radius of ``candidate``.

        The candidate is invalid when any of those tunnels is already
        accepted. Tunnels sharing a node with the candidate are ignored.
        """

        segment = self._segments[(candidate.node1, candidate.node2)]
        endpoints = (candidate.node1, candidate.node2)
        count = 0
        valid = True
        for (x, y), other in self._segments.items():
            if x in endpoints or y in endpoints:
                continue
            if distance_segment_to_segment(segment, other) < self._params.threshold_radius:
                count += 1
                valid = valid and self._adjacency[x, y] == 0
        return count, valid

    def _accept(self, candidate: _Candidate) -> None:
        self._visited.add(candidate.node1)
        self._visited.add(candidate.node2)
        self._adjacency[candidate.node1, candidate.node2] = 1
        self._adjacency[candidate.node2, candidate.node1] = 1
        still_deferred: List[_Candidate] = []
        for item in self._buffer:
            if self._bridges(item):
                self._queue.push(item, item.weight)
            else:
                still_deferred.append(item)
        self._buffer = still_deferred

    def _flush_buffer(self) -> None:
        for item in self._buffer:
            self._queue.push(item, item.weight)
        self._buffer = []


def generate_tunnel_graph(params: ConnectionParams) -> TunnelGraph:
    """Place nodes and connect them into a mostly non-intersecting network."""

    if params.node_count <= 0:
        LOGGER.warning("Connection parameters describe zero nodes; producing an empty graph")
        return TunnelGraph.empty()

    rng = random.Random(params.seed)
    nodes = place_nodes(params, rng)
    if len(nodes) < 2:
        LOGGER.info("Graph has %d node(s); no connections are possible", len(nodes))
        return TunnelGraph.empty()

    weights = build_candidate_weights(nodes, params.elevation_aspect)
    adjacency = _ConnectionSelector(params, nodes, weights).select()
    graph = TunnelGraph(nodes=tuple(nodes), adjacency=adjacency, weights=weights)
    LOGGER.info(
        "Generated tunnel graph with %d nodes and %d connections",
        graph.node_count,
        sum(1 for _ in graph.edges()),
    )
    return graph
