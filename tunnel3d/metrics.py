"""Metrics export for checking generated tunnel networks across seeds."""
from __future__ import annotations

import itertools
import json
from dataclasses import asdict, dataclass
from typing import Optional, Sequence

import numpy as np

from .connections import TunnelGraph
from .geometry import distance_segment_to_segment
from .meshing import ChunkMesh
from .voxels import DensityField


# //1.- Encapsulate the statistics of one full pipeline run.
@dataclass(frozen=True)
class GenerationMetrics:
    node_count: int
    edge_count: int
    total_tunnel_length: float
    min_degree: int
    crossing_pairs: int
    filled_voxels: int
    non_empty_chunks: int
    vertex_count: int


# //2.- Count accepted tunnel pairs without a shared node that pass within the threshold.
def count_crossing_pairs(graph: TunnelGraph, threshold_radius: float) -> int:
    edges = list(graph.edges())
    crossings = 0
    for (a, b), (c, d) in itertools.combinations(edges, 2):
        if {a, b} & {c, d}:
            continue
        if distance_segment_to_segment(graph.segment(a, b), graph.segment(c, d)) < threshold_radius:
            crossings += 1
    return crossings


# //3.- Compute metrics from whichever stage outputs are available.
def collect_generation_metrics(
    graph: TunnelGraph,
    *,
    threshold_radius: float,
    field: Optional[DensityField] = None,
    meshes: Optional[Sequence[ChunkMesh]] = None,
) -> GenerationMetrics:
    edges = list(graph.edges())
    degrees = [graph.degree(node) for node in range(graph.node_count)]
    return GenerationMetrics(
        node_count=graph.node_count,
        edge_count=len(edges),
        total_tunnel_length=float(sum(graph.segment(i, j).length() for i, j in edges)),
        min_degree=min(degrees, default=0),
        crossing_pairs=count_crossing_pairs(graph, threshold_radius),
        filled_voxels=int(np.count_nonzero(field.values)) if field is not None else 0,
        non_empty_chunks=sum(1 for mesh in meshes or () if not mesh.is_empty),
        vertex_count=sum(mesh.vertex_count for mesh in meshes or ()),
    )


# //4.- Export metrics to JSON for CI validation or dashboards.
def export_generation_metrics(
    metrics: GenerationMetrics,
    *,
    filepath: str,
) -> None:
    with open(filepath, "w", encoding="utf-8") as handle:
        json.dump(asdict(metrics), handle, indent=2)
