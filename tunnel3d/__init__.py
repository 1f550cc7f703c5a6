"""Procedural 3D tunnel networks.

The package builds a tunnel graph, rasterizes its connections into a
chunked density grid, and extracts one Marching Cubes mesh per chunk.
Each stage only reads the committed output of the previous one.
"""

from .vector import Vector3
from .errors import ConsistencyError, PipelineBusyError, PreconditionError, TunnelError
from .geometry import (
    Segment,
    distance_point_to_point,
    distance_segment_to_point,
    distance_segment_to_points,
    distance_segment_to_segment,
)
from .connections import ConnectionParams, TunnelGraph, generate_tunnel_graph
from .easing import EaseCurve, default_ease_curve, linear_falloff
from .noise import PerlinNoise, gradient_noise
from .voxels import DensityField, TunnelShape, VoxelParams, rasterize_tunnels
from .meshing import ChunkMesh, extract_chunk_mesh, extract_meshes
from .pipeline import PipelineState, TunnelPipeline
from .settings import PipelineSettings, load_pipeline_settings
from .metrics import GenerationMetrics, collect_generation_metrics, export_generation_metrics

__all__ = [
    "Vector3",
    "TunnelError",
    "PreconditionError",
    "ConsistencyError",
    "PipelineBusyError",
    "Segment",
    "distance_point_to_point",
    "distance_segment_to_point",
    "distance_segment_to_points",
    "distance_segment_to_segment",
    "ConnectionParams",
    "TunnelGraph",
    "generate_tunnel_graph",
    "EaseCurve",
    "default_ease_curve",
    "linear_falloff",
    "PerlinNoise",
    "gradient_noise",
    "DensityField",
    "TunnelShape",
    "VoxelParams",
    "rasterize_tunnels",
    "ChunkMesh",
    "extract_chunk_mesh",
    "extract_meshes",
    "PipelineState",
    "TunnelPipeline",
    "PipelineSettings",
    "load_pipeline_settings",
    "GenerationMetrics",
    "collect_generation_metrics",
    "export_generation_metrics",
]
