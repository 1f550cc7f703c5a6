"""Structured loader for tunnel pipeline settings."""
from __future__ import annotations

import json
import os
from dataclasses import dataclass, replace
from typing import Mapping, Optional, Sequence

from .connections import ConnectionParams
from .easing import curve_from_points
from .errors import PreconditionError
from .noise import PerlinNoise
from .vector import Vector3
from .voxels import TunnelShape, VoxelParams


# //1.- Aggregate the three parameter bundles consumed by the pipeline stages.
@dataclass(frozen=True)
class PipelineSettings:
    connections: ConnectionParams
    tunnel: TunnelShape
    voxels: VoxelParams


# //2.- Resolve the bundled configuration directory lazily.
def _default_config_directory() -> str:
    return os.path.join(os.path.dirname(__file__), "config")


# //3.- Load a single JSON configuration file and coerce to dictionary.
def _read_json_config(path: str) -> dict:
    with open(path, "r", encoding="utf-8") as handle:
        return json.load(handle)


# //4.- Convert a three element JSON list into a vector, rejecting other shapes.
def _vector(payload: Sequence[float], name: str) -> Vector3:
    if len(payload) != 3:
        raise PreconditionError(f"{name} must contain exactly three components")
    return Vector3.from_iter(payload)


def _int_triple(payload: Sequence[int], name: str) -> tuple:
    if len(payload) != 3:
        raise PreconditionError(f"{name} must contain exactly three components")
    return tuple(int(component) for component in payload)


# //5.- Construct node placement and connection settings.
def _load_connection_settings(config_dir: str) -> ConnectionParams:
    payload = _read_json_config(os.path.join(config_dir, "connections.json"))
    defaults = ConnectionParams()
    presets = tuple(
        _vector(node, "preset_nodes entry") for node in payload.get("preset_nodes", ())
    )
    return ConnectionParams(
        bounds_lower=_vector(payload.get("bounds_lower", defaults.bounds_lower.to_tuple()), "bounds_lower"),
        bounds_upper=_vector(payload.get("bounds_upper", defaults.bounds_upper.to_tuple()), "bounds_upper"),
        preset_nodes=presets,
        generated_node_count=int(payload.get("generated_node_count", 0)),
        generated_connection_count=int(payload.get("generated_connection_count", 0)),
        test_intersections=bool(payload.get("test_intersections", defaults.test_intersections)),
        threshold_radius=float(payload.get("threshold_radius", defaults.threshold_radius)),
        seed=int(payload.get("seed", 0)),
        node_separation_distance=float(payload.get("node_separation_distance", 0.0)),
        elevation_aspect=float(payload.get("elevation_aspect", 0.0)),
        separation_attempts=int(payload.get("separation_attempts", defaults.separation_attempts)),
    )


# //6.- Build the tunnel cross-section, including the optional noise source.
def _load_tunnel_settings(config_dir: str) -> TunnelShape:
    payload = _read_json_config(os.path.join(config_dir, "tunnel.json"))
    defaults = TunnelShape()
    ease = defaults.ease
    if "ease_points" in payload:
        ease = curve_from_points(payload["ease_points"])
    noise = None
    noise_payload = payload.get("noise")
    if noise_payload:
        noise = PerlinNoise(
            seed=int(noise_payload.get("seed", 0)),
            frequency=float(noise_payload.get("frequency", PerlinNoise.frequency)),
            octaves=int(noise_payload.get("octaves", PerlinNoise.octaves)),
        )
    return TunnelShape(
        radius=float(payload.get("radius", defaults.radius)),
        ease=ease,
        noise=noise,
        noise_intensity=float(payload.get("noise_intensity", 0.0)),
    )


# //7.- Interpret the voxel grid layout and surface extraction options.
def _load_voxel_settings(config_dir: str) -> VoxelParams:
    payload = _read_json_config(os.path.join(config_dir, "voxels.json"))
    defaults = VoxelParams()
    return VoxelParams(
        volume_size=_vector(payload.get("volume_size", defaults.volume_size.to_tuple()), "volume_size"),
        voxel_count=_int_triple(payload.get("voxel_count", defaults.voxel_count), "voxel_count"),
        chunk_count=_int_triple(payload.get("chunk_count", defaults.chunk_count), "chunk_count"),
        iso_level=float(payload.get("iso_level", defaults.iso_level)),
        invert=bool(payload.get("invert", defaults.invert)),
    )


# //8.- Allow overriding the node seed through environment variables for integration tests.
def seed_from_environment(
    prefix: str = "TUNNEL3D",
    env: Optional[Mapping[str, str]] = None,
) -> Optional[int]:
    source = env if env is not None else os.environ
    value = source.get(f"{prefix}_SEED")
    if value is None:
        return None
    try:
        return int(value)
    except ValueError as exc:
        raise PreconditionError(f"{prefix}_SEED must be an integer, got {value!r}") from exc


# //9.- Public helper assembling the full settings bundle.
def load_pipeline_settings(
    config_dir: str | None = None,
    *,
    env_prefix: str = "TUNNEL3D",
    env: Optional[Mapping[str, str]] = None,
) -> PipelineSettings:
    directory = config_dir or _default_config_directory()
    connections = _load_connection_settings(directory)
    seed = seed_from_environment(env_prefix, env)
    if seed is not None:
        connections = replace(connections, seed=seed)
    tunnel = _load_tunnel_settings(directory)
    voxels = _load_voxel_settings(directory)
    return PipelineSettings(connections=connections, tunnel=tunnel, voxels=voxels)
