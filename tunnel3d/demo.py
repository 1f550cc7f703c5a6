"""Command line harness that runs the full tunnel pipeline."""
from __future__ import annotations

import argparse
import logging
from dataclasses import replace
from typing import Optional, Sequence

from .metrics import collect_generation_metrics, export_generation_metrics
from .pipeline import TunnelPipeline
from .settings import load_pipeline_settings

LOGGER = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Generate a voxel tunnel network and mesh it per chunk.")
    parser.add_argument("--config-dir", default=None, help="Directory holding connections/tunnel/voxels JSON files")
    parser.add_argument("--seed", type=int, default=None, help="Override the node placement seed")
    parser.add_argument("--workers", type=int, default=None, help="Worker thread count")
    parser.add_argument("--metrics-out", default=None, help="Write run metrics to this JSON file")
    return parser


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(level=logging.INFO, format="[%(asctime)s] %(levelname)s %(message)s")

    settings = load_pipeline_settings(args.config_dir)
    connections = settings.connections
    if args.seed is not None:
        connections = replace(connections, seed=args.seed)

    with TunnelPipeline(connections, settings.tunnel, settings.voxels, max_workers=args.workers) as pipeline:
        meshes = pipeline.run()
        metrics = collect_generation_metrics(
            pipeline.graph,
            threshold_radius=connections.threshold_radius,
            field=pipeline.field,
            meshes=meshes,
        )

    LOGGER.info(
        "Nodes=%d connections=%d length=%.2f crossings=%d chunks=%d/%d vertices=%d",
        metrics.node_count,
        metrics.edge_count,
        metrics.total_tunnel_length,
        metrics.crossing_pairs,
        metrics.non_empty_chunks,
        len(meshes),
        metrics.vertex_count,
    )
    if args.metrics_out:
        export_generation_metrics(metrics, filepath=args.metrics_out)
        LOGGER.info("Metrics written to %s", args.metrics_out)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
