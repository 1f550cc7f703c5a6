"""Sequential graph -> field -> mesh pipeline with an explicit state machine."""
from __future__ import annotations

import enum
import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from contextlib import contextmanager
from typing import Iterator, List, Optional

from .connections import ConnectionParams, TunnelGraph, generate_tunnel_graph
from .errors import PipelineBusyError, PreconditionError
from .meshing import ChunkMesh, extract_meshes
from .voxels import DensityField, TunnelShape, VoxelParams, rasterize_tunnels

LOGGER = logging.getLogger(__name__)


class PipelineState(enum.Enum):
    IDLE = "idle"
    RUNNING_GRAPH = "running_graph"
    RUNNING_FIELD = "running_field"
    RUNNING_MESH = "running_mesh"


class TunnelPipeline:
    """Owns the committed output of each stage and sequences the stages.

    A stage may only start from :attr:`PipelineState.IDLE`; requests made
    while another stage runs raise :class:`PipelineBusyError`. A stage
    that fails leaves every previously committed output untouched.
    """

    def __init__(
        self,
        connections: ConnectionParams,
        shape: TunnelShape,
        voxels: VoxelParams,
        *,
        max_workers: Optional[int] = None,
    ) -> None:
        # //1.- Persist the parameter bundles read by each stage.
        self.connections = connections
        self.shape = shape
        self.voxels = voxels
        # //2.- A single pool is shared by the per-edge and per-chunk fan-outs.
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="tunnel3d")
        # //3.- Guard state transitions so concurrent callers observe a consistent machine.
        self._state_lock = threading.Lock()
        self._state = PipelineState.IDLE
        self._graph: Optional[TunnelGraph] = None
        self._field: Optional[DensityField] = None
        self._meshes: Optional[List[ChunkMesh]] = None

    @property
    def state(self) -> PipelineState:
        with self._state_lock:
            return self._state

    @property
    def graph(self) -> Optional[TunnelGraph]:
        return self._graph

    @property
    def field(self) -> Optional[DensityField]:
        return self._field

    @property
    def meshes(self) -> Optional[List[ChunkMesh]]:
        return self._meshes

    @contextmanager
    def _stage(self, state: PipelineState) -> Iterator[None]:
        with self._state_lock:
            if self._state is not PipelineState.IDLE:
                raise PipelineBusyError(
                    f"cannot start {state.value} while pipeline is {self._state.value}"
                )
            self._state = state
        LOGGER.debug("Pipeline entered %s", state.value)
        try:
            yield
        except Exception:
            LOGGER.error("Pipeline stage %s failed; discarding partial output", state.value)
            raise
        finally:
            with self._state_lock:
                self._state = PipelineState.IDLE

    def generate_graph(self) -> TunnelGraph:
        with self._stage(PipelineState.RUNNING_GRAPH):
            graph = generate_tunnel_graph(self.connections)
            # //1.- A new graph invalidates everything derived from the previous one.
            self._graph = graph
            self._field = None
            self._meshes = None
        return graph

    def generate_field(self) -> DensityField:
        with self._stage(PipelineState.RUNNING_FIELD):
            if self._graph is None:
                raise PreconditionError("generate_graph must run before generate_field")
            field = rasterize_tunnels(self._graph, self.shape, self.voxels, executor=self._executor)
            self._field = field
            self._meshes = None
        return field

    def generate_meshes(self) -> List[ChunkMesh]:
        with self._stage(PipelineState.RUNNING_MESH):
            if self._field is None:
                raise PreconditionError("generate_field must run before generate_meshes")
            meshes = extract_meshes(self._field, executor=self._executor)
            self._meshes = meshes
        return meshes

    def run(self) -> List[ChunkMesh]:
        """Run all three stages in order and return the chunk meshes."""

        self.generate_graph()
        self.generate_field()
        return self.generate_meshes()

    def close(self) -> None:
        self._executor.shutdown(wait=True)

    def __enter__(self) -> "TunnelPipeline":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()
