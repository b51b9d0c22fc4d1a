"""
Anamorphic vertex mapper.

Places every source vertex on the last segment of its reflection chain, at the
distance the vertex had from its first mirror hit. Viewed from the viewpoint
through the mirrors, the mapped mesh then covers the same silhouette as the
source object.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
import logging
from pathlib import Path
from typing import Optional, Union

import numpy as np
import trimesh

from .deviation import ideal_normals, total_deviation
from .errors import LifecycleError
from .mesh_loader import MeshData, MeshProcessor
from .normals import face_normals, recalculate_normals, triangle_centroids
from .optimizer_base import MappingContext, OptimizationResult, RayFamily
from .optimizers import create_optimizer
from .ray_tracer import ReflectionChains, ReflectionTracer
from .raycaster import SceneRaycaster
from .settings import MappingSettings, OptimizerSettings, load_optimizer_defaults
from .vertex_identity import VertexIdentityIndex


_LOGGER = logging.getLogger(__name__)


class MappingStatus(Enum):
    NONE = "none"
    MAPPED = "mapped"
    OPTIMIZED = "optimized"


# operation -> (allowed source states, resulting state)
TRANSITIONS: dict[str, tuple[tuple[MappingStatus, ...], MappingStatus]] = {
    "map": ((MappingStatus.NONE, MappingStatus.MAPPED, MappingStatus.OPTIMIZED), MappingStatus.MAPPED),
    "optimize": ((MappingStatus.MAPPED, MappingStatus.OPTIMIZED), MappingStatus.OPTIMIZED),
    "clear": (tuple(MappingStatus), MappingStatus.NONE),
}


def reverse_winding(faces: np.ndarray) -> np.ndarray:
    f = np.asarray(faces, dtype=np.int64).reshape(-1, 3)
    return f[:, ::-1].copy()


@dataclass
class MappedMesh:
    """
    Snapshot of a mapped (or optimized) mesh.

    Attributes:
        vertices: (V, 3) world-space positions (zero for invalid vertices)
        faces: (M, 3) reversed source winding
        normals: (V, 3)
        valid: (V,) vertices whose first ray reached a mirror
        uv0: (V, 2) source UVs, when the source has them
        uv3: (V, 3) source world normals
    """
    vertices: np.ndarray
    faces: np.ndarray
    normals: np.ndarray
    valid: np.ndarray
    uv0: Optional[np.ndarray] = None
    uv3: Optional[np.ndarray] = None
    name: str = "mapped"

    @property
    def n_vertices(self) -> int:
        return int(self.vertices.shape[0])

    def triangle_centroids(self) -> np.ndarray:
        return triangle_centroids(self.vertices, self.faces)

    def triangle_normals(self) -> np.ndarray:
        return face_normals(self.vertices, self.faces)

    def to_trimesh(self) -> trimesh.Trimesh:
        mesh = trimesh.Trimesh(
            vertices=self.vertices,
            faces=self.faces,
            vertex_normals=self.normals,
            process=False,
        )
        if self.uv0 is not None:
            mesh.visual = trimesh.visual.TextureVisuals(uv=self.uv0)
        if self.uv3 is not None:
            mesh.vertex_attributes["uv3"] = self.uv3
        return mesh


class AnamorphicMapper:
    """
    Mapping lifecycle `NONE -> MAPPED -> OPTIMIZED`; `clear()` returns to NONE.

    Every stage keeps its own arrays: optimizing never touches `mapped`, and
    re-mapping replaces everything.
    """

    def __init__(
        self,
        raycaster: SceneRaycaster,
        viewpoint,
        source: MeshData,
        settings: Optional[MappingSettings] = None,
        optimizer_settings: Optional[OptimizerSettings] = None,
    ):
        self.raycaster = raycaster
        self.viewpoint = np.asarray(viewpoint, dtype=np.float64).reshape(3)
        self.source = source
        self.settings = settings or MappingSettings()
        self.optimizer_settings = optimizer_settings or load_optimizer_defaults()
        self.status = MappingStatus.NONE
        self._reset_arrays()

    def _reset_arrays(self) -> None:
        self.global_vertices: Optional[np.ndarray] = None
        self.source_normals: Optional[np.ndarray] = None
        self.identity: Optional[VertexIdentityIndex] = None
        self.chains: Optional[ReflectionChains] = None
        self.family: Optional[RayFamily] = None
        self.mapped: Optional[MappedMesh] = None
        self.optimized: Optional[MappedMesh] = None
        self.last_result: Optional[OptimizationResult] = None
        self.source_triangle_centroids: Optional[np.ndarray] = None
        self.source_triangle_normals: Optional[np.ndarray] = None
        self.mapped_triangle_centroids: Optional[np.ndarray] = None
        self.mapped_triangle_normals: Optional[np.ndarray] = None

    def _require(self, operation: str) -> MappingStatus:
        allowed, target = TRANSITIONS[operation]
        if self.status not in allowed:
            raise LifecycleError(operation, self.status, allowed)
        return target

    @property
    def mesh(self) -> Optional[MappedMesh]:
        """The active mesh: optimized when available, else mapped."""
        return self.optimized if self.optimized is not None else self.mapped

    def map(self) -> MappedMesh:
        target = self._require("map")
        _LOGGER.info("Calculating anamorphic object mapping for %s", self.source.name)

        s = self.settings
        source = self.source
        global_vertices = source.global_vertices()
        source_normals = source.global_normals()
        identity = VertexIdentityIndex(source.vertices, eps=s.identity_eps)

        chains = ReflectionTracer(self.raycaster, s).trace(self.viewpoint, global_vertices)

        faces = reverse_winding(source.faces)
        family = RayFamily(
            origins=chains.last_hits(),
            directions=chains.last_reflections(),
            distances=chains.vertex_distances,
            scale=s.scale,
            valid=chains.valid,
            identity=identity,
            faces=faces,
            continuous=source.continuous,
            min_distance=s.min_distance,
        )
        positions = family.positions()
        normals = recalculate_normals(positions, faces, continuous=source.continuous, identity=identity)

        mapped = MappedMesh(
            vertices=positions,
            faces=faces,
            normals=normals,
            valid=family.valid.copy(),
            uv0=source.uv_coords.copy() if source.has_uv else None,
            uv3=source_normals.copy(),
            name=f"{source.name}_mapped",
        )

        self._reset_arrays()
        self.global_vertices = global_vertices
        self.source_normals = source_normals
        self.identity = identity
        self.chains = chains
        self.family = family
        self.mapped = mapped
        self.source_triangle_centroids = triangle_centroids(global_vertices, source.faces)
        self.source_triangle_normals = face_normals(global_vertices, source.faces)
        self.mapped_triangle_centroids = triangle_centroids(positions, source.faces)
        # Same as the normals of the reversed triangles.
        self.mapped_triangle_normals = -face_normals(positions, source.faces)
        self.status = target

        _LOGGER.info(
            "Mapped %d vertices (%d without reflection)",
            mapped.n_vertices,
            int(np.count_nonzero(~mapped.valid)),
        )
        return mapped

    def mapping_context(self) -> MappingContext:
        if self.family is None or self.chains is None:
            raise LifecycleError("build a mapping context", self.status, (MappingStatus.MAPPED, MappingStatus.OPTIMIZED))
        return MappingContext(
            family=self.family,
            mirror_normals=self.chains.last_normals(),
            source_vertices=self.global_vertices,
            source_faces=self.source.faces,
            reference_axis=self.source.local_axis(0),
            viewpoint=self.viewpoint,
        )

    def target_normals(self, settings: Optional[OptimizerSettings] = None) -> np.ndarray:
        s = settings or self.optimizer_settings
        if self.source_normals is None:
            raise LifecycleError("compute target normals", self.status, (MappingStatus.MAPPED, MappingStatus.OPTIMIZED))
        return ideal_normals(self.source_normals, s.mirror_axis)

    def current_deviation(self, settings: Optional[OptimizerSettings] = None) -> float:
        mesh = self.mesh
        if mesh is None:
            raise LifecycleError("measure deviation", self.status, (MappingStatus.MAPPED, MappingStatus.OPTIMIZED))
        return total_deviation(self.target_normals(settings), mesh.normals)

    def create_optimizer(self, settings: Optional[OptimizerSettings] = None):
        """Optimizer run starting from the mapped positions (for stepping by hand)."""
        self._require("optimize")
        s = settings or self.optimizer_settings
        return create_optimizer(s, self.target_normals(s), context=self.mapping_context())

    def optimize(self, settings: Optional[OptimizerSettings] = None) -> OptimizationResult:
        run = self.create_optimizer(settings)
        _LOGGER.info("Optimizing mapped mesh with the %s strategy", run.method)
        result = run.run()
        self.apply_result(result)
        return result

    def apply_result(self, result: OptimizationResult) -> MappedMesh:
        target = self._require("optimize")
        mapped = self.mapped
        self.optimized = MappedMesh(
            vertices=np.asarray(result.positions, dtype=np.float64).copy(),
            faces=mapped.faces.copy(),
            normals=np.asarray(result.normals, dtype=np.float64).copy(),
            valid=mapped.valid.copy(),
            uv0=None if mapped.uv0 is None else mapped.uv0.copy(),
            uv3=None if mapped.uv3 is None else mapped.uv3.copy(),
            name=f"{self.source.name}_optimized",
        )
        self.last_result = result
        self.status = target
        _LOGGER.info(
            "Optimization (%s): total deviation %.4f -> %.4f",
            result.method,
            result.initial_deviation,
            result.final_deviation,
        )
        return self.optimized

    def clear(self) -> None:
        self.status = self._require("clear")
        self._reset_arrays()

    def save(self, filepath: Union[str, Path]) -> str:
        mesh = self.mesh
        if mesh is None:
            raise LifecycleError("save", self.status, (MappingStatus.MAPPED, MappingStatus.OPTIMIZED))
        return MeshProcessor().save_mesh(mesh, filepath)
