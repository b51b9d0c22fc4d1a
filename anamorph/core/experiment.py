"""
Normal-deviation experiment.

Checks how well the optimizers recover a known surface: the source vertices
are moved along their view rays (`deform`), then an optimizer moves them back
along the same rays trying to restore the original normals.

Lifecycle::

    NONE -> INITIALIZED -> DEFORMED -> OPTIMIZING_MANUAL | OPTIMIZING_ALL
         -> OPTIMIZED -> SMOOTHED

`reset()` returns to NONE from any state.
"""

from __future__ import annotations

from enum import Enum
import logging
from typing import Optional

import numpy as np
from scipy import sparse

from .deviation import angular_deviation
from .errors import ConfigError, LifecycleError
from .mesh_loader import MeshData
from .optimizer_base import OptimizationResult, OptimizerRun, RayFamily, StepResult
from .optimizers import create_optimizer
from .run_report import RunReport
from .settings import EXPERIMENT_METHODS, ExperimentSettings, OptimizerSettings, load_optimizer_defaults
from .vertex_identity import VertexIdentityIndex


_LOGGER = logging.getLogger(__name__)


class ExperimentStatus(Enum):
    NONE = "none"
    INITIALIZED = "initialized"
    DEFORMED = "deformed"
    OPTIMIZING_MANUAL = "optimizing_manual"
    OPTIMIZING_ALL = "optimizing_all"
    OPTIMIZED = "optimized"
    SMOOTHED = "smoothed"


_S = ExperimentStatus

ALLOWED: dict[str, tuple[ExperimentStatus, ...]] = {
    "initialize": (_S.NONE,),
    "deform": (_S.INITIALIZED,),
    "optimize_manual": (_S.DEFORMED, _S.OPTIMIZING_MANUAL),
    "optimize_all": (_S.DEFORMED, _S.OPTIMIZING_MANUAL),
    "smooth": (_S.OPTIMIZED, _S.SMOOTHED),
    "report": (_S.OPTIMIZING_MANUAL, _S.OPTIMIZED, _S.SMOOTHED),
    "reset": tuple(ExperimentStatus),
}

OPTIMIZE_MODES = ("all", "manual")


def group_adjacency(faces: np.ndarray, identity: VertexIdentityIndex) -> sparse.csr_matrix:
    """Symmetric 0/1 adjacency between identity groups sharing a triangle edge."""
    f = np.asarray(faces, dtype=np.int64).reshape(-1, 3)
    n = identity.n_groups
    if f.shape[0] == 0:
        return sparse.csr_matrix((n, n), dtype=np.float64)
    g = identity.labels[f]
    rows = np.concatenate([g[:, 0], g[:, 1], g[:, 2], g[:, 1], g[:, 2], g[:, 0]])
    cols = np.concatenate([g[:, 1], g[:, 2], g[:, 0], g[:, 0], g[:, 1], g[:, 2]])
    keep = rows != cols
    data = np.ones(int(np.count_nonzero(keep)), dtype=np.float64)
    adj = sparse.coo_matrix((data, (rows[keep], cols[keep])), shape=(n, n)).tocsr()
    # Duplicate edges sum up; collapse to 0/1.
    adj.data[:] = 1.0
    return adj


def laplacian_smooth(
    values: np.ndarray,
    adjacency: sparse.csr_matrix,
    *,
    passes: int = 1,
    weight: float = 0.5,
) -> np.ndarray:
    """`x <- (1 - w) x + w * mean(neighbours)`; isolated entries stay put."""
    x = np.asarray(values, dtype=np.float64).copy()
    degree = np.asarray(adjacency.sum(axis=1)).reshape(-1)
    has_neighbours = degree > 0
    w = float(weight)
    for _ in range(int(passes)):
        neighbour_sum = adjacency @ x
        mean = np.where(has_neighbours, neighbour_sum / np.where(has_neighbours, degree, 1.0), x)
        x = (1.0 - w) * x + w * mean
    return x


class NormalDeviationExperiment:
    def __init__(
        self,
        source: MeshData,
        viewpoint,
        settings: Optional[ExperimentSettings] = None,
        optimizer_settings: Optional[OptimizerSettings] = None,
        *,
        identity_eps: float = 0.0,
    ):
        self.source = source
        self.viewpoint = np.asarray(viewpoint, dtype=np.float64).reshape(3)
        self.settings = settings or ExperimentSettings()
        self.optimizer_settings = optimizer_settings or load_optimizer_defaults()
        if self.optimizer_settings.method not in EXPERIMENT_METHODS:
            raise ConfigError(
                f"Experiment optimizer must be one of {EXPERIMENT_METHODS}, got {self.optimizer_settings.method!r}"
            )
        self.identity_eps = float(identity_eps)
        self.status = ExperimentStatus.NONE
        self._clear()

    def _clear(self) -> None:
        self.original_vertices: Optional[np.ndarray] = None
        self.original_normals: Optional[np.ndarray] = None
        self.adjustment_rays: Optional[np.ndarray] = None
        self.original_distances: Optional[np.ndarray] = None
        self.identity: Optional[VertexIdentityIndex] = None
        self.family: Optional[RayFamily] = None

        self.deformed_distances: Optional[np.ndarray] = None
        self.deformed_vertices: Optional[np.ndarray] = None
        self.deformed_normals: Optional[np.ndarray] = None

        self.run: Optional[OptimizerRun] = None
        self.result: Optional[OptimizationResult] = None
        self.optimized_distances: Optional[np.ndarray] = None
        self.optimized_vertices: Optional[np.ndarray] = None
        self.optimized_normals: Optional[np.ndarray] = None

        self.smoothed_distances: Optional[np.ndarray] = None
        self.smoothed_vertices: Optional[np.ndarray] = None
        self.smoothed_normals: Optional[np.ndarray] = None

    def _require(self, operation: str) -> None:
        allowed = ALLOWED[operation]
        if self.status not in allowed:
            raise LifecycleError(operation, self.status, allowed)

    def deviation(self, normals: np.ndarray) -> float:
        return float(angular_deviation(self.original_normals, normals).sum())

    # Main operations

    def initialize(self) -> None:
        self._require("initialize")
        _LOGGER.info("Initializing normal-deviation experiment for %s", self.source.name)

        vertices = self.source.global_vertices()
        rays = vertices - self.viewpoint
        distances = np.linalg.norm(rays, axis=1)
        valid = distances > 0.0
        directions = np.zeros_like(rays)
        directions[valid] = rays[valid] / distances[valid, None]

        identity = VertexIdentityIndex(self.source.vertices, eps=self.identity_eps)
        family = RayFamily(
            origins=np.broadcast_to(self.viewpoint, vertices.shape).copy(),
            directions=directions,
            distances=distances,
            scale=1.0,
            valid=valid,
            identity=identity,
            faces=self.source.faces,
            continuous=self.source.continuous,
            fallback=vertices,
        )

        self.original_vertices = vertices
        self.adjustment_rays = directions
        self.original_distances = distances
        self.identity = identity
        self.family = family
        # Recalculated rather than taken from the file so every stage uses one normal definition.
        self.original_normals = family.normals(vertices)
        self.status = ExperimentStatus.INITIALIZED

    def deform(self) -> np.ndarray:
        self._require("deform")
        s = self.settings
        identity = self.identity
        reps = identity.representatives()
        group_distances = self.original_distances[reps].copy()

        if s.deformation == "single":
            if int(s.deform_index) >= identity.n_groups:
                raise ConfigError(
                    f"deform_index {s.deform_index} out of range ({identity.n_groups} vertex groups)"
                )
            group_distances[int(s.deform_index)] *= float(s.deform_factor)
        else:
            rng = np.random.default_rng(int(self.optimizer_settings.seed))
            amount = float(s.deform_amount)
            group_distances *= rng.uniform(1.0 - amount, 1.0 + amount, size=group_distances.shape[0])

        distances = group_distances[identity.labels]
        vertices = self.family.positions(distances)
        normals = self.family.normals(vertices)

        self.deformed_distances = distances
        self.deformed_vertices = vertices
        self.deformed_normals = normals
        self.status = ExperimentStatus.DEFORMED
        _LOGGER.info(
            "Deformed mesh (%s): total angular deviation %.4f",
            s.deformation,
            self.deviation(normals),
        )
        return vertices

    def _start_run(self) -> OptimizerRun:
        family = self.family.with_distances(self.deformed_distances)
        return create_optimizer(self.optimizer_settings, self.original_normals, family=family)

    def _store_result(self) -> None:
        result = self.run.result()
        self.result = result
        self.optimized_distances = None if result.distances is None else result.distances.copy()
        self.optimized_vertices = result.positions.copy()
        self.optimized_normals = result.normals.copy()

    def optimize(self, mode: str = "all") -> StepResult | OptimizationResult:
        """
        `mode="manual"` executes one iteration per call and returns its
        `StepResult`; `mode="all"` runs (or finishes) the run and returns the
        `OptimizationResult`.
        """
        mode = str(mode).strip().lower()
        if mode not in OPTIMIZE_MODES:
            raise ConfigError(f"Unknown optimize mode: {mode!r} (expected one of {OPTIMIZE_MODES})")
        self._require(f"optimize_{mode}")
        previous = self.status

        if self.run is None:
            self.run = self._start_run()

        if mode == "manual":
            self.status = ExperimentStatus.OPTIMIZING_MANUAL
            step = self.run.step()
            self._store_result()
            if step.done:
                self.status = ExperimentStatus.OPTIMIZED
            return step

        self.status = ExperimentStatus.OPTIMIZING_ALL
        try:
            for _ in self.run.iter_steps():
                pass
        except Exception:
            self.status = previous
            raise
        self._store_result()
        self.status = ExperimentStatus.OPTIMIZED
        _LOGGER.info(
            "Experiment optimization (%s): %.4f -> %.4f",
            self.result.method,
            self.result.initial_deviation,
            self.result.final_deviation,
        )
        return self.result

    def smooth(self, passes: Optional[int] = None, weight: Optional[float] = None) -> np.ndarray:
        self._require("smooth")
        passes = int(self.settings.smoothing_passes if passes is None else passes)
        weight = float(self.settings.smoothing_weight if weight is None else weight)
        if passes < 0 or not (0.0 <= weight <= 1.0):
            raise ConfigError(f"Invalid smoothing parameters: passes={passes}, weight={weight}")

        base = self.smoothed_distances if self.smoothed_distances is not None else self.optimized_distances
        identity = self.identity
        adjacency = group_adjacency(self.source.faces, identity)
        group_values = laplacian_smooth(base[identity.representatives()], adjacency, passes=passes, weight=weight)
        distances = group_values[identity.labels]

        vertices = self.family.positions(distances)
        normals = self.family.normals(vertices)
        self.smoothed_distances = distances
        self.smoothed_vertices = vertices
        self.smoothed_normals = normals
        self.status = ExperimentStatus.SMOOTHED
        _LOGGER.info("Smoothed distances (%d passes): total angular deviation %.4f", passes, self.deviation(normals))
        return vertices

    def reset(self) -> None:
        self._require("reset")
        _LOGGER.info("Resetting experiment")
        self._clear()
        self.status = ExperimentStatus.NONE

    @property
    def current_vertices(self) -> Optional[np.ndarray]:
        for arr in (self.smoothed_vertices, self.optimized_vertices, self.deformed_vertices, self.original_vertices):
            if arr is not None:
                return arr
        return None

    def report(self) -> RunReport:
        self._require("report")
        result = self.result
        s = self.optimizer_settings
        meta = dict(result.metadata)
        if self.smoothed_normals is not None:
            meta["smoothed_deviation"] = self.deviation(self.smoothed_normals)
        return RunReport(
            object_name=self.source.name,
            seed=int(s.seed),
            method=s.method,
            deformation=self.settings.deformation,
            sampling_rate=int(s.sampling_rate),
            offset_range=float(s.offset_range),
            iterations=int(result.iterations),
            initial_deviation=float(result.initial_deviation),
            final_deviation=float(result.final_deviation),
            trials=[t.to_dict() for t in result.trials],
            vertices=np.asarray(self.current_vertices, dtype=np.float64).tolist(),
            metadata=meta,
        )
