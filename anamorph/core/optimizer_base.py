"""
Shared pieces of the normal-deviation optimizers.

A `RayFamily` describes every vertex as a point on a fixed ray,
`origin + scale * distance * direction`; optimizers only move vertices along
their rays. Runs are resumable step objects: `step()` does one iteration,
`iter_steps()` yields between iterations, `run()` drives the run to the end.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
import logging
import math
from typing import Any, Iterator, Optional

import numpy as np

from .deviation import angular_deviation
from .errors import DeviationLengthError
from .normals import recalculate_normals
from .settings import MIN_DISTANCE_FLOOR, OptimizerSettings
from .vertex_identity import VertexIdentityIndex


_LOGGER = logging.getLogger(__name__)


@dataclass
class RayFamily:
    """
    Attributes:
        origins: (V, 3) ray origins (last mirror hits, or the viewpoint)
        directions: (V, 3) unit ray directions
        distances: (V,) current along-ray distances
        scale: multiplier applied to every distance
        valid: (V,) vertices that have a ray; others stay at `fallback`
        identity: identity index of the source vertices
        faces: (M, 3) faces used for normal recalculation
        continuous: merge normals across identity groups
        min_distance: optional floor on `scale * distance`
        fallback: (V, 3) positions of invalid vertices (zeros by default)
    """
    origins: np.ndarray
    directions: np.ndarray
    distances: np.ndarray
    scale: float
    valid: np.ndarray
    identity: VertexIdentityIndex
    faces: np.ndarray
    continuous: bool = False
    min_distance: Optional[float] = None
    fallback: Optional[np.ndarray] = None

    def __post_init__(self):
        self.origins = np.asarray(self.origins, dtype=np.float64).reshape(-1, 3)
        self.directions = np.asarray(self.directions, dtype=np.float64).reshape(-1, 3)
        self.distances = np.asarray(self.distances, dtype=np.float64).reshape(-1)
        self.valid = np.asarray(self.valid, dtype=bool).reshape(-1)
        self.faces = np.asarray(self.faces, dtype=np.int64).reshape(-1, 3)
        n = self.origins.shape[0]
        if self.fallback is None:
            self.fallback = np.zeros((n, 3), dtype=np.float64)
        for name in ("directions", "distances", "valid", "fallback"):
            if len(getattr(self, name)) != n:
                raise ValueError(f"RayFamily.{name} has {len(getattr(self, name))} rows, expected {n}")
        if self.identity.n_vertices != n:
            raise ValueError(f"Identity index covers {self.identity.n_vertices} vertices, expected {n}")
        if self.identity.has_duplicates():
            self._share_group_rays()

    def _share_group_rays(self) -> None:
        # Near-duplicates merged by identity eps trace slightly different rays;
        # every member follows its group's first vertex so they move as one.
        lead = self.identity.representatives()[self.identity.labels]
        self.origins = self.origins[lead]
        self.directions = self.directions[lead]
        self.distances = self.distances[lead]
        self.valid = self.valid[lead]
        self.fallback = np.asarray(self.fallback, dtype=np.float64)[lead]

    @property
    def n_vertices(self) -> int:
        return int(self.origins.shape[0])

    @property
    def distance_floor(self) -> float:
        return float(self.min_distance) if self.min_distance is not None else MIN_DISTANCE_FLOOR

    def positions(self, distances: Optional[np.ndarray] = None) -> np.ndarray:
        d = self.distances if distances is None else np.asarray(distances, dtype=np.float64).reshape(-1)
        length = float(self.scale) * d
        if self.min_distance is not None:
            length = np.maximum(length, float(self.min_distance))
        out = self.origins + length[:, None] * self.directions
        out[~self.valid] = self.fallback[~self.valid]
        return out

    def normals(self, positions: np.ndarray) -> np.ndarray:
        return recalculate_normals(positions, self.faces, continuous=self.continuous, identity=self.identity)

    def with_distances(self, distances: np.ndarray) -> "RayFamily":
        return replace(self, distances=np.asarray(distances, dtype=np.float64).copy())


@dataclass(frozen=True)
class StepResult:
    iteration: int
    done: bool
    accepted: bool = False
    vertex: int = -1
    total_deviation: float = math.nan
    message: str = ""


@dataclass(frozen=True)
class Trial:
    """
    One evaluated proposal.

    `offset` is the change of the along-ray distance; greedy runs have no
    temperature and record 0.
    """
    iteration: int
    vertex: int
    offset: float
    temperature: float
    deviation_before: float
    deviation_after: float
    accepted: bool

    def to_dict(self) -> dict[str, Any]:
        return {
            "iteration": int(self.iteration),
            "vertex": int(self.vertex),
            "offset": float(self.offset),
            "temperature": float(self.temperature),
            "deviation_before": float(self.deviation_before),
            "deviation_after": float(self.deviation_after),
            "accepted": bool(self.accepted),
        }


@dataclass
class OptimizationResult:
    method: str
    positions: np.ndarray
    normals: np.ndarray
    iterations: int
    initial_deviation: float
    final_deviation: float
    distances: Optional[np.ndarray] = None
    trials: list[Trial] = field(default_factory=list)
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def improvement(self) -> float:
        """Relative change of the total deviation (negative is better)."""
        if self.initial_deviation == 0.0:
            return 0.0
        return (self.final_deviation - self.initial_deviation) / self.initial_deviation


class OptimizerRun:
    """
    Base class of a resumable optimizer run.

    Subclasses set `method` and implement `_step()`; they call `_finish()`
    when no further iteration is possible.
    """

    method = ""

    def __init__(self, target_normals: np.ndarray, settings: Optional[OptimizerSettings] = None):
        self.settings = settings or OptimizerSettings(method=self.method)
        self.target_normals = np.asarray(target_normals, dtype=np.float64).reshape(-1, 3)
        self.iteration = 0
        self.done = False
        self.stop_reason = ""
        self.initial_deviation = math.nan
        self.total_deviation = math.nan
        self.metadata: dict[str, Any] = {}

    def _finish(self, reason: str) -> None:
        if not self.done:
            self.done = True
            self.stop_reason = str(reason)
            _LOGGER.info("%s optimizer finished after %d iterations: %s", self.method, self.iteration, reason)

    def _step(self) -> StepResult:
        raise NotImplementedError

    def step(self) -> StepResult:
        if self.done:
            return StepResult(
                iteration=self.iteration,
                done=True,
                total_deviation=self.total_deviation,
                message=self.stop_reason,
            )
        return self._step()

    def iter_steps(self) -> Iterator[StepResult]:
        while not self.done:
            yield self.step()

    def run(self) -> OptimizationResult:
        for _ in self.iter_steps():
            pass
        return self.result()

    def current_positions(self) -> np.ndarray:
        raise NotImplementedError

    def current_normals(self) -> np.ndarray:
        raise NotImplementedError

    def result(self) -> OptimizationResult:
        meta = dict(self.metadata)
        meta["stop_reason"] = self.stop_reason
        meta["completed"] = bool(self.done)
        return OptimizationResult(
            method=self.method,
            positions=self.current_positions().copy(),
            normals=self.current_normals().copy(),
            iterations=int(self.iteration),
            initial_deviation=float(self.initial_deviation),
            final_deviation=float(self.total_deviation),
            distances=self._current_distances(),
            trials=list(getattr(self, "trials", [])),
            metadata=meta,
        )

    def _current_distances(self) -> Optional[np.ndarray]:
        return None


class RayFamilySearch(OptimizerRun):
    """
    State shared by the searches that move one identity group per iteration.

    Proposals are evaluated on copies and committed in one assignment.
    """

    def __init__(
        self,
        family: RayFamily,
        target_normals: np.ndarray,
        settings: Optional[OptimizerSettings] = None,
    ):
        super().__init__(target_normals, settings)
        if self.target_normals.shape[0] != family.n_vertices:
            raise DeviationLengthError(
                f"Target normals cover {self.target_normals.shape[0]} vertices, mesh has {family.n_vertices}"
            )
        self.family = family
        self.rng = np.random.default_rng(int(self.settings.seed))
        self.distances = family.distances.copy()
        self.positions = family.positions(self.distances)
        self.normals = family.normals(self.positions)
        self.deviations = angular_deviation(self.target_normals, self.normals)
        self.total_deviation = float(self.deviations.sum())
        self.initial_deviation = self.total_deviation
        self.candidates = np.flatnonzero(family.valid)
        self.accepted_count = 0
        self.rejected_count = 0
        _LOGGER.info(
            "%s optimizer: initial total angular deviation %.4f over %d vertices",
            self.method,
            self.total_deviation,
            family.n_vertices,
        )

    def _propose(self, vertex: int, new_distance: float):
        group = self.family.identity.identity_of(vertex)
        proposed = self.distances.copy()
        proposed[group] = float(new_distance)
        positions = self.family.positions(proposed)
        normals = self.family.normals(positions)
        deviations = angular_deviation(self.target_normals, normals)
        return proposed, positions, normals, deviations, float(deviations.sum())

    def _commit(self, proposed, positions, normals, deviations, total) -> None:
        self.distances = proposed
        self.positions = positions
        self.normals = normals
        self.deviations = deviations
        self.total_deviation = float(total)
        self.accepted_count += 1

    def current_positions(self) -> np.ndarray:
        return self.positions

    def current_normals(self) -> np.ndarray:
        return self.normals

    def _current_distances(self) -> Optional[np.ndarray]:
        return self.distances.copy()

    def result(self) -> OptimizationResult:
        self.metadata["accepted"] = int(self.accepted_count)
        self.metadata["rejected"] = int(self.rejected_count)
        return super().result()


@dataclass
class MappingContext:
    """
    What the placement strategies need besides the ray family.

    Attributes:
        family: last-bounce rays; `family.positions()` are the mapped positions
        mirror_normals: (V, 3) normal at the last mirror hit
        source_vertices: (V, 3) world-space source vertices
        source_faces: (M, 3) source winding
        reference_axis: (3,) world direction of the source object's local x axis
        viewpoint: (3,)
    """
    family: RayFamily
    mirror_normals: np.ndarray
    source_vertices: np.ndarray
    source_faces: np.ndarray
    reference_axis: np.ndarray
    viewpoint: np.ndarray

    @property
    def mapped_positions(self) -> np.ndarray:
        return self.family.positions()


class PlacementRun(OptimizerRun):
    """Base of the strategies that place vertices directly instead of searching."""

    def __init__(
        self,
        context: MappingContext,
        target_normals: np.ndarray,
        settings: Optional[OptimizerSettings] = None,
    ):
        super().__init__(target_normals, settings)
        self.context = context
        self.family = context.family
        self.mapped = self.family.positions()
        self.positions = self.mapped.copy()
        self.normals = self.family.normals(self.positions)
        if self.target_normals.shape[0] != self.family.n_vertices:
            raise DeviationLengthError(
                f"Target normals cover {self.target_normals.shape[0]} vertices, mesh has {self.family.n_vertices}"
            )
        self.initial_deviation = float(angular_deviation(self.target_normals, self.normals).sum())
        self.total_deviation = self.initial_deviation

    def _finalize(self, reason: str) -> None:
        self.normals = self.family.normals(self.positions)
        self.total_deviation = float(angular_deviation(self.target_normals, self.normals).sum())
        self._finish(reason)

    def current_positions(self) -> np.ndarray:
        return self.positions

    def current_normals(self) -> np.ndarray:
        return self.normals
