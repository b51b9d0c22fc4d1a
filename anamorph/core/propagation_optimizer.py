"""
Triangle-normal BFS propagation.

Each triangle gets a target normal: the seed triangle's mapped normal rotated
like the source normals rotate from the seed triangle to that triangle (with
the rotation sense mirrored). Starting from the seed triangle, vertices are
placed where their last reflection ray meets the plane through an already
placed neighbour with the target normal of the shared triangle.
"""

from __future__ import annotations

from collections import deque
import logging
from typing import Optional

import numpy as np

from .errors import ContinuityRequiredError
from .geometry_utils import line_plane_intersection, mirrored_relative_rotation, normalize_rows
from .logging_utils import log_once
from .normals import face_normals, triangle_centroids
from .optimizer_base import MappingContext, PlacementRun, StepResult
from .settings import OptimizerSettings


_LOGGER = logging.getLogger(__name__)


def vertex_triangle_map(faces: np.ndarray, n_vertices: int) -> list[list[int]]:
    """Triangles touching each vertex index, in face order."""
    out: list[list[int]] = [[] for _ in range(int(n_vertices))]
    for t, face in enumerate(np.asarray(faces, dtype=np.int64).reshape(-1, 3)):
        for v in face:
            if t not in out[int(v)]:
                out[int(v)].append(t)
    return out


def select_seed_triangle(mapped_triangle_normals: np.ndarray, centroids: np.ndarray, viewpoint) -> int:
    """Triangle whose mapped normal points most directly at the viewpoint."""
    to_eye = normalize_rows(np.asarray(viewpoint, dtype=np.float64).reshape(1, 3) - centroids)
    alignment = np.einsum("ij,ij->i", mapped_triangle_normals, to_eye)
    return int(np.argmax(alignment))


def propagated_triangle_normals(
    source_triangle_normals: np.ndarray,
    seed_mapped_normal: np.ndarray,
    seed: int,
) -> np.ndarray:
    src = np.asarray(source_triangle_normals, dtype=np.float64).reshape(-1, 3)
    seed_normal = np.asarray(seed_mapped_normal, dtype=np.float64).reshape(3)
    out = np.empty_like(src)
    for t in range(src.shape[0]):
        out[t] = mirrored_relative_rotation(src[seed], src[t]) @ seed_normal
    return out


class TrianglePropagation(PlacementRun):
    """One step processes one queue entry `(source vertex, triangle, target vertex)`."""

    method = "propagation"

    def __init__(
        self,
        context: MappingContext,
        target_normals: np.ndarray,
        settings: Optional[OptimizerSettings] = None,
    ):
        if not context.family.continuous:
            raise ContinuityRequiredError("Triangle propagation only works on continuous meshes.")
        super().__init__(context, target_normals, settings)

        family = self.family
        self.faces = np.asarray(context.source_faces, dtype=np.int64).reshape(-1, 3)
        n = family.n_vertices

        # Mapped triangles are the reversed source triangles.
        mapped_tri_normals = -face_normals(self.mapped, self.faces)
        centroids = triangle_centroids(self.mapped, self.faces)
        self.seed = select_seed_triangle(mapped_tri_normals, centroids, context.viewpoint)
        source_tri_normals = face_normals(context.source_vertices, self.faces)
        self.triangle_targets = propagated_triangle_normals(
            source_tri_normals, mapped_tri_normals[self.seed], self.seed
        )

        self.tri_of = vertex_triangle_map(self.faces, n)
        self.placed = np.zeros(n, dtype=np.int64)
        self.queue: deque[tuple[int, int, int]] = deque()
        self.conflicts = 0
        self.skipped_duplicates = 0
        self.missed_intersections = 0
        self.max_iterations = int(self.settings.max_queue_iterations)
        self.tolerance = float(self.settings.placement_tolerance)

        for v in self.faces[self.seed]:
            for vi in family.identity.identity_of(int(v)):
                vi = int(vi)
                self.positions[vi] = self.mapped[vi]
                self.placed[vi] += 1
                self._enqueue_neighbours(vi, exclude=self.seed)

        _LOGGER.info(
            "Triangle propagation: seed triangle %d, %d queued placements",
            self.seed,
            len(self.queue),
        )

    def _enqueue_neighbours(self, vertex: int, exclude: int) -> None:
        for t in self.tri_of[vertex]:
            if t == exclude:
                continue
            for corner in self.faces[t]:
                if int(corner) != vertex:
                    self.queue.append((vertex, t, int(corner)))

    def _step(self) -> StepResult:
        if not self.queue or self.iteration >= self.max_iterations:
            forced = bool(self.queue)
            if forced:
                _LOGGER.warning(
                    "Triangle propagation stopped at the iteration ceiling (%d) with %d entries left",
                    self.max_iterations,
                    len(self.queue),
                )
            if self.conflicts:
                _LOGGER.error(
                    "Triangle propagation: %d placements disagreed with an earlier placement; "
                    "the first placement was kept",
                    self.conflicts,
                )
            unreached = int(np.count_nonzero(self.placed == 0))
            self.metadata.update(
                seed_triangle=self.seed,
                conflicts=self.conflicts,
                skipped_duplicates=self.skipped_duplicates,
                missed_intersections=self.missed_intersections,
                forced_termination=forced,
                unreached_vertices=unreached,
            )
            self._finalize("iteration ceiling reached" if forced else "queue exhausted")
            return StepResult(iteration=self.iteration, done=True, total_deviation=self.total_deviation)

        self.iteration += 1
        sv, t, v = self.queue.popleft()

        if not self.family.valid[v]:
            log_once(
                _LOGGER,
                f"propagation-no-reflection-{id(self)}",
                logging.ERROR,
                "Triangle propagation: vertex %d did not have any reflections",
                v,
            )
            return StepResult(iteration=self.iteration, done=False, vertex=v)

        point, ok = line_plane_intersection(
            self.family.origins[v],
            self.family.directions[v],
            self.triangle_targets[t],
            self.positions[sv],
        )
        if not ok:
            self.missed_intersections += 1
            return StepResult(iteration=self.iteration, done=False, vertex=v)

        if self.placed[v] > 0:
            sqr_distance = float(np.sum((point - self.positions[v]) ** 2))
            if sqr_distance < self.tolerance:
                self.skipped_duplicates += 1
            else:
                self.conflicts += 1
                _LOGGER.debug(
                    "Triangle propagation: vertex %d placement conflict (sqr distance %.6f)",
                    v,
                    sqr_distance,
                )
            return StepResult(iteration=self.iteration, done=False, vertex=v)

        for vi in self.family.identity.identity_of(v):
            vi = int(vi)
            self.positions[vi] = point
            self.placed[vi] += 1
            self._enqueue_neighbours(vi, exclude=t)
        return StepResult(iteration=self.iteration, done=False, accepted=True, vertex=v)
