"""
Reflection ray tracer.

For every source vertex a ray is cast from the viewpoint towards the vertex.
The first cast only considers mirror surfaces; follow-up bounces consider every
surface in the scene, so an occluder simply ends the chain.
"""

from __future__ import annotations

from dataclasses import dataclass
import logging

import numpy as np

from .geometry_utils import normalize_rows, reflect
from .raycaster import SceneRaycaster
from .settings import MappingSettings


_LOGGER = logging.getLogger(__name__)


@dataclass
class ReflectionChains:
    """
    Per-vertex bounce chains (V vertices, R = max_reflections).

    Attributes:
        viewpoint: (3,) ray origin of the first cast
        global_vertices: (V, 3) world-space source vertices
        raycast_directions: (V, 3) unnormalized `vertex - viewpoint`
        mirror_hits: (V, R, 3) hit points
        mirror_normals: (V, R, 3) hit normals (facing the incoming ray)
        reflections: (V, R, 3) outgoing directions; every bounce but the last
            is scaled to the length of the segment it spans, the last is unit
        segment_lengths: (V, R) length of the segment arriving at each bounce
        num_reflections: (V,) chain length, 0 when the first cast missed
        vertex_distances: (V,) distance from the vertex to its first mirror hit
    """
    viewpoint: np.ndarray
    global_vertices: np.ndarray
    raycast_directions: np.ndarray
    mirror_hits: np.ndarray
    mirror_normals: np.ndarray
    reflections: np.ndarray
    segment_lengths: np.ndarray
    num_reflections: np.ndarray
    vertex_distances: np.ndarray

    @property
    def n_vertices(self) -> int:
        return int(self.num_reflections.shape[0])

    @property
    def max_reflections(self) -> int:
        return int(self.mirror_hits.shape[1])

    @property
    def valid(self) -> np.ndarray:
        return self.num_reflections > 0

    @property
    def n_missed(self) -> int:
        return int(np.count_nonzero(self.num_reflections == 0))

    def _last(self, arr: np.ndarray) -> np.ndarray:
        idx = np.maximum(self.num_reflections - 1, 0)
        out = arr[np.arange(self.n_vertices), idx].copy()
        out[~self.valid] = 0.0
        return out

    def last_hits(self) -> np.ndarray:
        return self._last(self.mirror_hits)

    def last_normals(self) -> np.ndarray:
        return self._last(self.mirror_normals)

    def last_reflections(self) -> np.ndarray:
        return self._last(self.reflections)

    def copy(self) -> "ReflectionChains":
        return ReflectionChains(
            viewpoint=self.viewpoint.copy(),
            global_vertices=self.global_vertices.copy(),
            raycast_directions=self.raycast_directions.copy(),
            mirror_hits=self.mirror_hits.copy(),
            mirror_normals=self.mirror_normals.copy(),
            reflections=self.reflections.copy(),
            segment_lengths=self.segment_lengths.copy(),
            num_reflections=self.num_reflections.copy(),
            vertex_distances=self.vertex_distances.copy(),
        )


class ReflectionTracer:
    """Traces viewpoint -> mirror -> ... chains for a batch of vertices."""

    def __init__(self, raycaster: SceneRaycaster, settings: MappingSettings | None = None):
        self.raycaster = raycaster
        self.settings = settings or MappingSettings()

    def trace(self, viewpoint, global_vertices: np.ndarray) -> ReflectionChains:
        s = self.settings
        eye = np.asarray(viewpoint, dtype=np.float64).reshape(3)
        verts = np.asarray(global_vertices, dtype=np.float64).reshape(-1, 3)
        n = verts.shape[0]
        r_max = int(s.max_reflections)

        mirror_hits = np.zeros((n, r_max, 3), dtype=np.float64)
        mirror_normals = np.zeros((n, r_max, 3), dtype=np.float64)
        reflections = np.zeros((n, r_max, 3), dtype=np.float64)
        segment_lengths = np.zeros((n, r_max), dtype=np.float64)
        num_reflections = np.zeros(n, dtype=np.int64)
        vertex_distances = np.zeros(n, dtype=np.float64)

        raycast_directions = verts - eye
        directions = normalize_rows(raycast_directions)
        castable = np.linalg.norm(raycast_directions, axis=1) > 0.0

        first = self.raycaster.raycast_nearest(
            np.broadcast_to(eye, (n, 3)),
            directions,
            s.max_raycast_distance,
            category=s.mirror_category,
        )
        hit = first.hit & castable

        mirror_hits[hit, 0] = first.points[hit]
        mirror_normals[hit, 0] = first.normals[hit]
        reflections[hit, 0] = reflect(directions[hit], first.normals[hit])
        segment_lengths[hit, 0] = first.distances[hit]
        vertex_distances[hit] = np.linalg.norm(verts[hit] - first.points[hit], axis=1)
        num_reflections[hit] = 1

        active = np.flatnonzero(hit)
        for r in range(1, r_max):
            if active.size == 0:
                break
            origins = mirror_hits[active, r - 1]
            dirs = normalize_rows(reflections[active, r - 1])
            bounce = self.raycaster.raycast_nearest(origins, dirs, s.max_raycast_distance, category=None)

            ok = bounce.hit
            idx = active[ok]
            if idx.size:
                d = dirs[ok]
                mirror_hits[idx, r] = bounce.points[ok]
                mirror_normals[idx, r] = bounce.normals[ok]
                reflections[idx, r] = reflect(d, bounce.normals[ok])
                segment_lengths[idx, r] = bounce.distances[ok]
                reflections[idx, r - 1] = d * bounce.distances[ok][:, None]
                num_reflections[idx] += 1
            active = idx

        chains = ReflectionChains(
            viewpoint=eye,
            global_vertices=verts.copy(),
            raycast_directions=raycast_directions,
            mirror_hits=mirror_hits,
            mirror_normals=mirror_normals,
            reflections=reflections,
            segment_lengths=segment_lengths,
            num_reflections=num_reflections,
            vertex_distances=vertex_distances,
        )

        if chains.n_missed:
            _LOGGER.warning(
                "%d of %d initial raycasts did not hit a mirror. "
                "Reposition the mirror or increase max_raycast_distance.",
                chains.n_missed,
                n,
            )
        _LOGGER.info(
            "Traced %d vertices (max_reflections=%d, mean chain length=%.2f)",
            n,
            r_max,
            float(num_reflections.mean()) if n else 0.0,
        )
        return chains
