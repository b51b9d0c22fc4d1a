"""
Ray casting against categorized scene surfaces (trimesh).

Surfaces are world-space triangle meshes tagged with a category. Mirrors are
registered under "mirror"; anything else (occluders, walls) can only end a
reflection chain.
"""

from __future__ import annotations

from dataclasses import dataclass
import logging
from typing import Optional, Union

import numpy as np
import trimesh
from trimesh.ray.ray_triangle import RayMeshIntersector

from .mesh_loader import MeshData


_LOGGER = logging.getLogger(__name__)

DEFAULT_SELF_HIT_EPS = 1e-6


@dataclass(frozen=True)
class RayHit:
    point: np.ndarray
    normal: np.ndarray
    distance: float
    surface: str


@dataclass
class _Surface:
    name: str
    category: str
    mesh: trimesh.Trimesh
    intersector: RayMeshIntersector


@dataclass
class BatchHits:
    """
    Nearest hit per ray for a batch query.

    Attributes:
        hit: (N,) bool
        points: (N, 3) hit points (zero where `hit` is False)
        normals: (N, 3) unit normals facing the incoming ray
        distances: (N,) distance along the ray (inf where `hit` is False)
        surfaces: (N,) surface name per ray ("" where `hit` is False)
    """
    hit: np.ndarray
    points: np.ndarray
    normals: np.ndarray
    distances: np.ndarray
    surfaces: np.ndarray


class SceneRaycaster:
    """
    Intersection provider over a set of surfaces.

    Hits closer than `self_hit_eps` to the ray origin are ignored so a ray
    leaving a mirror does not report the mirror it starts on.
    """

    def __init__(self, *, self_hit_eps: float = DEFAULT_SELF_HIT_EPS):
        self.self_hit_eps = float(self_hit_eps)
        self._surfaces: list[_Surface] = []

    @property
    def surfaces(self) -> list[tuple[str, str]]:
        return [(s.name, s.category) for s in self._surfaces]

    def categories(self) -> set[str]:
        return {s.category for s in self._surfaces}

    def add_surface(
        self,
        mesh: Union[MeshData, trimesh.Trimesh],
        category: str = "mirror",
        name: Optional[str] = None,
    ) -> str:
        """Register a surface; `MeshData` is baked into world space first."""
        if isinstance(mesh, MeshData):
            tm = mesh.to_trimesh(world=True)
            surface_name = name or mesh.name
        else:
            tm = mesh
            surface_name = name or f"surface_{len(self._surfaces)}"

        if len(tm.faces) == 0:
            raise ValueError(f"Surface {surface_name!r} has no faces")

        self._surfaces.append(
            _Surface(
                name=str(surface_name),
                category=str(category),
                mesh=tm,
                intersector=RayMeshIntersector(tm),
            )
        )
        _LOGGER.debug("Surface added: %s (category=%s, faces=%d)", surface_name, category, len(tm.faces))
        return str(surface_name)

    def clear(self) -> None:
        self._surfaces.clear()

    def _select(self, category: Optional[str]) -> list[_Surface]:
        if category is None:
            return list(self._surfaces)
        return [s for s in self._surfaces if s.category == category]

    def _query_surface(
        self,
        surface: _Surface,
        origins: np.ndarray,
        directions: np.ndarray,
        max_distance: float,
    ):
        locations, ray_idx, tri_idx = surface.intersector.intersects_location(
            ray_origins=origins,
            ray_directions=directions,
            multiple_hits=True,
        )
        if len(ray_idx) == 0:
            return None

        locations = np.asarray(locations, dtype=np.float64)
        ray_idx = np.asarray(ray_idx, dtype=np.int64)
        tri_idx = np.asarray(tri_idx, dtype=np.int64)
        dist = np.einsum("ij,ij->i", locations - origins[ray_idx], directions[ray_idx])
        keep = (dist > self.self_hit_eps) & (dist <= float(max_distance))
        if not np.any(keep):
            return None

        normals = np.asarray(surface.mesh.face_normals, dtype=np.float64)[tri_idx[keep]]
        d = directions[ray_idx[keep]]
        flip = np.einsum("ij,ij->i", normals, d) > 0.0
        normals[flip] *= -1.0
        return locations[keep], ray_idx[keep], dist[keep], normals

    @staticmethod
    def _prepare(origins, directions) -> tuple[np.ndarray, np.ndarray]:
        o = np.asarray(origins, dtype=np.float64).reshape(-1, 3)
        d = np.asarray(directions, dtype=np.float64).reshape(-1, 3)
        if o.shape[0] == 1 and d.shape[0] > 1:
            o = np.repeat(o, d.shape[0], axis=0)
        if o.shape != d.shape:
            raise ValueError(f"Origin/direction count mismatch: {o.shape} vs {d.shape}")
        norms = np.linalg.norm(d, axis=1, keepdims=True)
        norms[norms == 0] = 1
        return o, d / norms

    def raycast_all(
        self,
        origin,
        direction,
        max_distance: float,
        category: Optional[str] = None,
    ) -> list[RayHit]:
        """All hits of one ray within `max_distance`, nearest first."""
        o, d = self._prepare(origin, direction)
        hits: list[RayHit] = []
        for surface in self._select(category):
            result = self._query_surface(surface, o, d, max_distance)
            if result is None:
                continue
            points, _ray_idx, dist, normals = result
            for p, n, t in zip(points, normals, dist):
                hits.append(RayHit(point=p, normal=n, distance=float(t), surface=surface.name))
        hits.sort(key=lambda h: h.distance)
        return hits

    def raycast(
        self,
        origin,
        direction,
        max_distance: float,
        category: Optional[str] = None,
    ) -> Optional[RayHit]:
        hits = self.raycast_all(origin, direction, max_distance, category=category)
        return hits[0] if hits else None

    def raycast_nearest(
        self,
        origins,
        directions,
        max_distance: float,
        category: Optional[str] = None,
    ) -> BatchHits:
        """Nearest hit for many rays at once (one query per surface)."""
        o, d = self._prepare(origins, directions)
        n = o.shape[0]
        out = BatchHits(
            hit=np.zeros(n, dtype=bool),
            points=np.zeros((n, 3), dtype=np.float64),
            normals=np.zeros((n, 3), dtype=np.float64),
            distances=np.full(n, np.inf, dtype=np.float64),
            surfaces=np.full(n, "", dtype=object),
        )
        if n == 0:
            return out

        for surface in self._select(category):
            result = self._query_surface(surface, o, d, max_distance)
            if result is None:
                continue
            points, ray_idx, dist, normals = result
            # Nearest hit per ray on this surface.
            order = np.lexsort((dist, ray_idx))
            ray_sorted = ray_idx[order]
            first = np.ones(ray_sorted.size, dtype=bool)
            first[1:] = ray_sorted[1:] != ray_sorted[:-1]
            sel = order[first]
            rays = ray_idx[sel]
            closer = dist[sel] < out.distances[rays]
            rays = rays[closer]
            sel = sel[closer]
            out.hit[rays] = True
            out.points[rays] = points[sel]
            out.normals[rays] = normals[sel]
            out.distances[rays] = dist[sel]
            out.surfaces[rays] = surface.name
        return out
