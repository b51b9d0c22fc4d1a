"""
Normal field calculator.

Winding convention: the normal of triangle (a, b, c) is
`normalize(cross(b - a, c - a))`.
"""

from __future__ import annotations

from typing import Optional

import numpy as np

from .geometry_utils import normalize_rows
from .vertex_identity import VertexIdentityIndex


def _faces_array(faces: np.ndarray) -> np.ndarray:
    f = np.asarray(faces, dtype=np.int64)
    if f.size == 0:
        return f.reshape(0, 3)
    return f.reshape(-1, 3)


def face_cross_products(vertices: np.ndarray, faces: np.ndarray) -> np.ndarray:
    """Unnormalized face normals (length is twice the triangle area)."""
    v = np.asarray(vertices, dtype=np.float64).reshape(-1, 3)
    f = _faces_array(faces)
    if f.shape[0] == 0:
        return np.zeros((0, 3), dtype=np.float64)
    v0 = v[f[:, 0]]
    v1 = v[f[:, 1]]
    v2 = v[f[:, 2]]
    return np.cross(v1 - v0, v2 - v0)


def face_normals(vertices: np.ndarray, faces: np.ndarray) -> np.ndarray:
    return normalize_rows(face_cross_products(vertices, faces))


def triangle_centroids(vertices: np.ndarray, faces: np.ndarray) -> np.ndarray:
    v = np.asarray(vertices, dtype=np.float64).reshape(-1, 3)
    f = _faces_array(faces)
    if f.shape[0] == 0:
        return np.zeros((0, 3), dtype=np.float64)
    return v[f].mean(axis=1)


def recalculate_normals(
    vertices: np.ndarray,
    faces: np.ndarray,
    continuous: bool = False,
    identity: Optional[VertexIdentityIndex] = None,
) -> np.ndarray:
    """
    Per-vertex normals.

    Args:
        vertices: (N, 3) positions
        faces: (M, 3) triangle indices
        continuous: merge normals across vertices sharing a position
        identity: identity index to merge over; built from `vertices` when
            omitted. Optimizers pass the index of the source mesh so that
            duplicates stay merged after they have been moved.

    Returns:
        (N, 3) unit normals (zero rows for unreferenced vertices)
    """
    v = np.asarray(vertices, dtype=np.float64).reshape(-1, 3)
    f = _faces_array(faces)
    n_vertices = v.shape[0]
    cross = face_cross_products(v, f)

    if not continuous:
        normals = np.zeros((n_vertices, 3), dtype=np.float64)
        np.add.at(normals, f[:, 0], cross)
        np.add.at(normals, f[:, 1], cross)
        np.add.at(normals, f[:, 2], cross)
        return normalize_rows(normals)

    if identity is None:
        identity = VertexIdentityIndex(v)
    labels = identity.labels
    if labels.size != n_vertices:
        raise ValueError(
            f"Identity index covers {labels.size} vertices, mesh has {n_vertices}"
        )

    # A triangle contributes once to each distinct group among its corners.
    g = labels[f]
    keep1 = g[:, 1] != g[:, 0]
    keep2 = (g[:, 2] != g[:, 0]) & (g[:, 2] != g[:, 1])

    group_normals = np.zeros((identity.n_groups, 3), dtype=np.float64)
    np.add.at(group_normals, g[:, 0], cross)
    np.add.at(group_normals, g[keep1, 1], cross[keep1])
    np.add.at(group_normals, g[keep2, 2], cross[keep2])
    group_normals = normalize_rows(group_normals)
    return group_normals[labels]
