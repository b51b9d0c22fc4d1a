"""
Geometry primitives shared by the ray tracer, mapper and optimizers.

Intersection helpers return `(point, ok)` instead of raising: parallel inputs
are an expected outcome that callers branch on.
"""

from __future__ import annotations

import numpy as np
from scipy.spatial.transform import Rotation


def _as_vec3(value) -> np.ndarray:
    arr = np.ravel(np.asarray(value, dtype=np.float64))
    if arr.size < 3:
        raise ValueError(f"need 3 components, got {arr.size}")
    return arr[:3]


def _as_vec2(value) -> np.ndarray:
    arr = np.ravel(np.asarray(value, dtype=np.float64))
    if arr.size < 2:
        raise ValueError(f"need 2 components, got {arr.size}")
    return arr[:2]


def normalize_vector(value, *, eps: float = 1e-12) -> np.ndarray | None:
    """Unit copy of a 3-vector, or None for zero, tiny or non-finite input."""
    vec = _as_vec3(value)
    length = float(np.linalg.norm(vec))
    return vec / length if np.isfinite(length) and length > eps else None


def normalize_rows(vectors: np.ndarray) -> np.ndarray:
    """Normalize each row; zero rows stay zero."""
    v = np.asarray(vectors, dtype=np.float64)
    norms = np.linalg.norm(v, axis=-1, keepdims=True)
    norms[norms == 0] = 1
    return v / norms


def line_line_intersection(
    point1, direction1, point2, direction2, *, eps: float = 0.0
) -> tuple[np.ndarray, bool]:
    """
    Intersection of two 2D lines `p1 + a * d1` and `p2 + b * d2` (Cramer's rule).

    Fails when the determinant is zero. With the default `eps=0.0` only an
    exactly zero determinant fails, so nearly parallel lines produce very
    distant (and imprecise) intersection points.
    """
    p1 = _as_vec2(point1)
    d1 = _as_vec2(direction1)
    p2 = _as_vec2(point2)
    d2 = _as_vec2(direction2)

    det = float(d1[0] * -d2[1] + d2[0] * d1[1])
    if abs(det) <= float(eps):
        return np.zeros(2, dtype=np.float64), False

    num = float((p2[0] - p1[0]) * -d2[1] + (p2[1] - p1[1]) * d2[0])
    a = num / det
    return p1 + a * d1, True


def line_plane_intersection(
    point, direction, plane_normal, plane_point, *, eps: float = 0.0
) -> tuple[np.ndarray, bool]:
    """
    Intersection of the line `point + t * direction` with a plane.

    Fails when the line is parallel to the plane (it either misses it or lies
    in it).
    """
    p = _as_vec3(point)
    d = _as_vec3(direction)
    n = _as_vec3(plane_normal)
    q = _as_vec3(plane_point)

    denominator = float(np.dot(d, n))
    if abs(denominator) <= float(eps):
        return np.zeros(3, dtype=np.float64), False

    t = float(np.dot(q - p, n)) / denominator
    return p + d * t, True


def reflect(direction: np.ndarray, normal: np.ndarray) -> np.ndarray:
    """Specular reflection `d - 2 (d . n) n`; works row-wise on (N, 3) arrays."""
    d = np.asarray(direction, dtype=np.float64)
    n = np.asarray(normal, dtype=np.float64)
    dots = np.sum(d * n, axis=-1, keepdims=True)
    return d - 2.0 * dots * n


def angle_between(a, b) -> float:
    """Unsigned angle in degrees; 0 when either vector has zero length."""
    va = np.asarray(a, dtype=np.float64).reshape(-1)
    vb = np.asarray(b, dtype=np.float64).reshape(-1)
    if float(np.linalg.norm(va) * np.linalg.norm(vb)) <= 1e-15:
        return 0.0
    # atan2 keeps parallel vectors at exactly 0 (arccos of a rounded dot does not).
    if va.size == 2:
        cross = abs(float(va[0] * vb[1] - va[1] * vb[0]))
    else:
        cross = float(np.linalg.norm(np.cross(va, vb)))
    return float(np.degrees(np.arctan2(cross, float(np.dot(va, vb)))))


def signed_angle_2d(from_vec, to_vec) -> float:
    """Signed angle in degrees from `from_vec` to `to_vec`, counter-clockwise positive."""
    f = _as_vec2(from_vec)
    t = _as_vec2(to_vec)
    unsigned = angle_between(f, t)
    cross = float(f[0] * t[1] - f[1] * t[0])
    return unsigned if cross >= 0.0 else -unsigned


def rotation_matrix_align_vectors(source, target, *, eps: float = 1e-10) -> np.ndarray:
    """
    Shortest-arc rotation R with `R @ source` parallel to `target`.

    Opposite vectors get a half turn about an axis perpendicular to `source`.
    Zero-length input gives the identity.
    """
    src = normalize_vector(source, eps=eps)
    dst = normalize_vector(target, eps=eps)
    if src is None or dst is None:
        return np.eye(3, dtype=np.float64)

    axis = np.cross(src, dst)
    sin_angle = float(np.linalg.norm(axis))
    cos_angle = float(np.dot(src, dst))
    if sin_angle > eps:
        rotvec = axis / sin_angle * np.arctan2(sin_angle, cos_angle)
    elif cos_angle > 0.0:
        return np.eye(3, dtype=np.float64)
    else:
        # cross with the basis axis least aligned with src
        helper = np.eye(3, dtype=np.float64)[int(np.argmin(np.abs(src)))]
        perp = np.cross(src, helper)
        rotvec = perp / np.linalg.norm(perp) * np.pi
    return Rotation.from_rotvec(rotvec).as_matrix()


def mirrored_relative_rotation(source, target) -> np.ndarray:
    """
    Rotation with the negated Euler angles of the source->target rotation.

    Negating every Euler angle (z, x, y order) mirrors the sense of rotation,
    which compensates for the handedness flip a reflection introduces.
    """
    rel = Rotation.from_matrix(rotation_matrix_align_vectors(source, target))
    angles = rel.as_euler("zxy")
    return Rotation.from_euler("zxy", -angles).as_matrix()


def mirror_vectors(vectors: np.ndarray, axis_normal) -> np.ndarray:
    """Householder mirror of row vectors through the plane with normal `axis_normal`."""
    n = normalize_vector(axis_normal)
    if n is None:
        raise ValueError("Mirror axis must be non-zero.")
    return reflect(np.asarray(vectors, dtype=np.float64), n)


def transform_points(points: np.ndarray, matrix: np.ndarray) -> np.ndarray:
    pts = np.asarray(points, dtype=np.float64).reshape(-1, 3)
    m = np.asarray(matrix, dtype=np.float64)
    return pts @ m[:3, :3].T + m[:3, 3]


def transform_directions(vectors: np.ndarray, matrix: np.ndarray) -> np.ndarray:
    """Rotate direction vectors by the linear part of `matrix` and re-normalize."""
    vec = np.asarray(vectors, dtype=np.float64).reshape(-1, 3)
    m = np.asarray(matrix, dtype=np.float64)
    linear = m[:3, :3]
    # Normals transform by the inverse transpose (handles non-uniform scale).
    try:
        normal_matrix = np.linalg.inv(linear).T
    except np.linalg.LinAlgError:
        normal_matrix = linear
    return normalize_rows(vec @ normal_matrix.T)
