"""
Angular deviation between a normal field and its ideal target.
"""

from __future__ import annotations

import numpy as np

from .errors import DeviationLengthError
from .geometry_utils import mirror_vectors
from .settings import axis_index


def angular_deviation(target: np.ndarray, current: np.ndarray) -> np.ndarray:
    """
    Per-vertex unsigned angle in degrees, each in [0, 180].

    Rows where either vector has zero length report 0.

    Raises:
        DeviationLengthError: the two fields have different lengths
    """
    t = np.asarray(target, dtype=np.float64).reshape(-1, 3)
    c = np.asarray(current, dtype=np.float64).reshape(-1, 3)
    if t.shape[0] != c.shape[0]:
        raise DeviationLengthError(
            f"Normal fields differ in length: target={t.shape[0]}, current={c.shape[0]}"
        )
    denom = np.linalg.norm(t, axis=1) * np.linalg.norm(c, axis=1)
    dots = np.einsum("ij,ij->i", t, c)
    cross = np.linalg.norm(np.cross(t, c), axis=1)
    angles = np.degrees(np.arctan2(cross, dots))
    angles[denom <= 1e-15] = 0.0
    return angles


def total_deviation(target: np.ndarray, current: np.ndarray) -> float:
    return float(np.sum(angular_deviation(target, current)))


def ideal_normals(source_normals: np.ndarray, mirror_axis: str | int = "z") -> np.ndarray:
    """
    Target normals of a mapped mesh: the source normals mirrored through the
    plane perpendicular to `mirror_axis` (for "z" the z component is negated).
    """
    axis = np.zeros(3, dtype=np.float64)
    axis[axis_index(mirror_axis)] = 1.0
    return mirror_vectors(np.asarray(source_normals, dtype=np.float64).reshape(-1, 3), axis)
