"""
Procedural mirror meshes.

Mirrors are regular grids in their local XY plane, bulging towards local +Z.
Both sides reflect: the raycaster orients hit normals against the incoming
ray, so winding only matters for exported files.
"""

from __future__ import annotations

import logging
from typing import Optional

import numpy as np

from .mesh_loader import MeshData


_LOGGER = logging.getLogger(__name__)

CURVE_DIRECTIONS = ("horizontal", "vertical")
MIN_RESOLUTION = 3
MAX_RESOLUTION = 256


def _check_resolution(x_size: int, y_size: int) -> tuple[int, int]:
    xs = int(x_size)
    ys = int(y_size)
    for name, value in (("x_size", xs), ("y_size", ys)):
        if not (MIN_RESOLUTION <= value <= MAX_RESOLUTION):
            raise ValueError(f"{name} must be in [{MIN_RESOLUTION}, {MAX_RESOLUTION}], got {value}")
    return xs, ys


def grid_faces(x_size: int, y_size: int) -> np.ndarray:
    """Two triangles per grid cell for a row-major `x_size * y_size` vertex grid."""
    xs = int(x_size)
    ys = int(y_size)
    x, y = np.meshgrid(np.arange(xs - 1), np.arange(ys - 1))
    a = (y * xs + x).reshape(-1)
    b = a + 1
    c = a + xs
    d = c + 1
    first = np.stack([a, c, b], axis=1)
    second = np.stack([b, c, d], axis=1)
    # Interleave so that each cell's triangles are adjacent.
    faces = np.empty((first.shape[0] * 2, 3), dtype=np.int64)
    faces[0::2] = first
    faces[1::2] = second
    return faces


def _grid_uv(x_size: int, y_size: int) -> tuple[np.ndarray, np.ndarray]:
    u = np.arange(x_size, dtype=np.float64) / float(x_size - 1)
    v = np.arange(y_size, dtype=np.float64) / float(y_size - 1)
    uu, vv = np.meshgrid(u, v)
    return uu.reshape(-1), vv.reshape(-1)


def curved_square_mirror(
    x_size: int = 10,
    y_size: int = 10,
    *,
    curve_direction: str = "horizontal",
    radius: float = 1.5,
    transform: Optional[np.ndarray] = None,
    name: str = "curved_mirror",
) -> MeshData:
    """
    Cylindrical mirror patch spanning [-1, 1] in its flat direction.

    The curved direction samples a circular arc of the given radius whose
    chord is 2 units long; the arc apex sits at `z = radius - sqrt(radius^2 - 1)`
    and the arc ends at `z = 0`.

    Args:
        x_size, y_size: grid resolution (3..256 each)
        curve_direction: "horizontal" bends along local Y, "vertical" along local X
        radius: radius of curvature (>= 1)
    """
    xs, ys = _check_resolution(x_size, y_size)
    direction = str(curve_direction).strip().lower()
    if direction not in CURVE_DIRECTIONS:
        raise ValueError(f"Unknown curve direction: {curve_direction!r}")
    r = float(radius)
    if not (r >= 1.0):
        raise ValueError(f"radius must be >= 1, got {radius}")

    u, v = _grid_uv(xs, ys)
    theta = float(np.arcsin(1.0 / r))
    dist_optical_centre = r * float(np.cos(theta))

    x = u * 2.0 - 1.0
    y = v * 2.0 - 1.0
    if direction == "horizontal":
        y = r * np.sin(-theta + 2.0 * theta * v)
        alpha = np.arcsin(np.clip(y / r, -1.0, 1.0))
    else:
        x = r * np.sin(-theta + 2.0 * theta * u)
        alpha = np.arcsin(np.clip(x / r, -1.0, 1.0))
    z = r * np.cos(alpha) - dist_optical_centre

    vertices = np.stack([x, y, z], axis=1)
    _LOGGER.debug("Curved mirror %s: %dx%d, radius=%.3f (%s)", name, xs, ys, r, direction)
    return MeshData(
        vertices=vertices,
        faces=grid_faces(xs, ys),
        uv_coords=np.stack([u, v], axis=1),
        transform=np.eye(4) if transform is None else transform,
        continuous=True,
        name=name,
    )


def flat_mirror(
    size: float = 2.0,
    resolution: int = 3,
    *,
    transform: Optional[np.ndarray] = None,
    name: str = "flat_mirror",
) -> MeshData:
    """Square planar mirror of side `size` centred on the local origin."""
    res, _ = _check_resolution(resolution, resolution)
    s = float(size)
    if not (s > 0.0):
        raise ValueError(f"size must be > 0, got {size}")

    u, v = _grid_uv(res, res)
    vertices = np.stack([(u - 0.5) * s, (v - 0.5) * s, np.zeros_like(u)], axis=1)
    return MeshData(
        vertices=vertices,
        faces=grid_faces(res, res),
        uv_coords=np.stack([u, v], axis=1),
        transform=np.eye(4) if transform is None else transform,
        continuous=True,
        name=name,
    )


def translation_matrix(offset) -> np.ndarray:
    m = np.eye(4, dtype=np.float64)
    m[:3, 3] = np.asarray(offset, dtype=np.float64).reshape(3)
    return m


def build_mirror(entry: dict) -> MeshData:
    """
    Build a procedural mirror from a scene-file entry.

    Recognized keys: `type` ("curved" or "flat"), `position` (xyz), `matrix`
    (4x4, overrides `position`), plus the generator's own keyword arguments.
    """
    data = dict(entry or {})
    kind = str(data.pop("type", "flat")).strip().lower()
    matrix = data.pop("matrix", None)
    position = data.pop("position", None)
    if matrix is not None:
        transform = np.asarray(matrix, dtype=np.float64).reshape(4, 4)
    elif position is not None:
        transform = translation_matrix(position)
    else:
        transform = None
    data.pop("category", None)
    data.pop("path", None)

    if kind == "curved":
        return curved_square_mirror(transform=transform, **data)
    if kind == "flat":
        return flat_mirror(transform=transform, **data)
    raise ValueError(f"Unknown mirror type: {kind!r}")
