"""
Small procedural source meshes (flat squares, grids, cube spheres).
"""

from __future__ import annotations

from typing import Optional

import numpy as np

from .mesh_loader import MeshData
from .mirrors import translation_matrix


def grid_plane(
    nx: int = 3,
    ny: int = 3,
    spacing: float = 1.0,
    *,
    transform: Optional[np.ndarray] = None,
    continuous: bool = False,
    name: str = "grid",
) -> MeshData:
    """
    Regular `nx * ny` vertex grid in the local XY plane, centred on the origin,
    facing local +Z. Vertex `i` sits at column `i % nx`, row `i // nx`.
    """
    nx = int(nx)
    ny = int(ny)
    if nx < 2 or ny < 2:
        raise ValueError(f"Grid needs at least 2x2 vertices, got {nx}x{ny}")
    step = float(spacing)
    xs = (np.arange(nx, dtype=np.float64) - (nx - 1) / 2.0) * step
    ys = (np.arange(ny, dtype=np.float64) - (ny - 1) / 2.0) * step
    gx, gy = np.meshgrid(xs, ys)
    vertices = np.stack([gx.reshape(-1), gy.reshape(-1), np.zeros(nx * ny)], axis=1)

    cx, cy = np.meshgrid(np.arange(nx - 1), np.arange(ny - 1))
    a = (cy * nx + cx).reshape(-1)
    b = a + 1
    c = a + nx
    d = c + 1
    faces = np.concatenate([np.stack([a, b, d], axis=1), np.stack([a, d, c], axis=1)])

    u = np.repeat(np.arange(nx)[None, :], ny, axis=0).reshape(-1) / float(nx - 1)
    v = np.repeat(np.arange(ny)[:, None], nx, axis=1).reshape(-1) / float(ny - 1)
    return MeshData(
        vertices=vertices,
        faces=faces,
        uv_coords=np.stack([u, v], axis=1),
        transform=np.eye(4) if transform is None else transform,
        continuous=continuous,
        name=name,
    )


def flat_square(
    size: float = 2.0,
    *,
    transform: Optional[np.ndarray] = None,
    continuous: bool = False,
    name: str = "square",
) -> MeshData:
    """Four vertices, two triangles."""
    return grid_plane(2, 2, float(size), transform=transform, continuous=continuous, name=name)


# (face normal, first in-face axis, second in-face axis); cross(a, b) == normal
_CUBE_FACES = (
    ((1, 0, 0), (0, 1, 0), (0, 0, 1)),
    ((-1, 0, 0), (0, 0, 1), (0, 1, 0)),
    ((0, 1, 0), (0, 0, 1), (1, 0, 0)),
    ((0, -1, 0), (1, 0, 0), (0, 0, 1)),
    ((0, 0, 1), (1, 0, 0), (0, 1, 0)),
    ((0, 0, -1), (0, 1, 0), (1, 0, 0)),
)


def cube_sphere(
    resolution: int = 4,
    radius: float = 1.0,
    *,
    transform: Optional[np.ndarray] = None,
    continuous: bool = True,
    name: str = "cube_sphere",
) -> MeshData:
    """
    Sphere built from six projected cube faces.

    Every face has its own vertices, so face borders carry duplicated seam
    vertices at identical positions.
    """
    res = int(resolution)
    if res < 1:
        raise ValueError(f"resolution must be >= 1, got {resolution}")
    t = 2.0 * (np.arange(res + 1, dtype=np.float64) / res) - 1.0
    ti, tj = np.meshgrid(t, t, indexing="ij")
    ti = ti.reshape(-1)
    tj = tj.reshape(-1)
    per_face = (res + 1) * (res + 1)

    ci, cj = np.meshgrid(np.arange(res), np.arange(res), indexing="ij")
    a = (ci * (res + 1) + cj).reshape(-1)
    b = a + (res + 1)
    c = a + 1
    d = b + 1
    cell_faces = np.concatenate([np.stack([a, b, d], axis=1), np.stack([a, d, c], axis=1)])

    vertices = []
    faces = []
    uvs = []
    for k, (n, ax, bx) in enumerate(_CUBE_FACES):
        n = np.asarray(n, dtype=np.float64)
        ax = np.asarray(ax, dtype=np.float64)
        bx = np.asarray(bx, dtype=np.float64)
        pts = n[None, :] + ti[:, None] * ax[None, :] + tj[:, None] * bx[None, :]
        pts = pts / np.linalg.norm(pts, axis=1, keepdims=True) * float(radius)
        vertices.append(pts)
        faces.append(cell_faces + k * per_face)
        uvs.append(np.stack([(ti + 1.0) / 2.0, (tj + 1.0) / 2.0], axis=1))

    return MeshData(
        vertices=np.concatenate(vertices),
        faces=np.concatenate(faces),
        uv_coords=np.concatenate(uvs),
        transform=np.eye(4) if transform is None else transform,
        continuous=continuous,
        name=name,
    )


BUILTINS = {
    "square": flat_square,
    "grid": grid_plane,
    "cube_sphere": cube_sphere,
}


def build_builtin(kind: str, *, position=None, matrix=None, **kwargs) -> MeshData:
    key = str(kind).strip().lower()
    if key not in BUILTINS:
        raise ValueError(f"Unknown builtin mesh: {kind!r} (expected one of {sorted(BUILTINS)})")
    if matrix is not None:
        transform = np.asarray(matrix, dtype=np.float64).reshape(4, 4)
    elif position is not None:
        transform = translation_matrix(position)
    else:
        transform = None
    return BUILTINS[key](transform=transform, **kwargs)
