"""
Source meshes: the in-memory container and trimesh-backed file I/O.

Vertex order is never changed on load or save. Seam duplicates and the
index buffer are part of the mapping semantics (see `vertex_identity`).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional, Union

import numpy as np
import trimesh

from .geometry_utils import transform_directions, transform_points
from .normals import recalculate_normals

PathLike = Union[str, Path]


@dataclass
class MeshData:
    """
    A triangle mesh placed in the scene.

    `vertices` and `normals` are local; `transform` maps local to world.
    `continuous` marks meshes whose coincident vertices belong to one
    surface, which changes how normals are averaged across seams.
    """
    vertices: np.ndarray
    faces: np.ndarray
    normals: Optional[np.ndarray] = None
    uv_coords: Optional[np.ndarray] = None
    transform: np.ndarray = field(default_factory=lambda: np.eye(4, dtype=np.float64))
    continuous: bool = False
    name: str = "object"
    filepath: Optional[Path] = None

    def __post_init__(self):
        self.vertices = np.asarray(self.vertices, dtype=np.float64).reshape(-1, 3)
        self.faces = np.asarray(self.faces, dtype=np.int64).reshape(-1, 3)
        self.transform = np.asarray(self.transform, dtype=np.float64).reshape(4, 4)
        self.continuous = bool(self.continuous)
        if self.normals is not None:
            self.normals = np.asarray(self.normals, dtype=np.float64).reshape(-1, 3)
        if self.uv_coords is not None:
            self.uv_coords = np.asarray(self.uv_coords, dtype=np.float64).reshape(-1, 2)

        n = len(self.vertices)
        if self.faces.size and not (0 <= int(self.faces.min()) and int(self.faces.max()) < n):
            raise ValueError(f"Face indices must lie in [0, {n}) for {self.name!r}")

    @property
    def n_vertices(self) -> int:
        return int(self.vertices.shape[0])

    @property
    def n_faces(self) -> int:
        return int(self.faces.shape[0])

    @property
    def bounds(self) -> np.ndarray:
        """Local axis-aligned box as [[min xyz], [max xyz]]."""
        return np.stack([self.vertices.min(axis=0), self.vertices.max(axis=0)])

    @property
    def has_uv(self) -> bool:
        return self.uv_coords is not None and self.uv_coords.shape[0] == self.n_vertices

    def compute_normals(self, *, force: bool = False) -> np.ndarray:
        if force or self.normals is None:
            self.normals = recalculate_normals(self.vertices, self.faces, continuous=self.continuous)
        return self.normals

    def global_vertices(self) -> np.ndarray:
        return transform_points(self.vertices, self.transform)

    def global_normals(self) -> np.ndarray:
        return transform_directions(self.compute_normals(), self.transform)

    def local_axis(self, axis: int = 0) -> np.ndarray:
        """Unit world direction of local axis `axis` (0=x, 1=y, 2=z)."""
        axis = int(axis)
        column = self.transform[:3, axis].astype(np.float64)
        length = float(np.linalg.norm(column))
        if length > 0.0:
            return column / length
        return np.eye(3, dtype=np.float64)[axis]

    def with_transform(self, transform: np.ndarray) -> "MeshData":
        """Copy of this mesh placed with a different local-to-world matrix."""
        return MeshData(
            vertices=self.vertices.copy(),
            faces=self.faces.copy(),
            normals=None if self.normals is None else self.normals.copy(),
            uv_coords=None if self.uv_coords is None else self.uv_coords.copy(),
            transform=transform,
            continuous=self.continuous,
            name=self.name,
            filepath=self.filepath,
        )

    def to_trimesh(self, *, world: bool = False) -> trimesh.Trimesh:
        mesh = trimesh.Trimesh(
            vertices=self.global_vertices() if world else self.vertices,
            faces=self.faces,
            process=False,
        )
        if self.has_uv:
            mesh.visual = trimesh.visual.TextureVisuals(uv=self.uv_coords)
        return mesh


def _uv_of(mesh: trimesh.Trimesh) -> Optional[np.ndarray]:
    uv = getattr(getattr(mesh, "visual", None), "uv", None)
    return None if uv is None else np.asarray(uv, dtype=np.float64)


class MeshLoader:
    """Reads mesh files into `MeshData` without reordering vertices."""

    SUPPORTED_FORMATS = {
        '.obj': 'Wavefront OBJ',
        '.ply': 'Stanford PLY',
        '.stl': 'STL',
        '.off': 'OFF',
        '.gltf': 'glTF',
        '.glb': 'glTF (binary)',
    }

    def _check_path(self, filepath: PathLike) -> Path:
        path = Path(filepath)
        if not path.exists():
            raise FileNotFoundError(f"Mesh file not found: {path}")
        if path.suffix.lower() not in self.SUPPORTED_FORMATS:
            known = ", ".join(self.SUPPORTED_FORMATS)
            raise ValueError(f"Cannot read {path.name}: extension {path.suffix!r} is not one of {known}")
        return path

    def _read(self, path: Path) -> trimesh.Trimesh:
        loaded = trimesh.load(str(path), force="mesh", process=False, maintain_order=True)

        if isinstance(loaded, trimesh.Scene):
            parts = [g for g in loaded.geometry.values() if isinstance(g, trimesh.Trimesh)]
            if not parts:
                raise ValueError(f"{path.name} contains no triangle geometry")
            loaded = parts[0] if len(parts) == 1 else trimesh.util.concatenate(parts)
        if not isinstance(loaded, trimesh.Trimesh):
            raise ValueError(f"{path.name} did not load as a triangle mesh ({type(loaded).__name__})")
        return loaded

    def load(self, filepath: PathLike, *, continuous: bool = False,
             transform: Optional[np.ndarray] = None) -> MeshData:
        """
        Load a source mesh and compute its normals.

        Normals stored in the file are ignored: they are recomputed with the
        mesh's winding and `continuous` setting so seams behave consistently
        across exporters.
        """
        path = self._check_path(filepath)
        mesh = self._read(path)
        data = MeshData(
            vertices=mesh.vertices,
            faces=mesh.faces,
            uv_coords=_uv_of(mesh),
            transform=np.eye(4) if transform is None else transform,
            continuous=continuous,
            name=path.stem,
            filepath=path,
        )
        data.compute_normals()
        return data

    def get_file_info(self, filepath: PathLike) -> dict:
        """Name, format and size of a mesh file, plus counts when it parses."""
        path = Path(filepath)
        if not path.exists():
            raise FileNotFoundError(f"Mesh file not found: {path}")

        ext = path.suffix.lower()
        info = {
            'filename': path.name,
            'format': self.SUPPORTED_FORMATS.get(ext, 'Unknown'),
            'extension': ext,
            'file_size_mb': round(path.stat().st_size / 2 ** 20, 2),
        }
        try:
            mesh = self._read(self._check_path(path))
        except (ValueError, OSError) as e:
            info['error'] = str(e)
            return info

        info['n_vertices'] = len(mesh.vertices)
        info['n_faces'] = len(mesh.faces)
        info['has_uv'] = _uv_of(mesh) is not None
        return info


class MeshProcessor:
    """Writes mapped and optimized meshes."""

    def save_mesh(self, mesh, filepath: PathLike) -> str:
        """
        Export `mesh` (anything with `to_trimesh()`, or a trimesh) to `filepath`.

        The file format follows the extension; parent directories are created.
        """
        path = Path(filepath)
        if hasattr(mesh, "to_trimesh"):
            mesh = mesh.to_trimesh()
        path.parent.mkdir(parents=True, exist_ok=True)
        mesh.export(str(path))
        return str(path)
