"""
Scene description files (JSON).

Example::

    {
      "viewpoint": [0, 0, 0],
      "object": {"builtin": "grid", "nx": 3, "ny": 3, "position": [0, 0, 8]},
      "mirrors": [{"type": "curved", "radius": 1.5, "position": [0, 0, 5]}],
      "occluders": [{"path": "wall.obj"}],
      "mapping": {"max_reflections": 1},
      "optimizer": {"method": "greedy"},
      "experiment": {"deformation": "single"}
    }

Mesh paths are resolved relative to the scene file.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
import json
import logging
from pathlib import Path
from typing import Any, Optional

import numpy as np

from .errors import ConfigError
from .mesh_loader import MeshData, MeshLoader
from .mirrors import build_mirror, translation_matrix
from .primitives import build_builtin
from .raycaster import SceneRaycaster
from .settings import (
    ExperimentSettings,
    MappingSettings,
    OptimizerSettings,
    load_mapping_defaults,
    load_optimizer_defaults,
    settings_from_dict,
)


_LOGGER = logging.getLogger(__name__)

OCCLUDER_CATEGORY = "occluder"


@dataclass
class Scene:
    viewpoint: np.ndarray
    source: MeshData
    mirrors: list[MeshData] = field(default_factory=list)
    occluders: list[MeshData] = field(default_factory=list)
    mapping: MappingSettings = field(default_factory=MappingSettings)
    optimizer: OptimizerSettings = field(default_factory=OptimizerSettings)
    experiment: ExperimentSettings = field(default_factory=ExperimentSettings)
    path: Optional[Path] = None

    def build_raycaster(self) -> SceneRaycaster:
        raycaster = SceneRaycaster()
        for mirror in self.mirrors:
            raycaster.add_surface(mirror, category=self.mapping.mirror_category)
        for occluder in self.occluders:
            raycaster.add_surface(occluder, category=OCCLUDER_CATEGORY)
        return raycaster


def _transform_of(entry: dict[str, Any]) -> Optional[np.ndarray]:
    if entry.get("matrix") is not None:
        return np.asarray(entry["matrix"], dtype=np.float64).reshape(4, 4)
    if entry.get("position") is not None:
        return translation_matrix(entry["position"])
    return None


def _load_mesh_entry(entry: dict[str, Any], base_dir: Path, loader: MeshLoader, *, continuous: bool) -> MeshData:
    path = Path(str(entry["path"]))
    if not path.is_absolute():
        path = base_dir / path
    mesh = loader.load(path, continuous=bool(entry.get("continuous", continuous)), transform=_transform_of(entry))
    if entry.get("name"):
        mesh.name = str(entry["name"])
    return mesh


def _build_object(entry: dict[str, Any], base_dir: Path, loader: MeshLoader) -> MeshData:
    if not isinstance(entry, dict):
        raise ConfigError("Scene 'object' must be a JSON object")
    if "path" in entry:
        return _load_mesh_entry(entry, base_dir, loader, continuous=False)
    if "builtin" in entry:
        kwargs = {k: v for k, v in entry.items() if k != "builtin"}
        try:
            return build_builtin(entry["builtin"], **kwargs)
        except (TypeError, ValueError) as e:
            raise ConfigError(f"Invalid builtin object: {e}") from e
    raise ConfigError("Scene 'object' needs either 'path' or 'builtin'")


def _build_mirror(entry: dict[str, Any], base_dir: Path, loader: MeshLoader) -> MeshData:
    if not isinstance(entry, dict):
        raise ConfigError("Scene mirror entries must be JSON objects")
    if "path" in entry:
        return _load_mesh_entry(entry, base_dir, loader, continuous=True)
    try:
        return build_mirror(entry)
    except (TypeError, ValueError) as e:
        raise ConfigError(f"Invalid mirror: {e}") from e


def _layered(cls, defaults, data: Any):
    if data is None:
        return defaults
    if not isinstance(data, dict):
        raise ConfigError(f"{cls.__name__} section must be a JSON object")
    return settings_from_dict(cls, {**asdict(defaults), **data})


def scene_from_dict(doc: dict[str, Any], base_dir: Optional[Path] = None) -> Scene:
    if not isinstance(doc, dict):
        raise ConfigError("Invalid scene document (expected JSON object)")
    base = Path(base_dir) if base_dir is not None else Path.cwd()
    loader = MeshLoader()

    viewpoint = np.asarray(doc.get("viewpoint", [0.0, 0.0, 0.0]), dtype=np.float64)
    if viewpoint.shape != (3,):
        raise ConfigError(f"viewpoint must have 3 components, got {viewpoint.tolist()}")
    if "object" not in doc:
        raise ConfigError("Scene has no 'object'")

    mirrors = [_build_mirror(m, base, loader) for m in doc.get("mirrors", [])]
    if not mirrors:
        raise ConfigError("Scene has no mirrors")
    occluders = []
    for entry in doc.get("occluders", []):
        if not isinstance(entry, dict):
            raise ConfigError("Scene occluder entries must be JSON objects")
        occluders.append(_build_mirror(entry, base, loader))

    scene = Scene(
        viewpoint=viewpoint,
        source=_build_object(doc["object"], base, loader),
        mirrors=mirrors,
        occluders=occluders,
        mapping=_layered(MappingSettings, load_mapping_defaults(), doc.get("mapping")),
        optimizer=_layered(OptimizerSettings, load_optimizer_defaults(), doc.get("optimizer")),
        experiment=_layered(ExperimentSettings, ExperimentSettings(), doc.get("experiment")),
    )
    _LOGGER.info(
        "Scene loaded: object=%s (%d vertices), %d mirrors, %d occluders",
        scene.source.name,
        scene.source.n_vertices,
        len(scene.mirrors),
        len(scene.occluders),
    )
    return scene


def load_scene(path: str | Path) -> Scene:
    in_path = Path(path)
    if not in_path.exists():
        raise FileNotFoundError(str(in_path))
    try:
        doc = json.loads(in_path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as e:
        raise ConfigError(f"Invalid scene JSON: {e}") from e
    scene = scene_from_dict(doc, base_dir=in_path.parent)
    scene.path = in_path
    return scene
