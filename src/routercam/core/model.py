"""Mesh loading via trimesh with repair, and conversion to height fields.

Supports STL, OBJ, PLY, OFF, and other trimesh-compatible formats.
"""

from __future__ import annotations

import warnings
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

import numpy as np
import trimesh

from .design import MeshObject
from .heightfield import HeightField

# Formats trimesh can load natively
SUPPORTED_EXTENSIONS = {
    ".stl", ".obj", ".ply", ".off", ".glb", ".gltf", ".3mf",
}

DEFAULT_PITCH = 0.5  # mm, height-field grid spacing for meshes


@dataclass
class MeshModel:
    """Loaded and (optionally) repaired mesh model."""

    mesh: trimesh.Trimesh
    source_path: Path
    was_repaired: bool = False

    @property
    def bounds(self) -> np.ndarray:
        return self.mesh.bounds

    @property
    def extents(self) -> np.ndarray:
        return self.mesh.extents

    @property
    def z_min(self) -> float:
        return float(self.mesh.bounds[0, 2])

    @property
    def z_max(self) -> float:
        return float(self.mesh.bounds[1, 2])

    def translate_to_origin(self) -> None:
        self.mesh.apply_translation(-self.mesh.bounds[0])

    def place_for_relief(
        self,
        x: float = 0.0,
        y: float = 0.0,
        depth: Optional[float] = None,
    ) -> None:
        """Move the lower-left corner to ``(x, y)`` and the top to Z=0.

        With *depth*, the model is first scaled in Z to that height.
        """
        self.translate_to_origin()
        height = float(self.extents[2])
        if depth is not None and depth > 0 and height > 0:
            scale = np.eye(4)
            scale[2, 2] = depth / height
            self.mesh.apply_transform(scale)
            height = depth
        self.mesh.apply_translation([x, y, -height])


def load_mesh(path: Path, repair: bool = True) -> MeshModel:
    """Load a mesh from *path* (STL, OBJ, PLY, OFF, 3MF, etc.).

    Raises FileNotFoundError or ValueError on failure.
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Mesh file not found: {path}")

    mesh = trimesh.load(str(path), force="mesh")
    if not isinstance(mesh, trimesh.Trimesh):
        raise ValueError(f"Could not load a single mesh from {path}")

    was_repaired = False
    if repair and not mesh.is_watertight:
        trimesh.repair.fill_holes(mesh)
        trimesh.repair.fix_winding(mesh)
        trimesh.repair.fix_normals(mesh)
        if not mesh.is_watertight:
            warnings.warn(
                f"Mesh '{path.name}' is not watertight after repair. "
                "Height fields and slices may be incomplete.",
                UserWarning,
                stacklevel=2,
            )
        was_repaired = True

    return MeshModel(mesh=mesh, source_path=path, was_repaired=was_repaired)


def load_relief(obj: MeshObject, base_dir: Optional[Path] = None) -> MeshModel:
    """Load the mesh behind *obj* and place it as a relief under the stock top."""
    path = Path(obj.path)
    if base_dir is not None and not path.is_absolute():
        path = base_dir / path
    model = load_mesh(path)
    model.place_for_relief(obj.transform.x, obj.transform.y, obj.depth)
    return model


def to_height_field(model: MeshModel, pitch: float = DEFAULT_PITCH) -> HeightField:
    """Rasterise the top surface of *model* on a grid of spacing *pitch*.

    The mesh is voxelised and the highest filled voxel of each column gives
    the surface.  Columns the model does not cover read as its bottom.
    """
    if pitch <= 0:
        raise ValueError("pitch must be positive")
    (xmin, ymin, zmin), (xmax, ymax, zmax) = model.bounds
    nx = max(2, int(np.ceil((xmax - xmin) / pitch)) + 1)
    ny = max(2, int(np.ceil((ymax - ymin) / pitch)) + 1)

    points = model.mesh.voxelized(pitch).points
    z = np.full((ny, nx), float(zmin))
    covered = np.zeros((ny, nx), dtype=bool)
    if len(points):
        ix = np.clip(np.rint((points[:, 0] - xmin) / pitch).astype(int), 0, nx - 1)
        iy = np.clip(np.rint((points[:, 1] - ymin) / pitch).astype(int), 0, ny - 1)
        # Voxel centres sit half a pitch below the surface they represent
        top = np.minimum(points[:, 2] + pitch / 2.0, zmax)
        np.maximum.at(z, (iy, ix), top)
        covered[iy, ix] = True

    return HeightField(z, float(xmin), float(ymin), pitch, pitch,
                       outside=float(zmin), mask=covered)
