"""Z-plane mesh slicer: trimesh → Shapely polygons.

Waterline roughing of mesh reliefs uses the cross-section of the mesh at
each depth level as the part outline the cutter must stay clear of.
"""

from __future__ import annotations

import warnings
from dataclasses import dataclass
from typing import Sequence

import trimesh
from shapely.geometry import MultiPolygon, Polygon
from shapely.ops import unary_union
from shapely.validation import make_valid


@dataclass
class SliceResult:
    """The 2D cross-section of a mesh at a given Z height."""

    z: float
    polygon: Polygon | MultiPolygon  # may be empty

    @property
    def is_empty(self) -> bool:
        return self.polygon.is_empty


def _path2d_to_shapely(path: trimesh.path.Path2D) -> Polygon | MultiPolygon:
    """Convert a trimesh Path2D (output of section()) to a Shapely geometry."""
    try:
        geom = path.polygons_full
    except (ValueError, IndexError) as exc:
        warnings.warn(f"Section conversion failed: {exc}", stacklevel=3)
        return Polygon()
    if len(geom) == 0:
        return Polygon()
    result = unary_union([make_valid(p) for p in geom])
    return result if result.is_valid else make_valid(result)


def slice_at_heights(
    mesh: trimesh.Trimesh,
    heights: Sequence[float],
) -> list[SliceResult]:
    """Slice *mesh* at each Z value in *heights*.

    Uses ``trimesh.section_multiplane`` for batched slicing (one BVH
    traversal instead of N individual section calls).  Returns one
    SliceResult per height, in order; heights that miss the mesh give an
    empty polygon.
    """
    heights = list(heights)
    if not heights:
        return []

    # With origin=[0,0,0] and normal=[0,0,1], the offsets equal absolute Z
    sections = mesh.section_multiplane(
        plane_origin=[0.0, 0.0, 0.0],
        plane_normal=[0.0, 0.0, 1.0],
        heights=heights,
    )

    results: list[SliceResult] = []
    for z, path2d in zip(heights, sections):
        if path2d is None:
            results.append(SliceResult(z=z, polygon=Polygon()))
        else:
            results.append(SliceResult(z=z, polygon=_path2d_to_shapely(path2d)))
    return results
