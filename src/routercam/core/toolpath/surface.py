"""3D roughing and finishing over height-field reliefs.

The relief (a normalised height map or a mesh rasterised by voxelisation)
is converted into tool-tip heights by drop-cutter compensation.  Scan
patterns are generated in XY inside the scan boundary, densified to the
grid pitch and lifted onto the compensated surface, so no point of the
cutter ever dips below the relief.

Roughing clamps every point at ``max(level, tip + stock_to_leave)`` for
each depth level; finishing follows the tip surface directly.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Callable, Optional

import numpy as np
from shapely.geometry import LineString, Point
from shapely.ops import polylabel

from ..design import HeightMapObject, MeshObject
from ..errors import ConfigurationError, EmptyGeometryError
from ..geometry import DesignGeometry, resolve_object
from ..heightfield import HeightField, cusp_stepover, effective_radius
from ..model import DEFAULT_PITCH, MeshModel, load_relief, to_height_field
from ..offset import inward_shells, offset_region, region_from_geometries
from ..operation import (
    Boundary3D,
    Finish3DSettings,
    FinishPattern,
    Rough3DSettings,
    RoughPattern,
)
from ..schedule import PassLevel, approach, retract, schedule_passes
from ..slicer import slice_at_heights
from .base import MotionBuilder, MotionPlan
from .context import PlannerContext, level_label
from .pocket import spiral_points
from .utils import iter_lines, iter_polygons, polygon_rings, resample, zigzag_clip

MAX_SCAN_POINTS = 2_000_000


@dataclass
class ReliefSource:
    surface: HeightField
    source_id: str
    mesh: Optional[MeshModel] = None


def load_source(ctx: PlannerContext, resolution: Optional[float]):
    """The selected relief plus any selected vector geometry.

    Vector geometry only serves as a ``selection`` scan boundary.
    """
    relief: Optional[ReliefSource] = None
    selection: list[DesignGeometry] = []
    for oid in ctx.spec.source_ids:
        obj = ctx.objects.get(oid)
        if obj is None:
            raise ConfigurationError(f"Unknown source object id: {oid!r}")
        if isinstance(obj, (HeightMapObject, MeshObject)):
            if relief is not None:
                ctx.sink.warn("multiple_reliefs",
                              "only the first selected relief is machined", oid)
                continue
            if isinstance(obj, HeightMapObject):
                relief = ReliefSource(HeightField.from_height_map(obj), oid)
            else:
                try:
                    model = load_relief(obj)
                    field = to_height_field(model, resolution or DEFAULT_PITCH)
                except (FileNotFoundError, ValueError) as exc:
                    raise ConfigurationError(str(exc)) from exc
                relief = ReliefSource(field, oid, model)
        else:
            selection.extend(resolve_object(obj, ctx.tolerance, ctx.sink))
    if relief is None:
        raise EmptyGeometryError("no height map or mesh selected", ctx.spec.id)
    return relief, selection


def scan_boundary(settings, ctx: PlannerContext, relief: ReliefSource,
                  selection: list[DesignGeometry]):
    if settings.boundary is Boundary3D.STOCK:
        region = ctx.stock.as_shapely_polygon()
    elif settings.boundary is Boundary3D.SELECTION:
        region = region_from_geometries(selection, ctx.sink)
        if region.is_empty:
            ctx.sink.warn("empty_selection",
                          "no closed selection outline; using the model boundary",
                          relief.source_id)
            region = relief.surface.footprint()
    else:
        region = relief.surface.footprint()
    region = offset_region(region, settings.boundary_offset, ctx.tolerance)
    if region.is_empty:
        raise EmptyGeometryError("scan boundary is empty", relief.source_id)
    return region


def _centre_and_reach(poly) -> tuple[np.ndarray, float]:
    c = polylabel(poly, tolerance=0.1)
    ext = np.asarray(poly.exterior.coords)
    centre = np.array([c.x, c.y])
    return centre, float(np.max(np.hypot(ext[:, 0] - centre[0], ext[:, 1] - centre[1])))


def _clip(line: np.ndarray, region) -> list[np.ndarray]:
    return [np.asarray(ls.coords)[:, :2]
            for ls in iter_lines(LineString(line).intersection(region))]


def spiral_scan(region, step: float, spacing: float) -> list[np.ndarray]:
    out = []
    for poly in iter_polygons(region):
        centre, reach = _centre_and_reach(poly)
        spiral = spiral_points(centre, reach, step, True, spacing)
        pieces = _clip(spiral, poly)
        line = LineString(spiral)
        pieces.sort(key=lambda p: line.project(Point(p[0])))
        out.extend(pieces)
    return out


def radial_scan(region, step: float) -> list[np.ndarray]:
    out = []
    for poly in iter_polygons(region):
        centre, reach = _centre_and_reach(poly)
        spokes = max(8, int(math.ceil(2 * math.pi * reach / step)))
        for k in range(spokes):
            a = 2 * math.pi * k / spokes
            tip = centre + reach * np.array([math.cos(a), math.sin(a)])
            spoke = np.vstack([centre, tip])
            for piece in _clip(spoke, poly):
                out.append(piece[::-1] if k % 2 else piece)
    return out


def contour_scan(region, step: float, ctx: PlannerContext, source_id: str) -> list[np.ndarray]:
    rings = []
    for shell in inward_shells(region, 0.0, step, ctx.tolerance, ctx.sink, source_id):
        rings.extend(shell.rings())
    return rings


def pencil_scan(surface: HeightField, region, threshold: float) -> list[np.ndarray]:
    """Row and column runs through valley cells (positive Laplacian)."""
    valleys = surface.laplacian() > threshold
    out = []
    for i in range(surface.ny):
        out.extend(_runs(valleys[i], surface.x0, surface.dx,
                         lambda v, y=surface.y0 + i * surface.dy: (v, y)))
    for j in range(surface.nx):
        out.extend(_runs(valleys[:, j], surface.y0, surface.dy,
                         lambda v, x=surface.x0 + j * surface.dx: (x, v)))
    clipped = []
    for seg in out:
        clipped.extend(_clip(seg, region))
    return clipped


def _runs(flags: np.ndarray, origin: float, pitch: float, point) -> list[np.ndarray]:
    edges = np.diff(np.concatenate([[0], flags.astype(np.int8), [0]]))
    starts = np.flatnonzero(edges == 1)
    ends = np.flatnonzero(edges == -1) - 1
    runs = []
    for a, b in zip(starts, ends):
        if b > a:
            runs.append(np.array([point(origin + a * pitch), point(origin + b * pitch)]))
    return runs


def _lift(paths: list[np.ndarray], zfun: Callable, spacing: float) -> list[np.ndarray]:
    lifted = []
    for p in paths:
        if len(p) < 2:
            continue
        dense = resample(np.asarray(p, dtype=float)[:, :2], spacing)
        lifted.append(np.column_stack([dense, zfun(dense[:, 0], dense[:, 1])]))
    return lifted


def _scan_spacing(surface: HeightField, paths: list[np.ndarray], ctx, source_id) -> float:
    spacing = surface.pitch
    total = sum(float(np.sum(np.hypot(*np.diff(p, axis=0).T))) for p in paths if len(p) > 1)
    if total / spacing > MAX_SCAN_POINTS:
        ctx.sink.warn("iteration_cap",
                      f"scan limited to {MAX_SCAN_POINTS} points", source_id)
        spacing = total / MAX_SCAN_POINTS
    return spacing


def _cut_3d(ctx: PlannerContext, builder: MotionBuilder, paths: list[np.ndarray],
            zfun: Callable, link_limit: float, spacing: float) -> None:
    """Cut lifted paths, linking nearby ends along the surface."""
    clearance = ctx.clearance
    for pts in paths:
        here = builder.position
        gap = float(np.hypot(*(pts[0][:2] - here[:2])))
        if here[2] < clearance.retract_height and gap <= link_limit:
            link = resample(np.vstack([here[:2], pts[0][:2]]), spacing)
            builder.feed_through(
                np.column_stack([link, zfun(link[:, 0], link[:, 1])])[1:], ctx.feed_rate)
        else:
            retract(builder, clearance)
            approach(builder, pts[0][0], pts[0][1], clearance)
            builder.plunge(pts[0][2], ctx.plunge_rate)
        builder.feed_through(pts[1:], ctx.feed_rate)


def _rough_region(level: PassLevel, tip: HeightField, leave: float, boundary,
                  relief: ReliefSource, ctx: PlannerContext):
    """Area where the tool can reach the level floor at this depth."""
    if relief.mesh is not None:
        part = slice_at_heights(relief.mesh.mesh, [level.z + leave])[0].polygon
        keep_out = offset_region(part, ctx.tool.radius + leave, ctx.tolerance)
        return boundary.difference(keep_out)
    reach = tip.cells_region(tip.z + leave <= level.z + 1e-9)
    return boundary.intersection(reach)


def plan_rough_3d(geoms: list[DesignGeometry], ctx: PlannerContext) -> MotionPlan:
    """Layered roughing of a relief down to the surface plus stock to leave."""
    settings: Rough3DSettings = ctx.settings
    relief, selection = load_source(ctx, settings.resolution)
    boundary = scan_boundary(settings, ctx, relief, selection)
    tip = relief.surface.compensate(ctx.tool)
    leave = settings.stock_to_leave
    step = ctx.stepover(settings.stepover)

    deepest = max(0.0, -(tip.z_min + leave))
    levels = schedule_passes(deepest, ctx.params.depth_per_pass) if deepest > 0 else []
    if not levels:
        ctx.sink.warn("nothing_to_cut", "relief lies above the roughing floor",
                      relief.source_id)

    builder = ctx.new_builder()
    for level in levels:
        builder.label = f"3D rough {level_label(level, len(levels))}"

        def zfun(x, y, floor=level.z):
            return np.maximum(floor, tip.sample(x, y) + leave)

        if settings.pattern is RoughPattern.RASTER:
            paths = zigzag_clip(boundary, step, settings.raster_angle)
        else:
            region = _rough_region(level, tip, leave, boundary, relief, ctx)
            if settings.pattern is RoughPattern.OFFSET:
                paths = contour_scan(region, step, ctx, relief.source_id)
            else:
                paths = [r for poly in iter_polygons(region) for r in polygon_rings(poly)]
        spacing = _scan_spacing(tip, paths, ctx, relief.source_id)
        lifted = [p for p in _lift(paths, zfun, spacing)
                  if float(p[:, 2].min()) < level.top - 1e-9]
        _cut_3d(ctx, builder, lifted, zfun, 2.0 * step, spacing)
        retract(builder, ctx.clearance)
    return ctx.finish(builder)


def finish_stepover(settings: Finish3DSettings, ctx: PlannerContext) -> float:
    """Stepover from the cusp height when set and the tool has a round tip."""
    if settings.cusp_height is not None and settings.cusp_height > 0:
        radius = effective_radius(ctx.tool)
        if radius > 0:
            return cusp_stepover(radius, settings.cusp_height)
        ctx.sink.warn("cusp_ignored",
                      "cusp height needs a ball or bull-nose tool; using stepover",
                      ctx.spec.id)
    return ctx.stepover(settings.stepover)


def plan_finish_3d(geoms: list[DesignGeometry], ctx: PlannerContext) -> MotionPlan:
    """Single-layer finishing pass following the compensated surface."""
    settings: Finish3DSettings = ctx.settings
    relief, selection = load_source(ctx, settings.resolution)
    boundary = scan_boundary(settings, ctx, relief, selection)
    tip = relief.surface.compensate(ctx.tool)
    step = finish_stepover(settings, ctx)

    pattern = settings.pattern
    if pattern is FinishPattern.RASTER:
        paths = zigzag_clip(boundary, step, settings.raster_angle)
    elif pattern is FinishPattern.SPIRAL:
        paths = spiral_scan(boundary, step, max(tip.pitch, step / 4.0))
    elif pattern is FinishPattern.RADIAL:
        paths = radial_scan(boundary, step)
    elif pattern is FinishPattern.SCALLOP:
        paths = contour_scan(boundary, step, ctx, relief.source_id)
    else:
        paths = pencil_scan(relief.surface, boundary, settings.pencil_threshold)
        if not paths:
            ctx.sink.warn("no_valleys", "no concave areas found for pencil finishing",
                          relief.source_id)

    spacing = _scan_spacing(tip, paths, ctx, relief.source_id)
    lifted = _lift(paths, tip.sample, spacing)
    builder = ctx.new_builder()
    builder.label = f"3D finish {pattern.value}"
    _cut_3d(ctx, builder, lifted, tip.sample, 2.0 * step, spacing)
    return ctx.finish(builder)
