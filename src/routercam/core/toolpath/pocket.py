"""Pocket clearing strategies: offset shells, raster zigzag and spiral.

Algorithm per depth level
-------------------------
1. Combine the selected closed outlines into one region (nested outlines
   become islands) and shrink it by the tool radius plus allowance: the
   area the tool center may visit.
2. Fill that area with the chosen pattern.  Offset shells are cut from the
   innermost outward; raster and spiral fills finish with a clean-up pass
   around the boundary.
3. Consecutive paths are linked with a straight feed when the link stays
   inside the area, otherwise the tool retracts and re-enters.
"""

from __future__ import annotations

import math
from dataclasses import dataclass

import numpy as np
from shapely.geometry import LineString, Point
from shapely.geometry.polygon import orient
from shapely.ops import polylabel

from ..errors import ConfigurationError, EmptyGeometryError
from ..geometry import DesignGeometry
from ..offset import inward_shells, offset_region, region_from_geometries
from ..operation import CutDirection, PocketSettings, PocketStrategy, SpiralStart
from ..schedule import retract
from ..tabs import place_tabs, tab_z
from .base import MotionPlan
from .context import PlannerContext, cut_path, level_label, link, nearest_start, side_normal
from .utils import (
    cumulative_lengths,
    iter_lines,
    iter_polygons,
    polygon_rings,
    zigzag_clip,
)

MAX_SPIRAL_POINTS = 200_000


@dataclass
class PocketPath:
    points: np.ndarray
    closed: bool = False
    outer: bool = False     # outermost boundary ring, eligible for tabs


def pocket_ccw(settings: PocketSettings, spindle_clockwise: bool) -> bool:
    """Climb milling with a clockwise spindle runs pocket walls CCW."""
    ccw = settings.direction is CutDirection.CLIMB
    return ccw if spindle_clockwise else not ccw


def _ring_paths(region, ccw: bool, outer: bool) -> list[PocketPath]:
    paths = []
    for poly in iter_polygons(region):
        for ring in polygon_rings(orient(poly, 1.0 if ccw else -1.0)):
            paths.append(PocketPath(ring, closed=True, outer=outer))
    return paths


def offset_paths(region, ctx: PlannerContext, first: float, step: float,
                 ccw: bool, source_id: str) -> list[PocketPath]:
    shells = inward_shells(region, first, step, ctx.tolerance, ctx.sink, source_id)
    paths: list[PocketPath] = []
    for k, shell in reversed(list(enumerate(shells))):
        paths.extend(_ring_paths(shell.region, ccw, outer=k == 0))
    return paths


def raster_paths(allowed, step: float, angle: float, ccw: bool) -> list[PocketPath]:
    paths = [PocketPath(p) for p in zigzag_clip(allowed, step, angle)]
    return paths + _ring_paths(allowed, ccw, outer=True)


def spiral_points(centre: np.ndarray, r_max: float, step: float, ccw: bool,
                  spacing: float) -> np.ndarray:
    """Archimedean spiral from *centre* out to *r_max*, ``step`` per turn.

    Points are spaced roughly evenly along the curve using the arc-length
    approximation ``s = step * theta**2 / (4 pi)``.
    """
    length = math.pi * r_max * r_max / step
    n = max(8, int(math.ceil(length / spacing)))
    s = np.linspace(0.0, length, n + 1)
    theta = np.sqrt(4.0 * math.pi * s / step)
    r = step * theta / (2.0 * math.pi)
    if not ccw:
        theta = -theta
    return np.column_stack([centre[0] + r * np.cos(theta),
                            centre[1] + r * np.sin(theta)])


def spiral_paths(allowed, step: float, ccw: bool, from_corner: bool,
                 ctx: PlannerContext, source_id: str) -> list[PocketPath]:
    paths: list[PocketPath] = []
    for poly in iter_polygons(allowed):
        centre = polylabel(poly, tolerance=ctx.tolerance)
        c = np.array([centre.x, centre.y])
        ext = np.asarray(poly.exterior.coords)
        r_max = float(np.max(np.hypot(ext[:, 0] - c[0], ext[:, 1] - c[1])))
        spacing = max(step / 4.0, ctx.tolerance * 20.0)
        length = math.pi * r_max * r_max / step
        if length / spacing > MAX_SPIRAL_POINTS:
            ctx.sink.warn("iteration_cap",
                          f"spiral limited to {MAX_SPIRAL_POINTS} points", source_id)
            spacing = length / MAX_SPIRAL_POINTS
        pts = spiral_points(c, r_max, step, ccw, spacing)
        spiral = LineString(pts)
        pieces = [np.asarray(ls.coords)[:, :2]
                  for ls in iter_lines(spiral.intersection(poly))]
        pieces.sort(key=lambda p: spiral.project(Point(p[0])))
        if from_corner:
            pieces = [p[::-1] for p in reversed(pieces)]
        paths.extend(PocketPath(p) for p in pieces)
        paths.extend(_ring_paths(poly, ccw, outer=True))
    return paths


def rest_zone(region, ctx: PlannerContext, settings: PocketSettings):
    """Area the current tool still has to visit after a larger tool.

    The previous tool cleared the pocket shrunk by its radius and grown back;
    what remains is widened so the current tool's centre can reach it.
    """
    prev = ctx.tools.require(settings.prev_tool_id)
    r = ctx.tool.radius
    if prev.radius <= r:
        raise ConfigurationError(
            f"rest machining needs a larger previous tool than {ctx.tool.id!r}"
        )
    reach = prev.radius + settings.allowance
    cleared = offset_region(offset_region(region, -reach, ctx.tolerance),
                            prev.radius, ctx.tolerance)
    remainder = region.difference(cleared)
    return offset_region(remainder, max(r, prev.radius - r), ctx.tolerance)


def _clip_to_zone(paths: list[PocketPath], zone) -> list[PocketPath]:
    out: list[PocketPath] = []
    for path in paths:
        for piece in iter_lines(LineString(path.points).intersection(zone)):
            out.append(PocketPath(np.asarray(piece.coords)[:, :2]))
    return out


def plan_pocket(geoms: list[DesignGeometry], ctx: PlannerContext) -> MotionPlan:
    """Build the pocket-clearing motion plan for the resolved *geoms*."""
    source_id = geoms[0].source_id if geoms else ctx.spec.id
    for g in geoms:
        if not g.closed:
            ctx.sink.warn("open_path_ignored", "pocket needs closed outlines", g.source_id)
    region = region_from_geometries(geoms, ctx.sink)
    if region.is_empty:
        raise EmptyGeometryError("pocket has no closed source geometry", ctx.spec.id)
    return plan_pocket_region(region, ctx, source_id, label="Pocket")


def plan_pocket_region(region, ctx: PlannerContext, source_id: str,
                       label: str = "Pocket") -> MotionPlan:
    """Clear *region* (a shapely area) with the pocket settings of *ctx*."""
    settings: PocketSettings = ctx.settings
    levels = ctx.levels()
    ccw = pocket_ccw(settings, ctx.params.spindle_clockwise)
    step = ctx.stepover(settings.stepover)
    first = ctx.tool.radius + settings.allowance
    allowed = offset_region(region, -first, ctx.tolerance)

    if settings.strategy is PocketStrategy.OFFSET:
        paths = offset_paths(region, ctx, first, step, ccw, source_id)
    elif allowed.is_empty:
        ctx.sink.warn("tool_too_large", "tool does not fit inside the pocket", source_id)
        paths = []
    elif settings.strategy is PocketStrategy.RASTER:
        paths = raster_paths(allowed, step, settings.raster_angle, ccw)
    else:
        paths = spiral_paths(allowed, step, ccw,
                             settings.start_point is SpiralStart.CORNER, ctx, source_id)

    if settings.rest_machining:
        paths = _clip_to_zone(paths, rest_zone(region, ctx, settings))

    top = tab_z(ctx.params.cut_depth, settings.tabs.height, ctx.stock.thickness)
    tabs = {}
    for i, path in enumerate(paths):
        if path.outer and path.closed and settings.tabs.enabled:
            tabs[i] = place_tabs(float(cumulative_lengths(path.points)[-1]),
                                 settings.tabs, ctx.sink, source_id)

    builder = ctx.new_builder()
    for level in levels:
        builder.label = f"{label} {level_label(level, len(levels))}"
        for i, path in enumerate(paths):
            pts = path.points
            if path.closed and i not in tabs and builder.z <= level.z + 1e-9:
                pts = nearest_start(pts, builder.position)
            link(ctx, builder, pts[0], level.z, allowed)
            _, side = side_normal(pts, allowed, True)
            cut_path(ctx, builder, pts, level, settings.ramp, side,
                     tabs=tabs.get(i), tab_top=top)
        retract(builder, ctx.clearance)
    return ctx.finish(builder)
