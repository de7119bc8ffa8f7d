"""V-carving: depth follows the local width of the region.

For each sample point on a region boundary a ray is cast along the inward
normal to the opposite edge.  The tool centre is placed on that ray at the
largest circle that touches the boundary at the sample point and fits
inside the region (found by bisection, bounded by half the distance to the
opposite edge).  The circle radius ``r`` gives the depth at which a V-bit
with half angle ``a`` cuts exactly to the boundary:
``depth = start_depth + r / tan(a)``.

Depths are clamped at ``flat_depth`` (or the cut depth).  Where clamped,
the tool centre stays on the wall offset instead, and an optional flat tool
clears the floor of the region eroded by the wall width.
"""

from __future__ import annotations

import math
from dataclasses import replace

import numpy as np
from shapely.geometry import LineString, Point
from shapely.geometry.polygon import orient

from ..errors import EmptyGeometryError
from ..geometry import DesignGeometry
from ..offset import offset_region, region_from_geometries
from ..operation import PocketSettings, VCarveSettings
from ..schedule import approach, retract, schedule_passes
from .base import MotionBuilder, MotionPlan
from .context import PlannerContext, level_label
from .pocket import plan_pocket_region
from .utils import iter_points, iter_polygons, polygon_rings, resample

MAX_SAMPLES = 200_000


def _ray_limit(boundary, p: np.ndarray, n: np.ndarray, reach: float) -> float:
    """Half the distance from *p* to the opposite edge along *n*."""
    ray = LineString([p + n * 1e-6, p + n * reach])
    hits = [float(np.hypot(q.x - p[0], q.y - p[1]))
            for q in iter_points(ray.intersection(boundary))]
    hits = [h for h in hits if h > 1e-6]
    return min(hits) / 2.0 if hits else reach / 2.0


def medial_offset(boundary, p: np.ndarray, n: np.ndarray, t_max: float,
                  tolerance: float) -> float:
    """Largest ``t <= t_max`` with ``boundary.distance(p + n t) >= t``.

    ``distance - t`` never increases along the ray, so bisection applies.
    """
    def fits(t: float) -> bool:
        return boundary.distance(Point(*(p + n * t))) >= t - tolerance

    if fits(t_max):
        return t_max
    lo, hi = 0.0, t_max
    while hi - lo > tolerance:
        mid = (lo + hi) / 2.0
        if fits(mid):
            lo = mid
        else:
            hi = mid
    return lo


def carve_ring(ring: np.ndarray, boundary, spacing: float, w_clamp: float,
               reach: float, tolerance: float) -> tuple[np.ndarray, np.ndarray]:
    """Tool centres and their inscribed radii along one boundary ring.

    *ring* must be wound with the region on its left.
    """
    pts = resample(ring, spacing)[:-1]
    prev_pts = np.roll(pts, 1, axis=0)
    next_pts = np.roll(pts, -1, axis=0)
    tangent = next_pts - prev_pts
    norm = np.hypot(tangent[:, 0], tangent[:, 1])
    norm[norm == 0] = 1.0
    tangent /= norm[:, None]
    normals = np.column_stack([-tangent[:, 1], tangent[:, 0]])

    centres = np.empty_like(pts)
    radii = np.empty(len(pts))
    for i, (p, n) in enumerate(zip(pts, normals)):
        t_max = min(_ray_limit(boundary, p, n, reach), w_clamp)
        t = medial_offset(boundary, p, n, t_max, tolerance)
        centres[i] = p + n * t
        radii[i] = t
    return np.vstack([centres, centres[:1]]), np.append(radii, radii[0])


def split_jumps(centres: np.ndarray, depths: np.ndarray, limit: float):
    """Split a centre path wherever consecutive centres are far apart."""
    gaps = np.hypot(*np.diff(centres, axis=0).T) > limit
    cuts = np.flatnonzero(gaps) + 1
    pieces = []
    for c, d in zip(np.split(centres, cuts), np.split(depths, cuts)):
        if len(c) >= 2:
            pieces.append(np.column_stack([c, -d]))
    return pieces


def _cut_pieces(builder: MotionBuilder, pieces, ctx: PlannerContext,
                floor: float) -> None:
    for piece in pieces:
        z = np.maximum(piece[:, 2], floor)
        approach(builder, piece[0][0], piece[0][1], ctx.clearance)
        builder.plunge(z[0], ctx.plunge_rate)
        builder.feed_through(np.column_stack([piece[:, :2], z])[1:], ctx.feed_rate)
        retract(builder, ctx.clearance)


def _flat_pass(region, w: float, settings: VCarveSettings, ctx: PlannerContext,
               source_id: str) -> MotionPlan | None:
    floor = offset_region(region, -w, ctx.tolerance)
    if floor.is_empty:
        return None
    flat_spec = replace(
        ctx.spec,
        tool_id=settings.flat_tool_id,
        settings=PocketSettings(),
        cut_depth=settings.flat_depth,
        depth_per_pass=None,
        feed_rate=None,
        plunge_rate=None,
        spindle_speed=None,
    )
    flat_ctx = PlannerContext.for_spec(flat_spec, ctx.tools, ctx.stock,
                                       ctx.tolerance, ctx.objects, ctx.sink)
    return plan_pocket_region(floor, flat_ctx, source_id, label="Flat area")


def plan_vcarve(geoms: list[DesignGeometry], ctx: PlannerContext) -> list[MotionPlan]:
    """V-carve plans: the optional flat-area clearing first, then the V-bit."""
    settings: VCarveSettings = ctx.settings
    half = ctx.tool.half_angle()
    tan_half = math.tan(half)
    if not geoms:
        raise EmptyGeometryError("v-carve has no source geometry", ctx.spec.id)

    clamp = settings.flat_depth if settings.flat_depth is not None else ctx.params.cut_depth
    w_clamp = max(clamp - settings.start_depth, 0.0) * tan_half
    region = region_from_geometries(geoms, ctx.sink)
    source_id = geoms[0].source_id

    spacing = max(settings.sample_spacing, ctx.tolerance)
    perimeter = sum(p.boundary.length for p in iter_polygons(region))
    if perimeter / spacing > MAX_SAMPLES:
        ctx.sink.warn("iteration_cap",
                      f"v-carve limited to {MAX_SAMPLES} boundary samples", source_id)
        spacing = perimeter / MAX_SAMPLES

    pieces = []
    for poly in iter_polygons(region):
        poly = orient(poly, 1.0)
        xmin, ymin, xmax, ymax = poly.bounds
        reach = math.hypot(xmax - xmin, ymax - ymin) + 1.0
        for ring in polygon_rings(poly):
            centres, radii = carve_ring(ring, poly.boundary, spacing, w_clamp,
                                        reach, ctx.tolerance)
            depths = settings.start_depth + radii / tan_half
            pieces.extend(split_jumps(centres, depths, 3.0 * spacing))

    for g in geoms:
        if not g.closed and not g.is_point:
            ctx.sink.warn("open_path_vcarve",
                          "open path carved along the line at the start depth",
                          g.source_id)
            pts = np.asarray(g.points)
            pieces.append(np.column_stack([pts, np.full(len(pts), -settings.start_depth)]))

    if not pieces:
        raise EmptyGeometryError("v-carve has no carvable geometry", ctx.spec.id)

    plans: list[MotionPlan] = []
    if settings.flat_depth is not None and not region.is_empty:
        if settings.flat_tool_id:
            flat = _flat_pass(region, w_clamp, settings, ctx, source_id)
            if flat is not None:
                plans.append(flat)
        else:
            ctx.sink.warn("flat_area_uncut",
                          "flat depth set without a flat tool; floor left uncut",
                          source_id)

    deepest = max(float(-p[:, 2].min()) for p in pieces)
    builder = ctx.new_builder(pieces[0][0][0], pieces[0][0][1])
    levels = schedule_passes(deepest, ctx.params.depth_per_pass) if deepest > 0 else []
    for level in levels:
        builder.label = f"V-carve {level_label(level, len(levels))}"
        _cut_pieces(builder, pieces, ctx, level.z)
    plans.append(ctx.finish(builder))
    return plans
