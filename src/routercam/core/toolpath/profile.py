"""Profile (contour) strategy.

Each closed outline is offset by the tool radius to the chosen side and the
resulting cutter-centerline rings are traced at every depth level.  Ring
winding follows the requested milling direction: with a clockwise spindle,
climb milling keeps the finished material on the right of the cutter.
"""

from __future__ import annotations

import math
from typing import Optional

import numpy as np
from shapely.geometry.polygon import orient

from ..errors import EmptyGeometryError
from ..geometry import DesignGeometry
from ..offset import offset_geometry
from ..operation import CutDirection, CutSide, LeadSettings, LeadType, ProfileSettings
from ..schedule import PassLevel, approach, plan_entry, retract
from ..tabs import place_tabs, tab_z
from .base import MotionBuilder, MotionPlan
from .context import PlannerContext, cut_path, level_label, side_normal
from .utils import cumulative_lengths, iter_polygons, polygon_rings

_SIDE_SIGN = {CutSide.OUTSIDE: 1.0, CutSide.INSIDE: -1.0, CutSide.ON: 0.0}


def exterior_ccw(settings: ProfileSettings, spindle_clockwise: bool) -> bool:
    """Winding of exterior rings that gives the requested milling direction."""
    ccw = settings.cut_side is CutSide.INSIDE
    if settings.direction is CutDirection.CONVENTIONAL:
        ccw = not ccw
    if not spindle_clockwise:
        ccw = not ccw
    return ccw


def profile_rings(
    geom: DesignGeometry,
    distance: float,
    ccw: bool,
    ctx: PlannerContext,
) -> tuple[list[np.ndarray], object]:
    """Offset *geom* by *distance* and return oriented rings plus the region."""
    result = offset_geometry(geom, distance, ctx.tolerance)
    ctx.sink.extend(result.warnings)
    rings: list[np.ndarray] = []
    for poly in iter_polygons(result.region):
        rings.extend(polygon_rings(orient(poly, 1.0 if ccw else -1.0)))
    return rings, result.region


def _lead_points(
    anchor: np.ndarray,
    tangent: np.ndarray,
    waste: np.ndarray,
    waste_left: bool,
    lead: LeadSettings,
    entering: bool,
) -> Optional[tuple[np.ndarray, Optional[tuple]]]:
    """Start (lead-in) or end (lead-out) point of a lead plus its arc.

    Returns ``(point, arc)`` where ``arc`` is ``(cx, cy, clockwise)`` for arc
    leads and ``None`` for straight ones.
    """
    length = lead.length
    if lead.lead_type is LeadType.NONE or length <= 0:
        return None
    if lead.lead_type is LeadType.TANGENT:
        sign = -1.0 if entering else 1.0
        return anchor + tangent * length * sign, None
    if lead.lead_type is LeadType.PERPENDICULAR:
        return anchor + waste * length, None
    centre = anchor + waste * length
    # Quarter arc tangent to the path at the anchor, bulging into the waste
    point = centre - tangent * length if entering else centre + tangent * length
    return point, (float(centre[0]), float(centre[1]), not waste_left)


def _direction(a: np.ndarray, b: np.ndarray) -> np.ndarray:
    d = b - a
    n = math.hypot(d[0], d[1])
    return d / n if n > 1e-12 else np.array([1.0, 0.0])


def _cut_ring_level(
    ctx: PlannerContext,
    builder: MotionBuilder,
    ring: np.ndarray,
    region,
    level: PassLevel,
    settings: ProfileSettings,
    waste_inside: bool,
    tabs,
    tab_top: float,
) -> bool:
    """Cut a closed *ring* at one level.  Returns True when leads were cut."""
    waste, side = side_normal(ring, region, waste_inside)
    lead_in = _lead_points(ring[0], _direction(ring[0], ring[1]), waste,
                           side > 0, settings.lead_in, True)
    # Reading the ring backwards flips which side counts as left
    end_waste, end_side = side_normal(ring[::-1], region, waste_inside)
    lead_out = _lead_points(ring[-1], _direction(ring[-2], ring[-1]), end_waste,
                            end_side < 0, settings.lead_out, False)

    if lead_in is None:
        cut_path(ctx, builder, ring, level, settings.ramp, side,
                 tabs=tabs, tab_top=tab_top)
    else:
        start, arc = lead_in
        approach(builder, start[0], start[1], ctx.clearance)
        plan_entry(builder, None, level, settings.ramp, ctx.clearance)
        _lead_move(ctx, builder, ring[0], arc, level.z)
        cut_path(ctx, builder, ring, level, tabs=tabs, tab_top=tab_top)

    if lead_out is not None:
        end, arc = lead_out
        _lead_move(ctx, builder, end, arc, level.z)
    return lead_in is not None or lead_out is not None


def _lead_move(ctx, builder, target, arc, z) -> None:
    if arc is None:
        builder.feed(target[0], target[1], z, feed=ctx.feed_rate)
    else:
        builder.arc(target[0], target[1], arc[0], arc[1], arc[2], ctx.feed_rate, z=z)


def _trace(
    ctx: PlannerContext,
    builder: MotionBuilder,
    rings: list[np.ndarray],
    region,
    levels: list[PassLevel],
    settings: ProfileSettings,
    source_id: str,
    label: str,
) -> None:
    waste_inside = settings.cut_side is CutSide.INSIDE
    top = tab_z(ctx.params.cut_depth, settings.tabs.height, ctx.stock.thickness)
    for ring in rings:
        tabs = place_tabs(float(cumulative_lengths(ring)[-1]), settings.tabs,
                          ctx.sink, source_id)
        for level in levels:
            builder.label = f"{label} {level_label(level, len(levels))}"
            with_leads = _cut_ring_level(
                ctx, builder, ring, region, level, settings,
                waste_inside, tabs, top,
            )
            if with_leads:
                retract(builder, ctx.clearance)
        retract(builder, ctx.clearance)


def plan_profile(geoms: list[DesignGeometry], ctx: PlannerContext) -> MotionPlan:
    """Build the profile motion plan for the resolved *geoms*."""
    settings: ProfileSettings = ctx.settings
    if not geoms:
        raise EmptyGeometryError("profile has no source geometry", ctx.spec.id)
    levels = ctx.levels()
    ccw = exterior_ccw(settings, ctx.params.spindle_clockwise)
    sign = _SIDE_SIGN[settings.cut_side]
    radius = ctx.tool.radius
    finishing = settings.final_pass and sign != 0.0
    builder = ctx.new_builder()

    for geom in geoms:
        if geom.is_point:
            ctx.sink.warn("unsupported_geometry", "point ignored by profile", geom.source_id)
            continue
        if not geom.closed:
            if settings.cut_side is not CutSide.ON:
                ctx.sink.warn("open_path_on_line",
                              "open path cut on the line", geom.source_id)
            pts = np.asarray(geom.points)
            for level in levels:
                builder.label = level_label(level, len(levels))
                cut_path(ctx, builder, pts, level, settings.ramp)
                retract(builder, ctx.clearance)
            continue

        rough_extra = settings.final_pass_allowance if finishing else 0.0
        distance = sign * (radius + settings.allowance + rough_extra)
        rings, region = profile_rings(geom, distance, ccw, ctx)
        _trace(ctx, builder, rings, region, levels, settings, geom.source_id, "Profile")

        if finishing:
            distance = sign * (radius + settings.allowance)
            rings, region = profile_rings(geom, distance, ccw, ctx)
            _trace(ctx, builder, rings, region, levels[-1:], settings,
                   geom.source_id, "Final pass")

    return ctx.finish(builder)
