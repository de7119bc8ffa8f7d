"""Facing: level the stock top with a zigzag raster."""

from __future__ import annotations

import numpy as np
from shapely.geometry import box

from ..geometry import DesignGeometry
from ..operation import FacingSettings
from ..schedule import retract
from .base import MotionPlan
from .context import PlannerContext, cut_path, level_label, link
from .utils import polygon_rings, zigzag_clip


def facing_region(geoms: list[DesignGeometry], ctx: PlannerContext):
    """Stock footprint, or the selection bounds, grown by the boundary offset."""
    settings: FacingSettings = ctx.settings
    if geoms:
        pts = np.vstack([g.points for g in geoms])
        xmin, ymin = pts.min(axis=0)
        xmax, ymax = pts.max(axis=0)
    else:
        xmin, ymin, xmax, ymax = ctx.stock.bounds_2d
    off = settings.boundary_offset
    return box(xmin - off, ymin - off, xmax + off, ymax + off)


def plan_facing(geoms: list[DesignGeometry], ctx: PlannerContext) -> MotionPlan:
    settings: FacingSettings = ctx.settings
    region = facing_region(geoms, ctx)
    step = ctx.stepover(settings.stepover)
    lines = zigzag_clip(region, step, settings.raster_angle)
    # Boundary pass picks up the strip the last raster line misses
    lines.extend(polygon_rings(region))
    reach = region.buffer(step)

    levels = ctx.levels()
    builder = ctx.new_builder(lines[0][0][0], lines[0][0][1])
    for level in levels:
        builder.label = f"Facing {level_label(level, len(levels))}"
        for pts in lines:
            link(ctx, builder, pts[0], level.z, reach)
            cut_path(ctx, builder, pts, level)
        retract(builder, ctx.clearance)
    return ctx.finish(builder)
