"""Drilling cycles: simple, peck and chip-break.

Hole positions come from point markers or from the centroid of closed
outlines.  Cycles are expanded into explicit moves rather than canned
cycles so every supported dialect can run them.
"""

from __future__ import annotations

import numpy as np

from ..errors import ConfigurationError, EmptyGeometryError
from ..geometry import DesignGeometry
from ..operation import DrillCycle, DrillSettings
from ..schedule import approach, retract
from .base import MotionBuilder, MotionPlan
from .context import PlannerContext
from .utils import nearest_neighbor_order


def hole_positions(geoms: list[DesignGeometry], ctx: PlannerContext) -> list[np.ndarray]:
    points = []
    for g in geoms:
        if g.is_point:
            points.append(np.array(g.points[0]))
        elif g.closed:
            c = g.as_polygon().centroid
            points.append(np.array([c.x, c.y]))
        else:
            ctx.sink.warn("unsupported_geometry",
                          "open path has no drill position", g.source_id)
    return points


def _drill_hole(builder: MotionBuilder, settings: DrillSettings,
                ctx: PlannerContext, bottom: float) -> None:
    clearance = ctx.clearance
    plunge = ctx.plunge_rate
    if settings.cycle is DrillCycle.SIMPLE:
        builder.plunge(bottom, plunge)
    else:
        if settings.peck_depth <= 0:
            raise ConfigurationError("peck depth must be positive")
        depth = 0.0
        while True:
            depth = min(depth + settings.peck_depth, -bottom)
            target = -depth
            builder.plunge(target, plunge)
            if target <= bottom + 1e-9:
                break
            if settings.cycle is DrillCycle.PECK:
                builder.retract(clearance.retract_height)
            else:
                builder.retract(target + settings.peck_retract)
    builder.dwell(settings.dwell)
    retract(builder, clearance)


def plan_drill(geoms: list[DesignGeometry], ctx: PlannerContext) -> MotionPlan:
    """One plunge-retract cycle per hole position."""
    settings: DrillSettings = ctx.settings
    points = hole_positions(geoms, ctx)
    if not points:
        raise EmptyGeometryError("drill has no hole positions", ctx.spec.id)
    if settings.optimize_order:
        points = [points[i] for i in nearest_neighbor_order(points)]

    bottom = -ctx.params.cut_depth
    builder = ctx.new_builder(points[0][0], points[0][1])
    if bottom >= 0:
        return ctx.finish(builder)
    for n, p in enumerate(points, start=1):
        builder.label = f"Hole {n}"
        approach(builder, p[0], p[1], ctx.clearance)
        _drill_hole(builder, settings, ctx, bottom)
    return ctx.finish(builder)
