"""Engraving: follow the geometry itself at a constant depth."""

from __future__ import annotations

import numpy as np

from ..errors import EmptyGeometryError
from ..geometry import DesignGeometry
from ..operation import EngraveSettings
from ..schedule import retract, schedule_passes
from .base import MotionPlan
from .context import PlannerContext, cut_path, level_label


def plan_engrave(geoms: list[DesignGeometry], ctx: PlannerContext) -> MotionPlan:
    """Trace every path on the line.

    With ``multi_pass`` the depth is reached over repeated full traversals of
    at most ``depth_per_pass`` each; otherwise in a single pass.
    """
    settings: EngraveSettings = ctx.settings
    paths = []
    for g in geoms:
        if g.is_point:
            ctx.sink.warn("unsupported_geometry", "point ignored by engrave", g.source_id)
        else:
            paths.append(np.asarray(g.points))
    if not paths:
        raise EmptyGeometryError("engrave has no source paths", ctx.spec.id)

    depth = ctx.params.cut_depth if settings.depth is None else settings.depth
    step = ctx.params.depth_per_pass if settings.multi_pass else max(depth, 1e-9)
    levels = schedule_passes(depth, step)

    builder = ctx.new_builder(paths[0][0][0], paths[0][0][1])
    for level in levels:
        builder.label = f"Engrave {level_label(level, len(levels))}"
        for pts in paths:
            cut_path(ctx, builder, pts, level)
            retract(builder, ctx.clearance)
    return ctx.finish(builder)
