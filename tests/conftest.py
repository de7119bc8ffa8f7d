"""Shared fixtures: a small tool library, stock, and a planner runner."""

import pytest

from routercam.core.errors import WarningSink
from routercam.core.geometry import index_objects, resolve_sources
from routercam.core.operation import ToolpathSpec
from routercam.core.stock import Stock
from routercam.core.tool import Tool, ToolLibrary, ToolType
from routercam.core.toolpath.base import MoveType
from routercam.core.toolpath.context import PlannerContext


@pytest.fixture
def tools() -> ToolLibrary:
    return ToolLibrary.in_memory([
        Tool("flat-6", "6 mm flat", ToolType.FLAT_ENDMILL, 6.0, number=1,
             default_feed_rate=1500.0, default_plunge_rate=500.0,
             default_depth_per_pass=2.0),
        Tool("flat-3", "1/8 in flat", ToolType.FLAT_ENDMILL, 3.175, number=2),
        Tool("ball-6", "6 mm ball", ToolType.BALL_ENDMILL, 6.0, number=3,
             default_stepover=15.0),
        Tool("vbit-90", "90 deg V-bit", ToolType.V_BIT, 12.7, number=5,
             tip_angle=90.0),
        Tool("drill-3", "3 mm drill", ToolType.DRILL, 3.0, number=6,
             tip_angle=118.0),
    ])


@pytest.fixture
def stock() -> Stock:
    return Stock(x_size=200.0, y_size=150.0, thickness=12.0)


@pytest.fixture
def run_planner(tools, stock):
    """Run *planner* over *objects* and return ``(result, warnings)``."""
    def run(planner, objects, settings, tool_id="flat-6", **spec_kw):
        spec = ToolpathSpec(id="tp", name="Test", tool_id=tool_id,
                            settings=settings,
                            source_ids=[o.id for o in objects], **spec_kw)
        sink = WarningSink()
        index = index_objects(objects)
        geoms = resolve_sources(index, spec.source_ids, sink=sink)
        ctx = PlannerContext.for_spec(spec, tools, stock, objects=index, sink=sink)
        return planner(geoms, ctx), sink
    return run


def rapids_are_safe(plan, safe_height: float) -> bool:
    """True when every horizontal rapid travels at or above *safe_height*."""
    for seg in plan.segments:
        if seg.move_type is not MoveType.RAPID:
            continue
        moves_xy = abs(seg.end[0] - seg.start[0]) > 1e-9 or abs(seg.end[1] - seg.start[1]) > 1e-9
        if moves_xy and min(seg.start[2], seg.end[2]) < safe_height - 1e-9:
            return False
    return True


@pytest.fixture
def check_rapids():
    return rapids_are_safe
