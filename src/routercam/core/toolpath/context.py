"""Shared planner state and cutting helpers."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Mapping, Optional

import numpy as np
from shapely.geometry import LineString, Point

from ..design import DesignObject
from ..errors import WarningSink
from ..geometry import DEFAULT_TOLERANCE
from ..operation import CutParameters, ToolpathSpec, cut_parameters
from ..schedule import (
    Clearance,
    PassLevel,
    RampSettings,
    approach,
    check_depths,
    plan_entry,
    retract,
    schedule_passes,
)
from ..stock import Stock
from ..tabs import TabInterval, apply_tabs
from ..tool import Tool, ToolLibrary
from .base import MotionBuilder, MotionPlan
from .utils import rotate_ring_start


@dataclass
class PlannerContext:
    """Everything a strategy planner needs besides the resolved geometry."""

    spec: ToolpathSpec
    tool: Tool
    params: CutParameters
    stock: Stock
    tools: ToolLibrary
    sink: WarningSink = field(default_factory=WarningSink)
    tolerance: float = DEFAULT_TOLERANCE
    objects: Mapping[str, DesignObject] = field(default_factory=dict)

    @classmethod
    def for_spec(
        cls,
        spec: ToolpathSpec,
        tools: ToolLibrary,
        stock: Stock,
        tolerance: float = DEFAULT_TOLERANCE,
        objects: Optional[Mapping[str, DesignObject]] = None,
        sink: Optional[WarningSink] = None,
    ) -> PlannerContext:
        tool = tools.require(spec.tool_id)
        params = cut_parameters(spec, tool)
        check_depths(params.cut_depth, params.depth_per_pass)
        return cls(
            spec=spec,
            tool=tool,
            params=params,
            stock=stock,
            tools=tools,
            sink=sink if sink is not None else WarningSink(),
            tolerance=tolerance,
            objects=objects or {},
        )

    @property
    def settings(self):
        return self.spec.settings

    @property
    def clearance(self) -> Clearance:
        return self.params.clearance

    @property
    def feed_rate(self) -> float:
        return self.params.feed_rate

    @property
    def plunge_rate(self) -> float:
        return self.params.plunge_rate

    def levels(self, cut_depth: Optional[float] = None) -> list[PassLevel]:
        depth = self.params.cut_depth if cut_depth is None else cut_depth
        return schedule_passes(depth, self.params.depth_per_pass)

    def stepover(self, percent: Optional[float]) -> float:
        return self.params.stepover_distance(self.tool, percent)

    def new_builder(self, x: float = 0.0, y: float = 0.0) -> MotionBuilder:
        return MotionBuilder((x, y, self.clearance.safe_height))

    def finish(self, builder: MotionBuilder, tool: Optional[Tool] = None) -> MotionPlan:
        """Retract to the safe height and wrap the segments in a plan."""
        retract(builder, self.clearance)
        tool = tool or self.tool
        return MotionPlan(
            segments=builder.build(),
            tool_number=tool.number,
            operation_name=self.spec.name,
            spindle_speed=self.params.spindle_speed,
            spindle_clockwise=self.params.spindle_clockwise,
        )


def level_label(level: PassLevel, count: int) -> str:
    return f"Pass {level.index + 1}/{count} Z{level.z:.3f}"


def cut_path(
    ctx: PlannerContext,
    builder: MotionBuilder,
    points: np.ndarray,
    level: PassLevel,
    ramp: Optional[RampSettings] = None,
    helix_side: float = 1.0,
    tabs: Optional[list[TabInterval]] = None,
    tab_top: float = 0.0,
) -> None:
    """Approach, enter and cut one polyline at *level*.

    Continues without retracting when the tool is already in the cut above
    the first point.
    """
    pts = np.asarray(points, dtype=float)[:, :2]
    approach(builder, pts[0][0], pts[0][1], ctx.clearance)
    plan_entry(builder, pts, level, ramp or RampSettings(), ctx.clearance,
               ctx.tool.radius, helix_side)
    if tabs:
        apply_tabs(builder, pts, tabs, level.z, tab_top,
                   ctx.feed_rate, ctx.plunge_rate)
    else:
        builder.feed_through(pts[1:], ctx.feed_rate, z=level.z)


def link(
    ctx: PlannerContext,
    builder: MotionBuilder,
    target: np.ndarray,
    z: float,
    allowed,
) -> None:
    """Feed straight to *target* when the move stays inside *allowed*.

    Otherwise retract; the next :func:`cut_path` makes a fresh approach.
    """
    here = builder.position
    if abs(here[2] - z) < 1e-9 and allowed is not None and not allowed.is_empty:
        move = LineString([here[:2], target[:2]])
        if move.length < 1e-9 or allowed.buffer(1e-6).covers(move):
            builder.feed(target[0], target[1], z, feed=ctx.feed_rate)
            return
    retract(builder, ctx.clearance)


def side_normal(points: np.ndarray, region, inside: bool) -> tuple[np.ndarray, float]:
    """Unit normal at ``points[0]`` pointing into (or away from) *region*.

    Returns the normal and +1 when it lies left of the path direction,
    -1 when right.
    """
    p0 = points[0]
    direction = None
    for p in points[1:]:
        d = p - p0
        n = float(np.hypot(d[0], d[1]))
        if n > 1e-9:
            direction = d / n
            break
    if direction is None:
        return np.array([1.0, 0.0]), 1.0
    left = np.array([-direction[1], direction[0]])
    probe = Point(*(p0 + left * 1e-3))
    left_inside = region.contains(probe)
    if left_inside == inside:
        return left, 1.0
    return -left, -1.0


def nearest_start(ring: np.ndarray, xy) -> np.ndarray:
    """Rotate a closed ring to start at the vertex nearest *xy*."""
    d = np.hypot(ring[:-1, 0] - xy[0], ring[:-1, 1] - xy[1])
    return rotate_ring_start(ring, int(np.argmin(d)))
