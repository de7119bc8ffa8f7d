"""Program statistics: distances, move counts, bounding box and run time."""

from __future__ import annotations

import math
from dataclasses import asdict, dataclass
from typing import Iterable

import numpy as np

from ..core.toolpath.base import MotionPlan, MotionSegment, MoveType

DEFAULT_RAPID_XY = 5000.0   # mm/min
DEFAULT_RAPID_Z = 2000.0


@dataclass
class BoundingBox:
    """Axis-aligned 3D extent of all motion, in millimeters."""

    x_min: float = math.inf
    y_min: float = math.inf
    z_min: float = math.inf
    x_max: float = -math.inf
    y_max: float = -math.inf
    z_max: float = -math.inf

    @property
    def is_empty(self) -> bool:
        return self.x_min > self.x_max

    def include(self, points: np.ndarray) -> None:
        pts = np.asarray(points, dtype=float).reshape(-1, 3)
        if not len(pts):
            return
        lo = pts.min(axis=0)
        hi = pts.max(axis=0)
        self.x_min = min(self.x_min, float(lo[0]))
        self.y_min = min(self.y_min, float(lo[1]))
        self.z_min = min(self.z_min, float(lo[2]))
        self.x_max = max(self.x_max, float(hi[0]))
        self.y_max = max(self.y_max, float(hi[1]))
        self.z_max = max(self.z_max, float(hi[2]))

    def merge(self, other: BoundingBox) -> BoundingBox:
        box = BoundingBox(**asdict(self))
        if not other.is_empty:
            box.include(np.array([[other.x_min, other.y_min, other.z_min],
                                  [other.x_max, other.y_max, other.z_max]]))
        return box

    def to_dict(self) -> dict:
        return {} if self.is_empty else asdict(self)


@dataclass
class ProgramStats:
    """Totals for one program (or a merged batch)."""

    total_distance: float = 0.0
    cutting_distance: float = 0.0
    rapid_distance: float = 0.0
    plunge_count: int = 0
    retract_count: int = 0
    estimated_time: float = 0.0   # seconds

    def merge(self, other: ProgramStats) -> ProgramStats:
        return ProgramStats(
            total_distance=self.total_distance + other.total_distance,
            cutting_distance=self.cutting_distance + other.cutting_distance,
            rapid_distance=self.rapid_distance + other.rapid_distance,
            plunge_count=self.plunge_count + other.plunge_count,
            retract_count=self.retract_count + other.retract_count,
            estimated_time=self.estimated_time + other.estimated_time,
        )

    def format_time(self) -> str:
        minutes, seconds = divmod(int(round(self.estimated_time)), 60)
        hours, minutes = divmod(minutes, 60)
        return f"{hours}:{minutes:02d}:{seconds:02d}"

    def to_dict(self) -> dict:
        return asdict(self)


class StatsAggregator:
    """Accumulates statistics segment by segment.

    Feed moves take ``length / feed``; rapids move all axes at once at the
    machine's rapid rates, so each rapid takes the longer of its XY and Z
    travel times.
    """

    def __init__(self, rapid_xy: float = DEFAULT_RAPID_XY,
                 rapid_z: float = DEFAULT_RAPID_Z):
        self.rapid_xy = rapid_xy
        self.rapid_z = rapid_z
        self.stats = ProgramStats()
        self.bounding_box = BoundingBox()

    def _rapid_minutes(self, points: np.ndarray) -> float:
        d = np.diff(points, axis=0)
        xy = np.hypot(d[:, 0], d[:, 1]) / self.rapid_xy
        z = np.abs(d[:, 2]) / self.rapid_z
        return float(np.sum(np.maximum(xy, z)))

    def add_segment(self, seg: MotionSegment) -> None:
        length = seg.length()
        s = self.stats
        s.total_distance += length
        if seg.move_type in (MoveType.RAPID, MoveType.RETRACT) and not seg.feed_rate:
            s.rapid_distance += length
            s.estimated_time += self._rapid_minutes(seg.points) * 60.0
        else:
            if seg.move_type in (MoveType.FEED, MoveType.PLUNGE):
                s.cutting_distance += length
            else:
                s.rapid_distance += length
            if seg.feed_rate:
                s.estimated_time += length / seg.feed_rate * 60.0
        if seg.move_type is MoveType.PLUNGE:
            s.plunge_count += 1
        elif seg.move_type is MoveType.RETRACT:
            s.retract_count += 1
        s.estimated_time += seg.dwell
        self.bounding_box.include(seg.linearized())

    def add_plan(self, plan: MotionPlan) -> None:
        for seg in plan.segments:
            self.add_segment(seg)

    def add_plans(self, plans: Iterable[MotionPlan]) -> None:
        for plan in plans:
            self.add_plan(plan)

    def merge(self, other: StatsAggregator) -> None:
        self.stats = self.stats.merge(other.stats)
        self.bounding_box = self.bounding_box.merge(other.bounding_box)
