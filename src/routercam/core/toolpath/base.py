"""Core motion data structures.

A :class:`MotionPlan` is an ordered list of :class:`MotionSegment` objects.
Segments are produced by a :class:`MotionBuilder`, which always starts a new
segment at the current tool position so consecutive segments share their
end and start points.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from enum import Enum
from typing import Iterable, Optional

import numpy as np


class MoveType(Enum):
    """Type of CNC motion."""
    RAPID = "rapid"          # G0, no cutting, full speed
    FEED = "feed"            # G1, cutting feed
    PLUNGE = "plunge"        # G1 at plunge rate, descending into material
    RETRACT = "retract"      # G0, pull out of material


@dataclass(frozen=True)
class ArcSpec:
    """Circular motion in the XY plane about ``(cx, cy)``."""
    cx: float
    cy: float
    clockwise: bool


@dataclass
class MotionSegment:
    """A typed movement through an ordered ``(N, 3)`` array of points.

    Circular segments hold exactly two points (start and end) plus an
    :class:`ArcSpec`; a change in Z makes them helical.
    """
    move_type: MoveType
    points: np.ndarray
    feed_rate: Optional[float] = None   # None for rapids
    arc: Optional[ArcSpec] = None
    dwell: float = 0.0                  # seconds, after the move
    label: str = ""

    @property
    def start(self) -> np.ndarray:
        return self.points[0]

    @property
    def end(self) -> np.ndarray:
        return self.points[-1]

    def arc_sweep(self) -> float:
        """Signed sweep angle in radians (negative when clockwise)."""
        a = self.arc
        s, e = self.points[0], self.points[-1]
        a0 = math.atan2(s[1] - a.cy, s[0] - a.cx)
        a1 = math.atan2(e[1] - a.cy, e[0] - a.cx)
        sweep = a1 - a0
        if a.clockwise:
            while sweep >= 0:
                sweep -= 2 * math.pi
        else:
            while sweep <= 0:
                sweep += 2 * math.pi
        return sweep

    def arc_radius(self) -> float:
        s = self.points[0]
        return math.hypot(s[0] - self.arc.cx, s[1] - self.arc.cy)

    def length(self) -> float:
        """3D path length of the segment."""
        if self.arc is not None:
            planar = abs(self.arc_sweep()) * self.arc_radius()
            dz = float(self.points[-1][2] - self.points[0][2])
            return math.hypot(planar, dz)
        if len(self.points) < 2:
            return 0.0
        d = np.diff(self.points, axis=0)
        return float(np.sum(np.sqrt(np.sum(d * d, axis=1))))

    def linearized(self, max_angle: float = math.pi / 16) -> np.ndarray:
        """Points along the segment; arcs are split into chords."""
        if self.arc is None:
            return self.points
        sweep = self.arc_sweep()
        n = max(4, int(math.ceil(abs(sweep) / max_angle)))
        s, e = self.points[0], self.points[-1]
        r = self.arc_radius()
        a0 = math.atan2(s[1] - self.arc.cy, s[0] - self.arc.cx)
        t = np.arange(n + 1) / n
        ang = a0 + sweep * t
        pts = np.column_stack([
            self.arc.cx + r * np.cos(ang),
            self.arc.cy + r * np.sin(ang),
            s[2] + (e[2] - s[2]) * t,
        ])
        pts[-1] = e
        return pts


@dataclass
class MotionPlan:
    """An ordered collection of motion segments making up one operation."""
    segments: list[MotionSegment] = field(default_factory=list)
    tool_number: int = 1
    operation_name: str = ""
    spindle_speed: float = 0.0
    spindle_clockwise: bool = True

    def add_segment(self, seg: MotionSegment) -> None:
        self.segments.append(seg)

    def extend(self, segments: Iterable[MotionSegment]) -> None:
        self.segments.extend(segments)

    @property
    def is_empty(self) -> bool:
        return not any(
            s.move_type is not MoveType.RAPID for s in self.segments
        )

    def cutting_z_values(self) -> list[float]:
        """Distinct Z heights of horizontal feed moves, most shallow first."""
        zs = set()
        for seg in self.segments:
            if seg.move_type is MoveType.FEED and seg.arc is None:
                pts = seg.points
                flat = np.isclose(pts[1:, 2], pts[:-1, 2])
                zs.update(round(float(z), 9) for z in pts[1:, 2][flat])
        return sorted(zs, reverse=True)


class MotionBuilder:
    """Accumulates segments from a running tool position.

    Straight feed moves with the same feed rate and label are merged into a
    single segment.
    """

    def __init__(self, start: tuple[float, float, float]):
        self._pos = np.array(start, dtype=float)
        self.segments: list[MotionSegment] = []
        self.label = ""

    @property
    def position(self) -> np.ndarray:
        return self._pos.copy()

    @property
    def x(self) -> float:
        return float(self._pos[0])

    @property
    def y(self) -> float:
        return float(self._pos[1])

    @property
    def z(self) -> float:
        return float(self._pos[2])

    def _target(self, x, y, z) -> np.ndarray:
        return np.array([
            self._pos[0] if x is None else x,
            self._pos[1] if y is None else y,
            self._pos[2] if z is None else z,
        ], dtype=float)

    def _move(self, move_type: MoveType, target: np.ndarray,
              feed: Optional[float]) -> None:
        if np.allclose(target, self._pos, atol=1e-9):
            return
        last = self.segments[-1] if self.segments else None
        if (
            last is not None
            and move_type is MoveType.FEED
            and last.move_type is MoveType.FEED
            and last.arc is None
            and last.feed_rate == feed
            and last.label == self.label
            and last.dwell == 0.0
        ):
            last.points = np.vstack([last.points, target])
        else:
            self.segments.append(MotionSegment(
                move_type, np.vstack([self._pos, target]), feed, label=self.label,
            ))
        self._pos = target

    def rapid(self, x=None, y=None, z=None) -> None:
        self._move(MoveType.RAPID, self._target(x, y, z), None)

    def retract(self, z: float, feed: Optional[float] = None) -> None:
        self._move(MoveType.RETRACT, self._target(None, None, z), feed)

    def plunge(self, z: float, feed: float, x=None, y=None) -> None:
        self._move(MoveType.PLUNGE, self._target(x, y, z), feed)

    def feed(self, x=None, y=None, z=None, feed: float = 0.0) -> None:
        self._move(MoveType.FEED, self._target(x, y, z), feed)

    def feed_through(self, points, feed: float, z: Optional[float] = None) -> None:
        """Feed through ``(N, 2)`` or ``(N, 3)`` points in order."""
        for p in np.asarray(points, dtype=float):
            if len(p) == 2:
                self.feed(p[0], p[1], z, feed=feed)
            else:
                self.feed(p[0], p[1], p[2], feed=feed)

    def arc(self, x: float, y: float, cx: float, cy: float, clockwise: bool,
            feed: float, z: Optional[float] = None,
            move_type: MoveType = MoveType.FEED) -> None:
        """Circular (or helical when *z* changes) move ending at ``(x, y)``."""
        target = self._target(x, y, z)
        self.segments.append(MotionSegment(
            move_type, np.vstack([self._pos, target]), feed,
            arc=ArcSpec(cx, cy, clockwise), label=self.label,
        ))
        self._pos = target

    def dwell(self, seconds: float) -> None:
        if seconds > 0 and self.segments:
            self.segments[-1].dwell += seconds

    def build(self) -> list[MotionSegment]:
        return list(self.segments)
