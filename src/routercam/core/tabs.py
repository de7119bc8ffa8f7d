"""Tab injector: uncut bridges on closed through-cuts.

Tabs are described as path-length intervals along a closed ring.  When a
pass runs below the tab top, the cutter lifts to the tab height for the
length of each interval and drops back to the cutting depth afterwards.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional

import numpy as np

from .errors import WarningSink
from .toolpath.base import MotionBuilder
from .toolpath.utils import cumulative_lengths, point_at


@dataclass
class TabSettings:
    """Tab configuration for profile and pocket cuts.

    ``positions`` lists explicit tab centres as distances along the path from
    its start point; when empty, ``count`` tabs are spaced evenly.
    """
    enabled: bool = False
    count: int = 4
    width: float = 6.0     # mm along the path
    height: float = 2.0    # mm of material left standing
    positions: list[float] = field(default_factory=list)

    @property
    def is_auto(self) -> bool:
        return not self.positions


@dataclass(frozen=True)
class TabInterval:
    """A skip interval ``[start, end]`` in path-length units."""
    start: float
    end: float

    @property
    def center(self) -> float:
        return (self.start + self.end) / 2.0

    @property
    def width(self) -> float:
        return self.end - self.start


def tab_z(cut_depth: float, tab_height: float, thickness: Optional[float] = None,
          top: float = 0.0) -> float:
    """Z of the tab top for a through cut of *cut_depth*.

    Tabs stand on the stock bottom, so a cut that overcuts into the
    spoilboard still leaves the full *tab_height* of material.
    """
    depth = cut_depth if thickness is None else min(cut_depth, thickness)
    return top - (depth - tab_height)


def place_tabs(
    length: float,
    settings: TabSettings,
    sink: Optional[WarningSink] = None,
    source_id: Optional[str] = None,
) -> list[TabInterval]:
    """Lay out tab intervals on a closed path of the given *length*."""
    if not settings.enabled or length <= 0:
        return []

    if settings.is_auto:
        count = settings.count
        if count <= 0:
            return []
        width = settings.width
        limit = length / (2.0 * count)
        if width > limit:
            if sink is not None:
                sink.warn("tab_width_capped",
                          f"tab width {width:.3f} mm reduced to {limit:.3f} mm",
                          source_id)
            width = limit
        spacing = length / count
        return [
            TabInterval((i + 0.5) * spacing - width / 2.0,
                        (i + 0.5) * spacing + width / 2.0)
            for i in range(count)
        ]

    half = settings.width / 2.0
    accepted: list[TabInterval] = []
    for centre in sorted(settings.positions):
        interval = TabInterval(centre - half, centre + half)
        if interval.start < 0 or interval.end > length:
            if sink is not None:
                sink.warn("tab_dropped",
                          f"tab at {centre:.3f} mm falls outside the path "
                          f"(length {length:.3f} mm)", source_id)
            continue
        if accepted and interval.start < accepted[-1].end:
            if sink is not None:
                sink.warn("tab_dropped",
                          f"tab at {centre:.3f} mm overlaps the previous tab",
                          source_id)
            continue
        accepted.append(interval)
    return accepted


def _sub_path(points: np.ndarray, cum: np.ndarray, a: float, b: float) -> np.ndarray:
    """Polyline between path lengths *a* and *b* (a <= b)."""
    inner = points[(cum > a) & (cum < b)]
    return np.vstack([point_at(points, cum, a), inner, point_at(points, cum, b)])


def apply_tabs(
    builder: MotionBuilder,
    points: np.ndarray,
    intervals: list[TabInterval],
    cut_z: float,
    tab_top: float,
    feed_rate: float,
    plunge_rate: float,
) -> None:
    """Cut along *points* at *cut_z*, hopping over every tab interval.

    The builder must already sit at ``points[0]`` on *cut_z*.  Passes that
    stay above the tab top are cut straight through.
    """
    points = np.asarray(points, dtype=float)[:, :2]
    if not intervals or cut_z >= tab_top - 1e-9:
        builder.feed_through(points[1:], feed_rate, z=cut_z)
        return

    cum = cumulative_lengths(points)
    pos = 0.0
    for iv in intervals:
        builder.feed_through(_sub_path(points, cum, pos, iv.start)[1:], feed_rate, z=cut_z)
        builder.retract(tab_top)
        builder.feed_through(_sub_path(points, cum, iv.start, iv.end)[1:], feed_rate, z=tab_top)
        builder.plunge(cut_z, plunge_rate)
        pos = iv.end
    builder.feed_through(_sub_path(points, cum, pos, cum[-1])[1:], feed_rate, z=cut_z)
