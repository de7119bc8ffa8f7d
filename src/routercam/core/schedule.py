"""Pass scheduler: depth levels, plunge/ramp entry and clearance moves.

Depth levels are measured down from the stock top (Z=0).  The final level
always lands exactly on the requested cut depth; only the last level may be
shallower than ``depth_per_pass``.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from enum import Enum
from typing import Optional

import numpy as np

from .errors import ConfigurationError, ScheduleError
from .toolpath.base import MotionBuilder
from .toolpath.utils import cumulative_lengths, point_at

# Relative slack so 6.0 / 2.0 does not become 4 levels through float noise
_LEVEL_EPS = 1e-9


@dataclass(frozen=True)
class PassLevel:
    """One depth level of a multi-pass cut."""
    index: int
    z: float            # absolute Z of the level floor
    depth: float        # cumulative depth below the top
    increment: float    # material removed by this level
    is_final: bool

    @property
    def top(self) -> float:
        """Z of the floor left by the previous level."""
        return self.z + self.increment


def check_depths(cut_depth: float, depth_per_pass: float) -> None:
    """Raise ScheduleError unless the depth schedule is well formed."""
    if depth_per_pass <= 0:
        raise ScheduleError(f"depth per pass must be positive, got {depth_per_pass}")
    if cut_depth < 0:
        raise ScheduleError(f"cut depth must not be negative, got {cut_depth}")


def schedule_passes(
    cut_depth: float,
    depth_per_pass: float,
    top: float = 0.0,
) -> list[PassLevel]:
    """Split *cut_depth* into levels of at most *depth_per_pass*.

    Returns ``ceil(cut_depth / depth_per_pass)`` levels whose increments sum
    to *cut_depth*.  A zero cut depth yields no levels.
    """
    check_depths(cut_depth, depth_per_pass)
    if cut_depth == 0:
        return []

    count = max(1, math.ceil(cut_depth / depth_per_pass - _LEVEL_EPS))
    levels: list[PassLevel] = []
    previous = 0.0
    for i in range(count):
        depth = cut_depth if i == count - 1 else (i + 1) * depth_per_pass
        levels.append(PassLevel(
            index=i,
            z=top - depth,
            depth=depth,
            increment=depth - previous,
            is_final=i == count - 1,
        ))
        previous = depth
    return levels


class RampType(Enum):
    PLUNGE = "plunge"
    ZIGZAG = "zigzag"
    HELIX = "helix"


@dataclass
class RampSettings:
    """How the cutter descends into each level."""
    ramp_type: RampType = RampType.PLUNGE
    angle: float = 3.0                      # degrees from horizontal
    helix_radius: Optional[float] = None    # mm; default half the tool radius

    def validate(self) -> None:
        if self.ramp_type is not RampType.PLUNGE and not 0 < self.angle < 90:
            raise ConfigurationError(f"ramp angle must be in (0, 90), got {self.angle}")
        if self.helix_radius is not None and self.helix_radius <= 0:
            raise ConfigurationError("helix radius must be positive")


@dataclass(frozen=True)
class Clearance:
    """Heights and rates shared by every entry and exit of a toolpath."""
    safe_height: float
    retract_height: float
    feed_rate: float
    plunge_rate: float


def approach(builder: MotionBuilder, x: float, y: float, clearance: Clearance) -> None:
    """Move from anywhere to directly above ``(x, y)`` at the retract height.

    Travel happens at the safe height; the final rapid down to the retract
    height is the controlled approach above the entry point.
    """
    if not np.allclose(builder.position[:2], (x, y), atol=1e-9):
        if builder.z < clearance.safe_height:
            builder.retract(clearance.safe_height)
        builder.rapid(z=clearance.safe_height)
        builder.rapid(x, y)
    if builder.z > clearance.retract_height:
        builder.rapid(z=clearance.retract_height)


def retract(builder: MotionBuilder, clearance: Clearance) -> None:
    builder.retract(clearance.safe_height)


def plan_entry(
    builder: MotionBuilder,
    path: Optional[np.ndarray],
    level: PassLevel,
    ramp: RampSettings,
    clearance: Clearance,
    tool_radius: float = 0.0,
    helix_side: float = 1.0,
) -> None:
    """Descend from above the entry point onto *level*.

    The tool is expected to sit above ``path[0]``.  Ramps only cover the
    level's own increment; the distance down to the previous floor is a
    straight plunge.  *helix_side* puts the helix centre to the left (+1) or
    right (-1) of the path direction.
    """
    start_z = builder.z
    if start_z <= level.z + 1e-9:
        return
    ramp_top = min(start_z, level.top)
    if ramp.ramp_type is RampType.PLUNGE or path is None or len(path) < 2:
        builder.plunge(level.z, clearance.plunge_rate)
        return

    if start_z > ramp_top + 1e-9:
        builder.plunge(ramp_top, clearance.plunge_rate)
    drop = ramp_top - level.z
    run = drop / math.tan(math.radians(ramp.angle))

    if ramp.ramp_type is RampType.ZIGZAG:
        _zigzag(builder, np.asarray(path, dtype=float)[:, :2], level.z, run,
                clearance)
    else:
        radius = ramp.helix_radius or max(tool_radius / 2.0, 1e-3)
        _helix(builder, np.asarray(path, dtype=float)[:, :2], level.z, run,
               radius, helix_side, clearance)


def _zigzag(builder, path, z_end, run, clearance) -> None:
    cum = cumulative_lengths(path)
    if cum[-1] <= 1e-9:
        builder.plunge(z_end, clearance.plunge_rate)
        return
    leg = min(cum[-1], run / 2.0)
    # Prefix of the path travelled out and back on each zigzag
    keep = cum < leg
    prefix = np.vstack([path[keep], point_at(path, cum, leg)])
    prefix_cum = cumulative_lengths(prefix)
    pairs = max(1, math.ceil(run / (2.0 * leg) - _LEVEL_EPS))
    z0 = builder.z
    drop_per_leg = (z0 - z_end) / (2 * pairs)
    z = z0
    for _ in range(pairs):
        for pts, cum_leg in ((prefix, prefix_cum),
                             (prefix[::-1], prefix_cum[-1] - prefix_cum[::-1])):
            for p, s in zip(pts[1:], cum_leg[1:]):
                builder.feed(p[0], p[1], z - drop_per_leg * s / prefix_cum[-1],
                             feed=clearance.feed_rate)
            z -= drop_per_leg
    builder.feed(path[0][0], path[0][1], z_end, feed=clearance.feed_rate)


def _helix(builder, path, z_end, run, radius, side, clearance) -> None:
    p0 = path[0]
    direction = None
    for p in path[1:]:
        d = p - p0
        n = math.hypot(d[0], d[1])
        if n > 1e-9:
            direction = d / n
            break
    if direction is None:
        builder.plunge(z_end, clearance.plunge_rate)
        return
    left = np.array([-direction[1], direction[0]])
    centre = p0 + left * radius * side
    opposite = 2 * centre - p0
    clockwise = side < 0
    half_turn = math.pi * radius
    halves = max(2, 2 * math.ceil(run / (2 * half_turn) - _LEVEL_EPS))
    z0 = builder.z
    for k in range(1, halves + 1):
        target = opposite if k % 2 else p0
        builder.arc(target[0], target[1], centre[0], centre[1], clockwise,
                    clearance.feed_rate, z=z0 + (z_end - z0) * k / halves)
