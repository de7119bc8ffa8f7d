"""Motion plans to controller text.

The emitter is modal: feed words are written only when the feed changes and
coordinates only when their formatted value changes.  One emitter instance
builds one program; :meth:`MotionEmitter.emit` wraps a list of plans in a
single start/end block.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Optional

from ..core.toolpath.base import MotionPlan, MotionSegment, MoveType
from . import gcode_writer as gw
from .post import PostProcessorProfile


@dataclass
class EmittedProgram:
    lines: list[str]
    line_ending: str = "\n"
    file_extension: str = "nc"

    def text(self) -> str:
        return self.line_ending.join(self.lines) + self.line_ending

    def __len__(self) -> int:
        return len(self.lines)


class MotionEmitter:
    """Serializes :class:`MotionPlan` objects for one post-processor profile."""

    def __init__(self, profile: PostProcessorProfile):
        profile.validate()
        self.profile = profile
        self.reset()

    def reset(self) -> None:
        self._lines: list[str] = []
        self._number = self.profile.line_number_start
        self._feed: Optional[str] = None
        self._axes: list[Optional[str]] = [None, None, None]
        self._tool: Optional[int] = None
        self._spindle: Optional[tuple[int, bool]] = None
        self._label: Optional[str] = None
        self._started = False
        self._ended = False

    # ------------------------------------------------------------------
    # Output primitives
    # ------------------------------------------------------------------

    def _emit(self, code: Optional[str]) -> None:
        if code is None:
            return
        if self.profile.line_numbers:
            code = f"N{self._number} {code}"
            self._number += self.profile.line_number_increment
        self._lines.append(code)

    def comment(self, text: str) -> None:
        self._emit(gw.comment(text, self.profile.comment_style.value))

    def _u(self, value: float) -> float:
        return self.profile.units.from_mm(float(value))

    def _changed_axes(self, x, y, z):
        """Axis values to write; ``None`` where the position is unchanged."""
        d = self.profile.decimal_places
        out = []
        for k, v in enumerate((x, y, z)):
            if v is None:
                out.append(None)
                continue
            text = gw.fmt(self._u(v), d)
            if text != self._axes[k]:
                out.append(self._u(v))
                self._axes[k] = text
            else:
                out.append(None)
        return out

    def _feed_word(self, feed: Optional[float]) -> Optional[float]:
        if not feed:
            return None
        text = gw.fmt(self._u(feed), 1)
        if text == self._feed:
            return None
        self._feed = text
        return self._u(feed)

    def _rapid(self, x=None, y=None, z=None) -> None:
        ax = self._changed_axes(x, y, z)
        if any(v is not None for v in ax):
            self._emit(gw.rapid(*ax, decimals=self.profile.decimal_places))

    def _linear(self, x, y, z, feed: Optional[float]) -> None:
        ax = self._changed_axes(x, y, z)
        if all(v is None for v in ax):
            return
        self._emit(gw.linear(*ax, f=self._feed_word(feed),
                             decimals=self.profile.decimal_places))

    # ------------------------------------------------------------------
    # Program structure
    # ------------------------------------------------------------------

    def begin(self, title: str = "") -> None:
        """Program start block; written once."""
        if self._started:
            return
        self._started = True
        if title:
            self.comment(title)
        self._emit(self.profile.units.gcode_modal)
        for line in self.profile.program_start:
            self._emit(line)

    def end(self) -> None:
        """Spindle stop and program end block; written once."""
        if self._ended:
            return
        self.begin()
        self._spindle_off()
        for line in self.profile.program_end:
            self._emit(line)
        self._ended = True

    def _spindle_off(self) -> None:
        if self._spindle is not None:
            self._emit("M5")
            self._spindle = None

    def _tool_change(self, plan: MotionPlan, tool_name: str) -> None:
        if self._tool == plan.tool_number:
            return
        if self._tool is not None:
            self._spindle_off()
            for line in self.profile.tool_change_start:
                self._emit(line.format(tool=plan.tool_number, name=tool_name))
            for line in self.profile.tool_change_end:
                self._emit(line.format(tool=plan.tool_number, name=tool_name))
            # Position is unknown after a manual or automatic change
            self._axes = [None, None, None]
            self._feed = None
        self.comment(f"T{plan.tool_number} {tool_name}".rstrip())
        self._tool = plan.tool_number

    def _spindle_on(self, plan: MotionPlan) -> None:
        if plan.spindle_speed <= 0:
            return
        state = (int(round(plan.spindle_speed)), plan.spindle_clockwise)
        if state == self._spindle:
            return
        self._emit(gw.spindle_on(plan.spindle_speed, plan.spindle_clockwise))
        if self.profile.spindle_dwell > 0:
            self._emit(gw.dwell(self.profile.spindle_dwell))
        self._spindle = state

    def emit_plan(self, plan: MotionPlan, heading: Optional[str] = None,
                  tool_name: str = "") -> None:
        """Append one plan: tool change, spindle start and its motion."""
        self.begin()
        if heading:
            self.comment(heading)
        self._tool_change(plan, tool_name)
        self._spindle_on(plan)
        self._label = None
        if not plan.segments:
            return
        start = plan.segments[0].start
        # Clear height first, then position over the start
        self._rapid(z=start[2])
        self._rapid(x=start[0], y=start[1])
        for seg in plan.segments:
            self._segment(seg)

    def _segment(self, seg: MotionSegment) -> None:
        if seg.label and seg.label != self._label:
            self.comment(seg.label)
            self._label = seg.label
        rapid = seg.move_type is MoveType.RAPID or (
            seg.move_type is MoveType.RETRACT and not seg.feed_rate)
        if rapid:
            for p in seg.points[1:]:
                self._rapid(p[0], p[1], p[2])
        elif seg.arc is not None and self.profile.emits_arcs:
            self._arc(seg)
        else:
            for p in seg.linearized()[1:]:
                self._linear(p[0], p[1], p[2], seg.feed_rate)
        if seg.dwell > 0:
            self._emit(gw.dwell(seg.dwell))

    def _arc(self, seg: MotionSegment) -> None:
        s, e = seg.start, seg.end
        _, _, z = self._changed_axes(None, None, e[2])
        self._changed_axes(e[0], e[1], None)
        self._emit(gw.arc(
            seg.arc.clockwise,
            self._u(e[0]), self._u(e[1]),
            self._u(seg.arc.cx - s[0]), self._u(seg.arc.cy - s[1]),
            z=z, f=self._feed_word(seg.feed_rate),
            decimals=self.profile.decimal_places,
        ))

    def program(self) -> EmittedProgram:
        return EmittedProgram(list(self._lines), self.profile.line_ending,
                              self.profile.file_extension)

    def emit(self, plans: Iterable[MotionPlan], title: str = "") -> EmittedProgram:
        """A complete program for *plans* with one start and end block."""
        self.reset()
        self.begin(title)
        for plan in plans:
            self.emit_plan(plan, plan.operation_name or None)
        self.end()
        return self.program()
