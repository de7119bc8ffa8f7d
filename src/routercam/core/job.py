"""Job orchestrator: design objects + tools + stock + toolpath specs to G-code.

:func:`generate_toolpath` runs one toolpath into a complete program;
:func:`export_batch` runs every enabled toolpath of a job into a single
program with tool changes between tools.  Both are pure functions of their
inputs.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Iterable, Mapping, Optional, Union

from ..config.machine_profiles import DEFAULT_MACHINE, MachineConfig, get_machine
from ..gcode.emitter import MotionEmitter
from ..gcode.post import PostProcessorProfile, get_profile
from ..gcode.stats import BoundingBox, ProgramStats, StatsAggregator
from .design import DesignObject
from .errors import (
    BatchAbortedError,
    EmptyGeometryError,
    GeometryWarning,
    RouterCamError,
    WarningSink,
)
from .geometry import DEFAULT_TOLERANCE, index_objects, resolve_sources
from .operation import OperationKind, ToolpathSpec
from .stock import Stock
from .tool import ToolLibrary
from .toolpath.base import MotionPlan
from .toolpath.context import PlannerContext
from .toolpath.drill import plan_drill
from .toolpath.engrave import plan_engrave
from .toolpath.facing import plan_facing
from .toolpath.pocket import plan_pocket
from .toolpath.profile import plan_profile
from .toolpath.surface import plan_finish_3d, plan_rough_3d
from .toolpath.vcarve import plan_vcarve

Planner = Callable[..., Union[MotionPlan, list[MotionPlan]]]

PLANNERS: dict[OperationKind, Planner] = {
    OperationKind.PROFILE: plan_profile,
    OperationKind.POCKET: plan_pocket,
    OperationKind.DRILL: plan_drill,
    OperationKind.VCARVE: plan_vcarve,
    OperationKind.ENGRAVE: plan_engrave,
    OperationKind.FACING: plan_facing,
    OperationKind.ROUGH_3D: plan_rough_3d,
    OperationKind.FINISH_3D: plan_finish_3d,
}

# Operations that may run without selected vector geometry
_GEOMETRY_OPTIONAL = {
    OperationKind.FACING,
    OperationKind.ROUGH_3D,
    OperationKind.FINISH_3D,
}


@dataclass
class GenerationContext:
    """Read-only inputs shared by every toolpath of a job."""

    objects: Mapping[str, DesignObject]
    tools: ToolLibrary
    stock: Stock
    machine: MachineConfig = field(default_factory=lambda: get_machine(DEFAULT_MACHINE))
    profile: PostProcessorProfile = field(default_factory=lambda: get_profile("grbl"))
    tolerance: float = DEFAULT_TOLERANCE

    @classmethod
    def create(
        cls,
        objects: Iterable[DesignObject],
        tools: ToolLibrary,
        stock: Stock,
        machine: Optional[MachineConfig] = None,
        profile: Optional[PostProcessorProfile] = None,
        tolerance: float = DEFAULT_TOLERANCE,
    ) -> GenerationContext:
        return cls(
            objects=index_objects(objects),
            tools=tools,
            stock=stock,
            machine=machine or get_machine(DEFAULT_MACHINE),
            profile=profile or get_profile("grbl"),
            tolerance=tolerance,
        )

    def tool_names(self) -> dict[int, str]:
        return {t.number: t.name for t in self.tools.list_tools()}

    def new_emitter(self) -> MotionEmitter:
        return MotionEmitter(self.profile)

    def new_aggregator(self) -> StatsAggregator:
        return StatsAggregator(self.machine.rapid_xy, self.machine.rapid_z)


@dataclass
class GeneratedProgram:
    """The result of generating one toolpath."""

    commands: list[str]
    stats: ProgramStats
    bounding_box: BoundingBox
    warnings: list[GeometryWarning]
    plans: list[MotionPlan] = field(default_factory=list)
    line_ending: str = "\n"

    def text(self) -> str:
        if not self.commands:
            return ""
        return self.line_ending.join(self.commands) + self.line_ending


@dataclass
class ToolpathReport:
    """Per-toolpath outcome inside a batch export."""

    toolpath_id: str
    name: str
    ok: bool
    error: Optional[str] = None
    warnings: list[GeometryWarning] = field(default_factory=list)


@dataclass
class BatchResult:
    """A whole-job program plus merged statistics and per-toolpath reports."""

    lines: list[str]
    stats: ProgramStats
    bounding_box: BoundingBox
    reports: list[ToolpathReport]
    plans: list[MotionPlan] = field(default_factory=list)
    line_ending: str = "\n"
    file_extension: str = "nc"

    @property
    def ok(self) -> bool:
        return all(r.ok for r in self.reports)

    @property
    def warnings(self) -> list[GeometryWarning]:
        return [w for r in self.reports for w in r.warnings]

    def text(self) -> str:
        return self.line_ending.join(self.lines) + self.line_ending

    def write(self, path: Path) -> Path:
        """Write the program; a path without suffix gets the profile's."""
        path = Path(path)
        if not path.suffix:
            path = path.with_suffix(f".{self.file_extension}")
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w", newline="") as f:
            f.write(self.text())
        return path


def plan_toolpath(
    spec: ToolpathSpec,
    context: GenerationContext,
    sink: WarningSink,
) -> list[MotionPlan]:
    """Motion plans for *spec*.

    Raises
    ------
    ConfigurationError, ScheduleError:
        Invalid settings, tool or depth schedule.
    EmptyGeometryError:
        Nothing to cut.
    """
    spec.validate()
    kind = spec.kind
    ctx = PlannerContext.for_spec(spec, context.tools, context.stock,
                                  context.tolerance, context.objects, sink)
    geoms = resolve_sources(context.objects, spec.source_ids, context.tolerance, sink)
    if not geoms and kind not in _GEOMETRY_OPTIONAL:
        raise EmptyGeometryError("no source geometry selected", spec.id)
    result = PLANNERS[kind](geoms, ctx)
    return result if isinstance(result, list) else [result]


def _note_nothing_to_cut(plans: list[MotionPlan], sink: WarningSink,
                         spec: ToolpathSpec) -> None:
    """Warn when a toolpath produced no motion and nothing else says why."""
    if len(sink) == 0 and all(p.is_empty for p in plans):
        sink.warn("nothing_to_cut", f"toolpath {spec.name!r} produced no cutting moves",
                  spec.id)


def _emit_plans(emitter: MotionEmitter, plans: list[MotionPlan], heading: str,
                names: dict[int, str]) -> None:
    for k, plan in enumerate(plans):
        emitter.emit_plan(plan, heading if k == 0 else None,
                          names.get(plan.tool_number, ""))


def generate_toolpath(spec: ToolpathSpec, context: GenerationContext) -> GeneratedProgram:
    """Generate a complete program for one toolpath.

    Empty geometry is not fatal: the program has no commands and the
    warnings carry an ``empty_geometry`` entry.
    """
    sink = WarningSink()
    try:
        plans = plan_toolpath(spec, context, sink)
    except EmptyGeometryError as exc:
        sink.warn("empty_geometry", str(exc), exc.source_id or spec.id)
        plans = []
    _note_nothing_to_cut(plans, sink, spec)

    agg = context.new_aggregator()
    agg.add_plans(plans)
    commands: list[str] = []
    if any(not p.is_empty for p in plans):
        emitter = context.new_emitter()
        emitter.begin(spec.name)
        _emit_plans(emitter, plans, f"Toolpath: {spec.name}", context.tool_names())
        emitter.end()
        commands = emitter.program().lines

    return GeneratedProgram(
        commands=commands,
        stats=agg.stats,
        bounding_box=agg.bounding_box,
        warnings=list(sink),
        plans=plans,
        line_ending=context.profile.line_ending,
    )


def export_batch(
    specs: Iterable[ToolpathSpec],
    context: GenerationContext,
    best_effort: bool = False,
    title: str = "",
) -> BatchResult:
    """One program for all enabled *specs*, in ``order``.

    By default the first fatal toolpath error stops the export with
    :class:`BatchAbortedError` carrying the partial result; with
    *best_effort* failing toolpaths are reported and skipped.
    """
    ordered = sorted((s for s in specs if s.enabled), key=lambda s: s.order)
    names = context.tool_names()
    emitter = context.new_emitter()
    emitter.begin(title)
    agg = context.new_aggregator()
    reports: list[ToolpathReport] = []
    all_plans: list[MotionPlan] = []

    def result() -> BatchResult:
        emitter.end()
        program = emitter.program()
        return BatchResult(
            lines=program.lines,
            stats=agg.stats,
            bounding_box=agg.bounding_box,
            reports=reports,
            plans=all_plans,
            line_ending=program.line_ending,
            file_extension=program.file_extension,
        )

    for spec in ordered:
        sink = WarningSink()
        try:
            plans = plan_toolpath(spec, context, sink)
        except EmptyGeometryError as exc:
            sink.warn("empty_geometry", str(exc), exc.source_id or spec.id)
            plans = []
        except RouterCamError as exc:
            reports.append(ToolpathReport(spec.id, spec.name, False, str(exc), list(sink)))
            if not best_effort:
                raise BatchAbortedError(
                    f"Toolpath {spec.name!r} failed: {exc}", result()) from exc
            continue

        _note_nothing_to_cut(plans, sink, spec)
        live = [p for p in plans if not p.is_empty]
        _emit_plans(emitter, live, f"Toolpath: {spec.name}", names)
        agg.add_plans(live)
        all_plans.extend(live)
        reports.append(ToolpathReport(spec.id, spec.name, True, None, list(sink)))

    return result()
