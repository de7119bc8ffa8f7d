"""Toolpath specifications.

A :class:`ToolpathSpec` binds selected design objects and a tool (by id) to
common cut parameters plus exactly one operation settings object.  The
operation kind is derived from the type of that settings object, so a
profile toolpath has no pocket fields to read.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, Union

from .errors import ConfigurationError
from .schedule import Clearance, RampSettings
from .tabs import TabSettings
from .tool import Tool


class OperationKind(Enum):
    PROFILE = "profile"
    POCKET = "pocket"
    DRILL = "drill"
    VCARVE = "vcarve"
    ENGRAVE = "engrave"
    FACING = "facing"
    ROUGH_3D = "rough_3d"
    FINISH_3D = "finish_3d"


class CutSide(Enum):
    OUTSIDE = "outside"
    INSIDE = "inside"
    ON = "on"


class CutDirection(Enum):
    CLIMB = "climb"
    CONVENTIONAL = "conventional"


class SpindleDirection(Enum):
    CW = "cw"
    CCW = "ccw"


class LeadType(Enum):
    NONE = "none"
    ARC = "arc"
    TANGENT = "tangent"
    PERPENDICULAR = "perpendicular"


@dataclass
class LeadSettings:
    lead_type: LeadType = LeadType.NONE
    length: float = 5.0   # mm; arc leads use it as the arc radius


# ---------------------------------------------------------------------------
# Operation settings variants
# ---------------------------------------------------------------------------


@dataclass
class ProfileSettings:
    cut_side: CutSide = CutSide.OUTSIDE
    direction: CutDirection = CutDirection.CLIMB
    allowance: float = 0.0
    lead_in: LeadSettings = field(default_factory=LeadSettings)
    lead_out: LeadSettings = field(default_factory=LeadSettings)
    tabs: TabSettings = field(default_factory=TabSettings)
    ramp: RampSettings = field(default_factory=RampSettings)
    final_pass: bool = False
    final_pass_allowance: float = 0.2


class PocketStrategy(Enum):
    OFFSET = "offset"
    RASTER = "raster"
    SPIRAL = "spiral"


class SpiralStart(Enum):
    CENTER = "center"
    CORNER = "corner"


@dataclass
class PocketSettings:
    strategy: PocketStrategy = PocketStrategy.OFFSET
    stepover: Optional[float] = None        # percent of tool diameter
    raster_angle: float = 0.0               # degrees
    start_point: SpiralStart = SpiralStart.CENTER
    direction: CutDirection = CutDirection.CLIMB
    allowance: float = 0.0
    rest_machining: bool = False
    prev_tool_id: Optional[str] = None
    tabs: TabSettings = field(default_factory=TabSettings)
    ramp: RampSettings = field(default_factory=RampSettings)


class DrillCycle(Enum):
    SIMPLE = "simple"
    PECK = "peck"
    CHIP_BREAK = "chip_break"


@dataclass
class DrillSettings:
    cycle: DrillCycle = DrillCycle.SIMPLE
    peck_depth: float = 2.0
    peck_retract: float = 0.5     # chip-break lift
    dwell: float = 0.0            # seconds at the bottom
    optimize_order: bool = False


@dataclass
class VCarveSettings:
    start_depth: float = 0.0
    flat_depth: Optional[float] = None
    flat_tool_id: Optional[str] = None
    sample_spacing: float = 0.25  # mm between boundary samples


@dataclass
class EngraveSettings:
    depth: Optional[float] = None   # defaults to the toolpath cut depth
    multi_pass: bool = False


@dataclass
class FacingSettings:
    stepover: Optional[float] = None
    raster_angle: float = 0.0
    boundary_offset: float = 0.0


class Boundary3D(Enum):
    MODEL = "model"
    STOCK = "stock"
    SELECTION = "selection"


class RoughPattern(Enum):
    RASTER = "raster"
    OFFSET = "offset"
    WATERLINE = "waterline"


class FinishPattern(Enum):
    RASTER = "raster"
    SPIRAL = "spiral"
    RADIAL = "radial"
    SCALLOP = "scallop"
    PENCIL = "pencil"


@dataclass
class Rough3DSettings:
    pattern: RoughPattern = RoughPattern.RASTER
    stepover: Optional[float] = None
    raster_angle: float = 0.0
    stock_to_leave: float = 0.5
    boundary: Boundary3D = Boundary3D.MODEL
    boundary_offset: float = 0.0
    resolution: Optional[float] = None   # height-field pitch for meshes


@dataclass
class Finish3DSettings:
    pattern: FinishPattern = FinishPattern.RASTER
    stepover: Optional[float] = None
    cusp_height: Optional[float] = None
    raster_angle: float = 0.0
    boundary: Boundary3D = Boundary3D.MODEL
    boundary_offset: float = 0.0
    resolution: Optional[float] = None
    pencil_threshold: float = 0.05     # min concavity (1/mm) followed by pencil


OperationSettings = Union[
    ProfileSettings, PocketSettings, DrillSettings, VCarveSettings,
    EngraveSettings, FacingSettings, Rough3DSettings, Finish3DSettings,
]

SETTINGS_KINDS: dict[type, OperationKind] = {
    ProfileSettings: OperationKind.PROFILE,
    PocketSettings: OperationKind.POCKET,
    DrillSettings: OperationKind.DRILL,
    VCarveSettings: OperationKind.VCARVE,
    EngraveSettings: OperationKind.ENGRAVE,
    FacingSettings: OperationKind.FACING,
    Rough3DSettings: OperationKind.ROUGH_3D,
    Finish3DSettings: OperationKind.FINISH_3D,
}


# ---------------------------------------------------------------------------
# Toolpath specification
# ---------------------------------------------------------------------------


@dataclass
class ToolpathSpec:
    """One toolpath as authored by the user.

    Feeds, speeds and depth per pass left as ``None`` fall back to the
    tool's defaults.
    """

    id: str
    name: str
    tool_id: str
    settings: OperationSettings
    source_ids: list[str] = field(default_factory=list)
    enabled: bool = True
    order: int = 0

    cut_depth: float = 3.0
    depth_per_pass: Optional[float] = None
    feed_rate: Optional[float] = None
    plunge_rate: Optional[float] = None
    spindle_speed: Optional[float] = None
    spindle_direction: SpindleDirection = SpindleDirection.CW

    # Clearance planes above the stock top (Z=0)
    safe_height: float = 5.0
    retract_height: float = 1.0

    @property
    def kind(self) -> OperationKind:
        try:
            return SETTINGS_KINDS[type(self.settings)]
        except KeyError:
            raise ConfigurationError(
                f"Toolpath {self.id!r} has unsupported settings "
                f"{type(self.settings).__name__}"
            ) from None

    def validate(self) -> None:
        if type(self.settings) not in SETTINGS_KINDS:
            raise ConfigurationError(
                f"Toolpath {self.id!r} has no operation settings"
            )
        if self.retract_height < 0:
            raise ConfigurationError("retract height must not be below the stock top")
        if self.safe_height < self.retract_height:
            raise ConfigurationError("safe height must be at or above the retract height")
        for name in ("feed_rate", "plunge_rate", "spindle_speed"):
            value = getattr(self, name)
            if value is not None and value <= 0:
                raise ConfigurationError(f"{name} must be positive, got {value}")
        resolution = getattr(self.settings, "resolution", None)
        if resolution is not None and resolution <= 0:
            raise ConfigurationError(f"resolution must be positive, got {resolution}")
        ramp = getattr(self.settings, "ramp", None)
        if ramp is not None:
            ramp.validate()


@dataclass(frozen=True)
class CutParameters:
    """Concrete feeds, speeds and steps after applying tool defaults."""

    cut_depth: float
    depth_per_pass: float
    feed_rate: float
    plunge_rate: float
    spindle_speed: float
    spindle_clockwise: bool
    clearance: Clearance

    def stepover_distance(self, tool: Tool, percent: Optional[float]) -> float:
        """Absolute stepover for *percent* of the tool diameter."""
        pct = tool.default_stepover if percent is None else percent
        if not 0 < pct <= 100:
            raise ConfigurationError(f"stepover must be in (0, 100] percent, got {pct}")
        return tool.diameter * pct / 100.0


def cut_parameters(spec: ToolpathSpec, tool: Tool) -> CutParameters:
    def pick(value, default):
        return default if value is None else value

    feed = pick(spec.feed_rate, tool.default_feed_rate)
    plunge = pick(spec.plunge_rate, tool.default_plunge_rate)
    return CutParameters(
        cut_depth=spec.cut_depth,
        depth_per_pass=pick(spec.depth_per_pass, tool.default_depth_per_pass),
        feed_rate=feed,
        plunge_rate=plunge,
        spindle_speed=pick(spec.spindle_speed, tool.default_spindle_speed),
        spindle_clockwise=spec.spindle_direction is SpindleDirection.CW,
        clearance=Clearance(spec.safe_height, spec.retract_height, feed, plunge),
    )
