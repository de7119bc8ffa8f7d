"""Post-processor profiles: the controller dialect of the emitted program.

Tool-change lines may use ``{tool}`` (tool number) and ``{name}``
placeholders.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field, replace
from enum import Enum

from ..core.errors import ConfigurationError
from ..core.units import Units


class CommentStyle(Enum):
    PARENTHESES = "parentheses"
    SEMICOLON = "semicolon"
    NONE = "none"


class ArcPlane(Enum):
    XY = "G17"
    XZ = "G18"
    YZ = "G19"


@dataclass
class PostProcessorProfile:
    """How motion is written for one controller family."""

    name: str
    file_extension: str = "nc"
    line_ending: str = "\n"
    program_start: list[str] = field(default_factory=lambda: ["G90", "G17"])
    program_end: list[str] = field(default_factory=lambda: ["M30"])
    tool_change_start: list[str] = field(default_factory=list)
    tool_change_end: list[str] = field(default_factory=list)
    line_numbers: bool = False
    line_number_start: int = 10
    line_number_increment: int = 10
    decimal_places: int = 3
    arc_support: bool = True
    arc_plane: ArcPlane = ArcPlane.XY
    comment_style: CommentStyle = CommentStyle.PARENTHESES
    units: Units = Units.MM
    spindle_dwell: float = 0.0   # seconds after spindle start

    @property
    def emits_arcs(self) -> bool:
        """Arcs are written as G2/G3 only in the XY plane."""
        return self.arc_support and self.arc_plane is ArcPlane.XY

    def validate(self) -> None:
        if self.decimal_places < 0:
            raise ConfigurationError("decimal_places must be >= 0")
        if self.line_numbers and self.line_number_increment <= 0:
            raise ConfigurationError("line_number_increment must be positive")
        if self.line_ending not in ("\n", "\r\n"):
            raise ConfigurationError("line_ending must be LF or CRLF")

    def to_dict(self) -> dict:
        d = asdict(self)
        d["arc_plane"] = self.arc_plane.value
        d["comment_style"] = self.comment_style.value
        d["units"] = self.units.value
        return d

    @classmethod
    def from_dict(cls, d: dict) -> PostProcessorProfile:
        d = {k: v for k, v in d.items() if k in cls.__dataclass_fields__}
        if "arc_plane" in d:
            d["arc_plane"] = ArcPlane(d["arc_plane"])
        if "comment_style" in d:
            d["comment_style"] = CommentStyle(d["comment_style"])
        if "units" in d:
            d["units"] = Units.parse(d["units"])
        return cls(**d)


PRESET_PROFILES: dict[str, PostProcessorProfile] = {
    "grbl": PostProcessorProfile(
        name="GRBL",
        program_start=["G90", "G17"],
        program_end=["M30"],
        tool_change_start=["M0 ; change to T{tool} {name}"],
        comment_style=CommentStyle.SEMICOLON,
    ),
    "grbl-hal": PostProcessorProfile(
        name="grblHAL",
        program_start=["G90", "G17", "G94"],
        program_end=["M30"],
        tool_change_start=["M6 T{tool}"],
        comment_style=CommentStyle.SEMICOLON,
        spindle_dwell=2.0,
    ),
    "marlin": PostProcessorProfile(
        name="Marlin",
        file_extension="gcode",
        program_start=["G90", "G17"],
        program_end=["M84"],
        tool_change_start=["M0 Change to T{tool} {name}"],
        comment_style=CommentStyle.SEMICOLON,
        arc_support=False,
    ),
    "linuxcnc": PostProcessorProfile(
        name="LinuxCNC",
        file_extension="ngc",
        program_start=["G17", "G90", "G94", "G54"],
        program_end=["M2"],
        tool_change_start=["M6 T{tool}", "G43 H{tool}"],
        decimal_places=4,
        spindle_dwell=1.0,
    ),
    "mach3": PostProcessorProfile(
        name="Mach3",
        file_extension="tap",
        line_ending="\r\n",
        program_start=["G17", "G90", "G40", "G49", "G80"],
        program_end=["M30"],
        tool_change_start=["M6 T{tool}", "G43 H{tool}"],
        line_numbers=True,
        decimal_places=4,
    ),
}


def get_profile(name: str) -> PostProcessorProfile:
    """Return a copy of the preset called *name*."""
    try:
        preset = PRESET_PROFILES[name.lower()]
    except KeyError:
        known = ", ".join(sorted(PRESET_PROFILES))
        raise ConfigurationError(
            f"Unknown post-processor {name!r} (known: {known})") from None
    return replace(
        preset,
        program_start=list(preset.program_start),
        program_end=list(preset.program_end),
        tool_change_start=list(preset.tool_change_start),
        tool_change_end=list(preset.tool_change_end),
    )


def list_profiles() -> list[str]:
    return sorted(PRESET_PROFILES)
