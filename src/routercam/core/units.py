"""Output units for post-processed programs.

Designs, tools and motion plans are always in millimetres with feed rates
in mm/min.  A post profile that writes inches converts positions, arc
centres and feed rates at emission time; since both are linear in length,
one factor serves for all of them.
"""

from enum import Enum

from .errors import ConfigurationError

MM_PER_INCH = 25.4

_ALIASES = {"in": "inch", "inches": "inch", "millimeter": "mm", "millimeters": "mm"}


class Units(Enum):
    MM = "mm"
    INCH = "inch"

    @classmethod
    def parse(cls, text: str) -> "Units":
        """Units from a job or post file; accepts ``in``/``inches`` too."""
        key = str(text).strip().lower()
        try:
            return cls(_ALIASES.get(key, key))
        except ValueError:
            raise ConfigurationError(f"Unknown units {text!r}") from None

    def to_mm(self, value: float) -> float:
        if self is Units.MM:
            return value
        return value * MM_PER_INCH

    def from_mm(self, value: float) -> float:
        """Position or mm/min feed rate expressed in these units."""
        if self is Units.MM:
            return value
        return value / MM_PER_INCH

    def label(self) -> str:
        return "in" if self is Units.INCH else "mm"

    def feed_label(self) -> str:
        return f"{self.label()}/min"

    @property
    def gcode_modal(self) -> str:
        """G-code modal group 6 word."""
        return "G20" if self is Units.INCH else "G21"
