"""Cutting tool definitions and tool library with JSON persistence."""

from __future__ import annotations

import json
import math
from dataclasses import dataclass, asdict
from enum import Enum
from pathlib import Path
from typing import Optional

from .errors import ConfigurationError


class ToolType(Enum):
    FLAT_ENDMILL = "flat_endmill"
    BALL_ENDMILL = "ball_endmill"
    BULL_NOSE = "bull_nose"
    V_BIT = "v_bit"
    ENGRAVING = "engraving"
    DRILL = "drill"
    CHAMFER = "chamfer"
    FACE_MILL = "face_mill"


# Tool classes that cut with a conical tip
TAPERED_TYPES = {ToolType.V_BIT, ToolType.ENGRAVING, ToolType.CHAMFER}


@dataclass
class Tool:
    """A cutting tool definition.  All dimensions in millimeters."""
    id: str
    name: str
    tool_type: ToolType
    diameter: float
    number: int = 1
    flute_count: int = 2
    tip_angle: Optional[float] = None      # degrees, tapered tools
    corner_radius: Optional[float] = None  # bull nose
    default_feed_rate: float = 1000.0      # mm/min
    default_plunge_rate: float = 300.0
    default_spindle_speed: int = 18000
    default_depth_per_pass: float = 1.0
    default_stepover: float = 40.0         # percent of diameter

    @property
    def radius(self) -> float:
        return self.diameter / 2.0

    @property
    def is_tapered(self) -> bool:
        return self.tool_type in TAPERED_TYPES

    def half_angle(self) -> float:
        """Half the tip angle in radians.

        Raises ConfigurationError for tools without a tip angle.
        """
        if not self.tip_angle or not 0 < self.tip_angle < 180:
            raise ConfigurationError(
                f"Tool {self.id!r} has no usable tip angle"
            )
        return math.radians(self.tip_angle / 2.0)

    def to_dict(self) -> dict:
        d = asdict(self)
        d["tool_type"] = self.tool_type.value
        return d

    @classmethod
    def from_dict(cls, d: dict) -> Tool:
        d = dict(d)
        d["tool_type"] = ToolType(d["tool_type"])
        return cls(**d)


class ToolLibrary:
    """Persistent tool library backed by a JSON file."""

    def __init__(self, path: Optional[Path] = None):
        if path is None:
            path = Path.home() / ".routercam" / "tools.json"
        self._path = path
        self._tools: dict[str, Tool] = {}
        if self._path.exists():
            self.load()

    @classmethod
    def in_memory(cls, tools=()) -> ToolLibrary:
        lib = cls.__new__(cls)
        lib._path = None
        lib._tools = {}
        for t in tools:
            lib.add(t)
        return lib

    def add(self, tool: Tool) -> None:
        self._tools[tool.id] = tool

    def remove(self, tool_id: str) -> None:
        self._tools.pop(tool_id, None)

    def get(self, tool_id: str) -> Optional[Tool]:
        return self._tools.get(tool_id)

    def require(self, tool_id: Optional[str]) -> Tool:
        """Look up *tool_id* or raise ConfigurationError."""
        tool = self._tools.get(tool_id) if tool_id else None
        if tool is None:
            raise ConfigurationError(f"Tool {tool_id!r} not found in library")
        if tool.diameter <= 0:
            raise ConfigurationError(f"Tool {tool_id!r} has non-positive diameter")
        return tool

    def __contains__(self, tool_id: str) -> bool:
        return tool_id in self._tools

    def list_tools(self) -> list[Tool]:
        return sorted(self._tools.values(), key=lambda t: (t.number, t.id))

    def save(self) -> None:
        if self._path is None:
            raise ValueError("In-memory tool library has no backing file")
        self._path.parent.mkdir(parents=True, exist_ok=True)
        data = [t.to_dict() for t in self.list_tools()]
        self._path.write_text(json.dumps(data, indent=2))

    def load(self) -> None:
        data = json.loads(self._path.read_text())
        self._tools = {}
        for d in data:
            tool = Tool.from_dict(d)
            self._tools[tool.id] = tool
