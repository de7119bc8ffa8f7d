"""JSON job files.

A job file bundles everything one export needs::

    {
      "stock": {"x_size": 200, "y_size": 150, "thickness": 12},
      "machine": "shapeoko-4",
      "post": "grbl",
      "tools": [...],                    # optional, default starter library
      "objects": [{"type": "shape", "id": "sq", ...}, ...],
      "toolpaths": [{"id": "t1", "operation": "profile", ...}, ...]
    }

Relative mesh paths resolve against the job file's directory.
"""

from __future__ import annotations

import json
import typing
from dataclasses import dataclass, field, fields, is_dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Optional, Union

import numpy as np

from ..config.defaults import build_default_tool_library
from ..config.machine_profiles import DEFAULT_MACHINE, MachineConfig, get_machine
from ..gcode.post import PostProcessorProfile, get_profile
from .design import (
    AnyObject,
    HeightMapObject,
    MeshObject,
    PathPoint,
    PointMarker,
    PointType,
    ShapeType,
    TextObject,
    Transform2D,
    VectorPath,
    VectorShape,
)
from .errors import ConfigurationError
from .geometry import DEFAULT_TOLERANCE
from .job import GenerationContext
from .operation import SETTINGS_KINDS, OperationKind, SpindleDirection, ToolpathSpec
from .stock import Stock
from .tool import Tool, ToolLibrary

_SETTINGS_BY_KIND = {kind: cls for cls, kind in SETTINGS_KINDS.items()}


@dataclass
class JobFile:
    """A parsed job file."""

    objects: list[AnyObject]
    tools: ToolLibrary
    stock: Stock
    machine: MachineConfig
    profile: PostProcessorProfile
    toolpaths: list[ToolpathSpec] = field(default_factory=list)
    tolerance: float = DEFAULT_TOLERANCE
    name: str = "Untitled"

    def context(self) -> GenerationContext:
        return GenerationContext.create(self.objects, self.tools, self.stock,
                                        self.machine, self.profile, self.tolerance)


# ---------------------------------------------------------------------------
# Dataclass decoding
# ---------------------------------------------------------------------------


def _convert(tp, value: Any) -> Any:
    if value is None:
        return None
    origin = typing.get_origin(tp)
    if origin is Union:
        args = [a for a in typing.get_args(tp) if a is not type(None)]
        return _convert(args[0], value) if len(args) == 1 else value
    if origin is list:
        (item,) = typing.get_args(tp) or (Any,)
        return [_convert(item, v) for v in value]
    if isinstance(tp, type) and issubclass(tp, Enum):
        return tp(value)
    if is_dataclass(tp):
        return build_dataclass(tp, value)
    return value


def build_dataclass(cls, data: dict):
    """Instantiate *cls* from a plain dict, decoding enums and nested records."""
    if not isinstance(data, dict):
        raise ConfigurationError(f"{cls.__name__} expects an object, got {data!r}")
    hints = typing.get_type_hints(cls)
    names = {f.name for f in fields(cls) if f.init}
    unknown = sorted(set(data) - names)
    if unknown:
        raise ConfigurationError(f"Unknown {cls.__name__} field(s): {', '.join(unknown)}")
    try:
        return cls(**{k: _convert(hints[k], v) for k, v in data.items()})
    except (TypeError, ValueError) as exc:
        raise ConfigurationError(f"Invalid {cls.__name__}: {exc}") from exc


# ---------------------------------------------------------------------------
# Design objects
# ---------------------------------------------------------------------------


def _transform(d: Optional[dict]) -> Optional[Transform2D]:
    return None if d is None else build_dataclass(Transform2D, d)


def _path_points(raw: list) -> tuple[PathPoint, ...]:
    pts = []
    for p in raw:
        if isinstance(p, (list, tuple)):
            pts.append(PathPoint(float(p[0]), float(p[1])))
            continue
        pts.append(PathPoint(
            x=float(p["x"]),
            y=float(p["y"]),
            type=PointType(p.get("type", "line")),
            handle_in=tuple(p["handle_in"]) if p.get("handle_in") else None,
            handle_out=tuple(p["handle_out"]) if p.get("handle_out") else None,
        ))
    return tuple(pts)


def parse_object(d: dict, base_dir: Optional[Path] = None) -> AnyObject:
    kind = d.get("type")
    common = dict(
        id=str(d["id"]),
        name=d.get("name", ""),
        transform=_transform(d.get("transform")) or Transform2D(),
        parent_transform=_transform(d.get("parent_transform")),
    )
    if kind == "path":
        return VectorPath(points=_path_points(d.get("points", [])),
                          closed=bool(d.get("closed", False)), **common)
    if kind == "shape":
        return VectorShape(shape_type=ShapeType(d["shape_type"]),
                           params=dict(d.get("params", {})), **common)
    if kind == "text":
        return TextObject(content=d.get("content", ""),
                          path_data=tuple(_path_points(s) for s in d.get("path_data", [])),
                          **common)
    if kind == "point":
        return PointMarker(**common)
    if kind == "heightmap":
        return HeightMapObject(
            heights=np.asarray(d["heights"], dtype=float),
            width=float(d.get("width", 100.0)),
            height=float(d.get("height", 100.0)),
            depth=float(d.get("depth", 5.0)),
            invert=bool(d.get("invert", False)),
            **common,
        )
    if kind == "mesh":
        path = Path(d["path"])
        if base_dir is not None and not path.is_absolute():
            path = base_dir / path
        return MeshObject(path=str(path), depth=d.get("depth"), **common)
    raise ConfigurationError(f"Unknown design object type {kind!r}")


# ---------------------------------------------------------------------------
# Toolpaths, tools, machine, post
# ---------------------------------------------------------------------------


def parse_toolpath(d: dict) -> ToolpathSpec:
    d = dict(d)
    try:
        kind = OperationKind(d.pop("operation"))
    except (KeyError, ValueError):
        raise ConfigurationError(
            f"Toolpath {d.get('id')!r} needs a valid 'operation'") from None
    settings = build_dataclass(_SETTINGS_BY_KIND[kind], d.pop("settings", {}) or {})
    if "spindle_direction" in d:
        d["spindle_direction"] = SpindleDirection(d["spindle_direction"])
    d.setdefault("name", d.get("id", kind.value))
    known = {f.name for f in fields(ToolpathSpec)} - {"settings"}
    unknown = sorted(set(d) - known)
    if unknown:
        raise ConfigurationError(f"Unknown toolpath field(s): {', '.join(unknown)}")
    try:
        return ToolpathSpec(settings=settings, **d)
    except TypeError as exc:
        raise ConfigurationError(f"Invalid toolpath: {exc}") from exc


def _tools(data, base_dir: Path) -> ToolLibrary:
    if data is None:
        return build_default_tool_library()
    if isinstance(data, str):
        path = Path(data)
        return ToolLibrary(path if path.is_absolute() else base_dir / path)
    try:
        return ToolLibrary.in_memory(Tool.from_dict(t) for t in data)
    except (KeyError, TypeError, ValueError) as exc:
        raise ConfigurationError(f"Invalid tool definition: {exc}") from exc


def _machine(data, default: str = DEFAULT_MACHINE) -> MachineConfig:
    if data is None:
        return get_machine(default)
    if isinstance(data, str):
        return get_machine(data)
    return MachineConfig.from_dict(data)


def _profile(data, default: str = "grbl") -> PostProcessorProfile:
    """A preset name, or an object with an optional ``base`` preset plus overrides."""
    if data is None:
        return get_profile(default)
    if isinstance(data, str):
        return get_profile(data)
    data = dict(data)
    base = get_profile(data.pop("base", "grbl")).to_dict()
    base.update(data)
    return PostProcessorProfile.from_dict(base)


def parse_job(
    data: dict,
    base_dir: Optional[Path] = None,
    default_post: str = "grbl",
    default_machine: str = DEFAULT_MACHINE,
) -> JobFile:
    base_dir = base_dir or Path.cwd()
    if "stock" not in data:
        raise ConfigurationError("Job file has no 'stock'")
    return JobFile(
        objects=[parse_object(o, base_dir) for o in data.get("objects", [])],
        tools=_tools(data.get("tools"), base_dir),
        stock=build_dataclass(Stock, data["stock"]),
        machine=_machine(data.get("machine"), default_machine),
        profile=_profile(data.get("post"), default_post),
        toolpaths=[parse_toolpath(t) for t in data.get("toolpaths", [])],
        tolerance=float(data.get("tolerance", DEFAULT_TOLERANCE)),
        name=data.get("name", "Untitled"),
    )


def load_job(path: Path, **defaults) -> JobFile:
    """Read and parse the job file at *path*.

    *defaults* (``default_post``, ``default_machine``) apply when the file
    names no post-processor or machine.
    """
    path = Path(path)
    try:
        data = json.loads(path.read_text())
    except json.JSONDecodeError as exc:
        raise ConfigurationError(f"{path}: invalid JSON ({exc})") from exc
    return parse_job(data, path.parent, **defaults)
