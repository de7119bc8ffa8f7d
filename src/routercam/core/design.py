"""Design object graph consumed from the editing surface.

Objects are plain frozen dataclasses keyed by ``id``.  Every object carries
a :class:`Transform2D`; nested groups compose transforms through
``parent_transform``.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, Union

import numpy as np


@dataclass(frozen=True)
class Transform2D:
    """Scale, then rotate (degrees, counter-clockwise), then translate."""

    x: float = 0.0
    y: float = 0.0
    rotation: float = 0.0
    scale_x: float = 1.0
    scale_y: float = 1.0

    def matrix(self) -> np.ndarray:
        """3x3 homogeneous matrix for this transform."""
        a = math.radians(self.rotation)
        c, s = math.cos(a), math.sin(a)
        return np.array([
            [c * self.scale_x, -s * self.scale_y, self.x],
            [s * self.scale_x, c * self.scale_y, self.y],
            [0.0, 0.0, 1.0],
        ])

    def apply(self, points: np.ndarray) -> np.ndarray:
        """Transform an ``(N, 2)`` array of points."""
        pts = np.asarray(points, dtype=float).reshape(-1, 2)
        m = self.matrix()
        return pts @ m[:2, :2].T + m[:2, 2]

    def compose(self, parent: "Transform2D") -> np.ndarray:
        """Matrix of ``parent`` applied after this transform."""
        return parent.matrix() @ self.matrix()


class PointType(Enum):
    MOVE = "move"
    LINE = "line"
    CURVE = "curve"


@dataclass(frozen=True)
class PathPoint:
    """A path vertex.  ``curve`` points are cubic Bezier ends whose control
    points are the previous point's ``handle_out`` and this point's
    ``handle_in`` (both absolute, in object coordinates)."""

    x: float
    y: float
    type: PointType = PointType.LINE
    handle_in: Optional[tuple[float, float]] = None
    handle_out: Optional[tuple[float, float]] = None


class ShapeType(Enum):
    RECTANGLE = "rectangle"
    ELLIPSE = "ellipse"
    POLYGON = "polygon"
    STAR = "star"
    LINE = "line"
    ARC = "arc"


@dataclass(frozen=True)
class DesignObject:
    id: str
    name: str = ""
    transform: Transform2D = field(default_factory=Transform2D)
    parent_transform: Optional[Transform2D] = None

    def matrix(self) -> np.ndarray:
        if self.parent_transform is None:
            return self.transform.matrix()
        return self.transform.compose(self.parent_transform)


@dataclass(frozen=True)
class VectorPath(DesignObject):
    points: tuple[PathPoint, ...] = ()
    closed: bool = False


@dataclass(frozen=True)
class VectorShape(DesignObject):
    """Parametric shape centred on the transform origin.

    ``params`` keys per shape type:

    - rectangle: ``width``, ``height``, ``corner_radius``
    - ellipse: ``radius_x``, ``radius_y``
    - polygon: ``sides``, ``radius``
    - star: ``points``, ``outer_radius``, ``inner_radius``
    - line: ``x2``, ``y2``
    - arc: ``radius``, ``start_angle``, ``end_angle`` (degrees)
    """

    shape_type: ShapeType = ShapeType.RECTANGLE
    params: dict = field(default_factory=dict)


@dataclass(frozen=True)
class TextObject(DesignObject):
    """Text already converted to outline paths by the editing surface."""

    content: str = ""
    path_data: tuple[tuple[PathPoint, ...], ...] = ()


@dataclass(frozen=True)
class PointMarker(DesignObject):
    """A single drill location at the transform origin."""


@dataclass(frozen=True)
class HeightMapObject(DesignObject):
    """Relief defined by a normalised height grid.

    ``heights`` is a 2D array (rows along Y) of values in ``[0, 1]``; 1 is
    the stock top and 0 sits ``depth`` below it.  The grid covers
    ``width x height`` mm with its lower-left corner at the transform origin.
    """

    heights: np.ndarray = field(default_factory=lambda: np.zeros((2, 2)))
    width: float = 100.0
    height: float = 100.0
    depth: float = 5.0
    invert: bool = False


@dataclass(frozen=True)
class MeshObject(DesignObject):
    """Relief taken from a mesh file (STL, OBJ, ...) loaded with trimesh."""

    path: str = ""
    depth: Optional[float] = None


AnyObject = Union[VectorPath, VectorShape, TextObject, PointMarker,
                  HeightMapObject, MeshObject]
