"""Height fields for relief machining.

A :class:`HeightField` stores surface Z values on a regular XY grid, with
Z=0 at the stock top.  Drop-cutter compensation turns the surface into the
height of the tool tip: for every grid node the tool is lowered until it
first touches the surface anywhere under its footprint.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Optional

import numpy as np
from shapely.geometry import Polygon, box
from shapely.ops import unary_union

from .design import HeightMapObject
from .tool import Tool, ToolType


@dataclass(frozen=True)
class HeightField:
    """Surface heights ``z[row, col]``; rows run along Y, columns along X.

    Node ``(i, j)`` sits at ``(x0 + j * dx, y0 + i * dy)``.  Points off the
    grid read as ``outside``.  ``mask`` marks nodes covered by the model.
    """

    z: np.ndarray
    x0: float
    y0: float
    dx: float
    dy: float
    outside: float = 0.0
    mask: Optional[np.ndarray] = None

    def __post_init__(self):
        z = np.array(self.z, dtype=float)
        if z.ndim != 2 or min(z.shape) < 2:
            raise ValueError("height field needs at least a 2x2 grid")
        z.setflags(write=False)
        object.__setattr__(self, "z", z)
        mask = np.ones(z.shape, dtype=bool) if self.mask is None else np.array(self.mask, dtype=bool)
        mask.setflags(write=False)
        object.__setattr__(self, "mask", mask)

    @property
    def ny(self) -> int:
        return self.z.shape[0]

    @property
    def nx(self) -> int:
        return self.z.shape[1]

    @property
    def bounds(self) -> tuple[float, float, float, float]:
        return (self.x0, self.y0,
                self.x0 + (self.nx - 1) * self.dx,
                self.y0 + (self.ny - 1) * self.dy)

    @property
    def pitch(self) -> float:
        return min(self.dx, self.dy)

    @property
    def z_min(self) -> float:
        return float(self.z.min())

    @classmethod
    def from_height_map(cls, obj: HeightMapObject) -> HeightField:
        """Build the surface of a normalised height map.

        Value 1 is the stock top and 0 lies ``depth`` below it.  The grid is
        placed at the object's translation; rotation is not applied.
        """
        v = np.clip(np.asarray(obj.heights, dtype=float), 0.0, 1.0)
        if obj.invert:
            v = 1.0 - v
        ny, nx = v.shape
        return cls(
            z=(v - 1.0) * obj.depth,
            x0=obj.transform.x,
            y0=obj.transform.y,
            dx=obj.width * obj.transform.scale_x / (nx - 1),
            dy=obj.height * obj.transform.scale_y / (ny - 1),
            outside=0.0,
        )

    def sample(self, x, y) -> np.ndarray:
        """Bilinear surface height at ``(x, y)`` (scalars or arrays)."""
        x = np.asarray(x, dtype=float)
        y = np.asarray(y, dtype=float)
        fx = (x - self.x0) / self.dx
        fy = (y - self.y0) / self.dy
        inside = (fx >= -1e-9) & (fx <= self.nx - 1 + 1e-9) & \
                 (fy >= -1e-9) & (fy <= self.ny - 1 + 1e-9)
        fx = np.clip(fx, 0, self.nx - 1)
        fy = np.clip(fy, 0, self.ny - 1)
        j0 = np.minimum(np.floor(fx).astype(int), self.nx - 2)
        i0 = np.minimum(np.floor(fy).astype(int), self.ny - 2)
        tx = fx - j0
        ty = fy - i0
        z = self.z
        top = z[i0, j0] * (1 - tx) + z[i0, j0 + 1] * tx
        bottom = z[i0 + 1, j0] * (1 - tx) + z[i0 + 1, j0 + 1] * tx
        return np.where(inside, top * (1 - ty) + bottom * ty, self.outside)

    def compensate(self, tool: Tool) -> HeightField:
        """Tool-tip heights from drop-cutter over the tool footprint."""
        r = tool.radius
        kx = int(math.ceil(r / self.dx))
        ky = int(math.ceil(r / self.dy))
        padded = np.pad(self.z, ((ky, ky), (kx, kx)), constant_values=self.outside)
        tip = np.full(self.z.shape, -np.inf)
        for j in range(-ky, ky + 1):
            for i in range(-kx, kx + 1):
                rho = math.hypot(i * self.dx, j * self.dy)
                if rho > r + 1e-9:
                    continue
                lift = float(tool_profile(tool, np.array([rho]))[0])
                window = padded[ky + j:ky + j + self.ny, kx + i:kx + i + self.nx]
                np.maximum(tip, window - lift, out=tip)
        return HeightField(tip, self.x0, self.y0, self.dx, self.dy,
                           self.outside, self.mask)

    def laplacian(self) -> np.ndarray:
        """Discrete Laplacian of the surface; positive in valleys."""
        z = np.pad(self.z, 1, mode="edge")
        return ((z[1:-1, 2:] - 2 * z[1:-1, 1:-1] + z[1:-1, :-2]) / self.dx ** 2
                + (z[2:, 1:-1] - 2 * z[1:-1, 1:-1] + z[:-2, 1:-1]) / self.dy ** 2)

    def cells_region(self, cells: np.ndarray):
        """Union of the grid cells flagged in the boolean array *cells*."""
        boxes = []
        hx, hy = self.dx / 2.0, self.dy / 2.0
        for i in range(self.ny):
            row = cells[i]
            if not row.any():
                continue
            # Merge horizontal runs into single boxes
            edges = np.diff(np.concatenate([[0], row.astype(np.int8), [0]]))
            starts = np.flatnonzero(edges == 1)
            ends = np.flatnonzero(edges == -1) - 1
            y = self.y0 + i * self.dy
            for a, b in zip(starts, ends):
                boxes.append(box(self.x0 + a * self.dx - hx, y - hy,
                                 self.x0 + b * self.dx + hx, y + hy))
        if not boxes:
            return Polygon()
        return unary_union(boxes)

    def footprint(self):
        return self.cells_region(self.mask)


def tool_profile(tool: Tool, rho: np.ndarray) -> np.ndarray:
    """Height of the cutting surface above the tip at radial distance *rho*."""
    rho = np.asarray(rho, dtype=float)
    r = tool.radius
    if tool.tool_type is ToolType.BALL_ENDMILL:
        return r - np.sqrt(np.maximum(r * r - rho * rho, 0.0))
    if tool.tool_type is ToolType.BULL_NOSE:
        rc = min(tool.corner_radius or 0.0, r)
        flat = r - rc
        d = np.maximum(rho - flat, 0.0)
        return rc - np.sqrt(np.maximum(rc * rc - d * d, 0.0))
    if tool.is_tapered:
        return rho / math.tan(tool.half_angle())
    return np.zeros_like(rho)


def effective_radius(tool: Tool) -> float:
    """Radius of the rounded tip that leaves scallops, 0 for flat tools."""
    if tool.tool_type is ToolType.BALL_ENDMILL:
        return tool.radius
    if tool.tool_type is ToolType.BULL_NOSE:
        return min(tool.corner_radius or 0.0, tool.radius)
    return 0.0


def cusp_stepover(radius: float, cusp_height: float) -> float:
    """Stepover leaving a scallop of *cusp_height* with a round tip of *radius*."""
    h = min(cusp_height, radius)
    return 2.0 * math.sqrt(max(2.0 * radius * h - h * h, 0.0))
