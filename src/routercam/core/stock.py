"""Stock (workpiece blank) definition."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class Stock:
    """Rectangular stock definition in millimeters.

    Z=0 is the **top** of the stock.  Negative Z values go down into the
    material, so the bottom face sits at ``-thickness``.

    Parameters
    ----------
    x_size, y_size, thickness:
        Bounding dimensions of the stock block.
    x_origin, y_origin:
        XY offset of the stock's lower-left corner from the work origin.
    """

    x_size: float
    y_size: float
    thickness: float
    x_origin: float = 0.0
    y_origin: float = 0.0

    @property
    def z_top(self) -> float:
        return 0.0

    @property
    def z_bottom(self) -> float:
        return -self.thickness

    @property
    def x_min(self) -> float:
        return self.x_origin

    @property
    def x_max(self) -> float:
        return self.x_origin + self.x_size

    @property
    def y_min(self) -> float:
        return self.y_origin

    @property
    def y_max(self) -> float:
        return self.y_origin + self.y_size

    @property
    def bounds_2d(self) -> tuple[float, float, float, float]:
        """(xmin, ymin, xmax, ymax) of the stock footprint."""
        return (self.x_min, self.y_min, self.x_max, self.y_max)

    def as_shapely_polygon(self):
        """Return a Shapely Polygon of the stock XY footprint."""
        from shapely.geometry import box

        return box(self.x_min, self.y_min, self.x_max, self.y_max)
