"""Motion validation and sanity checks.

Checks generated motion plans against machine travel limits and other
safety rules before cutting.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional

import numpy as np

from ..core.toolpath.base import MotionPlan, MoveType

_EPS = 1e-6


@dataclass
class MachineEnvelope:
    """Axis travel limits of a router, in millimeters of work coordinates."""

    x_min: float = 0.0
    x_max: float = 300.0
    y_min: float = 0.0
    y_max: float = 300.0
    z_min: float = -100.0
    z_max: float = 100.0
    max_rpm: int = 24000
    min_rpm: int = 0
    max_feed: float = 5000.0  # mm/min


@dataclass
class ValidationIssue:
    """A single validation problem found in the motion."""

    severity: str  # "error" or "warning"
    message: str
    point: Optional[tuple[float, float, float]] = None


@dataclass
class ValidationResult:
    """Result of validating one or more motion plans."""

    issues: list[ValidationIssue] = field(default_factory=list)

    @property
    def has_errors(self) -> bool:
        return any(i.severity == "error" for i in self.issues)

    @property
    def has_warnings(self) -> bool:
        return any(i.severity == "warning" for i in self.issues)

    @property
    def is_ok(self) -> bool:
        return len(self.issues) == 0

    def errors(self) -> list[ValidationIssue]:
        return [i for i in self.issues if i.severity == "error"]

    def warnings(self) -> list[ValidationIssue]:
        return [i for i in self.issues if i.severity == "warning"]


def _axis_issues(pts: np.ndarray, axis: int, name: str, lo: float, hi: float):
    values = pts[:, axis]
    bad = (values < lo - _EPS) | (values > hi + _EPS)
    if not bad.any():
        return None
    k = int(np.flatnonzero(bad)[0])
    return ValidationIssue(
        "error",
        f"{name}={values[k]:.4f} outside travel [{lo}, {hi}]",
        tuple(float(v) for v in pts[k]),
    )


def validate_plans(
    plans: list[MotionPlan],
    envelope: MachineEnvelope,
    rpm: Optional[float] = None,
    safe_height: Optional[float] = None,
) -> ValidationResult:
    """Check *plans* against *envelope* limits.

    Checks performed:
    - All XYZ coordinates within machine travel
    - Feed rates within machine maximum
    - RPM within machine range (each plan's speed unless *rpm* is given)
    - Rapids below *safe_height* only as vertical approach moves
    - Motion is non-empty
    """
    result = ValidationResult()

    speeds = {rpm} if rpm is not None else {p.spindle_speed for p in plans if not p.is_empty}
    for speed in sorted(speeds):
        if speed < envelope.min_rpm:
            result.issues.append(ValidationIssue(
                "error",
                f"RPM {speed:g} below machine minimum ({envelope.min_rpm})",
            ))
        if speed > envelope.max_rpm:
            result.issues.append(ValidationIssue(
                "error",
                f"RPM {speed:g} above machine maximum ({envelope.max_rpm})",
            ))

    all_empty = True
    for plan in plans:
        if plan.is_empty:
            continue
        all_empty = False

        for seg in plan.segments:
            pts = seg.linearized()
            # Travel limit checks, one issue per axis and segment
            for axis, name, lo, hi in (
                (0, "X", envelope.x_min, envelope.x_max),
                (1, "Y", envelope.y_min, envelope.y_max),
                (2, "Z", envelope.z_min, envelope.z_max),
            ):
                issue = _axis_issues(pts, axis, name, lo, hi)
                if issue is not None:
                    result.issues.append(issue)

            # Feed rate check
            if seg.feed_rate is not None and seg.feed_rate > envelope.max_feed:
                result.issues.append(ValidationIssue(
                    "warning",
                    f"Feed {seg.feed_rate:.1f} exceeds machine max "
                    f"({envelope.max_feed:.1f})",
                    tuple(float(v) for v in seg.start),
                ))

            # Rapid clearance: below safe height only straight up or down
            if safe_height is not None and seg.move_type is MoveType.RAPID:
                low = seg.points[:, 2] < safe_height - _EPS
                moved_xy = not np.allclose(seg.points[0, :2], seg.points[-1, :2], atol=_EPS)
                if low.any() and moved_xy:
                    result.issues.append(ValidationIssue(
                        "error",
                        f"Rapid below safe height {safe_height:g} in "
                        f"'{plan.operation_name}'",
                        tuple(float(v) for v in seg.end),
                    ))

    if all_empty:
        result.issues.append(ValidationIssue(
            "warning",
            "All motion plans are empty; no G-code will be generated",
        ))

    return result
