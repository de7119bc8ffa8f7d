"""Exception taxonomy and non-fatal warning records.

Fatal problems are raised as exceptions and abort only the toolpath being
generated.  Non-fatal problems are collected as :class:`GeometryWarning`
records in a :class:`WarningSink` and travel with the result.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional


class RouterCamError(Exception):
    """Base class for all engine errors."""


class ConfigurationError(RouterCamError):
    """Missing or invalid tool, machine or settings reference."""


class EmptyGeometryError(RouterCamError):
    """No cuttable input.  Recoverable: yields zero commands plus a warning."""

    def __init__(self, message: str, source_id: Optional[str] = None):
        super().__init__(message)
        self.source_id = source_id


class ScheduleError(RouterCamError):
    """Invalid depth schedule (non-positive step or negative depth)."""


class BatchAbortedError(RouterCamError):
    """A batch export stopped at the first fatal toolpath error.

    ``partial`` holds the :class:`~routercam.core.job.BatchResult` built from
    the toolpaths that completed before the failure.
    """

    def __init__(self, message: str, partial):
        super().__init__(message)
        self.partial = partial


@dataclass(frozen=True)
class GeometryWarning:
    """A non-fatal problem attached to the originating toolpath."""

    code: str
    message: str
    source_id: Optional[str] = None

    def __str__(self) -> str:
        if self.source_id:
            return f"[{self.code}] {self.source_id}: {self.message}"
        return f"[{self.code}] {self.message}"


@dataclass
class WarningSink:
    """Collects warnings for one toolpath generation."""

    items: list[GeometryWarning] = field(default_factory=list)

    def warn(self, code: str, message: str, source_id: Optional[str] = None) -> None:
        self.items.append(GeometryWarning(code, message, source_id))

    def extend(self, warnings) -> None:
        self.items.extend(warnings)

    def __iter__(self):
        return iter(self.items)

    def __len__(self) -> int:
        return len(self.items)

    def codes(self) -> list[str]:
        return [w.code for w in self.items]
