"""Hobby CNC router machine profiles.

Travel limits, rapid rates and feeds are in millimeters (and mm/min).
"""

from __future__ import annotations

from dataclasses import asdict, dataclass

from ..core.errors import ConfigurationError
from ..gcode.validate import MachineEnvelope


@dataclass
class MachineConfig:
    """Workspace and motion limits of one router."""

    name: str
    x_travel: float
    y_travel: float
    z_travel: float
    rapid_xy: float = 5000.0   # mm/min
    rapid_z: float = 2000.0
    safe_height: float = 10.0
    min_rpm: int = 0
    max_rpm: int = 30000
    max_feed: float = 5000.0
    spindle_delay: float = 0.0   # seconds to reach speed

    def __str__(self) -> str:
        return (
            f"{self.name}  "
            f"X={self.x_travel:g} Y={self.y_travel:g} Z={self.z_travel:g} mm  "
            f"rapids {self.rapid_xy:g}/{self.rapid_z:g} mm/min"
        )

    @property
    def envelope(self) -> MachineEnvelope:
        return MachineEnvelope(
            x_min=0.0, x_max=self.x_travel,
            y_min=0.0, y_max=self.y_travel,
            z_min=-self.z_travel, z_max=self.z_travel,
            max_rpm=self.max_rpm,
            min_rpm=self.min_rpm,
            max_feed=self.max_feed,
        )

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, d: dict) -> MachineConfig:
        return cls(**{k: v for k, v in d.items() if k in cls.__dataclass_fields__})


_MACHINES: dict[str, MachineConfig] = {
    "shapeoko-4": MachineConfig(
        name="Shapeoko 4 Standard",
        x_travel=425.0, y_travel=425.0, z_travel=95.0,
        rapid_xy=10000.0, rapid_z=5000.0, safe_height=15.0,
        max_rpm=30000, max_feed=10000.0,
    ),
    "x-carve-1000": MachineConfig(
        name="X-Carve 1000mm",
        x_travel=750.0, y_travel=750.0, z_travel=65.0,
        rapid_xy=8000.0, rapid_z=2000.0, safe_height=10.0,
        max_rpm=30000, max_feed=8000.0,
    ),
    "onefinity-woodworker": MachineConfig(
        name="Onefinity Woodworker",
        x_travel=816.0, y_travel=816.0, z_travel=133.0,
        rapid_xy=10000.0, rapid_z=3000.0, safe_height=15.0,
        max_rpm=30000, max_feed=10000.0,
    ),
    "longmill-30x30": MachineConfig(
        name="LongMill MK2.5 30x30",
        x_travel=762.0, y_travel=762.0, z_travel=114.3,
        rapid_xy=4000.0, rapid_z=3000.0, safe_height=10.0,
        max_rpm=30000, max_feed=4000.0,
    ),
    "mpcnc-primo": MachineConfig(
        name="MPCNC Primo",
        x_travel=600.0, y_travel=600.0, z_travel=80.0,
        rapid_xy=3000.0, rapid_z=1500.0, safe_height=10.0,
        max_rpm=30000, max_feed=3000.0,
    ),
    "custom": MachineConfig(
        name="Custom Machine",
        x_travel=300.0, y_travel=300.0, z_travel=100.0,
        rapid_xy=5000.0, rapid_z=2000.0, safe_height=10.0,
    ),
}

DEFAULT_MACHINE = "custom"


def get_machine(key: str) -> MachineConfig:
    try:
        return _MACHINES[key]
    except KeyError:
        known = ", ".join(sorted(_MACHINES))
        raise ConfigurationError(f"Unknown machine {key!r} (known: {known})") from None


def list_machines() -> list[str]:
    return list(_MACHINES)
