"""Application preferences (persisted to disk)."""

from __future__ import annotations

import json
from dataclasses import dataclass, asdict
from pathlib import Path
from typing import Optional

from ..core.geometry import DEFAULT_TOLERANCE
from .machine_profiles import DEFAULT_MACHINE


@dataclass
class AppSettings:
    """User preferences, serialized to ~/.routercam/settings.json."""

    default_machine: str = DEFAULT_MACHINE
    default_post: str = "grbl"
    tolerance: float = DEFAULT_TOLERANCE
    last_open_dir: str = ""
    last_save_dir: str = ""

    @staticmethod
    def _path() -> Path:
        return Path.home() / ".routercam" / "settings.json"

    def save(self, path: Optional[Path] = None) -> None:
        p = path or self._path()
        p.parent.mkdir(parents=True, exist_ok=True)
        p.write_text(json.dumps(asdict(self), indent=2))

    @classmethod
    def load(cls, path: Optional[Path] = None) -> "AppSettings":
        p = path or cls._path()
        if p.exists():
            data = json.loads(p.read_text())
            return cls(**{k: v for k, v in data.items() if k in cls.__dataclass_fields__})
        return cls()
