"""Low-level G-code word and line formatting helpers."""

from __future__ import annotations

from typing import Optional


def fmt(value: float, decimals: int = 3) -> str:
    """Format a float with exactly *decimals* digits, never as ``-0``."""
    text = f"{value:.{decimals}f}"
    if text.startswith("-") and float(text) == 0.0:
        text = text[1:]
    return text


def _axes(x, y, z, decimals: int) -> list[str]:
    parts = []
    if x is not None:
        parts.append(f"X{fmt(x, decimals)}")
    if y is not None:
        parts.append(f"Y{fmt(y, decimals)}")
    if z is not None:
        parts.append(f"Z{fmt(z, decimals)}")
    return parts


def rapid(
    x: Optional[float] = None,
    y: Optional[float] = None,
    z: Optional[float] = None,
    decimals: int = 3,
) -> str:
    """G0 rapid traverse."""
    return " ".join(["G0"] + _axes(x, y, z, decimals))


def linear(
    x: Optional[float] = None,
    y: Optional[float] = None,
    z: Optional[float] = None,
    f: Optional[float] = None,
    decimals: int = 3,
) -> str:
    """G1 linear interpolation."""
    parts = ["G1"] + _axes(x, y, z, decimals)
    if f is not None:
        parts.append(f"F{fmt(f, 1)}")
    return " ".join(parts)


def arc(
    clockwise: bool,
    x: float,
    y: float,
    i: float,
    j: float,
    z: Optional[float] = None,
    f: Optional[float] = None,
    decimals: int = 3,
) -> str:
    """G2/G3 circular interpolation with centre offsets I/J."""
    parts = ["G2" if clockwise else "G3"] + _axes(x, y, z, decimals)
    parts += [f"I{fmt(i, decimals)}", f"J{fmt(j, decimals)}"]
    if f is not None:
        parts.append(f"F{fmt(f, 1)}")
    return " ".join(parts)


def dwell(seconds: float) -> str:
    return f"G4 P{fmt(seconds, 2)}"


def spindle_on(rpm: float, clockwise: bool = True) -> str:
    return f"{'M3' if clockwise else 'M4'} S{int(round(rpm))}"


def comment(text: str, style: str = "parentheses") -> Optional[str]:
    """Render *text* as a comment in *style*; ``None`` when comments are off."""
    if style == "none":
        return None
    if style == "semicolon":
        return f"; {text}"
    # Parenthesised comments cannot nest
    cleaned = text.replace("(", "").replace(")", "")
    return f"({cleaned})"
