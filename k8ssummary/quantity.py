"""Kubernetes resource quantity parsing and human-readable sizes."""

from __future__ import annotations

import re

_QUANTITY_RE = re.compile(r"([0-9]*\.?[0-9]+)([A-Za-z]*)")

_MULTIPLIERS: dict[str, float] = {
    "": 1.0,
    "n": 1e-9,
    "u": 1e-6,
    "m": 1e-3,
    "k": 1e3,
    "M": 1e6,
    "G": 1e9,
    "T": 1e12,
    "P": 1e15,
    "E": 1e18,
    "Ki": float(1024),
    "Mi": float(1024**2),
    "Gi": float(1024**3),
    "Ti": float(1024**4),
    "Pi": float(1024**5),
    "Ei": float(1024**6),
}

_KIB = 1024.0
_MIB = 1024.0**2
_GIB = 1024.0**3


def to_bytes(text: str) -> float | None:
    """Parse a quantity such as ``8Gi`` or ``100Mi``; return None if it is not one."""
    text = text.strip()
    if not text:
        return None
    match = _QUANTITY_RE.fullmatch(text)
    if match is None:
        return None
    multiplier = _MULTIPLIERS.get(match.group(2))
    if multiplier is None:
        return None
    return float(match.group(1)) * multiplier


def human_size(value: float) -> str:
    """Render a byte count as GiB, MiB, KiB or B; non-positive values become a dash."""
    if value <= 0:
        return "—"
    if value >= _GIB:
        return f"{value / _GIB:.2f} GiB"
    if value >= _MIB:
        return f"{value / _MIB:.2f} MiB"
    if value >= _KIB:
        return f"{value / _KIB:.2f} KiB"
    return f"{value:.0f} B"


def human_quantity(text: str) -> str:
    """Parse a quantity string and format it for display."""
    text = text.strip()
    if not text:
        return "—"
    value = to_bytes(text)
    if value is None:
        return text
    return human_size(value)