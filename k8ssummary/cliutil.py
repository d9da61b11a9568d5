"""Command-line helpers: argument reordering, --since normalisation and report naming."""

from __future__ import annotations

import os
import re
from datetime import timezone

from .timeutil import _parse_rfc3339

_KNOWN_FLAGS = frozenset({"-dump", "-nodes", "-out", "-galera-since"})
_FRACTION_RE = re.compile(r"\.([0-9]+)")
_TRUNCATION_NOTE = "\n… (truncated)\n"


def pull_known_flags(argv: list[str]) -> list[str]:
    """Move value-taking flags (with their values) ahead of positional arguments.

    This lets both ``-out report.html dump.tar.gz`` and
    ``dump.tar.gz -out report.html`` parse the same way.
    """
    pulled: list[str] = []
    rest: list[str] = []
    args = iter(enumerate(argv))
    for position, arg in args:
        if arg in _KNOWN_FLAGS and position + 1 < len(argv):
            _, value = next(args)
            pulled.extend((arg, value))
        else:
            rest.append(arg)
    return pulled + rest


def normalize_galera_since(text: str) -> str:
    """Return "" for empty input, else the instant as a UTC RFC 3339 string.

    Fractional seconds keep up to nanosecond precision with trailing zeros removed.
    Raises ValueError when the text is not an RFC 3339 timestamp.
    """
    text = text.strip()
    if not text:
        return ""
    moment = _parse_rfc3339(text)
    if moment is None:
        raise ValueError(_invalid_since(text))
    try:
        utc = moment.astimezone(timezone.utc)
    except (OverflowError, ValueError) as exc:
        raise ValueError(_invalid_since(text)) from exc
    match = _FRACTION_RE.search(text)
    nanos = (match.group(1)[:9] if match else "").ljust(9, "0").rstrip("0")
    fraction = f".{nanos}" if nanos else ""
    return f"{utc.year:04d}-{utc:%m-%dT%H:%M:%S}{fraction}Z"


def _invalid_since(text: str) -> str:
    return (
        f'galera-since: invalid time "{text}" (use RFC3339, e.g. '
        "2023-01-05T03:24:26Z or 2023-01-05T03:24:26.000000Z)"
    )


def default_report_name_from_archive(archive_path: str | os.PathLike[str]) -> str:
    """Derive ``reports/<stem>-summary.html`` from a cluster dump archive path."""
    base = os.path.basename(os.fspath(archive_path))
    lower = base.lower()
    stem = base
    for suffix in (".tar.gz", ".tgz"):
        if lower.endswith(suffix):
            stem = base[: len(base) - len(suffix)]
            break
    stem = stem.strip()
    if stem in ("", "."):
        stem = "cluster-dump"
    return os.path.join("reports", f"{stem}-summary.html")


def truncate_text(data: bytes, limit: int) -> str:
    """Decode ``data`` for display, cutting it at ``limit`` bytes with a note appended."""
    if limit <= 0 or len(data) <= limit:
        return data.decode("utf-8", errors="replace")
    return data[:limit].decode("utf-8", errors="replace") + _TRUNCATION_NOTE