#!/usr/bin/env python3
"""
expander.py - Recursive Include Expansion

domain-list-community files pull other files in with ``include:`` lines:

    # Google services
    include:google-ads
    include:youtube @cn
    domain:google.com
    full:www.google.com @ads

Expansion flattens a file into a single stream of rule lines:

    - Comment lines (leading #) and blank lines are dropped
    - ``include:<name>`` is replaced in place by the expanded content of
      ``<data_dir>/<name>``
    - Every other line is passed through unchanged, attributes included

Attribute-qualified includes narrow what gets spliced in:

    include:youtube @cn     -> only included lines tagged @cn
    include:youtube @-cn    -> included lines tagged @cn are dropped

Failure Modes (both non-fatal):
    - Missing include target: expands to nothing
    - Circular include: a warning is recorded and the repeated file expands
      to nothing, so the caller still gets everything else

The visited set only covers the current include chain. Two siblings that
include the same file both get its content; dedup happens later.
"""
from __future__ import annotations

import re
from pathlib import Path
from typing import Final

from ruleset.cleaner import extract_attributes
from ruleset.rules import is_comment

#: Include directive: include:<name> [@attr ...]
INCLUDE_PATTERN: Final[re.Pattern[str]] = re.compile(r"^include:(\S+)(.*)$")


def _qualifies(line: str, required: set[str], excluded: set[str]) -> bool:
    """Check an included line against an include's attribute qualifiers."""
    attrs = extract_attributes(line)
    if required and not required <= attrs:
        return False
    return not (excluded & attrs)


def _parse_qualifiers(qualifiers: str) -> tuple[set[str], set[str]]:
    """Split ``@a @-b`` into (required, excluded) attribute sets."""
    required: set[str] = set()
    excluded: set[str] = set()
    for attr in extract_attributes(qualifiers):
        if attr.startswith("-"):
            excluded.add(attr[1:])
        else:
            required.add(attr)
    return required, excluded


def expand_includes(
    path: str | Path,
    data_dir: str | Path,
    visited: frozenset[Path] = frozenset(),
    warnings: list[str] | None = None,
) -> list[str]:
    """
    Expand a list file and everything it includes.

    Args:
        path: File to expand
        data_dir: Directory include targets are resolved against
        visited: Resolved paths already on the current include chain
        warnings: Optional sink for diagnostics (circular includes)

    Returns:
        Rule lines in source order, includes spliced in place. Empty if the
        file does not exist or closes a cycle.

    Example:
        >>> expand_includes("data/google", "data")
        ['domain:google.com', 'full:www.google.com @ads', ...]
    """
    path = Path(path)
    if not path.is_file():
        return []

    resolved = path.resolve()
    if resolved in visited:
        if warnings is not None:
            warnings.append(f"Circular include detected for {path}")
        return []
    visited = visited | {resolved}

    lines: list[str] = []
    with open(path, encoding="utf-8-sig", errors="replace") as f:
        for raw in f:
            line = raw.rstrip("\r\n")

            if not line.strip() or is_comment(line):
                continue

            match = INCLUDE_PATTERN.match(line.strip())
            if not match:
                lines.append(line)
                continue

            included = expand_includes(
                Path(data_dir) / match.group(1), data_dir, visited, warnings
            )
            required, excluded = _parse_qualifiers(match.group(2))
            if required or excluded:
                included = [l for l in included if _qualifies(l, required, excluded)]
            lines.extend(included)

    return lines
