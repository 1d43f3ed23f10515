#!/usr/bin/env python3
"""
cleaner.py - Attribute-Based Rule Filtering

Community rule lines may carry attribute markers after the value:

    domain:example.com @ads @cn
    full:tracker.example.net @ads

A derived list drops every line tagged with one of its excluded attributes.
For example ``geolocation-cn`` excludes ``@ads`` and ``@!cn``.

Matching Rules:
    - An excluded attribute matches as ``@<attr>`` followed by whitespace or
      end of line, so excluding ``cn`` does not drop ``@cnX`` or ``@!cn``.
    - A line is dropped if it carries ANY excluded attribute.
    - Attribute names are literal tokens; regex metacharacters are escaped
      before the combined exclusion pattern is built.
    - An empty exclusion set keeps every line.

Attributes are only consulted here. They never reach the emitted output.
"""
from __future__ import annotations

import re
from typing import Final, Iterable

#: Attribute marker: @ followed by a non-whitespace token
ATTRIBUTE_PATTERN: Final[re.Pattern[str]] = re.compile(r"@(\S+)")


def _attribute_name(attr: str) -> str:
    """Strip surrounding whitespace and an optional leading @."""
    attr = attr.strip()
    return attr[1:] if attr.startswith("@") else attr


def build_exclusion_pattern(exclude_attrs: Iterable[str]) -> re.Pattern[str] | None:
    """
    Build one pattern matching any excluded attribute marker.

    Args:
        exclude_attrs: Attribute names, with or without the leading @

    Returns:
        Compiled pattern, or None if there is nothing to exclude

    Example:
        >>> build_exclusion_pattern(["@ads", "!cn"]).pattern
        '@(?:!cn|ads)(?=\\\\s|$)'
        >>> build_exclusion_pattern([]) is None
        True
    """
    names = sorted({name for name in map(_attribute_name, exclude_attrs) if name})
    if not names:
        return None

    alternatives = "|".join(re.escape(name) for name in names)
    return re.compile(rf"@(?:{alternatives})(?=\s|$)")


def filter_attributes(lines: Iterable[str], exclude_attrs: Iterable[str]) -> list[str]:
    """
    Drop lines tagged with any excluded attribute.

    Example:
        >>> filter_attributes(["foo.com @ads @cn", "bar.com @ads"], {"cn"})
        ['bar.com @ads']
    """
    pattern = build_exclusion_pattern(exclude_attrs)
    if pattern is None:
        return list(lines)
    return [line for line in lines if not pattern.search(line)]


def extract_attributes(line: str) -> set[str]:
    """
    Collect the attribute names carried by a line.

    Example:
        >>> sorted(extract_attributes("domain:example.com @ads @!cn"))
        ['!cn', 'ads']
    """
    return set(ATTRIBUTE_PATTERN.findall(line))
