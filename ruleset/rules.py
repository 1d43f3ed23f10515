#!/usr/bin/env python3
"""
rules.py - Rule Model and Line Normalization

Every rule line that survives include expansion and attribute filtering is
canonicalized here to an explicit ``type:value`` form.

Rule Types:
    domain:  -> Suffix  (matches the domain and all of its subdomains)
    full:    -> Full    (exact match only)
    regexp:  -> Regex   (free-form pattern, never syntax-checked)
    keyword: -> Keyword (matches if the domain contains the keyword)
    (none)   -> Suffix  (default for untyped lines)

Normalization Rules:
    1. The value ends at the first ``@`` or whitespace character, so trailing
       attributes (``@ads @cn``) and inline annotations are dropped.
    2. A known type prefix selects the type; anything else is a Suffix rule.
    3. A line whose value is empty produces nothing. There is no such thing
       as a malformed line: at worst it becomes an implicit Suffix rule.

Normalizing is idempotent: ``normalize_line(str(rule)) == rule``.
"""
from __future__ import annotations

import re
from enum import Enum
from typing import Final, Iterable, NamedTuple


class RuleType(Enum):
    """The four canonical rule kinds, valued by their source prefix."""
    SUFFIX = "domain"
    FULL = "full"
    REGEX = "regexp"
    KEYWORD = "keyword"


class Rule(NamedTuple):
    """
    A canonical rule.

    Attributes:
        type: One of the four rule kinds
        value: The matchable payload, attributes stripped

    Example:
        >>> str(Rule(RuleType.FULL, "exact.example.com"))
        'full:exact.example.com'
    """
    type: RuleType
    value: str

    def __str__(self) -> str:
        return f"{self.type.value}:{self.value}"


#: Prefix -> rule type lookup for typed lines
TYPE_PREFIXES: Final[dict[str, RuleType]] = {t.value: t for t in RuleType}

#: The value ends at the first attribute marker or whitespace
VALUE_END_PATTERN: Final[re.Pattern[str]] = re.compile(r"[@\s]")

#: Comment line (leading #, optional whitespace before)
COMMENT_PATTERN: Final[re.Pattern[str]] = re.compile(r"^\s*#")


def is_comment(line: str) -> bool:
    """
    Check if line is a comment (starts with #).

    Example:
        >>> is_comment("  # Google services")
        True
        >>> is_comment("domain:google.com")
        False
    """
    return bool(COMMENT_PATTERN.match(line))


def normalize_line(line: str) -> Rule | None:
    """
    Canonicalize one rule line.

    Args:
        line: A rule line, possibly carrying attributes

    Returns:
        The Rule, or None if the line has no value

    Example:
        >>> normalize_line("domain:example.com @ads")
        Rule(type=<RuleType.SUFFIX: 'domain'>, value='example.com')
        >>> normalize_line("plain.example").type
        <RuleType.SUFFIX: 'domain'>
        >>> normalize_line("   ") is None
        True
    """
    line = line.strip()

    end = VALUE_END_PATTERN.search(line)
    if end:
        line = line[:end.start()]
    if not line:
        return None

    prefix, sep, rest = line.partition(":")
    rule_type = TYPE_PREFIXES.get(prefix) if sep else None
    if rule_type is None:
        return Rule(RuleType.SUFFIX, line)

    if not rest:
        return None
    return Rule(rule_type, rest)


def parse_rules(lines: Iterable[str]) -> list[Rule]:
    """Normalize lines into Rules, silently dropping empty ones."""
    rules: list[Rule] = []
    for line in lines:
        rule = normalize_line(line)
        if rule is not None:
            rules.append(rule)
    return rules


def normalize_lines(lines: Iterable[str]) -> list[str]:
    """Normalize lines into their canonical ``type:value`` strings."""
    return [str(rule) for rule in parse_rules(lines)]
