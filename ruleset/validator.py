#!/usr/bin/env python3
"""
validator.py - Domain Syntax Validation and Rule Classification

Suffix and Full rules must hold a syntactically valid domain name. Regex and
Keyword rules are never syntax-checked.

Validation (RFC 1123 host names):
    - Total length 1-255 characters
    - Dot-separated labels, each 1-63 characters
    - Labels are alphanumeric plus hyphen, never starting or ending with one

Full domain names (FQDN) are stricter: length 3-255 and at least one dot.

Bare Labels:
    A value that is valid but has no dot (``localhost``, ``cn``) is an
    incomplete domain. It never reaches the primary rule-set; it is routed to
    a side "TLD list" instead so it is still recorded.

Invalid values are dropped and counted. They are not errors; upstream lists
contain plenty of them.
"""
from __future__ import annotations

import re
from typing import Final, Iterable, NamedTuple

from ruleset.rules import Rule, RuleType
from ruleset.setops import sort_key

#: One RFC 1123 label
LABEL: Final[str] = r"[a-zA-Z0-9](?:[a-zA-Z0-9-]{0,61}[a-zA-Z0-9])?"

#: One or more labels
DOMAIN_PATTERN: Final[re.Pattern[str]] = re.compile(rf"{LABEL}(?:\.{LABEL})*")

#: Two or more labels
FULL_DOMAIN_PATTERN: Final[re.Pattern[str]] = re.compile(rf"{LABEL}(?:\.{LABEL})+")

#: Rule types that carry a domain name
DOMAIN_TYPES: Final[frozenset[RuleType]] = frozenset({RuleType.SUFFIX, RuleType.FULL})


class ValidationResult(NamedTuple):
    """
    Result of validating a rule collection.

    Attributes:
        rules: Rules kept for the primary rule-set
        tld: Bare single-label values routed to the side list
        rejected: Number of Suffix/Full values failing validation
    """
    rules: list[Rule]
    tld: list[str]
    rejected: int


def is_valid_domain(value: str, min_length: int = 1, max_length: int = 255) -> bool:
    """
    Check general domain syntax.

    Example:
        >>> is_valid_domain("exa--mple.com")
        True
        >>> is_valid_domain("-bad.com")
        False
        >>> is_valid_domain("localhost")
        True
    """
    if not min_length <= len(value) <= max_length:
        return False
    return DOMAIN_PATTERN.fullmatch(value) is not None


def is_full_domain(value: str) -> bool:
    """
    Check for a full domain name: 3-255 characters, at least one dot.

    Example:
        >>> is_full_domain("example.com")
        True
        >>> is_full_domain("localhost")
        False
    """
    if not 3 <= len(value) <= 255:
        return False
    return FULL_DOMAIN_PATTERN.fullmatch(value) is not None


def validate_domains(values: Iterable[str]) -> list[str]:
    """Keep values passing general domain validation."""
    return [v for v in values if is_valid_domain(v)]


def extract_full_domains(values: Iterable[str]) -> list[str]:
    """Keep values that are full domain names."""
    return [v for v in values if is_full_domain(v)]


def validate_rules(rules: Iterable[Rule]) -> ValidationResult:
    """
    Validate Suffix/Full rules and route bare labels to the TLD list.

    Example:
        >>> result = validate_rules([
        ...     Rule(RuleType.SUFFIX, "example.com"),
        ...     Rule(RuleType.SUFFIX, "localhost"),
        ...     Rule(RuleType.FULL, "-bad.com"),
        ...     Rule(RuleType.KEYWORD, "ads"),
        ... ])
        >>> [str(r) for r in result.rules]
        ['domain:example.com', 'keyword:ads']
        >>> result.tld, result.rejected
        (['localhost'], 1)
    """
    kept: list[Rule] = []
    tld: list[str] = []
    rejected = 0

    for rule in rules:
        if rule.type not in DOMAIN_TYPES:
            kept.append(rule)
        elif not is_valid_domain(rule.value):
            rejected += 1
        elif is_full_domain(rule.value):
            kept.append(rule)
        else:
            tld.append(rule.value)

    return ValidationResult(kept, tld, rejected)


def classify(rules: Iterable[Rule]) -> dict[RuleType, list[str]]:
    """
    Group rule values into the four type buckets.

    Every bucket is present (possibly empty), in canonical type order, with
    values sorted case-insensitively and deduplicated.

    Example:
        >>> classify([Rule(RuleType.FULL, "b.com"), Rule(RuleType.FULL, "a.com")])[RuleType.FULL]
        ['a.com', 'b.com']
    """
    buckets: dict[RuleType, dict[str, str]] = {t: {} for t in RuleType}
    for rule in rules:
        buckets[rule.type].setdefault(rule.value.lower(), rule.value)

    return {
        rule_type: sorted(values.values(), key=sort_key)
        for rule_type, values in buckets.items()
    }
