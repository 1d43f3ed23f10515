#!/usr/bin/env python3
"""
setops.py - Case-Insensitive Set Operations on Rule Lines

All list artifacts are sets of lines under case-insensitive equality, kept
in a case-insensitive sort order so outputs diff cleanly across runs.

Operations:
    dedup:           sorted unique lines, blank lines dropped
    difference:      lines of A not present in B (linear sorted merge)
    union:           dedup over several inputs
    reserve:         keep only Full/Regex/Keyword rules
    prune_redundant: drop rules already covered by a parent suffix rule

Every operation materializes its whole input and returns a new list; none of
them mutate their arguments.
"""
from __future__ import annotations

from functools import lru_cache
from typing import Final, Iterable

import tldextract

from ruleset.rules import Rule, RuleType, normalize_line, parse_rules

# Bundled suffix snapshot only, never fetched
_tld_extract = tldextract.TLDExtract(suffix_list_urls=())

#: Rule types shielded from domain validation
RESERVED_TYPES: Final[frozenset[RuleType]] = frozenset({
    RuleType.FULL,
    RuleType.REGEX,
    RuleType.KEYWORD,
})


def sort_key(line: str) -> tuple[str, str]:
    """Case-insensitive total order: folded text first, raw text breaks ties."""
    return line.lower(), line


def dedup(lines: Iterable[str]) -> list[str]:
    """
    Sort case-insensitively and keep one line per equivalence class.

    The representative kept is the first of its class in sort order.

    Example:
        >>> dedup(["b.com", "A.com", "a.com", "", "  "])
        ['A.com', 'b.com']
    """
    result: list[str] = []
    last: str | None = None

    for line in sorted({l.strip() for l in lines if l.strip()}, key=sort_key):
        folded = line.lower()
        if folded != last:
            result.append(line)
            last = folded

    return result


def difference(a: Iterable[str], b: Iterable[str]) -> list[str]:
    """
    Lines of ``a`` whose case-insensitive value does not occur in ``b``.

    Both sides are sorted first and walked once in step.

    Example:
        >>> difference(["a.com", "B.com", "c.com"], ["b.COM"])
        ['a.com', 'c.com']
    """
    left = sorted((l.strip() for l in a if l.strip()), key=sort_key)
    right = sorted(l.strip().lower() for l in b if l.strip())

    result: list[str] = []
    j = 0
    for line in left:
        folded = line.lower()
        while j < len(right) and right[j] < folded:
            j += 1
        if j < len(right) and right[j] == folded:
            continue
        result.append(line)

    return result


def union(*sources: Iterable[str]) -> list[str]:
    """Merge several line collections into one deduplicated list."""
    merged: list[str] = []
    for source in sources:
        merged.extend(source)
    return dedup(merged)


def reserve(
    lines: Iterable[str],
    keep_types: frozenset[RuleType] = RESERVED_TYPES,
) -> list[str]:
    """
    Keep only rules of the given types, in canonical ``type:value`` form.

    Example:
        >>> reserve(["domain:a.com", "full:b.com", "keyword:ads"])
        ['full:b.com', 'keyword:ads']
    """
    return [str(rule) for rule in parse_rules(lines) if rule.type in keep_types]


@lru_cache(maxsize=65536)
def walk_parent_domains(domain: str) -> tuple[str, ...]:
    """
    Walk up the domain hierarchy down to the registered domain.

    Example: "a.b.example.com" -> ("b.example.com", "example.com")
    """
    ext = _tld_extract(domain)
    if not ext.suffix or not ext.domain:
        return ()

    registered = f"{ext.domain}.{ext.suffix}"
    if not ext.subdomain:
        return ()

    parts = ext.subdomain.split(".")
    parents = [f"{'.'.join(parts[i:])}.{registered}" for i in range(1, len(parts))]
    parents.append(registered)
    return tuple(parents)


def prune_redundant(lines: Iterable[str]) -> list[str]:
    """
    Drop Suffix/Full rules already matched by a parent Suffix rule.

    ``domain:example.com`` covers ``domain:www.example.com`` and
    ``full:api.example.com``. It also covers ``full:example.com`` itself.
    Regex and Keyword rules are never pruned.

    Example:
        >>> prune_redundant(["domain:example.com", "domain:www.example.com"])
        ['domain:example.com']
    """
    rules: list[Rule] = []
    for line in dedup(lines):
        rule = normalize_line(line)
        if rule is not None:
            rules.append(rule)

    suffixes = {r.value.lower() for r in rules if r.type is RuleType.SUFFIX}

    kept: list[str] = []
    for rule in rules:
        if rule.type in (RuleType.SUFFIX, RuleType.FULL):
            value = rule.value.lower()
            if rule.type is RuleType.FULL and value in suffixes:
                continue
            if any(parent in suffixes for parent in walk_parent_domains(value)):
                continue
        kept.append(str(rule))

    return dedup(kept)
