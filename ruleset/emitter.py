#!/usr/bin/env python3
"""
emitter.py - Rule-Set Document Emission

Converts normalized text lists into the classified JSON document consumed by
the binary rule-set compiler (sing-box ``rule-set compile``):

    {
      "version": 1,
      "rules": [
        {
          "domain_suffix": ["..."],
          "domain": ["..."],
          "domain_regex": ["..."],
          "domain_keyword": ["..."]
        }
      ]
    }

Rule type mapping:
    domain:  -> domain_suffix  (domain and all subdomains)
    full:    -> domain         (exact match only)
    regexp:  -> domain_regex
    keyword: -> domain_keyword

Document Rules:
    - Only non-empty buckets become keys; an empty bucket is never ``[]``
    - A list with no rules still yields a document, with body ``{}``
    - Keys appear in the order above, values sorted case-insensitively
    - Strings are JSON-escaped; non-ASCII text is written verbatim

Usage:
    python -m ruleset.emitter <text_dir> <json_dir>
"""
from __future__ import annotations

import asyncio
import json
import os
import sys
import time
from pathlib import Path
from typing import Any, Final, Iterable, Mapping, NamedTuple, Sequence

import aiofiles

from ruleset.rules import RuleType, is_comment, parse_rules
from ruleset.validator import classify

#: Rule-set document format version
RULESET_VERSION: Final[int] = 1

#: Rule type -> document key, in emission order
DOCUMENT_KEYS: Final[dict[RuleType, str]] = {
    RuleType.SUFFIX: "domain_suffix",
    RuleType.FULL: "domain",
    RuleType.REGEX: "domain_regex",
    RuleType.KEYWORD: "domain_keyword",
}


class ConvertResult(NamedTuple):
    """Result of converting one text list."""
    name: str
    success: bool
    rules: int = 0
    error: str | None = None


def emit(buckets: Mapping[RuleType, Sequence[str]]) -> dict[str, Any]:
    """
    Build the rule-set document from classified buckets.

    Example:
        >>> emit({RuleType.SUFFIX: ["plain.example"], RuleType.REGEX: []})
        {'version': 1, 'rules': [{'domain_suffix': ['plain.example']}]}
        >>> emit({})
        {'version': 1, 'rules': [{}]}
    """
    body: dict[str, list[str]] = {}
    for rule_type, key in DOCUMENT_KEYS.items():
        values = buckets.get(rule_type)
        if values:
            body[key] = list(values)

    return {"version": RULESET_VERSION, "rules": [body]}


def emit_lines(lines: Iterable[str]) -> dict[str, Any]:
    """Classify text lines (comments skipped) and build their document."""
    rules = parse_rules(line for line in lines if not is_comment(line))
    return emit(classify(rules))


def render(document: Mapping[str, Any]) -> str:
    """Serialize a document to its on-disk form."""
    # Non-ASCII text stays verbatim; other control characters become \uXXXX
    # escapes, since raw ones would make the document invalid JSON.
    return json.dumps(document, indent=2, ensure_ascii=False) + "\n"


def count_rules(document: Mapping[str, Any]) -> int:
    """Total number of values across all buckets of a document."""
    return sum(len(values) for body in document["rules"] for values in body.values())


async def convert_file(txt_path: Path, json_dir: Path) -> ConvertResult:
    """
    Convert one text list into ``<json_dir>/<stem>.json``.

    Returns:
        ConvertResult with the number of rules written
    """
    async with aiofiles.open(txt_path, encoding="utf-8-sig", errors="replace") as f:
        content = await f.read()

    document = await asyncio.to_thread(emit_lines, content.splitlines())

    json_path = json_dir / f"{txt_path.stem}.json"
    async with aiofiles.open(json_path, "w", encoding="utf-8", newline="\n") as f:
        await f.write(render(document))

    return ConvertResult(txt_path.stem, success=True, rules=count_rules(document))


async def convert_all(text_dir: Path, json_dir: Path, concurrency: int) -> list[ConvertResult]:
    """Convert every ``*.txt`` list in text_dir concurrently."""
    json_dir.mkdir(parents=True, exist_ok=True)
    txt_files = sorted(text_dir.glob("*.txt"))

    semaphore = asyncio.Semaphore(concurrency)

    async def convert_with_semaphore(path: Path) -> ConvertResult:
        async with semaphore:
            return await convert_file(path, json_dir)

    results = await asyncio.gather(
        *(convert_with_semaphore(path) for path in txt_files),
        return_exceptions=True,
    )

    final_results: list[ConvertResult] = []
    for path, result in zip(txt_files, results):
        if isinstance(result, BaseException):
            final_results.append(ConvertResult(path.stem, success=False, error=str(result)))
        else:
            final_results.append(result)

    return final_results


def main() -> int:
    """Main entry point."""
    if len(sys.argv) < 3:
        print("Usage: python -m ruleset.emitter <text_dir> <json_dir>")
        return 2

    text_dir = Path(sys.argv[1])
    json_dir = Path(sys.argv[2])

    start_time = time.time()
    results = asyncio.run(convert_all(text_dir, json_dir, os.cpu_count() or 8))

    converted = sum(1 for r in results if r.success)
    print(f"Converted {converted}/{len(results)} lists ({time.time() - start_time:.1f}s)")
    for r in results:
        if not r.success:
            print(f"Warning: {r.name}: {r.error}", file=sys.stderr)

    return 0 if converted == len(results) else 1


if __name__ == "__main__":
    sys.exit(main())
