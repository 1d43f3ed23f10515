"""Tests for rule-set document emission."""

import asyncio
import json
from pathlib import Path

from ruleset.emitter import convert_all, convert_file, count_rules, emit, emit_lines, render
from ruleset.rules import RuleType


def test_emit_skips_empty_buckets() -> None:
    document = emit({
        RuleType.SUFFIX: ["plain.example"],
        RuleType.FULL: ["exact.example.com"],
        RuleType.REGEX: [],
        RuleType.KEYWORD: [],
    })

    assert document == {
        "version": 1,
        "rules": [{"domain_suffix": ["plain.example"], "domain": ["exact.example.com"]}],
    }


def test_emit_empty_list_gives_empty_body() -> None:
    assert emit({t: [] for t in RuleType}) == {"version": 1, "rules": [{}]}


def test_emit_key_order() -> None:
    document = emit_lines(["keyword:k", "regexp:^r$", "full:f.com", "domain:d.com"])
    assert list(document["rules"][0]) == ["domain_suffix", "domain", "domain_regex", "domain_keyword"]


def test_emit_lines_skips_comments_and_dedups() -> None:
    document = emit_lines(["# header", "b.com", "domain:A.com", "a.com", ""])
    assert document["rules"][0] == {"domain_suffix": ["A.com", "b.com"]}


def test_render_escapes_and_keeps_unicode() -> None:
    text = render(emit_lines(['regexp:^a"b\\.c$', "keyword:中国"]))

    assert text.endswith("\n")
    assert '"^a\\"b\\\\.c$"' in text
    assert "中国" in text
    assert json.loads(text)["rules"][0]["domain_regex"] == ['^a"b\\.c$']


def test_render_escapes_control_characters() -> None:
    text = render(emit({RuleType.KEYWORD: ["tab\there", "bell\x07"]}))

    assert '"tab\\there"' in text
    assert '"bell\\u0007"' in text
    assert json.loads(text)["rules"][0]["domain_keyword"] == ["tab\there", "bell\x07"]


def test_count_rules() -> None:
    assert count_rules(emit_lines(["a.com", "full:b.com", "keyword:c"])) == 3
    assert count_rules(emit({})) == 0


def test_convert_file_writes_document(tmp_path: Path, write_lines) -> None:
    txt = write_lines(tmp_path / "text" / "sample.txt", ["domain:plain.example", "full:exact.example.com"])
    json_dir = tmp_path / "json"
    json_dir.mkdir()

    result = asyncio.run(convert_file(txt, json_dir))

    assert result.success
    assert result.rules == 2
    document = json.loads((json_dir / "sample.json").read_text(encoding="utf-8"))
    assert document["rules"][0] == {"domain_suffix": ["plain.example"], "domain": ["exact.example.com"]}


def test_convert_all_handles_every_list(tmp_path: Path, write_lines) -> None:
    text_dir = tmp_path / "text"
    write_lines(text_dir / "one.txt", ["domain:a.com"])
    write_lines(text_dir / "empty.txt", [])
    json_dir = tmp_path / "json"

    results = asyncio.run(convert_all(text_dir, json_dir, concurrency=2))

    assert [r.name for r in results] == ["empty", "one"]
    assert all(r.success for r in results)
    assert json.loads((json_dir / "empty.json").read_text(encoding="utf-8")) == {"version": 1, "rules": [{}]}
