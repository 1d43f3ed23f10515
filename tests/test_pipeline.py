"""Tests for the list-building pipeline."""

import asyncio
import json
from pathlib import Path

import pytest

from ruleset.emitter import emit_lines
from ruleset.expander import expand_includes
from ruleset.pipeline import (
    BuildConfig,
    MandatoryDirectoryMissing,
    MergedList,
    build_community,
    build_rules,
    main,
    merge_custom_files,
    parse_args,
    plan_jobs,
    process,
    run_jobs,
    side_list_name,
)


@pytest.fixture
def source_tree(source_root: Path, upstream: Path, data_dir: Path, write_lines) -> Path:
    write_lines(data_dir / "google", ["domain:google.com", "include:google-ads", "full:www.google.cn @cn"])
    write_lines(data_dir / "google-ads", ["domain:googleadservices.com @ads"])
    write_lines(data_dir / "geolocation-cn", [
        "domain:baidu.com",
        "domain:ads.baidu.com @ads",
        "domain:abroad.example @!cn",
    ])
    write_lines(data_dir / "cn", ["domain:community-only.cn"])

    write_lines(upstream / "dnsmasq-china.conf", [
        "server=/qq.com/114.114.114.114",
        "server=/www.qq.com/114.114.114.114",
        "server=/remove-me.cn/114.114.114.114",
    ])
    write_lines(upstream / "easylist.txt", ["||ads.example.com^"])
    write_lines(upstream / "peterlowe.txt", ["127.0.0.1 tracker.example.org"])

    custom_release = upstream / "domain-list-custom"
    write_lines(custom_release / "cn.txt", ["domain:custom.cn", "full:exact.custom.cn:@cn", "keyword:taobao"])
    write_lines(custom_release / "geolocation-!cn.txt", [
        "domain:google.com",
        "domain:google.cn:@cn",
        "full:www.youtube.com",
    ])

    hidden = upstream / "v2ray-rules-dat-hidden"
    write_lines(hidden / "direct.txt", ["cn"])
    write_lines(hidden / "direct-need-to-remove.txt", ["remove-me.cn"])
    write_lines(hidden / "reject-need-to-remove.txt", ["tracker.example.org"])

    write_lines(source_root / "custom" / "cn.txt", ["domain:added.cn"])
    write_lines(source_root / "custom" / "extra.txt", ["domain:extra.example", "intranet"])

    return source_root


@pytest.fixture
def config(source_tree: Path, tmp_path: Path) -> BuildConfig:
    return BuildConfig(source_dir=source_tree, build_dir=tmp_path / "build", jobs=2)


def test_end_to_end_scenario(data_dir: Path, write_lines) -> None:
    write_lines(data_dir / "other", ["full:exact.example.com"])
    write_lines(data_dir / "main", ["include:other", "domain:example.com @ads", "plain.example"])

    lines = expand_includes(data_dir / "main", data_dir)
    output = build_rules("main", lines, exclude_attrs={"ads"})

    assert output.lines == ["domain:plain.example", "full:exact.example.com"]
    assert output.tld == []

    assert emit_lines(output.lines)["rules"][0] == {
        "domain_suffix": ["plain.example"],
        "domain": ["exact.example.com"],
    }


def test_build_rules_removal_and_reserved() -> None:
    output = build_rules(
        "demo",
        ["a.com", "B.com", "localhost", "-bad.com"],
        removal=["b.com"],
        reserved=["keyword:ads", "full:x.com"],
    )

    assert output.lines == ["domain:a.com", "full:x.com", "keyword:ads"]
    assert output.tld == ["localhost"]
    assert output.rejected == 1


def test_prune_keeps_child_of_removed_parent() -> None:
    lines = ["example.com", "www.example.com", "api.example.org"]

    unpruned = build_rules("demo", lines, removal=["example.com"])
    pruned = build_rules("demo", lines, removal=["example.com"], prune=True)

    assert pruned.lines == unpruned.lines == ["domain:api.example.org", "domain:www.example.com"]


def test_prune_drops_child_of_surviving_parent() -> None:
    output = build_rules("demo", ["example.com", "www.example.com"], prune=True)

    assert output.lines == ["domain:example.com"]


def test_process_writes_lists(config: BuildConfig, read_lines) -> None:
    report = process(config)
    text = config.text_dir

    assert all(o.success for o in report.outcomes)
    assert read_lines(text / "cn.txt") == [
        "domain:added.cn",
        "domain:custom.cn",
        "domain:qq.com",
        "domain:www.qq.com",
        "full:exact.custom.cn",
        "keyword:taobao",
    ]
    assert read_lines(text / "direct-tld-list.txt") == ["cn"]
    assert read_lines(text / "geolocation-!cn.txt") == ["domain:google.com", "full:www.youtube.com"]
    assert read_lines(text / "ads.txt") == ["domain:ads.example.com"]
    assert read_lines(text / "reject-tld-list.txt") == []
    assert read_lines(text / "china-list.txt") == ["domain:qq.com", "domain:remove-me.cn", "domain:www.qq.com"]
    assert read_lines(text / "geolocation-cn.txt") == ["domain:baidu.com"]
    assert read_lines(text / "google.txt") == [
        "domain:google.com",
        "domain:googleadservices.com",
        "full:www.google.cn",
    ]
    assert read_lines(text / "extra.txt") == ["domain:extra.example"]
    assert read_lines(text / "extra-tld-list.txt") == ["intranet"]
    assert read_lines(text / "gfw.txt") == []


def test_process_writes_documents(config: BuildConfig) -> None:
    report = process(config)

    assert all(c.success for c in report.conversions)
    cn = json.loads((config.json_dir / "cn.json").read_text(encoding="utf-8"))
    assert cn == {
        "version": 1,
        "rules": [{
            "domain_suffix": ["added.cn", "custom.cn", "qq.com", "www.qq.com"],
            "domain": ["exact.custom.cn"],
            "domain_keyword": ["taobao"],
        }],
    }
    empty = json.loads((config.json_dir / "win-spy.json").read_text(encoding="utf-8"))
    assert empty == {"version": 1, "rules": [{}]}


def test_bare_labels_never_reach_documents(config: BuildConfig) -> None:
    process(config)

    for path in config.json_dir.glob("*.json"):
        if path.stem.endswith("-tld-list"):
            continue
        body = json.loads(path.read_text(encoding="utf-8"))["rules"][0]
        for values in body.values():
            assert "cn" not in values
            assert "intranet" not in values


def test_process_with_pruning(config: BuildConfig, read_lines) -> None:
    pruned = BuildConfig(config.source_dir, config.build_dir, jobs=1, prune_redundant=True)
    process(pruned)

    assert "domain:www.qq.com" not in read_lines(pruned.text_dir / "cn.txt")
    # additional lists are never pruned
    assert "domain:www.qq.com" in read_lines(pruned.text_dir / "china-list.txt")


def test_missing_gfwlist_is_a_warning(config: BuildConfig) -> None:
    report = process(config)

    gfw = next(o for o in report.outcomes if o.name == "gfw")
    assert gfw.success
    assert any("gfwlist.txt not found" in w for w in gfw.warnings)


def test_community_list_skips_main_list_names(config: BuildConfig) -> None:
    jobs = plan_jobs(config)
    assert jobs["cn"].func.__name__ == "build_direct"
    assert jobs["google"].func is build_community


def test_community_list_replaces_additional_list(config: BuildConfig, data_dir: Path, write_lines) -> None:
    write_lines(data_dir / "gfw", ["domain:community-gfw.example"])

    jobs = plan_jobs(config)

    assert jobs["gfw"].func is build_community
    assert jobs["gfw"]().lines == ["domain:community-gfw.example"]


def test_merged_community_list(config: BuildConfig) -> None:
    merged = BuildConfig(
        config.source_dir, config.build_dir,
        merged=(MergedList("cn-full", ("cn", "geolocation-cn")),),
    )

    output = plan_jobs(merged)["cn-full"]()

    assert output.name == "cn-full"
    assert output.lines == ["domain:baidu.com", "domain:community-only.cn"]


def test_merged_list_reports_missing_member(config: BuildConfig) -> None:
    output = build_community(config, "combo", ("google", "no-such-list"))

    assert output.lines[0] == "domain:google.com"
    assert any("no-such-list" in w for w in output.warnings)


def test_run_jobs_isolates_failures(tmp_path: Path, read_lines) -> None:
    def broken():
        raise RuntimeError("source exploded")

    jobs = {
        "good": lambda: build_rules("good", ["a.com"]),
        "bad": broken,
    }

    outcomes = asyncio.run(run_jobs(jobs, tmp_path / "text", concurrency=2))

    by_name = {o.name: o for o in outcomes}
    assert by_name["good"].success
    assert by_name["good"].rules == 1
    assert not by_name["bad"].success
    assert "source exploded" in by_name["bad"].error
    assert read_lines(tmp_path / "text" / "good.txt") == ["domain:a.com"]
    assert not (tmp_path / "text" / "bad.txt").exists()


def test_merge_custom_files(tmp_path: Path, write_lines, read_lines) -> None:
    custom = tmp_path / "custom"
    text = tmp_path / "text"
    write_lines(custom / "existing.txt", ["domain:new.example", "# comment"])
    write_lines(custom / "fresh.txt", ["full:only.example", "lan"])
    write_lines(text / "existing.txt", ["domain:old.example"])
    warnings: list[str] = []

    merged = merge_custom_files(custom, text, warnings)

    assert merged == ["existing.txt", "fresh.txt"]
    assert read_lines(text / "existing.txt") == ["domain:new.example", "domain:old.example"]
    assert read_lines(text / "fresh.txt") == ["full:only.example"]
    assert read_lines(text / "fresh-tld-list.txt") == ["lan"]
    assert warnings == []


def test_community_list_cannot_take_main_side_list(
    config: BuildConfig, upstream: Path, data_dir: Path, write_lines, read_lines
) -> None:
    write_lines(upstream / "v2ray-rules-dat-hidden" / "proxy.txt", ["mainbare"])
    write_lines(data_dir / "proxy", ["communitybare"])
    write_lines(data_dir / "direct-tld-list", ["domain:clash.example"])
    warnings: list[str] = []

    jobs = plan_jobs(config, warnings)
    asyncio.run(run_jobs(jobs, config.text_dir, concurrency=4))

    assert "proxy" not in jobs
    assert "direct-tld-list" not in jobs
    assert len(warnings) == 2
    assert read_lines(config.text_dir / "proxy-tld-list.txt") == ["mainbare"]
    assert read_lines(config.text_dir / "direct-tld-list.txt") == ["cn"]


def test_community_side_list_collision_between_community_lists(
    config: BuildConfig, data_dir: Path, write_lines
) -> None:
    write_lines(data_dir / "foo", ["domain:foo.example"])
    write_lines(data_dir / "foo-tld-list", ["domain:other.example"])
    warnings: list[str] = []

    jobs = plan_jobs(config, warnings)

    assert "foo" in jobs
    assert "foo-tld-list" not in jobs
    assert any("foo-tld-list" in w for w in warnings)


def test_process_reports_skipped_list(config: BuildConfig, data_dir: Path, write_lines) -> None:
    write_lines(data_dir / "reject", ["domain:reject.example"])

    report = process(config)

    assert any("Skipping list reject" in w for w in report.warnings)
    assert not (config.text_dir / "reject.txt").exists()


def test_side_list_name() -> None:
    assert side_list_name("cn") == "direct-tld-list"
    assert side_list_name("geolocation-!cn") == "proxy-tld-list"
    assert side_list_name("ads") == "reject-tld-list"
    assert side_list_name("google") == "google-tld-list"


def test_custom_main_list_shares_main_side_list(config: BuildConfig, read_lines, write_lines) -> None:
    write_lines(config.custom_lists_dir / "cn.txt", ["domain:added.cn", "lan"])

    process(config)

    assert read_lines(config.text_dir / "direct-tld-list.txt") == ["cn", "lan"]
    assert not (config.text_dir / "cn-tld-list.txt").exists()


def test_merge_custom_files_missing_dir(tmp_path: Path) -> None:
    warnings: list[str] = []
    assert merge_custom_files(tmp_path / "nope", tmp_path / "text", warnings) == []
    assert warnings


def test_process_requires_community_data(tmp_path: Path) -> None:
    config = BuildConfig(source_dir=tmp_path / "empty", build_dir=tmp_path / "build")

    with pytest.raises(MandatoryDirectoryMissing):
        process(config)

    assert not config.text_dir.exists()


def test_main_returns_1_without_community_data(tmp_path: Path, capsys) -> None:
    code = main(["--source-dir", str(tmp_path / "empty"), "--build-dir", str(tmp_path / "build")])

    assert code == 1
    assert "ERROR" in capsys.readouterr().err


def test_main_succeeds(source_tree: Path, tmp_path: Path) -> None:
    code = main(["--source-dir", str(source_tree), "--build-dir", str(tmp_path / "out"), "--jobs", "1"])

    assert code == 0
    assert (tmp_path / "out" / "json" / "cn.json").is_file()


def test_parse_args() -> None:
    config = parse_args([
        "--source-dir", "src", "--jobs", "3", "--prune-redundant",
        "--merge", "cn-full", "cn", "geolocation-cn",
    ])

    assert config.source_dir == Path("src")
    assert config.custom_lists_dir == Path("src") / "custom"
    assert config.jobs == 3
    assert config.prune_redundant
    assert config.merged == (MergedList("cn-full", ("cn", "geolocation-cn")),)


def test_parse_args_rejects_short_merge() -> None:
    with pytest.raises(SystemExit):
        parse_args(["--merge", "lonely"])
