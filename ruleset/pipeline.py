#!/usr/bin/env python3
"""
pipeline.py

Main processing pipeline for domain rule-set builds.

Usage:
    python -m ruleset.pipeline [--source-dir source] [--build-dir build]

Pipeline stages:
1. Check the domain-list-community data directory exists (fatal if not)
2. Build every list in parallel, one text file per list:
   expand includes -> filter attributes -> normalize -> dedup
   -> [prune] -> [remove need-to-remove] -> validate -> write
3. Merge hand-maintained custom lists into the text output
4. Convert every text list to a rule-set document (JSON)

A failing list never stops its siblings; it is reported in the summary.
"""
from __future__ import annotations

import argparse
import asyncio
import os
import shutil
import sys
import time
from dataclasses import dataclass
from functools import partial
from pathlib import Path
from typing import Callable, Final, Iterable, NamedTuple

import aiofiles

from ruleset import sources
from ruleset.cleaner import filter_attributes
from ruleset.emitter import ConvertResult, convert_all
from ruleset.expander import expand_includes
from ruleset.rules import RuleType, normalize_lines, parse_rules
from ruleset.setops import dedup, difference, prune_redundant, reserve, union
from ruleset.validator import validate_rules

# ============================================================================
# CONFIGURATION
# ============================================================================

DEFAULT_SOURCE_DIR: Final[str] = "source"
DEFAULT_BUILD_DIR: Final[str] = "build"
DEFAULT_CONCURRENCY: Final[int] = os.cpu_count() or 8

#: Layout below <source-dir>/upstream
COMMUNITY_DATA: Final[Path] = Path("domain-list-community") / "data"
CUSTOM_RELEASE: Final[Path] = Path("domain-list-custom")
HIDDEN_BRANCH: Final[Path] = Path("v2ray-rules-dat-hidden")
GFWLIST_FILE: Final[Path] = Path("gfwlist") / "gfwlist.txt"

#: Side list suffix for bare single-label values
TLD_LIST_SUFFIX: Final[str] = "-tld-list"

#: Names produced by the main lists; community files of these names are skipped
MAIN_LISTS: Final[frozenset[str]] = frozenset({"cn", "geolocation-!cn", "ads"})

#: Side lists of the main lists, shared with custom files of the same name
MAIN_SIDE_LISTS: Final[dict[str, str]] = {
    "cn": "direct-tld-list",
    "geolocation-!cn": "proxy-tld-list",
    "ads": "reject-tld-list",
}

#: Attribute exclusions per community list
COMMUNITY_EXCLUSIONS: Final[dict[str, frozenset[str]]] = {
    "cn": frozenset({"ads", "!cn"}),
    "geolocation-cn": frozenset({"ads", "!cn"}),
}

SUFFIX_ONLY: Final[frozenset[RuleType]] = frozenset({RuleType.SUFFIX})


@dataclass(frozen=True)
class MergedList:
    """A community output built from the union of several community files."""
    name: str
    members: tuple[str, ...]


@dataclass(frozen=True)
class BuildConfig:
    """Paths and knobs for one build run."""
    source_dir: Path = Path(DEFAULT_SOURCE_DIR)
    build_dir: Path = Path(DEFAULT_BUILD_DIR)
    custom_dir: Path | None = None
    jobs: int = DEFAULT_CONCURRENCY
    prune_redundant: bool = False
    merged: tuple[MergedList, ...] = ()

    @property
    def upstream_dir(self) -> Path:
        return self.source_dir / "upstream"

    @property
    def data_dir(self) -> Path:
        return self.upstream_dir / COMMUNITY_DATA

    @property
    def custom_release_dir(self) -> Path:
        return self.upstream_dir / CUSTOM_RELEASE

    @property
    def hidden_dir(self) -> Path:
        return self.upstream_dir / HIDDEN_BRANCH

    @property
    def custom_lists_dir(self) -> Path:
        return self.custom_dir if self.custom_dir is not None else self.source_dir / "custom"

    @property
    def text_dir(self) -> Path:
        return self.build_dir / "text"

    @property
    def json_dir(self) -> Path:
        return self.build_dir / "json"


# ============================================================================
# DATA STRUCTURES
# ============================================================================

class MandatoryDirectoryMissing(FileNotFoundError):
    """A directory every build needs is absent; nothing can be built."""


class ListOutput(NamedTuple):
    """
    Result of building one list.

    Attributes:
        name: List name (output file stem)
        lines: Final ``type:value`` lines, sorted and deduplicated
        tld: Bare single-label values routed to the side list
        tld_name: Side list name; when set it is written even if empty
        rejected: Suffix/Full values that failed domain validation
        warnings: Diagnostics collected while building
    """
    name: str
    lines: list[str]
    tld: list[str]
    tld_name: str | None
    rejected: int
    warnings: list[str]


class ListOutcome(NamedTuple):
    """What happened to one list, for the summary."""
    name: str
    success: bool
    rules: int = 0
    tld: int = 0
    rejected: int = 0
    warnings: tuple[str, ...] = ()
    error: str | None = None


class BuildReport(NamedTuple):
    """Everything a build run produced."""
    outcomes: list[ListOutcome]
    merged: list[str]
    conversions: list[ConvertResult]
    warnings: list[str]


ListJob = Callable[[], ListOutput]


# ============================================================================
# LIST BUILDERS
# ============================================================================

def build_rules(
    name: str,
    lines: Iterable[str],
    *,
    exclude_attrs: Iterable[str] = (),
    removal: Iterable[str] = (),
    reserved: Iterable[str] = (),
    tld_name: str | None = None,
    prune: bool = False,
    warnings: list[str] | None = None,
) -> ListOutput:
    """
    Run the rule pipeline for one list.

    Args:
        name: List name
        lines: Raw rule lines (includes already expanded)
        exclude_attrs: Attributes whose lines are dropped
        removal: Lines to subtract after dedup (need-to-remove lists)
        reserved: Full/Regex/Keyword rules added back after validation
        tld_name: Side list name, forced to be written when given
        prune: Drop rules covered by a parent suffix rule
        warnings: Diagnostics to carry into the output

    Example:
        >>> build_rules("demo", ["domain:example.com @ads", "plain.example"],
        ...             exclude_attrs={"ads"}).lines
        ['domain:plain.example']
    """
    filtered = filter_attributes(lines, exclude_attrs)
    rules = dedup(normalize_lines(filtered))

    removal = list(removal)
    if removal:
        rules = difference(rules, normalize_lines(removal))

    # After removal, so a child is only dropped while its parent survives
    if prune:
        rules = prune_redundant(rules)

    checked = validate_rules(parse_rules(rules))
    final = union((str(rule) for rule in checked.rules), reserved)

    return ListOutput(
        name=name,
        lines=final,
        tld=dedup(checked.tld),
        tld_name=tld_name,
        rejected=checked.rejected,
        warnings=warnings if warnings is not None else [],
    )


def build_community(
    config: BuildConfig,
    name: str,
    members: tuple[str, ...] = (),
    exclude_attrs: frozenset[str] = frozenset(),
) -> ListOutput:
    """
    Build a domain-list-community list, optionally merging several files.

    Missing member files are reported and contribute nothing.
    """
    warnings: list[str] = []
    lines: list[str] = []

    for member in members or (name,):
        path = config.data_dir / member
        if not path.is_file():
            warnings.append(f"List file not found: {path}")
            continue
        lines.extend(expand_includes(path, config.data_dir, warnings=warnings))

    return build_rules(name, lines, exclude_attrs=exclude_attrs, warnings=warnings)


def _build_main_list(
    config: BuildConfig,
    name: str,
    candidates: list[str],
    custom: list[str],
    need_to_remove: str,
    tld_name: str,
    warnings: list[str],
) -> ListOutput:
    """Shared tail of the direct/proxy/reject lists."""
    return build_rules(
        name,
        candidates + reserve(custom, SUFFIX_ONLY),
        removal=sources.read_plain(config.hidden_dir / need_to_remove),
        reserved=reserve(custom),
        tld_name=tld_name,
        prune=config.prune_redundant,
        warnings=warnings,
    )


def build_direct(config: BuildConfig) -> ListOutput:
    """Direct list ``cn``: China domains from dnsmasq-china-list and custom lists."""
    upstream = config.upstream_dir
    candidates = [
        *sources.dnsmasq_domains(upstream / "dnsmasq-china.conf"),
        *sources.read_plain(config.hidden_dir / "direct.txt"),
    ]
    custom = sources.custom_rules(config.custom_release_dir / "cn.txt")

    return _build_main_list(
        config, "cn", candidates, custom,
        "direct-need-to-remove.txt", MAIN_SIDE_LISTS["cn"], [],
    )


def build_proxy(config: BuildConfig) -> ListOutput:
    """Proxy list ``geolocation-!cn``: GFWList plus Google/Apple China domains."""
    upstream = config.upstream_dir
    warnings: list[str] = []
    candidates = [
        *sources.gfwlist_domains(upstream / GFWLIST_FILE, warnings),
        *sources.dnsmasq_domains(upstream / "google.china.conf"),
        *sources.dnsmasq_domains(upstream / "apple.china.conf"),
        *sources.read_plain(config.hidden_dir / "proxy.txt"),
    ]
    custom = sources.custom_rules(
        config.custom_release_dir / "geolocation-!cn.txt", frozenset({"cn"})
    )

    return _build_main_list(
        config, "geolocation-!cn", candidates, custom,
        "proxy-need-to-remove.txt", MAIN_SIDE_LISTS["geolocation-!cn"], warnings,
    )


def build_reject(config: BuildConfig) -> ListOutput:
    """Reject list ``ads``: ad-block filters and ad-server hosts files."""
    upstream = config.upstream_dir
    candidates = [
        *sources.adblock_domains(upstream / "easylist.txt"),
        *sources.adblock_domains(upstream / "adguard-dns.txt"),
        *sources.hosts_domains(upstream / "peterlowe.txt"),
        *sources.hosts_domains(upstream / "danpollock.txt"),
        *sources.read_plain(config.hidden_dir / "reject.txt"),
    ]

    return _build_main_list(
        config, "ads", candidates, [],
        "reject-need-to-remove.txt", MAIN_SIDE_LISTS["ads"], [],
    )


def build_gfw(config: BuildConfig) -> ListOutput:
    """GFWList domains on their own."""
    warnings: list[str] = []
    domains = sources.gfwlist_domains(config.upstream_dir / GFWLIST_FILE, warnings)
    return build_rules("gfw", domains, warnings=warnings)


def build_dnsmasq(config: BuildConfig, name: str, filename: str, rule_type: RuleType) -> ListOutput:
    """A list made of one dnsmasq config, typed as given."""
    domains = sources.dnsmasq_domains(config.upstream_dir / filename)
    return build_rules(name, (f"{rule_type.value}:{d}" for d in domains))


def build_windows(config: BuildConfig, name: str) -> ListOutput:
    """A Windows Spy Blocker hosts list."""
    domains = sources.windows_hosts_domains(config.upstream_dir / f"{name}.txt")
    return build_rules(name, domains)


# ============================================================================
# PLANNING AND EXECUTION
# ============================================================================

def side_list_name(name: str) -> str:
    """
    Name of the side list receiving a list's bare labels.

    Example:
        >>> side_list_name("cn"), side_list_name("google")
        ('direct-tld-list', 'google-tld-list')
    """
    return MAIN_SIDE_LISTS.get(name, f"{name}{TLD_LIST_SUFFIX}")


def _drop_colliding_jobs(jobs: dict[str, ListJob], warnings: list[str]) -> dict[str, ListJob]:
    """
    Keep only jobs whose output files no earlier job writes.

    Each job may write ``<name>.txt`` and ``<side list>.txt``; jobs are
    claimed in planning order, so main lists always keep their files.
    """
    owners: dict[str, str] = {}
    kept: dict[str, ListJob] = {}

    for name, job in jobs.items():
        outputs = (name, side_list_name(name))
        owner = next((owners[o] for o in outputs if o in owners), None)
        if owner is not None:
            warnings.append(f"Skipping list {name}: its output files collide with list {owner}")
            continue
        for output in outputs:
            owners[output] = name
        kept[name] = job

    return kept


def plan_jobs(config: BuildConfig, warnings: list[str] | None = None) -> dict[str, ListJob]:
    """
    Plan one job per output name.

    Precedence for a shared name (later wins): main and additional lists,
    community lists, explicitly merged lists. Main list names are never taken
    over by a community file. A job whose list or side list file is already
    written by an earlier job is skipped with a warning, so no two jobs ever
    write the same file.
    """
    jobs: dict[str, ListJob] = {
        "cn": partial(build_direct, config),
        "geolocation-!cn": partial(build_proxy, config),
        "ads": partial(build_reject, config),
        "china-list": partial(build_dnsmasq, config, "china-list", "dnsmasq-china.conf", RuleType.SUFFIX),
        "google-cn": partial(build_dnsmasq, config, "google-cn", "google.china.conf", RuleType.FULL),
        "apple-cn": partial(build_dnsmasq, config, "apple-cn", "apple.china.conf", RuleType.FULL),
        "gfw": partial(build_gfw, config),
    }
    for name in ("win-spy", "win-update", "win-extra"):
        jobs[name] = partial(build_windows, config, name)

    for path in sorted(config.data_dir.iterdir()):
        if not path.is_file() or path.name in MAIN_LISTS:
            continue
        jobs[path.name] = partial(
            build_community, config, path.name,
            exclude_attrs=COMMUNITY_EXCLUSIONS.get(path.name, frozenset()),
        )

    for merged in config.merged:
        exclusions: frozenset[str] = frozenset().union(
            *(COMMUNITY_EXCLUSIONS.get(member, frozenset()) for member in merged.members)
        )
        jobs[merged.name] = partial(
            build_community, config, merged.name, merged.members, exclusions
        )

    return _drop_colliding_jobs(jobs, warnings if warnings is not None else [])


async def write_lines(path: Path, lines: Iterable[str]) -> None:
    """Write newline-terminated lines (an empty list gives an empty file)."""
    async with aiofiles.open(path, "w", encoding="utf-8", newline="\n") as f:
        await f.write("".join(f"{line}\n" for line in lines))


async def run_jobs(jobs: dict[str, ListJob], text_dir: Path, concurrency: int) -> list[ListOutcome]:
    """
    Run list jobs concurrently, each in a worker thread.

    Returns:
        One ListOutcome per job, in job order. A job that raised is reported
        as failed instead of cancelling the others.
    """
    text_dir.mkdir(parents=True, exist_ok=True)
    semaphore = asyncio.Semaphore(concurrency)

    async def run_with_semaphore(job: ListJob) -> ListOutcome:
        async with semaphore:
            output = await asyncio.to_thread(job)

            await write_lines(text_dir / f"{output.name}.txt", output.lines)
            if output.tld or output.tld_name:
                tld_name = output.tld_name or side_list_name(output.name)
                await write_lines(text_dir / f"{tld_name}.txt", output.tld)

            return ListOutcome(
                output.name,
                success=True,
                rules=len(output.lines),
                tld=len(output.tld),
                rejected=output.rejected,
                warnings=tuple(output.warnings),
            )

    names = list(jobs)
    results = await asyncio.gather(
        *(run_with_semaphore(jobs[name]) for name in names),
        return_exceptions=True,
    )

    # Handle exceptions in results
    outcomes: list[ListOutcome] = []
    for name, result in zip(names, results):
        if isinstance(result, Exception):
            outcomes.append(ListOutcome(name, success=False, error=f"{type(result).__name__}: {result}"))
        else:
            outcomes.append(result)

    return outcomes


def _write_merged(path: Path, lines: Iterable[str]) -> None:
    """Union lines into a text list file, creating it if needed."""
    merged = union(sources.read_plain(path), lines)
    with open(path, "w", encoding="utf-8", newline="\n") as f:
        for line in merged:
            f.write(line + "\n")


def merge_custom_files(custom_dir: Path, text_dir: Path, warnings: list[str]) -> list[str]:
    """
    Merge each ``<custom_dir>/*.txt`` into the same-named text list.

    Custom lines go through the same normalization and validation as every
    other list; bare labels land in the side list of the same name
    (``direct-tld-list.txt`` for ``cn.txt``, ``<stem>-tld-list.txt`` otherwise).

    Returns:
        Names of the merged files
    """
    if not custom_dir.is_dir():
        warnings.append(f"Custom directory not found: {custom_dir}")
        return []

    text_dir.mkdir(parents=True, exist_ok=True)
    merged: list[str] = []

    for custom_file in sorted(custom_dir.glob("*.txt")):
        output = build_rules(custom_file.stem, sources.read_plain(custom_file))

        _write_merged(text_dir / custom_file.name, output.lines)
        if output.tld:
            _write_merged(text_dir / f"{side_list_name(custom_file.stem)}.txt", output.tld)

        merged.append(custom_file.name)

    return merged


def process(config: BuildConfig) -> BuildReport:
    """
    Run the full pipeline.

    Raises:
        MandatoryDirectoryMissing: If the domain-list-community data directory is
            missing. Nothing is built in that case.
    """
    if not config.data_dir.is_dir():
        raise MandatoryDirectoryMissing(
            f"domain-list-community data directory not found: {config.data_dir} "
            "(fetch upstream sources first)"
        )

    shutil.rmtree(config.text_dir, ignore_errors=True)
    shutil.rmtree(config.json_dir, ignore_errors=True)

    # =========================================================================
    # Stage 1: Build lists
    # =========================================================================
    print("📖 Stage 1: Building lists...")
    stage1_start = time.time()

    warnings: list[str] = []
    jobs = plan_jobs(config, warnings)
    outcomes = asyncio.run(run_jobs(jobs, config.text_dir, config.jobs))

    built = sum(1 for o in outcomes if o.success)
    print(f"   Built {built}/{len(outcomes)} lists ({time.time() - stage1_start:.1f}s)")

    # =========================================================================
    # Stage 2: Merge custom lists
    # =========================================================================
    print("\n🧩 Stage 2: Merging custom lists...")
    merged = merge_custom_files(config.custom_lists_dir, config.text_dir, warnings)
    print(f"   Merged {len(merged)} custom files")

    # =========================================================================
    # Stage 3: Convert to rule-set documents
    # =========================================================================
    print("\n⚙️  Stage 3: Converting to rule-set documents...")
    stage3_start = time.time()

    conversions = asyncio.run(convert_all(config.text_dir, config.json_dir, config.jobs))

    converted = sum(1 for c in conversions if c.success)
    print(f"   Converted {converted}/{len(conversions)} lists ({time.time() - stage3_start:.1f}s)")

    return BuildReport(outcomes, merged, conversions, warnings)


def print_summary(report: BuildReport) -> None:
    """Print formatted summary; warnings go to stderr."""
    outcomes = report.outcomes
    succeeded = [o for o in outcomes if o.success]
    failed = [o for o in outcomes if not o.success]

    print("\n" + "=" * 60)
    print("📊 PIPELINE SUMMARY")
    print("=" * 60)

    print(f"\n📁 Lists:  {len(succeeded)} built, {len(failed)} failed")
    print(f"   Custom files merged:  {len(report.merged):>10,}")
    print(f"   Documents written:    {sum(1 for c in report.conversions if c.success):>10,}")

    print(f"\n📈 Rules:")
    print(f"   Written:              {sum(o.rules for o in succeeded):>10,}")
    print(f"   Bare labels (TLD):    {sum(o.tld for o in succeeded):>10,}")
    print(f"   Invalid domains:      {sum(o.rejected for o in succeeded):>10,}")

    warnings = list(report.warnings)
    for outcome in outcomes:
        warnings.extend(f"{outcome.name}: {w}" for w in outcome.warnings)
        if not outcome.success:
            warnings.append(f"{outcome.name}: build failed: {outcome.error}")
    for conversion in report.conversions:
        if not conversion.success:
            warnings.append(f"{conversion.name}: conversion failed: {conversion.error}")

    if warnings:
        print(f"\n⚠️  Warnings: {len(warnings)}", file=sys.stderr)
        for warning in warnings:
            print(f"   - {warning}", file=sys.stderr)


def parse_args(argv: list[str] | None = None) -> BuildConfig:
    """Parse command-line flags into a BuildConfig."""
    parser = argparse.ArgumentParser(description="Normalize domain lists into rule-set documents")
    parser.add_argument("--source-dir", default=DEFAULT_SOURCE_DIR, help="Source root (contains upstream/)")
    parser.add_argument("--build-dir", default=DEFAULT_BUILD_DIR, help="Output root (text/ and json/)")
    parser.add_argument("--custom-dir", default=None, help="Custom lists directory (default: <source-dir>/custom)")
    parser.add_argument("--jobs", type=int, default=DEFAULT_CONCURRENCY, help="Max lists processed at once")
    parser.add_argument(
        "--prune-redundant", action="store_true",
        help="Drop direct/proxy/reject rules covered by a parent suffix rule",
    )
    parser.add_argument(
        "--merge", action="append", nargs="+", default=[], metavar="NAME",
        help="Build NAME from the union of community lists: --merge NAME MEMBER [MEMBER ...]",
    )

    args = parser.parse_args(argv)

    if args.jobs < 1:
        parser.error("--jobs must be at least 1")

    merged: list[MergedList] = []
    for values in args.merge:
        if len(values) < 2:
            parser.error("--merge needs a name and at least one member list")
        merged.append(MergedList(values[0], tuple(values[1:])))

    return BuildConfig(
        source_dir=Path(args.source_dir),
        build_dir=Path(args.build_dir),
        custom_dir=Path(args.custom_dir) if args.custom_dir else None,
        jobs=args.jobs,
        prune_redundant=args.prune_redundant,
        merged=tuple(merged),
    )


def main(argv: list[str] | None = None) -> int:
    """Main entry point."""
    config = parse_args(argv)

    try:
        print("🚀 Starting rule-set normalization...")
        print("-" * 60)

        start_time = time.time()
        report = process(config)
        total_time = time.time() - start_time

        print_summary(report)
        print(f"\n⏱️  Total time: {total_time:.1f}s")
        print("✅ Normalization completed!")

        return 0

    except FileNotFoundError as e:
        print(f"\n❌ ERROR: {e}", file=sys.stderr)
        return 1

    except Exception as e:
        print(f"\n❌ ERROR: {e}", file=sys.stderr)
        import traceback
        traceback.print_exc()
        return 1


if __name__ == "__main__":
    sys.exit(main())
