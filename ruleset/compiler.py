#!/usr/bin/env python3
"""
compiler.py - Binary Rule-Set Compilation

Runs the external compiler over every rule-set document:

    sing-box rule-set compile build/json/<name>.json -o build/srs/<name>.srs

Files are compiled in parallel, bounded by a semaphore. The binary format is
entirely the compiler's business; this stage only drives it and collects
results.

Failure Modes:
    - Compiler binary not on PATH: warning, nothing compiled, exit 0
    - No documents to compile: warning, nothing compiled, exit 0
    - A document fails to compile: its stderr is kept as ``<name>.srs.err``
      next to the outputs, the remaining files still compile, exit 1

Usage:
    python -m ruleset.compiler [--json-dir build/json] [--srs-dir build/srs]
"""
from __future__ import annotations

import argparse
import asyncio
import os
import shutil
import sys
import time
from pathlib import Path
from typing import Final, NamedTuple

DEFAULT_JSON_DIR: Final[str] = "build/json"
DEFAULT_SRS_DIR: Final[str] = "build/srs"
DEFAULT_BINARY: Final[str] = "sing-box"
DEFAULT_CONCURRENCY: Final[int] = os.cpu_count() or 8


class CompileResult(NamedTuple):
    """Result of compiling one document."""
    name: str
    success: bool
    error: str | None = None


class CompileReport(NamedTuple):
    """Outcome of a compile run. ``skipped`` holds the reason nothing ran."""
    results: list[CompileResult]
    skipped: str | None = None

    @property
    def failed(self) -> list[CompileResult]:
        return [r for r in self.results if not r.success]


async def compile_file(binary: str, json_path: Path, srs_dir: Path) -> CompileResult:
    """
    Compile one document to ``<srs_dir>/<stem>.srs``.

    On failure the compiler's stderr is written to ``<stem>.srs.err``;
    on success any stale error file is removed.
    """
    name = json_path.stem
    srs_path = srs_dir / f"{name}.srs"
    err_path = srs_dir / f"{name}.srs.err"

    process = await asyncio.create_subprocess_exec(
        binary, "rule-set", "compile", str(json_path), "-o", str(srs_path),
        stdout=asyncio.subprocess.DEVNULL,
        stderr=asyncio.subprocess.PIPE,
    )
    _, stderr = await process.communicate()

    if process.returncode == 0:
        err_path.unlink(missing_ok=True)
        return CompileResult(name, success=True)

    err_path.write_bytes(stderr)
    detail = stderr.decode("utf-8", errors="replace").strip()
    return CompileResult(
        name,
        success=False,
        error=detail or f"exit status {process.returncode}",
    )


async def compile_all(
    json_dir: Path,
    srs_dir: Path,
    binary: str = DEFAULT_BINARY,
    concurrency: int = DEFAULT_CONCURRENCY,
) -> CompileReport:
    """
    Compile every ``*.json`` in json_dir into a freshly emptied srs_dir.

    Returns:
        CompileReport with one result per document, or a skip reason when
        there is nothing to compile or no compiler to compile with.
    """
    json_files = sorted(json_dir.glob("*.json")) if json_dir.is_dir() else []
    if not json_files:
        return CompileReport([], skipped=f"No JSON files found in {json_dir}, skipping compilation")

    executable = shutil.which(binary)
    if executable is None:
        return CompileReport([], skipped=f"{binary} command not found, skipping compilation")

    shutil.rmtree(srs_dir, ignore_errors=True)
    srs_dir.mkdir(parents=True, exist_ok=True)

    semaphore = asyncio.Semaphore(concurrency)

    async def compile_with_semaphore(path: Path) -> CompileResult:
        async with semaphore:
            return await compile_file(executable, path, srs_dir)

    results = await asyncio.gather(
        *(compile_with_semaphore(path) for path in json_files),
        return_exceptions=True,
    )

    final_results: list[CompileResult] = []
    for path, result in zip(json_files, results):
        if isinstance(result, Exception):
            final_results.append(CompileResult(path.stem, success=False, error=str(result)))
        else:
            final_results.append(result)

    return CompileReport(final_results)


def main(argv: list[str] | None = None) -> int:
    """Main entry point."""
    parser = argparse.ArgumentParser(description="Compile rule-set documents to binary rule-sets")
    parser.add_argument("--json-dir", default=DEFAULT_JSON_DIR, help="Directory of rule-set documents")
    parser.add_argument("--srs-dir", default=DEFAULT_SRS_DIR, help="Output directory (emptied first)")
    parser.add_argument("--jobs", type=int, default=DEFAULT_CONCURRENCY, help="Max compiler processes at once")
    parser.add_argument("--binary", default=DEFAULT_BINARY, help="Compiler executable")
    args = parser.parse_args(argv)

    if args.jobs < 1:
        parser.error("--jobs must be at least 1")

    print("🔨 Compiling rule-sets...")
    start_time = time.time()

    report = asyncio.run(
        compile_all(Path(args.json_dir), Path(args.srs_dir), args.binary, args.jobs)
    )

    if report.skipped:
        print(f"⚠️  Warning: {report.skipped}", file=sys.stderr)
        return 0

    compiled = len(report.results) - len(report.failed)
    print(f"   Compiled {compiled}/{len(report.results)} rule-sets ({time.time() - start_time:.1f}s)")

    if report.failed:
        print(f"\n❌ {len(report.failed)} rule-sets failed to compile:", file=sys.stderr)
        for result in report.failed:
            print(f"   - {result.name}: {result.error}", file=sys.stderr)
        return 1

    print("✅ All rule-sets compiled!")
    return 0


if __name__ == "__main__":
    sys.exit(main())
