#!/usr/bin/env python3
"""
publisher.py - Publication Layout

Arranges build artifacts for distribution:

    build/srs/<name>.srs            -> publish/srs/geosite-<name>.srs
    build/json/<name>.json          -> publish/json/geosite-<name>.json
    <geoip-dir>/<name>.srs          -> publish/srs/geoip-<name>.srs
    publish/srs/sha256sum.txt       (``sha256sum *.srs`` format)

The publish directory is recreated on every run. Missing input directories
simply contribute nothing.
"""
from __future__ import annotations

import argparse
import hashlib
import shutil
import sys
from pathlib import Path
from typing import Final, NamedTuple

DEFAULT_BUILD_DIR: Final[str] = "build"
DEFAULT_PUBLISH_DIR: Final[str] = "publish"
DEFAULT_GEOIP_DIR: Final[str] = "source/upstream/geoip/srs"

CHECKSUM_FILE: Final[str] = "sha256sum.txt"
CHUNK_SIZE: Final[int] = 1 << 16


class PublishStats(NamedTuple):
    geosite_srs: int
    geosite_json: int
    geoip_srs: int


def _copy_prefixed(src_dir: Path, pattern: str, dest_dir: Path, prefix: str) -> int:
    if not src_dir.is_dir():
        return 0
    copied = 0
    for path in sorted(src_dir.glob(pattern)):
        if path.is_file():
            shutil.copyfile(path, dest_dir / f"{prefix}{path.name}")
            copied += 1
    return copied


def file_sha256(path: Path) -> str:
    digest = hashlib.sha256()
    with open(path, "rb") as f:
        for chunk in iter(lambda: f.read(CHUNK_SIZE), b""):
            digest.update(chunk)
    return digest.hexdigest()


def write_checksums(srs_dir: Path) -> Path:
    """Write ``<hex>  <name>`` lines for every .srs file, sorted by name."""
    checksum_path = srs_dir / CHECKSUM_FILE
    with open(checksum_path, "w", encoding="utf-8", newline="\n") as f:
        for path in sorted(srs_dir.glob("*.srs")):
            f.write(f"{file_sha256(path)}  {path.name}\n")
    return checksum_path


def publish(build_dir: Path, publish_dir: Path, geoip_dir: Path) -> PublishStats:
    """Recreate publish_dir from the build outputs and upstream geoip rule-sets."""
    shutil.rmtree(publish_dir, ignore_errors=True)
    srs_dir = publish_dir / "srs"
    json_dir = publish_dir / "json"
    srs_dir.mkdir(parents=True)
    json_dir.mkdir(parents=True)

    stats = PublishStats(
        geosite_srs=_copy_prefixed(build_dir / "srs", "*.srs", srs_dir, "geosite-"),
        geosite_json=_copy_prefixed(build_dir / "json", "*.json", json_dir, "geosite-"),
        geoip_srs=_copy_prefixed(geoip_dir, "*.srs", srs_dir, "geoip-"),
    )
    write_checksums(srs_dir)
    return stats


def main(argv: list[str] | None = None) -> int:
    """Main entry point."""
    parser = argparse.ArgumentParser(description="Lay out build artifacts for publication")
    parser.add_argument("--build-dir", default=DEFAULT_BUILD_DIR, help="Build root (srs/ and json/)")
    parser.add_argument("--publish-dir", default=DEFAULT_PUBLISH_DIR, help="Publication root (recreated)")
    parser.add_argument("--geoip-dir", default=DEFAULT_GEOIP_DIR, help="Upstream geoip .srs directory")
    args = parser.parse_args(argv)

    try:
        print("📦 Publishing rule-sets...")
        stats = publish(Path(args.build_dir), Path(args.publish_dir), Path(args.geoip_dir))

        print(f"   geosite .srs:   {stats.geosite_srs:>6,}")
        print(f"   geosite .json:  {stats.geosite_json:>6,}")
        print(f"   geoip .srs:     {stats.geoip_srs:>6,}")
        print("✅ Published!")
        return 0

    except OSError as e:
        print(f"\n❌ ERROR: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
