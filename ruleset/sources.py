#!/usr/bin/env python3
"""
sources.py - Domain Extraction from Upstream Source Formats

Upstream files are fetched elsewhere; this module only reads them. Every
reader is fail-soft: a missing file yields an empty list, never an error.

Supported formats:
    Plain list        example.com
    dnsmasq config    server=/example.com/114.114.114.114
    Ad-block filter   ||example.com^
    Hosts file        127.0.0.1 example.com
    Windows hosts     0.0.0.0 example.com
    Custom list       domain:example.com:@cn   (domain-list-custom release)
    GFWList           base64-encoded ad-block style list
"""
from __future__ import annotations

import base64
import binascii
import re
from pathlib import Path
from typing import Final, Iterator

from ruleset.rules import Rule, RuleType, is_comment
from ruleset.validator import extract_full_domains

# ============================================================================
# REGEX PATTERNS
# ============================================================================

#: dnsmasq upstream server line: server=/domain/...
DNSMASQ_PATTERN: Final[re.Pattern[str]] = re.compile(r"^server=/([^/]+)/")

#: Ad-block domain anchor with nothing else: ||domain^
ADBLOCK_PATTERN: Final[re.Pattern[str]] = re.compile(
    r"^\|\|([-_0-9a-zA-Z]+(?:\.[-_0-9a-zA-Z]+){1,64})\^$"
)

#: Hosts line pointing a domain at the loopback address
HOSTS_PATTERN: Final[re.Pattern[str]] = re.compile(
    r"^127\.0\.0\.1\s+([-_0-9a-zA-Z]+(?:\.[-_0-9a-zA-Z]+){1,64})(?:\s|$)"
)

#: Bare IPv4 literal (never a domain rule)
IPV4_PATTERN: Final[re.Pattern[str]] = re.compile(r"^[0-9]{1,3}(?:\.[0-9]{1,3}){3}$")

#: domain-list-custom release line: type:value[:@attr...]
CUSTOM_RULE_PATTERN: Final[re.Pattern[str]] = re.compile(
    r"^(domain|full|regexp|keyword):(.+?)((?::@[^:]+)*)$"
)

#: Local hostnames found in hosts files
LOCAL_HOSTNAMES: Final[frozenset[str]] = frozenset({
    "localhost", "localhost.localdomain", "local", "broadcasthost",
    "ip6-localhost", "ip6-loopback", "ip6-localnet",
    "ip6-mcastprefix", "ip6-allnodes", "ip6-allrouters", "ip6-allhosts",
})

# GFWList parsing (after gfwlist2dnsmasq)
GFWLIST_IGNORE_PATTERN: Final[re.Pattern[str]] = re.compile(
    r"^!|\[|^@@|(?:https?://)?[0-9]+\.[0-9]+\.[0-9]+\.[0-9]+"
)
GFWLIST_HEAD_PATTERN: Final[re.Pattern[str]] = re.compile(r"^(?:\|\|?)?(?:https?://)?")
GFWLIST_TAIL_PATTERN: Final[re.Pattern[str]] = re.compile(r"/.*$|%2F.*$")
GFWLIST_DOMAIN_PATTERN: Final[re.Pattern[str]] = re.compile(
    r"[a-zA-Z0-9][-a-zA-Z0-9]*(?:\.[a-zA-Z0-9][-a-zA-Z0-9]*)+"
)
GFWLIST_WILDCARD_PATTERN: Final[re.Pattern[str]] = re.compile(
    r"^(?:(?:[a-zA-Z0-9]*\*[-a-zA-Z0-9]*)?\.)?"
    r"([a-zA-Z0-9][-a-zA-Z0-9]*(?:\.[a-zA-Z0-9][-a-zA-Z0-9]*)+)"
    r"(?:\*[a-zA-Z0-9]*)?"
)

# ============================================================================
# GFWLIST EXTRAS
# ============================================================================

#: Google search domains missing from GFWList
GOOGLE_SEARCH_DOMAINS: Final[tuple[str, ...]] = (
    "google.com", "google.ad", "google.ae", "google.com.af",
    "google.com.ag", "google.com.ai", "google.al", "google.am",
    "google.co.ao", "google.com.ar", "google.as", "google.at",
    "google.com.au", "google.az", "google.ba", "google.com.bd",
    "google.be", "google.bf", "google.bg", "google.com.bh",
    "google.bi", "google.bj", "google.com.bn", "google.com.bo",
    "google.com.br", "google.bs", "google.bt", "google.co.bw",
    "google.by", "google.com.bz", "google.ca", "google.cd",
    "google.cf", "google.cg", "google.ch", "google.ci",
    "google.co.ck", "google.cl", "google.cm", "google.cn",
    "google.com.co", "google.co.cr", "google.com.cu", "google.cv",
    "google.com.cy", "google.cz", "google.de", "google.dj",
    "google.dk", "google.dm", "google.com.do", "google.dz",
    "google.com.ec", "google.ee", "google.com.eg", "google.es",
    "google.com.et", "google.fi", "google.com.fj", "google.fm",
    "google.fr", "google.ga", "google.ge", "google.gg",
    "google.com.gh", "google.com.gi", "google.gl", "google.gm",
    "google.gp", "google.gr", "google.com.gt", "google.gy",
    "google.com.hk", "google.hn", "google.hr", "google.ht",
    "google.hu", "google.co.id", "google.ie", "google.co.il",
    "google.im", "google.co.in", "google.iq", "google.is",
    "google.it", "google.je", "google.com.jm", "google.jo",
    "google.co.jp", "google.co.ke", "google.com.kh", "google.ki",
    "google.kg", "google.co.kr", "google.com.kw", "google.kz",
    "google.la", "google.com.lb", "google.li", "google.lk",
    "google.co.ls", "google.lt", "google.lu", "google.lv",
    "google.com.ly", "google.co.ma", "google.md", "google.me",
    "google.mg", "google.mk", "google.ml", "google.com.mm",
    "google.mn", "google.ms", "google.com.mt", "google.mu",
    "google.mv", "google.mw", "google.com.mx", "google.com.my",
    "google.co.mz", "google.com.na", "google.com.nf", "google.com.ng",
    "google.com.ni", "google.ne", "google.nl", "google.no",
    "google.com.np", "google.nr", "google.nu", "google.co.nz",
    "google.com.om", "google.com.pa", "google.com.pe", "google.com.pg",
    "google.com.ph", "google.com.pk", "google.pl", "google.pn",
    "google.com.pr", "google.ps", "google.pt", "google.com.py",
    "google.com.qa", "google.ro", "google.ru", "google.rw",
    "google.com.sa", "google.com.sb", "google.sc", "google.se",
    "google.com.sg", "google.sh", "google.si", "google.sk",
    "google.com.sl", "google.sn", "google.so", "google.sm",
    "google.sr", "google.st", "google.com.sv", "google.td",
    "google.tg", "google.co.th", "google.com.tj", "google.tk",
    "google.tl", "google.tm", "google.tn", "google.to",
    "google.com.tr", "google.tt", "google.com.tw", "google.co.tz",
    "google.com.ua", "google.co.ug", "google.co.uk", "google.com.uy",
    "google.co.uz", "google.com.vc", "google.co.ve", "google.vg",
    "google.co.vi", "google.com.vn", "google.vu", "google.ws",
    "google.rs", "google.co.za", "google.co.zm", "google.co.zw",
    "google.cat",
)

#: Blogspot mirrors missing from GFWList
BLOGSPOT_DOMAINS: Final[tuple[str, ...]] = (
    "blogspot.ca", "blogspot.co.uk", "blogspot.com", "blogspot.com.ar",
    "blogspot.com.au", "blogspot.com.br", "blogspot.com.by", "blogspot.com.co",
    "blogspot.com.cy", "blogspot.com.ee", "blogspot.com.eg", "blogspot.com.es",
    "blogspot.com.mt", "blogspot.com.ng", "blogspot.com.tr", "blogspot.com.uy",
    "blogspot.de", "blogspot.gr", "blogspot.in", "blogspot.mx",
    "blogspot.ch", "blogspot.fr", "blogspot.ie", "blogspot.it",
    "blogspot.pt", "blogspot.ro", "blogspot.sg", "blogspot.be",
    "blogspot.no", "blogspot.se", "blogspot.jp", "blogspot.ae",
    "blogspot.al", "blogspot.am", "blogspot.ba", "blogspot.bg",
    "blogspot.cl", "blogspot.cz", "blogspot.dk", "blogspot.fi",
    "blogspot.hk", "blogspot.hr", "blogspot.hu", "blogspot.is",
    "blogspot.kr", "blogspot.li", "blogspot.lt", "blogspot.lu",
    "blogspot.md", "blogspot.mk", "blogspot.my", "blogspot.nl",
    "blogspot.pe", "blogspot.qa", "blogspot.ru", "blogspot.si",
    "blogspot.sk", "blogspot.sn", "blogspot.tw", "blogspot.ug",
    "blogspot.cat",
)

GFWLIST_EXTRA_DOMAINS: Final[tuple[str, ...]] = (
    GOOGLE_SEARCH_DOMAINS + BLOGSPOT_DOMAINS + ("twimg.edgesuite.net",)
)


# ============================================================================
# READERS
# ============================================================================

def _read_lines(path: Path) -> Iterator[str]:
    """Yield stripped lines of a file; nothing if it does not exist."""
    if not path.is_file():
        return
    with open(path, encoding="utf-8-sig", errors="replace") as f:
        for line in f:
            yield line.strip()


def read_plain(path: Path) -> list[str]:
    """
    Read a plain one-entry-per-line list, skipping blanks and comments.

    Example:
        >>> read_plain(Path("hidden/direct-need-to-remove.txt"))
        ['example.cn', ...]
    """
    return [line for line in _read_lines(path) if line and not is_comment(line)]


def dnsmasq_domains(path: Path) -> list[str]:
    """
    Extract domains from ``server=/domain/upstream`` lines.

    Example:
        >>> dnsmasq_domains(Path("accelerated-domains.china.conf"))
        ['0-100.com', ...]
    """
    domains: list[str] = []
    for line in _read_lines(path):
        match = DNSMASQ_PATTERN.match(line)
        if match:
            domains.append(match.group(1))
    return domains


def adblock_domains(path: Path) -> list[str]:
    """Extract domains from plain ``||domain^`` filter lines."""
    domains: list[str] = []
    for line in _read_lines(path):
        match = ADBLOCK_PATTERN.match(line)
        if match and not IPV4_PATTERN.match(match.group(1)):
            domains.append(match.group(1))
    return domains


def hosts_domains(path: Path) -> list[str]:
    """
    Extract domains from ``127.0.0.1 domain`` hosts lines.

    Trailing comments are ignored; IPv4 literals and local hostnames are
    dropped.
    """
    domains: list[str] = []
    for line in _read_lines(path):
        match = HOSTS_PATTERN.match(line)
        if not match:
            continue
        domain = match.group(1)
        if IPV4_PATTERN.match(domain) or domain.lower() in LOCAL_HOSTNAMES:
            continue
        domains.append(domain)
    return domains


def windows_hosts_domains(path: Path) -> list[str]:
    """Extract the host field of ``0.0.0.0 domain`` lines."""
    domains: list[str] = []
    for line in _read_lines(path):
        if is_comment(line) or "0.0.0.0" not in line:
            continue
        parts = line.split()
        if len(parts) >= 2 and parts[1].lower() not in LOCAL_HOSTNAMES:
            domains.append(parts[1])
    return domains


def parse_custom_line(line: str) -> tuple[Rule, set[str]] | None:
    """
    Parse one domain-list-custom release line.

    Example:
        >>> rule, attrs = parse_custom_line("full:www.example.com:@cn:@ads")
        >>> str(rule), sorted(attrs)
        ('full:www.example.com', ['ads', 'cn'])
        >>> parse_custom_line("# comment") is None
        True
    """
    match = CUSTOM_RULE_PATTERN.match(line)
    if not match:
        return None

    rule = Rule(RuleType(match.group(1)), match.group(2))
    attrs = {attr for attr in match.group(3).split(":@") if attr}
    return rule, attrs


def custom_rules(path: Path, exclude_attrs: frozenset[str] = frozenset()) -> list[str]:
    """
    Read a domain-list-custom release file as canonical ``type:value`` lines.

    Args:
        path: Release text file
        exclude_attrs: Lines tagged with any of these attributes are dropped

    Example:
        >>> custom_rules(Path("geolocation-!cn.txt"), frozenset({"cn"}))
        ['domain:google.com', 'full:www.google.com', ...]
    """
    rules: list[str] = []
    for line in _read_lines(path):
        parsed = parse_custom_line(line)
        if parsed is None:
            continue
        rule, attrs = parsed
        if attrs & exclude_attrs:
            continue
        rules.append(str(rule))
    return rules


def decode_gfwlist(path: Path) -> list[str]:
    """
    Decode a base64 GFWList file into its filter lines.

    Raises:
        ValueError: If the content is not valid base64 text
    """
    if not path.is_file():
        return []

    raw = path.read_bytes()
    try:
        decoded = base64.b64decode(raw)
        return decoded.decode("utf-8", errors="replace").splitlines()
    except binascii.Error as e:
        raise ValueError(f"Failed to decode {path}: {e}") from e


def gfwlist_domains(path: Path, warnings: list[str] | None = None) -> list[str]:
    """
    Convert GFWList into full domain names.

    Filter lines are reduced to their domain (scheme, path and wildcard
    parts stripped), the fixed Google/Blogspot extras are added, and only
    full domain names are kept.

    Args:
        path: Base64-encoded gfwlist.txt
        warnings: Optional sink for diagnostics (missing or undecodable file)

    Returns:
        Domains, possibly with duplicates. Empty if the file is missing or
        cannot be decoded.
    """
    if not path.is_file():
        if warnings is not None:
            warnings.append(f"gfwlist.txt not found at {path}, skipping GFWList generation")
        return []

    try:
        lines = decode_gfwlist(path)
    except ValueError as e:
        if warnings is not None:
            warnings.append(str(e))
        return []

    domains: list[str] = []
    for line in lines:
        line = line.strip()
        if not line or GFWLIST_IGNORE_PATTERN.search(line):
            continue

        line = GFWLIST_HEAD_PATTERN.sub("", line, count=1)
        line = GFWLIST_TAIL_PATTERN.sub("", line, count=1)
        if not GFWLIST_DOMAIN_PATTERN.search(line):
            continue

        domains.append(GFWLIST_WILDCARD_PATTERN.sub(r"\1", line, count=1))

    domains.extend(GFWLIST_EXTRA_DOMAINS)
    return extract_full_domains(domains)
