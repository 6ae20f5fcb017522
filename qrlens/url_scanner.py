# ---------------------------------------------------------
# URL Risk Scanner: static rules, fully deterministic
# ---------------------------------------------------------

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import IntEnum
from typing import Callable, Dict, Iterator, List, Optional, Tuple
from urllib.parse import urlsplit

import idna


# ---------------------------------------------------------
# RULE TABLES
# ---------------------------------------------------------

URL_SHORTENERS = (
    "bit.ly", "tinyurl.com", "t.co", "goo.gl", "ow.ly", "is.gd", "buff.ly",
    "adf.ly", "bit.do", "mcaf.ee", "cutt.ly", "rebrand.ly", "short.io", "tiny.cc",
)

SUSPICIOUS_TLDS = (
    ".xyz", ".top", ".click", ".link", ".work", ".date", ".download",
    ".stream", ".gdn", ".racing", ".win", ".bid", ".loan", ".trade",
)

SENSITIVE_KEYWORDS = ("login", "signin", "password", "account", "bank", "pay")

PHISHING_PATH_KEYWORDS = ("verify", "secure", "update", "confirm", "suspend", "locked")

DANGEROUS_SCHEMES = {"data", "javascript"}

# schemes that must carry a host to be a valid URL
SPECIAL_SCHEMES = {"http", "https", "ws", "wss", "ftp"}

MAX_SUBDOMAIN_LABELS = 4

_SCHEME_RE = re.compile(r"^([a-zA-Z][a-zA-Z0-9+.\-]*):")
_IPV4_SHAPE = re.compile(r"^(\d{1,3}\.){3}\d{1,3}$")
_FORBIDDEN_HOST_CHARS = re.compile(r"[\s<>^|%\\\"'`{}]")
_CYRILLIC = re.compile(r"[\u0400-\u04FF]")
_STRIP_TABS = re.compile(r"[\t\r\n]")


class RiskLevel(IntEnum):
    LOW = 0
    MEDIUM = 1
    HIGH = 2

    def __str__(self) -> str:
        return self.name.lower()


@dataclass(frozen=True)
class ParsedUrl:
    raw: str
    scheme: str
    host: str
    path: str

    @property
    def unicode_host(self) -> str:
        """Host with punycode labels decoded back to Unicode."""
        labels = []
        for label in self.host.split("."):
            if label.startswith("xn--"):
                try:
                    label = idna.decode(label)
                except idna.IDNAError:
                    pass
            labels.append(label)
        return ".".join(labels)


@dataclass(frozen=True)
class RiskAssessment:
    warnings: Tuple[str, ...] = ()
    risk_level: RiskLevel = RiskLevel.LOW
    is_url: bool = False

    def summary(self) -> str:
        if not self.warnings:
            return "No obvious security issues detected."
        return ". ".join(self.warnings) + "."

    def as_dict(self) -> Dict[str, object]:
        return {
            "warnings": list(self.warnings),
            "risk_level": str(self.risk_level),
            "is_url": self.is_url,
            "summary": self.summary(),
        }


# ---------------------------------------------------------
# PARSING
# ---------------------------------------------------------

def parse_url(text: Optional[str]) -> Optional[ParsedUrl]:
    """
    Parse `text` as an absolute URL, or return None.

    Any `scheme:` prefix is accepted (mailto:, data:, javascript: ...);
    web schemes additionally need a well-formed host.
    """
    if not text:
        return None
    raw = _STRIP_TABS.sub("", text.strip())
    match = _SCHEME_RE.match(raw)
    if not match:
        return None

    try:
        parts = urlsplit(raw)
        parts.port  # raises on a malformed port
    except ValueError:
        return None

    scheme = match.group(1).lower()
    host = (parts.hostname or "").lower()

    if scheme in SPECIAL_SCHEMES:
        if not host or _FORBIDDEN_HOST_CHARS.search(host):
            return None
        if _IPV4_SHAPE.match(host) and not _is_ip(host):
            return None

    return ParsedUrl(raw=raw, scheme=scheme, host=host, path=parts.path.lower())


def _is_ip(host: str) -> bool:
    if not _IPV4_SHAPE.fullmatch(host):
        return False
    return all(0 <= int(part) <= 255 for part in host.split("."))


def _raise(level: RiskLevel, floor: RiskLevel) -> RiskLevel:
    return max(level, floor)


# ---------------------------------------------------------
# RULES
# each rule: (url, current level) -> (warning, new level) | None
# ---------------------------------------------------------

Rule = Callable[[ParsedUrl, RiskLevel], Optional[Tuple[str, RiskLevel]]]


def _ip_literal(url: ParsedUrl, level: RiskLevel):
    if _is_ip(url.host):
        return "Uses IP address instead of domain name", _raise(level, RiskLevel.HIGH)
    return None


def _shortener(url: ParsedUrl, level: RiskLevel):
    for shortener in URL_SHORTENERS:
        if url.host == shortener or url.host.endswith("." + shortener):
            return "Shortened URL - destination unknown", _raise(level, RiskLevel.MEDIUM)
    return None


def _suspicious_tld(url: ParsedUrl, level: RiskLevel):
    for tld in SUSPICIOUS_TLDS:
        if url.host.endswith(tld):
            return "Suspicious domain extension", _raise(level, RiskLevel.MEDIUM)
    return None


def _subdomain_depth(url: ParsedUrl, level: RiskLevel):
    if len(url.host.split(".")) > MAX_SUBDOMAIN_LABELS:
        return "Unusually many subdomains", _raise(level, RiskLevel.MEDIUM)
    return None


def _at_sign(url: ParsedUrl, level: RiskLevel):
    if "@" in url.raw and url.scheme != "mailto":
        return "Contains @ symbol (may hide real destination)", _raise(level, RiskLevel.HIGH)
    return None


def _dangerous_scheme(url: ParsedUrl, level: RiskLevel):
    if url.scheme in DANGEROUS_SCHEMES:
        return "Potentially dangerous protocol", _raise(level, RiskLevel.HIGH)
    return None


def _insecure_transport(url: ParsedUrl, level: RiskLevel):
    if url.scheme != "http":
        return None
    full = url.raw.lower()
    if any(kw in full for kw in SENSITIVE_KEYWORDS):
        return "Insecure connection (HTTP) for sensitive page", _raise(level, RiskLevel.HIGH)
    # only lifts a LOW verdict; never rewrites medium/high
    if level == RiskLevel.LOW:
        level = RiskLevel.MEDIUM
    return "Uses HTTP instead of HTTPS", level


def _homograph(url: ParsedUrl, level: RiskLevel):
    if _CYRILLIC.search(url.unicode_host):
        return (
            "Contains non-Latin characters (possible homograph attack)",
            _raise(level, RiskLevel.HIGH),
        )
    return None


def _urgency_path(url: ParsedUrl, level: RiskLevel):
    for keyword in PHISHING_PATH_KEYWORDS:
        if keyword in url.path:
            return "Contains suspicious keywords in URL path", _raise(level, RiskLevel.MEDIUM)
    return None


RULES: Tuple[Rule, ...] = (
    _ip_literal,
    _shortener,
    _suspicious_tld,
    _subdomain_depth,
    _at_sign,
    _dangerous_scheme,
    _insecure_transport,
    _homograph,
    _urgency_path,
)


def evaluate(url: ParsedUrl) -> Iterator[Tuple[str, str, RiskLevel]]:
    """Yield (rule name, warning, level after rule) for every rule that fires."""
    level = RiskLevel.LOW
    for rule in RULES:
        hit = rule(url, level)
        if hit is None:
            continue
        warning, level = hit
        yield rule.__name__.lstrip("_"), warning, level


# ---------------------------------------------------------
# MAIN ENTRY
# ---------------------------------------------------------

def analyze_url(text: Optional[str]) -> RiskAssessment:
    parsed = parse_url(text)
    if parsed is None:
        return RiskAssessment(warnings=(), risk_level=RiskLevel.LOW, is_url=False)

    warnings: List[str] = []
    level = RiskLevel.LOW
    for _, warning, level in evaluate(parsed):
        warnings.append(warning)

    return RiskAssessment(warnings=tuple(warnings), risk_level=level, is_url=True)
