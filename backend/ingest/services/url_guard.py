"""URL validation and SSRF guard.

Checks are textual: the hostname is matched against private/reserved literal
patterns and, when it is an IP literal, classified with ``ipaddress``. No DNS
lookup happens here, so a public name that resolves to a private address is
not caught. Callers run this on every redirect hop.
"""

import ipaddress
import re
from dataclasses import dataclass
from urllib.parse import SplitResult, urlsplit, urlunsplit

from ingest.schemas.fetch import INVALID_URL, PRIVATE_IP

ALLOWED_SCHEMES = ("http", "https")

PRIVATE_HOST_PATTERNS = [
    # IPv4 private ranges
    re.compile(r"^10\."),  # 10.0.0.0/8
    re.compile(r"^172\.(1[6-9]|2[0-9]|3[0-1])\."),  # 172.16.0.0/12
    re.compile(r"^192\.168\."),  # 192.168.0.0/16
    re.compile(r"^127\."),  # loopback
    re.compile(r"^169\.254\."),  # link-local, incl. 169.254.169.254 metadata
    re.compile(r"^0\."),  # 0.0.0.0/8
    re.compile(r"^100\.(6[4-9]|[7-9][0-9]|1[01][0-9]|12[0-7])\."),  # 100.64.0.0/10 CGNAT
    # IPv6
    re.compile(r"^::1?$"),
    re.compile(r"^fe80:", re.I),
    re.compile(r"^fc00:", re.I),
    re.compile(r"^fd[0-9a-f]{0,2}:", re.I),
    re.compile(r"^::ffff:", re.I),  # IPv4-mapped
    # Names that always mean this machine
    re.compile(r"^localhost$", re.I),
    re.compile(r"\.localhost$", re.I),
]

METADATA_HOSTS = frozenset({"169.254.169.254", "metadata.google.internal", "fd00:ec2::254"})


@dataclass(frozen=True)
class UrlValidation:
    valid: bool
    url: SplitResult | None = None
    error: str | None = None
    code: str | None = None  # INVALID_URL or PRIVATE_IP when invalid


_LEGACY_IPV4_RE = re.compile(r"(0x[0-9a-f]+|\d+)(\.(0x[0-9a-f]+|\d+)){0,3}", re.I)


def _parse_ipv4_part(part: str) -> int:
    if part.lower().startswith("0x"):
        return int(part, 16)
    if len(part) > 1 and part.startswith("0"):
        return int(part, 8)
    return int(part)


def _ip_literal(hostname: str):
    try:
        return ipaddress.ip_address(hostname)
    except ValueError:
        pass
    # Legacy IPv4 spellings browsers still accept: 2130706433, 0x7f.1, 0177.0.0.1
    if not _LEGACY_IPV4_RE.fullmatch(hostname):
        return None
    try:
        parts = [_parse_ipv4_part(p) for p in hostname.split(".")]
    except ValueError:
        return None
    value = 0
    for i, part in enumerate(parts[:-1]):
        if part > 255:
            return None
        value |= part << (24 - 8 * i)
    if parts[-1] >= 1 << (8 * (5 - len(parts))):
        return None
    return ipaddress.IPv4Address(value | parts[-1])


def is_private_host(hostname: str) -> bool:
    """True if *hostname* textually denotes a private, loopback, link-local or reserved address."""
    host = hostname.strip("[]").lower().rstrip(".")
    if not host:
        return True
    if host in METADATA_HOSTS:
        return True
    if any(p.search(host) for p in PRIVATE_HOST_PATTERNS):
        return True
    ip = _ip_literal(host)
    if ip is None:
        return False
    if isinstance(ip, ipaddress.IPv6Address) and ip.ipv4_mapped is not None:
        ip = ip.ipv4_mapped
    return (
        ip.is_private
        or ip.is_loopback
        or ip.is_link_local
        or ip.is_multicast
        or ip.is_reserved
        or ip.is_unspecified
        or ip in ipaddress.ip_network("100.64.0.0/10")
    )


def validate_url(raw: str) -> UrlValidation:
    if not isinstance(raw, str) or not raw.strip():
        return UrlValidation(valid=False, error="Invalid URL format.", code=INVALID_URL)
    try:
        parsed = urlsplit(raw.strip())
        hostname = parsed.hostname
        parsed.port  # raises on a malformed port
    except ValueError:
        return UrlValidation(valid=False, error="Invalid URL format.", code=INVALID_URL)

    if parsed.scheme.lower() not in ALLOWED_SCHEMES:
        return UrlValidation(
            valid=False,
            error="Invalid protocol. Only HTTP(S) allowed.",
            code=INVALID_URL,
        )
    if not hostname:
        return UrlValidation(valid=False, error="URL has no host.", code=INVALID_URL)
    if is_private_host(hostname):
        return UrlValidation(
            valid=False,
            error="Private IP addresses are not allowed.",
            code=PRIVATE_IP,
        )
    return UrlValidation(valid=True, url=parsed)


def redact_url(url: str) -> str:
    """Drop query string, fragment and credentials for logging."""
    try:
        parts = urlsplit(url)
        netloc = parts.hostname or ""
        if parts.port:
            netloc = f"{netloc}:{parts.port}"
        return urlunsplit((parts.scheme, netloc, parts.path, "", ""))
    except ValueError:
        return "<invalid url>"


def hostname_of(url: str) -> str:
    try:
        return (urlsplit(url).hostname or "").lower()
    except ValueError:
        return ""
