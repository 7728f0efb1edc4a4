import codecs
import logging
import re
from dataclasses import dataclass

from charset_normalizer import from_bytes

from ingest.config import settings

logger = logging.getLogger(__name__)

REPLACEMENT_CHAR = "�"

# Legacy labels that are routinely mislabelled; decode with the superset codec
CHARSET_ALIASES = {
    "iso-8859-9": "windows-1254",  # Turkish
    "iso-8859-1": "windows-1252",  # Western European
    "latin1": "windows-1252",
    "latin-1": "windows-1252",
    "ascii": "utf-8",
    "us-ascii": "utf-8",
}

_HEADER_CHARSET_RE = re.compile(r"charset=[\"']?([^\"';\s]+)", re.I)
_META_CHARSET_RE = re.compile(r"<meta[^>]+charset=[\"']?([^\"'>\s;/]+)", re.I)
_HTTP_EQUIV_RE = re.compile(
    r"<meta[^>]+http-equiv=[\"']?content-type[\"']?[^>]+content=[\"']?[^\"'>]*charset=([^\"';\s>]+)",
    re.I,
)
_HTTP_EQUIV_ALT_RE = re.compile(
    r"<meta[^>]+content=[\"']?[^\"'>]*charset=([^\"';\s>]+)[^>]+http-equiv=[\"']?content-type",
    re.I,
)

# Only the document head matters for sniffing
SNIFF_BYTES = 4096


@dataclass(frozen=True)
class DecodeOutcome:
    text: str
    success: bool


@dataclass(frozen=True)
class DecodedBody:
    text: str
    charset: str
    confident: bool


def extract_charset_from_header(content_type: str | None) -> str | None:
    if not content_type:
        return None
    match = _HEADER_CHARSET_RE.search(content_type)
    return match.group(1).lower() if match else None


def extract_charset_from_html(html: str) -> str | None:
    """<meta charset> first, then http-equiv Content-Type in either attribute order."""
    head = html[:SNIFF_BYTES]
    for pattern in (_META_CHARSET_RE, _HTTP_EQUIV_RE, _HTTP_EQUIV_ALT_RE):
        match = pattern.search(head)
        if match:
            return match.group(1).lower()
    return None


def normalize_charset(charset: str) -> str:
    label = charset.strip().lower()
    return CHARSET_ALIASES.get(label, label)


def replacement_ratio(text: str) -> float:
    if not text:
        return 0.0
    return text.count(REPLACEMENT_CHAR) / len(text)


def _codec_name(charset: str) -> str | None:
    try:
        return codecs.lookup(charset).name
    except LookupError:
        return None


def decode_with_charset(data: bytes, charset: str) -> DecodeOutcome:
    """Decode leniently; success is False for unknown codecs or a high U+FFFD ratio."""
    codec = _codec_name(normalize_charset(charset))
    if codec is None:
        logger.debug(f"Unknown charset {charset!r}, decoding as utf-8")
        return DecodeOutcome(text=data.decode("utf-8", errors="replace"), success=False)

    text = data.decode(codec, errors="replace")
    if replacement_ratio(text) > settings.REPLACEMENT_CHAR_THRESHOLD:
        return DecodeOutcome(text=text, success=False)
    return DecodeOutcome(text=text, success=True)


def detect_charset(data: bytes) -> str | None:
    """Statistical guess for bodies without a usable declaration."""
    match = from_bytes(data).best()
    if match is None:
        return None
    return normalize_charset(_codec_name(match.encoding) or match.encoding)


def decode_body(data: bytes, content_type: str | None = None) -> DecodedBody:
    """
    Pick an encoding and decode a response body.

    Priority: Content-Type charset; only when the header has none, a <meta>
    charset sniffed from a provisional UTF-8 decode. Without a declaration,
    or when the declared one decodes badly, charset-normalizer picks the
    encoding. If detection finds nothing the body is decoded as UTF-8 with
    replacement and ``confident`` follows the replacement ratio.
    """
    declared = extract_charset_from_header(content_type)
    if not declared:
        provisional = data[:SNIFF_BYTES].decode("utf-8", errors="replace")
        declared = extract_charset_from_html(provisional)

    if declared:
        charset = normalize_charset(declared)
        outcome = decode_with_charset(data, charset)
        if outcome.success:
            return DecodedBody(text=outcome.text, charset=charset, confident=True)
        logger.debug(f"Declared charset {charset} decoded badly, detecting")

    detected = detect_charset(data)
    if detected:
        outcome = decode_with_charset(data, detected)
        if outcome.success:
            return DecodedBody(text=outcome.text, charset=detected, confident=True)

    text = data.decode("utf-8", errors="replace")
    confident = replacement_ratio(text) <= settings.REPLACEMENT_CHAR_THRESHOLD
    if not confident:
        logger.info(f"Low-confidence decode, detected={detected}")
    return DecodedBody(text=text, charset="utf-8", confident=confident)
