"""Pattern-based HTML sanitizer.

Works on the markup text with regexes and a quote-aware tag tokenizer rather
than a DOM, so nothing in the document is ever interpreted. Each start tag
is re-emitted from its parsed attributes, which makes the output stable
under a second pass. The sanitizer never raises and always returns HTML;
the removal counts are for logs and metrics only.
"""

import html as html_lib
import logging
import re
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

from ingest.core.metrics import sanitizer_removed_total
from ingest.schemas.sanitize import RemovedElements, SanitizeOptions, SanitizeResult

logger = logging.getLogger(__name__)

# Embed providers whose iframes are kept (host or any subdomain)
IFRAME_WHITELIST = (
    # Video
    "youtube.com",
    "youtube-nocookie.com",
    "youtu.be",
    "player.vimeo.com",
    "player.twitch.tv",
    "dailymotion.com",
    "loom.com",
    # Audio
    "open.spotify.com",
    "w.soundcloud.com",
    "embed.music.apple.com",
    "embed.podcasts.apple.com",
    "bandcamp.com",
    # Social
    "platform.twitter.com",
    "instagram.com",
    "tiktok.com",
    # Productivity / docs / code
    "docs.google.com",
    "figma.com",
    "airtable.com",
    "codepen.io",
    "codesandbox.io",
    "slideshare.net",
    # Maps
    "maps.google.com",
    "openstreetmap.org",
)

IFRAME_SANDBOX = "allow-scripts allow-same-origin allow-popups"
EVENT_HANDLER_UNSAFE_THRESHOLD = 3
SAFE_DATA_IMAGE_RE = re.compile(r"^data:image/(png|jpeg|jpg|gif|webp)[;,]", re.I)
DANGEROUS_SCHEME_RE = re.compile(r"^(javascript|vbscript):", re.I)

_FLAGS = re.I | re.S
_ATTRS = r"""((?:"[^"]*"|'[^']*'|[^'">])*)"""

SCRIPT_BLOCK_RE = re.compile(r"<script\b[^>]*>.*?</script\s*>", _FLAGS)
SCRIPT_TAG_RE = re.compile(r"</?script\b[^>]*>", re.I)
NOSCRIPT_BLOCK_RE = re.compile(r"<noscript\b[^>]*>.*?</noscript\s*>", _FLAGS)
NOSCRIPT_TAG_RE = re.compile(r"</?noscript\b[^>]*>", re.I)
IFRAME_RE = re.compile(
    r"<iframe\b" + _ATTRS + r">(?:(?:(?!<iframe\b).)*?</iframe\s*>)?", _FLAGS
)
OBJECT_BLOCK_RE = re.compile(r"<(object|applet)\b[^>]*>.*?</\1\s*>", _FLAGS)
OBJECT_TAG_RE = re.compile(r"</?(object|embed|applet)\b[^>]*>", re.I)
STYLE_BLOCK_RE = re.compile(r"<style\b[^>]*>(.*?)</style\s*>", _FLAGS)
TAG_RE = re.compile(r"<([a-zA-Z][\w:-]*)" + _ATTRS + r">")
ATTR_RE = re.compile(
    r"""([^\s"'>/=]+)(?:\s*=\s*(?:"([^"]*)"|'([^']*)'|([^\s"'=<>`]+)))?"""
)
SELF_CLOSING_RE = re.compile(r"(?:^|[\s\"'])/\s*$")
COMMENT_RE = re.compile(r"<!--.*?(?:-->|$)", _FLAGS)
IFRAME_MARKER_RE = re.compile(r"^<!-- iframe removed: [a-z0-9.-]+ -->$")
UNTERMINATED_TAG_RE = re.compile(r"<(?=[a-zA-Z/!][^>]*$)")
CONTROL_CHARS_RE = re.compile(r"[\x00-\x20\x7f]+")
PIXEL_DIM_RE = re.compile(r"^\s*[01](?:px)?\s*$", re.I)
PIXEL_STYLE_RE = re.compile(
    r"width\s*:\s*[01]px.*height\s*:\s*[01]px|height\s*:\s*[01]px.*width\s*:\s*[01]px", re.I
)

BLOCKED_TAGS = frozenset({"script", "noscript", "object", "embed", "applet"})
# Removing one tag can splice its neighbours into a new one; passes repeat until stable
MAX_PASSES = 5

URL_ATTRS = frozenset({"href", "src", "xlink:href", "action", "formaction", "poster", "background", "data"})
FORM_ONSUBMIT = "return false;"


class _Counts:
    """Mutable tally used while one document is being sanitized."""

    def __init__(self):
        self.scripts = 0
        self.iframes = 0
        self.event_handlers = 0
        self.dangerous_urls = 0
        self.forms = 0
        self.objects = 0
        self.images_kept = 0

    def freeze(self) -> RemovedElements:
        return RemovedElements(
            scripts=self.scripts,
            iframes=self.iframes,
            event_handlers=self.event_handlers,
            dangerous_urls=self.dangerous_urls,
            forms=self.forms,
            objects=self.objects,
        )


# ---------------------------------------------------------------------------
# Attribute tokenizer
# ---------------------------------------------------------------------------


def parse_attrs(raw: str) -> list[tuple[str, str | None]]:
    attrs = []
    for match in ATTR_RE.finditer(raw):
        name = match.group(1)
        if match.group(2) is not None:
            value = match.group(2)
        elif match.group(3) is not None:
            value = match.group(3)
        else:
            value = match.group(4)
        attrs.append((name, value))
    return attrs


def _escape_attr(value: str) -> str:
    return value.replace('"', "&quot;").replace("<", "&lt;").replace(">", "&gt;")


def render_tag(name: str, attrs: list[tuple[str, str | None]], self_closing: bool = False) -> str:
    parts = [f"<{name}"]
    for attr, value in attrs:
        if value is None:
            parts.append(f" {attr}")
        else:
            parts.append(f' {attr}="{_escape_attr(value)}"')
    if self_closing:
        parts.append(" /")
    parts.append(">")
    return "".join(parts)


def _attr(attrs: list[tuple[str, str | None]], name: str) -> str | None:
    for attr, value in attrs:
        if attr.lower() == name:
            return value
    return None


def _normalized_url(value: str) -> str:
    return CONTROL_CHARS_RE.sub("", html_lib.unescape(value)).lower()


def _host_of(src: str) -> str:
    try:
        return (urlsplit(html_lib.unescape(src).strip()).hostname or "").lower()
    except ValueError:
        return ""


def is_whitelisted_host(host: str, whitelist=IFRAME_WHITELIST) -> bool:
    return any(host == domain or host.endswith(f".{domain}") for domain in whitelist)


# ---------------------------------------------------------------------------
# Passes
# ---------------------------------------------------------------------------


def _strip_comments(html: str) -> str:
    def repl(match: re.Match) -> str:
        comment = match.group(0)
        return comment if IFRAME_MARKER_RE.match(comment) else ""

    return COMMENT_RE.sub(repl, html)


def _strip_scripts(html: str, counts: _Counts) -> str:
    counts.scripts += len(SCRIPT_BLOCK_RE.findall(html))
    html = SCRIPT_BLOCK_RE.sub("", html)
    stray = SCRIPT_TAG_RE.findall(html)
    counts.scripts += sum(1 for tag in stray if not tag.startswith("</"))
    html = SCRIPT_TAG_RE.sub("", html)
    html = NOSCRIPT_BLOCK_RE.sub("", html)
    return NOSCRIPT_TAG_RE.sub("", html)


def _iframe_allowed(host: str, options: SanitizeOptions) -> bool:
    whitelist = options.iframe_whitelist if options.iframe_whitelist is not None else IFRAME_WHITELIST
    return bool(options.allow_iframes and host and is_whitelisted_host(host, whitelist))


def _handle_iframes(html: str, options: SanitizeOptions, counts: _Counts) -> str:
    def repl(match: re.Match) -> str:
        attrs = parse_attrs(match.group(1))
        host = _host_of(_attr(attrs, "src") or "")

        if _iframe_allowed(host, options):
            attrs = [(a, v) for a, v in attrs if a.lower() != "srcdoc"]
            if _attr(attrs, "sandbox") is None:
                attrs.append(("sandbox", IFRAME_SANDBOX))
            return render_tag("iframe", attrs) + "</iframe>"

        counts.iframes += 1
        if not options.allow_iframes:
            return ""
        label = re.sub(r"[^a-z0-9.-]", "", host) or "unknown"
        return f"<!-- iframe removed: {label} -->"

    return IFRAME_RE.sub(repl, html)


def _strip_objects(html: str, counts: _Counts) -> str:
    counts.objects += len(OBJECT_BLOCK_RE.findall(html))
    html = OBJECT_BLOCK_RE.sub("", html)
    counts.objects += sum(
        1 for m in OBJECT_TAG_RE.finditer(html) if not m.group(0).startswith("</")
    )
    return OBJECT_TAG_RE.sub("", html)


def _strip_import_styles(html: str) -> str:
    def repl(match: re.Match) -> str:
        return "" if "@import" in match.group(1).lower() else match.group(0)

    return STYLE_BLOCK_RE.sub(repl, html)


def _is_tracking_pixel(attrs) -> bool:
    width, height = _attr(attrs, "width"), _attr(attrs, "height")
    if width is not None and height is not None:
        if PIXEL_DIM_RE.match(width) and PIXEL_DIM_RE.match(height):
            return True
    style = _attr(attrs, "style")
    return bool(style and PIXEL_STYLE_RE.search(style))


def _clean_attrs(name: str, attrs, counts: _Counts):
    is_form = name == "form"
    cleaned = []
    for attr, value in attrs:
        key = attr.lower()

        if key.startswith("on"):
            if not (is_form and key == "onsubmit" and value == FORM_ONSUBMIT):
                counts.event_handlers += 1
            continue
        if key == "srcdoc":
            continue
        if key == "formaction":
            if value and DANGEROUS_SCHEME_RE.match(_normalized_url(value)):
                counts.dangerous_urls += 1
            continue

        if value is not None and key in URL_ATTRS:
            normalized = _normalized_url(value)
            if DANGEROUS_SCHEME_RE.match(normalized):
                counts.dangerous_urls += 1
                value = "#" if key == "href" else ""
            elif key == "src" and normalized.startswith("data:") and not SAFE_DATA_IMAGE_RE.match(normalized):
                counts.dangerous_urls += 1
                value = ""

        cleaned.append((attr, value))
    return cleaned


def _rewrite_tags(html: str, options: SanitizeOptions, counts: _Counts) -> str:
    def repl(match: re.Match) -> str:
        tag_name, raw = match.group(1), match.group(2)
        name = tag_name.lower()
        attrs = parse_attrs(raw)
        self_closing = bool(SELF_CLOSING_RE.search(raw))

        if name in BLOCKED_TAGS:
            if name == "script":
                counts.scripts += 1
            elif name != "noscript":
                counts.objects += 1
            return ""
        if name == "iframe":
            if not _iframe_allowed(_host_of(_attr(attrs, "src") or ""), options):
                counts.iframes += 1
                return ""
            if _attr(attrs, "sandbox") is None:
                attrs.append(("sandbox", IFRAME_SANDBOX))
        if name == "base":
            return ""
        if name == "meta":
            http_equiv = (_attr(attrs, "http-equiv") or "").strip().lower()
            if http_equiv == "refresh":
                return ""
        if name == "use":
            ref = _attr(attrs, "href") or _attr(attrs, "xlink:href")
            if ref is not None and not ref.strip().startswith("#"):
                counts.dangerous_urls += 1
                return ""
        if name == "img":
            if options.remove_images or _is_tracking_pixel(attrs):
                return ""
            if options.max_images is not None and counts.images_kept >= options.max_images:
                return ""
            counts.images_kept += 1

        attrs = _clean_attrs(name, attrs, counts)

        if name == "form":
            already_neutral = _attr(attrs, "action") == "#"
            attrs = [(a, v) for a, v in attrs if a.lower() not in ("action", "onsubmit")]
            attrs += [("action", "#"), ("onsubmit", FORM_ONSUBMIT)]
            if not already_neutral:
                counts.forms += 1
        elif name == "a" and options.harden_links:
            if _attr(attrs, "href") is not None and _attr(attrs, "rel") is None:
                attrs.append(("rel", "noopener noreferrer"))

        return render_tag(tag_name, attrs, self_closing)

    html = TAG_RE.sub(repl, html)
    # A tag left open at end of input would swallow the rest in a browser
    return UNTERMINATED_TAG_RE.sub("&lt;", html)


def _run_passes(html: str, options: SanitizeOptions, counts: _Counts) -> str:
    counts.images_kept = 0
    out = _strip_comments(html)
    out = _strip_scripts(out, counts)
    out = _handle_iframes(out, options, counts)
    out = _strip_objects(out, counts)
    out = _strip_import_styles(out)
    out = _rewrite_tags(out, options, counts)
    return _strip_comments(out)


def sanitize_html(html: str | None, options: SanitizeOptions | None = None) -> SanitizeResult:
    """Strip executable and tracking content, keeping whitelisted embeds."""
    options = options or SanitizeOptions()
    counts = _Counts()
    if not html:
        return SanitizeResult(html="")

    out = html
    for _ in range(MAX_PASSES):
        cleaned = _run_passes(out, options, counts)
        if cleaned == out:
            break
        out = cleaned
    else:
        logger.warning("Sanitizer did not converge, escaping all markup")
        out = out.replace("<", "&lt;")

    removed = counts.freeze()
    has_unsafe = (
        removed.scripts > 0
        or removed.dangerous_urls > 0
        or removed.objects > 0
        or removed.event_handlers > EVENT_HANDLER_UNSAFE_THRESHOLD
    )

    for category, value in removed.model_dump().items():
        if value:
            sanitizer_removed_total.labels(category=category).inc(value)
    if has_unsafe:
        logger.debug(
            f"Unsafe content removed: scripts={removed.scripts}, "
            f"handlers={removed.event_handlers}, urls={removed.dangerous_urls}"
        )

    return SanitizeResult(html=out, removed_elements=removed, has_unsafe_content=has_unsafe)


# ---------------------------------------------------------------------------
# Text and URL helpers
# ---------------------------------------------------------------------------

TRACKING_PARAMS = frozenset({
    "utm_source", "utm_medium", "utm_campaign", "utm_term", "utm_content",
    "fbclid", "gclid", "gclsrc", "dclid",
    "mc_cid", "mc_eid",
    "_ga", "_gl",
    "ref", "ref_src", "ref_url",
    "source", "via",
    "at_medium", "at_campaign",
    "spm", "share_token",
    "si", "feature",
    # Credentials that must never end up in a cache key
    "token", "access_token", "auth", "key", "password",
})


def sanitize_text(text: str | None) -> str:
    """Plain text for titles and excerpts: tags stripped, entities decoded, whitespace collapsed."""
    if not text:
        return ""
    text = re.sub(r"<[^>]+>", "", text)
    text = html_lib.unescape(text).replace("\xa0", " ")
    return re.sub(r"\s+", " ", text).strip()


def sanitize_url(url: str) -> str:
    """Drop tracking and credential query parameters; unparsable input is returned as-is."""
    try:
        parts = urlsplit(url.strip())
        if not parts.scheme or not parts.netloc:
            return url
        query = [
            (k, v)
            for k, v in parse_qsl(parts.query, keep_blank_values=True)
            if k.lower() not in TRACKING_PARAMS
        ]
        netloc = parts.netloc
        if "@" in netloc:
            netloc = netloc.rsplit("@", 1)[1]
        return urlunsplit((
            parts.scheme.lower(),
            netloc.lower(),
            parts.path or "/",
            urlencode(query),
            parts.fragment,
        ))
    except ValueError:
        return url
