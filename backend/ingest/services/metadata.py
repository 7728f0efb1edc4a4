import html as html_lib
import math
import re
from dataclasses import dataclass
from urllib.parse import urljoin, urlsplit

from bs4 import BeautifulSoup

WORDS_PER_MINUTE = 200
DEFAULT_READING_MINUTES = 3

# Suffixes SPA hosts append to their <title>
SPA_TITLE_SUFFIXES = (" | X", " / X", " - Reddit")


@dataclass(frozen=True)
class MetaTags:
    title: str | None = None
    description: str | None = None
    image: str | None = None


def _meta_content(soup: BeautifulSoup, *keys: tuple[str, str]) -> str | None:
    for attr, value in keys:
        tag = soup.find("meta", attrs={attr: value})
        if tag and tag.get("content"):
            return tag["content"].strip() or None
    return None


def scrape_meta_tags(html: str, base_url: str = "") -> MetaTags:
    """OpenGraph / Twitter card / <title> metadata from a page."""
    if not html:
        return MetaTags()
    soup = BeautifulSoup(html, "lxml")

    title = _meta_content(soup, ("property", "og:title"), ("name", "og:title"), ("name", "twitter:title"))
    if not title:
        title_tag = soup.find("title")
        if title_tag:
            title = title_tag.get_text(strip=True) or None

    description = _meta_content(
        soup,
        ("property", "og:description"),
        ("name", "twitter:description"),
        ("name", "description"),
    )

    image = _meta_content(soup, ("property", "og:image"), ("name", "og:image"), ("name", "twitter:image"))
    if image and base_url:
        image = urljoin(base_url, image)

    return MetaTags(title=title, description=description, image=image)


def extract_cover_image(html: str, base_url: str = "") -> str | None:
    return scrape_meta_tags(html, base_url).image


def favicon_url(domain: str) -> str:
    return f"https://www.google.com/s2/favicons?domain={domain}&sz=128"


def estimate_reading_time(text: str | None) -> int:
    """Minutes at 200 wpm, at least 1; 3 when there is no text at all."""
    if not text or not text.strip():
        return DEFAULT_READING_MINUTES
    words = len(text.split())
    return max(1, math.ceil(words / WORDS_PER_MINUTE))


def sanitize_title(title: str | None) -> str:
    """Drop a trailing " - Site Name" / " | Site Name" segment."""
    if not title:
        return "Untitled"
    cleaned = re.sub(r"\s[|\-–—]\s*[^|\-–—]*$", "", title).strip()
    return cleaned or title.strip()


def clean_spa_title(title: str | None) -> str | None:
    if not title:
        return None
    title = html_lib.unescape(title).strip()
    for suffix in SPA_TITLE_SUFFIXES:
        if title.endswith(suffix):
            title = title[: -len(suffix)].rstrip()
    return title or None


def extract_title_from_url(url: str) -> str:
    """Title-cased last path segment, or the hostname."""
    try:
        parts = urlsplit(url)
    except ValueError:
        return "Untitled"
    segments = [s for s in parts.path.split("/") if s]
    if not segments:
        return parts.hostname or "Untitled"
    last = re.sub(r"\.[^.]+$", "", segments[-1])
    last = re.sub(r"[-_]+", " ", last).strip()
    if not last:
        return parts.hostname or "Untitled"
    return " ".join(word.capitalize() for word in last.split())


def html_to_text(html: str) -> str:
    """Visible text of a page with whitespace collapsed."""
    if not html:
        return ""
    soup = BeautifulSoup(html, "lxml")
    for tag in soup.find_all(["script", "style", "noscript", "template"]):
        tag.decompose()
    return re.sub(r"\s+", " ", soup.get_text(separator=" ")).strip()
