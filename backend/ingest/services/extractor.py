"""Default article extractor.

A light BeautifulSoup heuristic standing in for a full readability
implementation. Anything with the same signature can be passed to
``fetch_and_classify`` instead.
"""

import logging
import re
from typing import Callable

from bs4 import BeautifulSoup, Tag

from ingest.schemas.parse import ExtractedArticle

logger = logging.getLogger(__name__)

Extractor = Callable[[str, str], ExtractedArticle | None]

JUNK_TAGS = ["script", "style", "noscript", "template", "nav", "footer"]

CONTENT_SELECTORS = [
    "article",
    "main",
    "[role='main']",
    "#content",
    "#main-content",
    ".main-content",
    "div[class*='content']",
]

MIN_CONTAINER_TEXT = 200
EXCERPT_LENGTH = 200


def _find_main_container(soup: BeautifulSoup) -> Tag | None:
    for selector in CONTENT_SELECTORS:
        el = soup.select_one(selector)
        if el and len(el.get_text(strip=True)) > MIN_CONTAINER_TEXT:
            return el
    return None


def _make_excerpt(text: str) -> str:
    if len(text) <= EXCERPT_LENGTH:
        return text
    return text[:EXCERPT_LENGTH] + "..."


def extract_article(html: str, url: str = "") -> ExtractedArticle | None:
    """Return the main content block, or None when no container stands out."""
    if not html:
        return None
    soup = BeautifulSoup(html, "lxml")

    title = ""
    title_tag = soup.find("title")
    if title_tag:
        title = title_tag.get_text(strip=True)

    for tag in soup.find_all(JUNK_TAGS):
        tag.decompose()

    container = _find_main_container(soup)
    if container is None:
        logger.debug(f"No article container found for {url or 'document'}")
        return None

    text = re.sub(r"\s+", " ", container.get_text(separator=" ")).strip()
    return ExtractedArticle(
        title=title,
        content=container.decode_contents(),
        text_content=text,
        excerpt=_make_excerpt(text),
    )
