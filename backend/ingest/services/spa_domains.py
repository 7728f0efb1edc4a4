"""Bypass for sites that only render client-side.

Pages on these domains are never run through the fetch/sanitize/quality
pipeline. Instead a cheap metadata lookup fills in a title and cover image
and the result is tagged for webview display.
"""

import logging
from urllib.parse import quote, urlsplit

import httpx

from ingest.config import settings
from ingest.core.metrics import spa_bypass_total
from ingest.schemas.fetch import FetchOptions
from ingest.schemas.parse import SpaBypassResult, SpaMetadata
from ingest.services.fetcher import fetch_url
from ingest.services.metadata import clean_spa_title, scrape_meta_tags
from ingest.services.url_guard import hostname_of, redact_url

logger = logging.getLogger(__name__)

SPA_DOMAINS = frozenset({"twitter.com", "x.com"})

TWITTER_HOSTS = ("twitter.com", "x.com")
REDDIT_HOSTS = ("reddit.com", "redd.it")

TWITTER_OEMBED_URL = "https://publish.twitter.com/oembed?url={url}"
REQUIRES_JAVASCRIPT = "requires_javascript"

# The public endpoints reject non-browser agents
BROWSER_USER_AGENT = (
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)


def _host_matches(host: str, domains) -> bool:
    return any(host == d or host.endswith(f".{d}") for d in domains)


def spa_domains() -> frozenset[str]:
    return SPA_DOMAINS | {d.strip().lower() for d in settings.SPA_EXTRA_DOMAINS if d.strip()}


def is_spa_domain(url: str) -> bool:
    host = hostname_of(url)
    return bool(host) and _host_matches(host, spa_domains())


def get_spa_webview_reason(url: str) -> str:
    return REQUIRES_JAVASCRIPT


async def _twitter_oembed(url: str, client: httpx.AsyncClient) -> SpaMetadata | None:
    timeout = settings.SPA_FETCH_TIMEOUT_MS / 1000
    try:
        response = await client.get(
            TWITTER_OEMBED_URL.format(url=quote(url, safe="")),
            headers={"User-Agent": BROWSER_USER_AGENT},
            timeout=timeout,
        )
        if not response.is_success:
            logger.info(f"Twitter oEmbed returned {response.status_code}")
            return None
        data = response.json()
    except (httpx.HTTPError, ValueError) as e:
        logger.info(f"Twitter oEmbed failed: {e}")
        return None

    author = data.get("author_name") if isinstance(data, dict) else None
    if not author:
        return None
    return SpaMetadata(title=f"{author} on X")


def _reddit_post_image(post: dict) -> str | None:
    thumbnail = post.get("thumbnail") or ""
    if thumbnail.startswith("http"):
        return thumbnail
    images = (post.get("preview") or {}).get("images") or []
    if images:
        source = (images[0] or {}).get("source") or {}
        if source.get("url"):
            return source["url"].replace("&amp;", "&")
    return None


async def _reddit_json(url: str, client: httpx.AsyncClient) -> SpaMetadata | None:
    json_url = url.split("?", 1)[0].split("#", 1)[0].rstrip("/") + ".json"
    timeout = settings.SPA_FETCH_TIMEOUT_MS / 1000
    try:
        response = await client.get(
            json_url, headers={"User-Agent": BROWSER_USER_AGENT}, timeout=timeout
        )
        if not response.is_success:
            logger.info(f"Reddit JSON returned {response.status_code}")
            return None
        data = response.json()
    except (httpx.HTTPError, ValueError) as e:
        logger.info(f"Reddit JSON failed: {e}")
        return None

    # Post: [listing(post), listing(comments)]; subreddit: listing(posts)
    if isinstance(data, list) and data:
        children = ((data[0] or {}).get("data") or {}).get("children") or []
        post = {}
        if children:
            post = (children[0] or {}).get("data") or {}
        if post.get("title"):
            title = post["title"]
            if post.get("subreddit_name_prefixed"):
                title = f"{post['subreddit_name_prefixed']}: {title}"
            return SpaMetadata(title=title, cover_image=_reddit_post_image(post))
    elif isinstance(data, dict) and data.get("kind") == "Listing":
        children = (data.get("data") or {}).get("children") or []
        if children:
            first = (children[0] or {}).get("data") or {}
            if first.get("subreddit_name_prefixed"):
                return SpaMetadata(title=first["subreddit_name_prefixed"])
    return None


async def _scrape_metadata(url: str, client: httpx.AsyncClient) -> SpaMetadata:
    options = FetchOptions(
        timeout_ms=settings.SPA_FETCH_TIMEOUT_MS,
        check_robots=False,
        user_agent=BROWSER_USER_AGENT,
    )
    result = await fetch_url(url, options, client=client)
    if not result.success:
        return SpaMetadata()
    meta = scrape_meta_tags(result.html, base_url=result.url)
    return SpaMetadata(title=clean_spa_title(meta.title), cover_image=meta.image)


async def _lookup(url: str, client: httpx.AsyncClient) -> tuple[SpaMetadata, str]:
    host = hostname_of(url)
    if _host_matches(host, TWITTER_HOSTS):
        meta = await _twitter_oembed(url, client)
        if meta and meta.title:
            return meta, "oembed"
    if _host_matches(host, REDDIT_HOSTS):
        meta = await _reddit_json(url, client)
        if meta and meta.title:
            return meta, "json"

    meta = await _scrape_metadata(url, client)
    if meta.title or meta.cover_image:
        return meta, "scrape"
    return meta, "none"


async def get_spa_metadata(url: str, client: httpx.AsyncClient | None = None) -> SpaMetadata:
    """Best-effort {title, cover_image}; structured API first, then meta-tag scraping."""
    if client is None:
        async with httpx.AsyncClient() as own_client:
            meta, method = await _lookup(url, own_client)
    else:
        meta, method = await _lookup(url, client)
    spa_bypass_total.labels(method=method).inc()
    return meta


async def spa_bypass(url: str, client: httpx.AsyncClient | None = None) -> SpaBypassResult:
    domain = hostname_of(url)
    reason = get_spa_webview_reason(url)
    logger.info(f"SPA domain detected: {domain} -> webview ({reason}) for {redact_url(url)}")

    meta = await get_spa_metadata(url, client)
    return SpaBypassResult(
        url=url,
        domain=domain,
        title=meta.title or domain,
        cover_image=meta.cover_image,
        webview_reason=reason,
    )
