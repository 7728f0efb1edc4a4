"""Ingestion entry point.

SPA bypass -> URL validation -> rate limit -> robots.txt -> bounded fetch
(with charset decoding) -> article extraction -> sanitizer -> quality gate.
"""

import logging
from dataclasses import dataclass

import httpx

from ingest.core.cache import CacheWriter, schedule_cache_write, url_hash
from ingest.core.executor import run_blocking
from ingest.core.request_context import new_request_id, reset_request_id
from ingest.schemas.fetch import FetchOptions, FetchResult
from ingest.schemas.parse import (
    ExtractedArticle,
    ParseRecord,
    PipelineResult,
    SpaBypassResult,
)
from ingest.schemas.quality import ARTICLE, META_ONLY, QualityCheckResult, QualityOptions
from ingest.schemas.sanitize import SanitizeResult
from ingest.services.extractor import Extractor, extract_article
from ingest.services.fetcher import fetch_url
from ingest.services.metadata import (
    estimate_reading_time,
    extract_title_from_url,
    favicon_url,
    html_to_text,
    sanitize_title,
    scrape_meta_tags,
)
from ingest.services.quality import check_content_quality, is_login_redirect
from ingest.services.sanitizer import sanitize_html, sanitize_text, sanitize_url
from ingest.services.spa_domains import is_spa_domain, spa_bypass
from ingest.services.url_guard import hostname_of, redact_url

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class _Analysis:
    article: ExtractedArticle | None
    sanitize: SanitizeResult
    quality: QualityCheckResult


def _run_extractor(extractor: Extractor, html: str, url: str) -> ExtractedArticle | None:
    try:
        return extractor(html, url)
    except Exception as e:
        logger.warning(f"Extractor failed for {redact_url(url)}: {e}")
        return None


def _analyze(
    fetch: FetchResult,
    original_url: str,
    options: FetchOptions,
    extractor: Extractor,
) -> _Analysis:
    html = fetch.html
    article = _run_extractor(extractor, html, fetch.url)

    if article is not None:
        text = article.text_content
        sanitized = sanitize_html(article.content)
    else:
        text = html_to_text(html)
        sanitized = sanitize_html(html)

    quality_options = QualityOptions(
        strict_mode=options.strict_mode,
        decode_confident=fetch.charset_confident,
        login_redirect=is_login_redirect(original_url, fetch.url),
    )
    quality = check_content_quality(html, text, quality_options, url=fetch.url)
    return _Analysis(article=article, sanitize=sanitized, quality=quality)


async def _classify(
    url: str,
    digest: str,
    options: FetchOptions,
    client_id: str | None,
    extractor: Extractor,
    store,
    client: httpx.AsyncClient,
) -> PipelineResult:
    fetch = await fetch_url(url, options, client_id, store=store, client=client)
    if not fetch.success:
        return PipelineResult(fetch=fetch, url_hash=digest, client_id=client_id)

    analysis = await run_blocking(_analyze, fetch, url, options, extractor)

    quality = analysis.quality
    logger.info(
        f"Classified {redact_url(fetch.url)}: {quality.recommendation} "
        f"(confidence {quality.confidence:.2f}, issues: {', '.join(quality.issues) or 'none'})"
    )
    if analysis.sanitize.has_unsafe_content:
        removed = analysis.sanitize.removed_elements
        logger.info(
            f"Unsafe content removed from {hostname_of(fetch.url)}: "
            f"scripts={removed.scripts}, handlers={removed.event_handlers}"
        )

    return PipelineResult(
        fetch=fetch,
        quality=quality,
        sanitize=analysis.sanitize,
        article=analysis.article,
        url_hash=digest,
        client_id=client_id,
    )


async def fetch_and_classify(
    url: str,
    options: FetchOptions | None = None,
    client_id: str | None = None,
    *,
    extractor: Extractor | None = None,
    store=None,
    client: httpx.AsyncClient | None = None,
    cache_writer: CacheWriter | None = None,
) -> PipelineResult | SpaBypassResult:
    """
    Run one URL through the whole ingestion pipeline.

    Returns a ``SpaBypassResult`` for client-side-rendered domains and a
    ``PipelineResult`` otherwise. Fetch failures come back inside the
    result (``fetch.error``), never as exceptions. When *cache_writer* is
    given, the matching ``ParseRecord`` is handed to it in the background.
    """
    options = options or FetchOptions()
    extractor = extractor or extract_article
    token = new_request_id()
    try:
        normalized = sanitize_url(url)
        digest = url_hash(normalized)

        if is_spa_domain(normalized):
            bypass = await spa_bypass(normalized, client=client)
            if cache_writer is not None:
                schedule_cache_write(build_spa_record(bypass, digest), cache_writer)
            return bypass

        if client is None:
            async with httpx.AsyncClient() as own_client:
                result = await _classify(
                    normalized, digest, options, client_id, extractor, store, own_client
                )
        else:
            result = await _classify(
                normalized, digest, options, client_id, extractor, store, client
            )

        if cache_writer is not None and result.success:
            record = await run_blocking(build_parse_record, result, normalized, options.check_robots)
            schedule_cache_write(record, cache_writer)
        return result
    finally:
        reset_request_id(token)


# ---------------------------------------------------------------------------
# Cache records
# ---------------------------------------------------------------------------


def build_parse_record(
    result: PipelineResult, original_url: str, robots_checked: bool = True
) -> ParseRecord:
    """Map a successful pipeline result to the parse-cache row shape."""
    if not result.success or result.quality is None:
        raise ValueError("only successful fetches produce a parse record")

    fetch, quality, article = result.fetch, result.quality, result.article
    domain = hostname_of(fetch.url) or hostname_of(original_url)
    meta = scrape_meta_tags(fetch.html, base_url=fetch.url)
    cover = meta.image or favicon_url(domain)
    fallback_title = sanitize_title(meta.title) if meta.title else extract_title_from_url(original_url)
    article_title = sanitize_title(article.title) if article and article.title else None

    common = dict(
        url_hash=result.url_hash,
        original_url=original_url,
        domain=domain,
        cover_image=cover,
        metadata={"recommendation": quality.recommendation, "charset": fetch.charset or ""},
        protected=quality.detected_walls.login,
        paywalled=quality.detected_walls.paywall,
        confidence=quality.confidence,
        final_url=fetch.url,
        robots_compliant=robots_checked,
    )

    if quality.recommendation == ARTICLE:
        text = article.text_content if article else html_to_text(fetch.html)
        return ParseRecord(
            type="article",
            title=article_title or fallback_title,
            excerpt=sanitize_text(article.excerpt) if article and article.excerpt else meta.description,
            content_html=result.sanitize.html,
            reading_time_minutes=estimate_reading_time(text),
            fetch_method="readability",
            **common,
        )

    if quality.recommendation == META_ONLY:
        return ParseRecord(
            type="webview",
            title=article_title or fallback_title,
            excerpt=meta.description or (article.excerpt if article else None),
            fetch_method="meta-only",
            **common,
        )

    return ParseRecord(
        type="webview",
        title=fallback_title,
        excerpt=meta.description,
        fetch_method="webview",
        webview_reason=quality.issues[0].lower() if quality.issues else "low_confidence",
        **common,
    )


def build_spa_record(result: SpaBypassResult, digest: str) -> ParseRecord:
    return ParseRecord(
        url_hash=digest,
        original_url=result.url,
        type="webview",
        title=result.title,
        cover_image=result.cover_image,
        domain=result.domain,
        fetch_method="spa-bypass",
        confidence=1.0,
        webview_reason=result.webview_reason,
        final_url=result.url,
        robots_compliant=True,
    )
