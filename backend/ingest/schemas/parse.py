from datetime import datetime, timezone
from typing import Literal

from pydantic import BaseModel, Field

from ingest.schemas.fetch import FetchResult
from ingest.schemas.quality import QualityCheckResult
from ingest.schemas.sanitize import SanitizeResult

FetchMethod = Literal["api", "oembed", "readability", "meta-only", "webview", "spa-bypass"]


class ExtractedArticle(BaseModel):
    """Output contract of an article extractor (readability-style)."""

    title: str = ""
    content: str  # article body HTML
    text_content: str
    excerpt: str | None = None

    model_config = {"frozen": True}


class SpaMetadata(BaseModel):
    title: str | None = None
    cover_image: str | None = None

    model_config = {"frozen": True}


class SpaBypassResult(BaseModel):
    """Early-exit result for domains that only render client-side."""

    url: str
    domain: str
    title: str
    cover_image: str | None = None
    display: Literal["webview"] = "webview"
    webview_reason: str
    fetch_method: Literal["spa-bypass"] = "spa-bypass"

    model_config = {"frozen": True}


class PipelineResult(BaseModel):
    fetch: FetchResult
    quality: QualityCheckResult | None = None
    sanitize: SanitizeResult | None = None
    article: ExtractedArticle | None = None
    url_hash: str
    client_id: str | None = None

    model_config = {"frozen": True}

    @property
    def success(self) -> bool:
        return self.fetch.success


class ParseRecord(BaseModel):
    """Row shape expected by the parse-result cache (keyed by url_hash)."""

    url_hash: str
    original_url: str
    type: Literal["article", "webview"]
    title: str
    excerpt: str | None = None
    content_html: str | None = None
    cover_image: str | None = None
    reading_time_minutes: int = 0
    domain: str
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    metadata: dict[str, str] | None = None
    protected: bool = False
    paywalled: bool = False
    fetch_method: FetchMethod = "readability"
    confidence: float = 0.5
    webview_reason: str | None = None
    final_url: str | None = None
    robots_compliant: bool = True

    model_config = {"frozen": True}
