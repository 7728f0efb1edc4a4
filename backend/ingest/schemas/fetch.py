import json
from typing import Literal

from pydantic import BaseModel, model_validator

from ingest.config import settings

# FetchError codes; the code is the only field callers branch on
TIMEOUT = "TIMEOUT"
SIZE_LIMIT = "SIZE_LIMIT"
PRIVATE_IP = "PRIVATE_IP"
TOO_MANY_REDIRECTS = "TOO_MANY_REDIRECTS"
REDIRECT_LOOP = "REDIRECT_LOOP"
NETWORK_ERROR = "NETWORK_ERROR"
RATE_LIMITED = "RATE_LIMITED"
ROBOTS_BLOCKED = "ROBOTS_BLOCKED"
INVALID_URL = "INVALID_URL"
ENCODING_ERROR = "ENCODING_ERROR"
HTTP_ERROR = "HTTP_ERROR"

FetchErrorCode = Literal[
    "TIMEOUT",
    "SIZE_LIMIT",
    "PRIVATE_IP",
    "TOO_MANY_REDIRECTS",
    "REDIRECT_LOOP",
    "NETWORK_ERROR",
    "RATE_LIMITED",
    "ROBOTS_BLOCKED",
    "INVALID_URL",
    "ENCODING_ERROR",
    "HTTP_ERROR",
]

FETCH_ERROR_CODES: tuple[str, ...] = (
    TIMEOUT,
    SIZE_LIMIT,
    PRIVATE_IP,
    TOO_MANY_REDIRECTS,
    REDIRECT_LOOP,
    NETWORK_ERROR,
    RATE_LIMITED,
    ROBOTS_BLOCKED,
    INVALID_URL,
    ENCODING_ERROR,
    HTTP_ERROR,
)


class FetchError(BaseModel):
    code: FetchErrorCode
    message: str
    status_code: int | None = None  # HTTP_ERROR only

    model_config = {"frozen": True}


class FetchResult(BaseModel):
    """Outcome of one fetch attempt (including its redirect chain)."""

    success: bool
    url: str  # final URL after redirects
    redirect_chain: tuple[str, ...] = ()  # intermediate URLs, final one excluded
    html: str | None = None
    charset: str | None = None
    charset_confident: bool = True
    content_type: str | None = None
    bytes_read: int = 0
    error: FetchError | None = None

    model_config = {"frozen": True}

    @model_validator(mode="after")
    def _html_iff_success(self):
        if self.success != (self.html is not None):
            raise ValueError("html must be set if and only if success is true")
        if self.success == (self.error is not None):
            raise ValueError("error must be set if and only if success is false")
        return self

    @classmethod
    def failure(
        cls,
        url: str,
        code: str,
        message: str,
        redirect_chain: list[str] | tuple[str, ...] = (),
        status_code: int | None = None,
    ) -> "FetchResult":
        return cls(
            success=False,
            url=url,
            redirect_chain=tuple(redirect_chain),
            error=FetchError(code=code, message=message, status_code=status_code),
        )


class FetchOptions(BaseModel):
    timeout_ms: int = settings.FETCH_TIMEOUT_MS
    max_bytes: int | None = None  # None = default for content_kind
    content_kind: Literal["html", "file"] = "html"
    follow_redirects: bool = True
    check_robots: bool = True
    user_agent: str = settings.USER_AGENT
    strict_mode: bool = False  # paywalled pages route to META_ONLY

    model_config = {"frozen": True}

    @property
    def byte_ceiling(self) -> int:
        if self.max_bytes is not None:
            return self.max_bytes
        if self.content_kind == "file":
            return settings.MAX_FILE_SIZE
        return settings.MAX_HTML_SIZE

    @property
    def timeout_seconds(self) -> float:
        return self.timeout_ms / 1000


class RobotsRule(BaseModel):
    """Path prefixes for the one user-agent group that applies to us."""

    allowed: tuple[str, ...] = ()
    disallowed: tuple[str, ...] = ()

    model_config = {"frozen": True}

    @property
    def is_permissive(self) -> bool:
        return not self.disallowed

    def to_cache(self) -> str:
        return json.dumps({"allowed": list(self.allowed), "disallowed": list(self.disallowed)})

    @classmethod
    def from_cache(cls, raw: str) -> "RobotsRule":
        return cls.model_validate_json(raw)
