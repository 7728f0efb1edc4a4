from typing import Literal

from pydantic import BaseModel, Field

# Issues
CONTENT_TOO_SHORT = "CONTENT_TOO_SHORT"
CONSENT_WALL = "CONSENT_WALL"
PAYWALL = "PAYWALL"
LOGIN_REQUIRED = "LOGIN_REQUIRED"
CAPTCHA_DETECTED = "CAPTCHA_DETECTED"
JAVASCRIPT_REQUIRED = "JAVASCRIPT_REQUIRED"
ENCODING_ISSUES = "ENCODING_ISSUES"
BOT_BLOCKED = "BOT_BLOCKED"
ERROR_PAGE = "ERROR_PAGE"
NO_CONTENT = "NO_CONTENT"

QualityIssue = Literal[
    "CONTENT_TOO_SHORT",
    "CONSENT_WALL",
    "PAYWALL",
    "LOGIN_REQUIRED",
    "CAPTCHA_DETECTED",
    "JAVASCRIPT_REQUIRED",
    "ENCODING_ISSUES",
    "BOT_BLOCKED",
    "ERROR_PAGE",
    "NO_CONTENT",
]

# Recommendations
ARTICLE = "ARTICLE"  # good quality, serve as article
WEBVIEW = "WEBVIEW"  # show the original page
META_ONLY = "META_ONLY"  # metadata card only
RETRY = "RETRY"  # temporary issue
REJECT = "REJECT"  # don't process

Recommendation = Literal["ARTICLE", "WEBVIEW", "META_ONLY", "RETRY", "REJECT"]


class DetectedWalls(BaseModel):
    consent: bool = False
    paywall: bool = False
    login: bool = False
    captcha: bool = False

    model_config = {"frozen": True}


class QualityCheckResult(BaseModel):
    is_valid: bool
    confidence: float = Field(ge=0.0, le=1.0)
    issues: tuple[QualityIssue, ...] = ()
    recommendation: Recommendation
    detected_walls: DetectedWalls = DetectedWalls()

    model_config = {"frozen": True}


class QualityOptions(BaseModel):
    min_content_length: int = 300
    check_consent: bool = True
    check_paywall: bool = True
    strict_mode: bool = False
    # Signals from earlier stages
    decode_confident: bool = True
    login_redirect: bool = False

    model_config = {"frozen": True}
