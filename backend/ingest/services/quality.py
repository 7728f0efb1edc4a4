"""Quality gate: decides how fetched content should be shown.

Scores the extracted text and raw markup for access walls (consent, paywall,
login, captcha) and content-health problems, then maps the issues to a
single recommendation through an ordered rule table.
"""

import logging
import re
from dataclasses import dataclass
from typing import Callable
from urllib.parse import urlsplit

from ingest.core.metrics import quality_recommendations_total
from ingest.schemas.quality import (
    ARTICLE,
    BOT_BLOCKED,
    CAPTCHA_DETECTED,
    CONSENT_WALL,
    CONTENT_TOO_SHORT,
    ENCODING_ISSUES,
    ERROR_PAGE,
    JAVASCRIPT_REQUIRED,
    LOGIN_REQUIRED,
    META_ONLY,
    NO_CONTENT,
    PAYWALL,
    REJECT,
    WEBVIEW,
    DetectedWalls,
    QualityCheckResult,
    QualityOptions,
)
from ingest.services.charset import replacement_ratio

logger = logging.getLogger(__name__)

NO_CONTENT_LENGTH = 50
CONSENT_MAX_LENGTH = 600
CONSENT_MIN_KEYWORDS = 2
PAYWALL_CONTENT_THRESHOLD = 500
PAYWALL_SCORE_THRESHOLD = 0.6
LOGIN_SCORE_THRESHOLD = 0.5
MAX_REPLACEMENT_CHAR_RATIO = 0.05

# ---------------------------------------------------------------------------
# Keyword lists
# ---------------------------------------------------------------------------

CONSENT_KEYWORDS = {
    "en": [
        "cookie", "cookies", "consent", "privacy policy", "accept all",
        "we use cookies", "gdpr", "manage preferences", "cookie settings",
        "by continuing", "agree to our", "accept cookies", "reject all",
        "necessary cookies", "functional cookies", "analytics cookies",
        "personalization", "we value your privacy", "cookie notice",
    ],
    "tr": [
        "çerez", "çerezler", "gizlilik politikası", "kabul et", "kabul ediyorum",
        "kvkk", "kişisel veri", "çerez politikası", "çerez ayarları",
        "devam ederek", "tümünü kabul", "tümünü reddet", "tercihler",
    ],
    "de": [
        "datenschutz", "akzeptieren", "cookies akzeptieren",
        "einwilligung", "datenschutzerklärung", "alle akzeptieren",
        "notwendige cookies", "einstellungen",
    ],
    "fr": [
        "confidentialité", "accepter", "politique de confidentialité",
        "consentement", "accepter tout", "paramètres des cookies",
        "nous utilisons des cookies",
    ],
    "es": [
        "privacidad", "aceptar", "política de privacidad",
        "aceptar todas", "configuración de cookies", "consentimiento",
    ],
}

# Distinct keywords only; a word shared by several languages counts once
ALL_CONSENT_KEYWORDS = tuple(dict.fromkeys(k for words in CONSENT_KEYWORDS.values() for k in words))

PAYWALL_KEYWORDS = (
    # English
    "subscribe to continue", "subscriber-only", "premium content",
    "members only", "member-only", "exclusive content", "unlock this article",
    "sign up to read", "create a free account", "already a subscriber",
    "subscription required", "paid subscribers", "support quality journalism",
    "become a member", "join to unlock", "this content is for",
    "metered paywall", "free articles remaining", "you have read",
    "register to continue", "sign in to read",
    # Turkish
    "abone ol", "abonelik gerekli", "premium içerik", "sadece üyelere",
    "üye girişi", "giriş yapın", "ücretsiz kayıt",
    # German
    "premium-inhalt", "nur für abonnenten", "jetzt abonnieren",
    # French
    "réservé aux abonnés", "contenu premium", "abonnez-vous",
)

PAYWALL_MARKUP_HINTS = ("paywall", "premium-content", "subscriber-only", "metered")
PAYWALL_STRUCTURE_HINTS = ('class="paywall"', 'id="paywall"', "data-paywall", "data-metered")

LOGIN_KEYWORDS = (
    # English
    "sign in", "log in", "login", "sign up", "register", "create account",
    "authentication required", "please log in", "session expired",
    "unauthorized", "access denied", "forbidden",
    # Turkish
    "giriş yap", "kayıt ol", "oturum aç", "hesap oluştur",
    # German
    "anmelden", "registrieren", "einloggen",
    # French
    "se connecter", "créer un compte", "inscription",
)

LOGIN_FORM_HINTS = ("login-form", "signin-form", "auth-form", "login-modal")
OAUTH_HINTS = ("oauth", "social-login", "google-sign-in", "facebook-login")

# Checked in order; the first pattern found in the text or markup wins
BLOCKED_CONTENT_PATTERNS = [
    (re.compile(r"recaptcha|hcaptcha|captcha", re.I), CAPTCHA_DETECTED),
    (re.compile(r"verify you are human", re.I), CAPTCHA_DETECTED),
    (re.compile(r"are you a robot", re.I), CAPTCHA_DETECTED),
    (re.compile(r"javascript is required", re.I), JAVASCRIPT_REQUIRED),
    (re.compile(r"please enable javascript", re.I), JAVASCRIPT_REQUIRED),
    (re.compile(r"this page requires javascript", re.I), JAVASCRIPT_REQUIRED),
    (re.compile(r"access denied", re.I), BOT_BLOCKED),
    (re.compile(r"blocked|forbidden", re.I), BOT_BLOCKED),
    (re.compile(r"rate limit exceeded", re.I), BOT_BLOCKED),
    (re.compile(r"404 not found", re.I), ERROR_PAGE),
    (re.compile(r"page not found", re.I), ERROR_PAGE),
    (re.compile(r"error occurred", re.I), ERROR_PAGE),
    (re.compile(r"something went wrong", re.I), ERROR_PAGE),
]

ISSUE_PENALTIES = {
    NO_CONTENT: 0.9,
    CONSENT_WALL: 0.8,
    CAPTCHA_DETECTED: 0.8,
    JAVASCRIPT_REQUIRED: 0.7,
    BOT_BLOCKED: 0.7,
    PAYWALL: 0.6,
    LOGIN_REQUIRED: 0.6,
    ERROR_PAGE: 0.9,
    ENCODING_ISSUES: 0.4,
    CONTENT_TOO_SHORT: 0.3,
}

LOGIN_URL_PATTERNS = [
    re.compile(p, re.I)
    for p in (
        r"/login", r"/signin", r"/sign-in", r"/auth", r"/authenticate", r"/sso",
        r"accounts\.google", r"login\.microsoft", r"facebook\.com/login", r"github\.com/login",
    )
]

MEDIUM_PAYWALL_INDICATORS = (
    "member-only story", "become a member", "metered-paywall", "meteredcontent",
    "locked-content", "hi.postcontent", "read more from", "open in app",
)
SUBSTACK_PAYWALL_INDICATORS = (
    "paywall", "subscription-required", "subscribe to continue", "paid subscribers",
    "this post is for paid subscribers", "upgrade to paid",
)


# ---------------------------------------------------------------------------
# Scores
# ---------------------------------------------------------------------------


def count_keywords(text: str, keywords) -> int:
    return sum(1 for keyword in keywords if keyword in text)


def paywall_score(lower_text: str, lower_html: str, text_length: int) -> float:
    matches = count_keywords(lower_text, PAYWALL_KEYWORDS)
    score = min(matches * 0.15, 0.6)
    if text_length < PAYWALL_CONTENT_THRESHOLD and matches > 0:
        score += 0.3
    if any(hint in lower_html for hint in PAYWALL_MARKUP_HINTS):
        score += 0.2
    if any(hint in lower_html for hint in PAYWALL_STRUCTURE_HINTS):
        score += 0.3
    return round(min(score, 1.0), 4)


def login_score(lower_text: str, lower_html: str) -> float:
    matches = count_keywords(lower_text, LOGIN_KEYWORDS)
    score = min(matches * 0.1, 0.4)
    if 'type="password"' in lower_html or "type='password'" in lower_html:
        score += 0.3
    if any(hint in lower_html for hint in LOGIN_FORM_HINTS):
        score += 0.2
    if any(hint in lower_html for hint in OAUTH_HINTS):
        score += 0.1
    return round(min(score, 1.0), 4)


def calculate_confidence(text_length: int, issues) -> float:
    confidence = 1.0
    if text_length < 500:
        confidence -= 0.2
    elif text_length < 1000:
        confidence -= 0.1
    for issue in issues:
        confidence -= ISSUE_PENALTIES.get(issue, 0.0)
    return round(max(0.0, min(confidence, 1.0)), 4)


# ---------------------------------------------------------------------------
# Recommendation table
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class _Signals:
    issues: tuple[str, ...]
    walls: DetectedWalls
    confidence: float
    strict_mode: bool


Rule = tuple[Callable[[_Signals], bool], Callable[[_Signals], str]]

RECOMMENDATION_RULES: list[Rule] = [
    (lambda s: ERROR_PAGE in s.issues, lambda s: REJECT),
    (lambda s: NO_CONTENT in s.issues or CAPTCHA_DETECTED in s.issues, lambda s: WEBVIEW),
    (lambda s: s.walls.consent or s.walls.login, lambda s: WEBVIEW),
    (lambda s: s.walls.paywall, lambda s: META_ONLY if s.strict_mode else WEBVIEW),
    (lambda s: BOT_BLOCKED in s.issues or JAVASCRIPT_REQUIRED in s.issues, lambda s: WEBVIEW),
    (lambda s: ENCODING_ISSUES in s.issues, lambda s: WEBVIEW),
    (lambda s: CONTENT_TOO_SHORT in s.issues, lambda s: META_ONLY if s.confidence > 0.5 else WEBVIEW),
    (lambda s: s.confidence >= 0.7, lambda s: ARTICLE),
    (lambda s: s.confidence >= 0.4, lambda s: META_ONLY),
]


def determine_recommendation(signals: _Signals) -> str:
    for matches, decide in RECOMMENDATION_RULES:
        if matches(signals):
            return decide(signals)
    return WEBVIEW


# ---------------------------------------------------------------------------
# Main check
# ---------------------------------------------------------------------------


def check_content_quality(
    html: str,
    text: str,
    options: QualityOptions | None = None,
    url: str | None = None,
) -> QualityCheckResult:
    """
    Classify *text* (extracted) and *html* (raw page).

    *url*, when given, enables the site-specific Medium/Substack paywall
    detectors on top of the generic score.
    """
    options = options or QualityOptions()
    html = html or ""
    text = text or ""
    text_length = len(text)

    if text_length < NO_CONTENT_LENGTH:
        result = QualityCheckResult(
            is_valid=False,
            confidence=0.0,
            issues=(NO_CONTENT,),
            recommendation=WEBVIEW,
        )
        quality_recommendations_total.labels(recommendation=WEBVIEW).inc()
        return result

    lower_text = text.lower()
    lower_html = html.lower()
    issues: list[str] = []
    consent = paywall = login = captcha = False

    if options.check_consent and text_length < CONSENT_MAX_LENGTH:
        if count_keywords(lower_text, ALL_CONSENT_KEYWORDS) >= CONSENT_MIN_KEYWORDS:
            consent = True
            issues.append(CONSENT_WALL)

    if options.check_paywall:
        score = paywall_score(lower_text, lower_html, text_length)
        if score > PAYWALL_SCORE_THRESHOLD or _site_paywall(url, html, text_length):
            paywall = True
            issues.append(PAYWALL)

    if options.login_redirect or login_score(lower_text, lower_html) > LOGIN_SCORE_THRESHOLD:
        login = True
        issues.append(LOGIN_REQUIRED)

    for pattern, issue in BLOCKED_CONTENT_PATTERNS:
        if pattern.search(text) or pattern.search(html):
            captcha = issue == CAPTCHA_DETECTED
            issues.append(issue)
            break

    if text_length < options.min_content_length and not issues:
        issues.append(CONTENT_TOO_SHORT)

    if replacement_ratio(text) > MAX_REPLACEMENT_CHAR_RATIO or not options.decode_confident:
        issues.append(ENCODING_ISSUES)

    walls = DetectedWalls(consent=consent, paywall=paywall, login=login, captcha=captcha)
    confidence = calculate_confidence(text_length, issues)
    recommendation = determine_recommendation(
        _Signals(
            issues=tuple(issues),
            walls=walls,
            confidence=confidence,
            strict_mode=options.strict_mode,
        )
    )
    quality_recommendations_total.labels(recommendation=recommendation).inc()

    if issues:
        logger.debug(f"Quality issues: {', '.join(issues)} -> {recommendation} ({confidence:.2f})")

    return QualityCheckResult(
        is_valid=not issues,
        confidence=confidence,
        issues=tuple(issues),
        recommendation=recommendation,
        detected_walls=walls,
    )


# ---------------------------------------------------------------------------
# Site-specific detectors
# ---------------------------------------------------------------------------


def detect_medium_paywall(html: str, text_length: int) -> bool:
    lower_html = html.lower()
    matches = count_keywords(lower_html, MEDIUM_PAYWALL_INDICATORS)
    return matches >= 2 or (text_length < 500 and matches >= 1)


def detect_substack_paywall(html: str, text_length: int) -> bool:
    lower_html = html.lower()
    if count_keywords(lower_html, SUBSTACK_PAYWALL_INDICATORS) >= 1:
        return True
    return text_length < 300 and "substack" in html


def _site_paywall(url: str | None, html: str, text_length: int) -> bool:
    if not url:
        return False
    host = (urlsplit(url).hostname or "").lower()
    if host == "medium.com" or host.endswith(".medium.com"):
        return detect_medium_paywall(html, text_length)
    if host.endswith(".substack.com"):
        return detect_substack_paywall(html, text_length)
    return False


def is_login_redirect(url: str, final_url: str) -> bool:
    """True when a redirect chain ended on a login page the original URL wasn't."""
    if url == final_url:
        return False
    return any(p.search(final_url) and not p.search(url) for p in LOGIN_URL_PATTERNS)
