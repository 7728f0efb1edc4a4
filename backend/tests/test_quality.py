"""Tests for the content quality gate."""

from ingest.schemas.quality import (
    ARTICLE,
    CAPTCHA_DETECTED,
    CONSENT_WALL,
    CONTENT_TOO_SHORT,
    ENCODING_ISSUES,
    ERROR_PAGE,
    LOGIN_REQUIRED,
    META_ONLY,
    NO_CONTENT,
    PAYWALL,
    REJECT,
    WEBVIEW,
    QualityOptions,
)
from ingest.services.quality import (
    calculate_confidence,
    check_content_quality,
    detect_medium_paywall,
    is_login_redirect,
    paywall_score,
)

SENTENCE = "The river valley hosts many migratory birds each spring and farmers plant barley along the terraces. "


def prose(length: int) -> str:
    text = SENTENCE * (length // len(SENTENCE) + 1)
    return text[:length]


def page(text: str) -> str:
    return f"<html><body><article><p>{text}</p></article></body></html>"


class TestNoContent:
    def test_under_fifty_chars(self):
        result = check_content_quality("<p>tiny</p>", "tiny")
        assert result.recommendation == WEBVIEW
        assert result.confidence == 0.0
        assert result.issues == (NO_CONTENT,)
        assert result.is_valid is False

    def test_empty_inputs(self):
        result = check_content_quality(None, None)
        assert result.issues == (NO_CONTENT,)


class TestGoodContent:
    def test_long_article(self):
        text = prose(1500)
        result = check_content_quality(page(text), text)
        assert result.recommendation == ARTICLE
        assert result.confidence == 1.0
        assert result.is_valid is True
        assert result.issues == ()

    def test_medium_length_article(self):
        text = prose(700)
        result = check_content_quality(page(text), text)
        assert result.recommendation == ARTICLE
        assert result.confidence == 0.9


class TestShortContent:
    def test_short_text_at_half_confidence_goes_to_webview(self):
        text = prose(250)
        result = check_content_quality(page(text), text)
        assert result.issues == (CONTENT_TOO_SHORT,)
        assert result.confidence == 0.5
        assert result.recommendation == WEBVIEW

    def test_short_text_above_half_confidence_goes_to_meta_only(self):
        text = prose(700)
        result = check_content_quality(page(text), text, QualityOptions(min_content_length=800))
        assert result.issues == (CONTENT_TOO_SHORT,)
        assert result.confidence == 0.6
        assert result.recommendation == META_ONLY


class TestWalls:
    def test_consent_wall(self):
        text = "We use cookies to improve your experience. Accept all or manage preferences in cookie settings."
        result = check_content_quality(page(text), text)
        assert CONSENT_WALL in result.issues
        assert result.detected_walls.consent is True
        assert result.recommendation == WEBVIEW

    def test_consent_in_other_languages(self):
        text = "Bu sitede çerezler kullanılır. Devam ederek çerez politikası şartlarını kabul etmiş olursunuz."
        result = check_content_quality(page(text), text)
        assert result.detected_walls.consent is True

    def test_consent_ignored_on_long_pages(self):
        text = prose(1200) + " We use cookies. Read our privacy policy."
        result = check_content_quality(page(text), text)
        assert result.detected_walls.consent is False

    def test_paywall_on_short_text(self):
        text = (
            "Subscribe to continue reading. Already a subscriber? This is premium content "
            "reserved for paid subscribers."
        )
        result = check_content_quality(page(text), text)
        assert PAYWALL in result.issues
        assert result.detected_walls.paywall is True
        assert result.recommendation == WEBVIEW

    def test_paywall_strict_mode_meta_only(self):
        text = (
            "Subscribe to continue reading. Already a subscriber? This is premium content "
            "reserved for paid subscribers."
        )
        result = check_content_quality(page(text), text, QualityOptions(strict_mode=True))
        assert result.recommendation == META_ONLY

    def test_paywall_markup_hint(self):
        text = prose(900) + " Subscribe to continue."
        html = f'<div class="paywall">{text}</div>'
        assert paywall_score(text.lower(), html.lower(), len(text)) > 0.6
        result = check_content_quality(html, text)
        assert result.detected_walls.paywall is True

    def test_paywall_check_can_be_disabled(self):
        text = "Subscribe to continue reading. Already a subscriber? Premium content for paid subscribers."
        result = check_content_quality(page(text), text, QualityOptions(check_paywall=False))
        assert PAYWALL not in result.issues

    def test_login_form(self):
        text = prose(300) + " Please log in. Sign in with your account or create account to continue."
        html = f'<form class="login-form"><input type="password"></form><p>{text}</p>'
        result = check_content_quality(html, text)
        assert LOGIN_REQUIRED in result.issues
        assert result.detected_walls.login is True
        assert result.recommendation == WEBVIEW

    def test_login_redirect_signal(self):
        text = prose(1500)
        result = check_content_quality(page(text), text, QualityOptions(login_redirect=True))
        assert result.detected_walls.login is True
        assert result.recommendation == WEBVIEW

    def test_captcha_in_markup(self):
        text = prose(1500)
        html = f'<div class="g-recaptcha"></div><p>{text}</p>'
        result = check_content_quality(html, text)
        assert CAPTCHA_DETECTED in result.issues
        assert result.detected_walls.captcha is True
        assert result.recommendation == WEBVIEW


class TestRuleOrder:
    def test_error_page_beats_consent(self):
        text = "404 Not Found. We use cookies and you can accept all cookies on this site."
        result = check_content_quality(page(text), text)
        assert ERROR_PAGE in result.issues
        assert CONSENT_WALL in result.issues
        assert result.recommendation == REJECT

    def test_only_first_blocked_pattern_recorded(self):
        text = prose(600) + " Verify you are human. Page not found."
        result = check_content_quality(page(text), text)
        assert CAPTCHA_DETECTED in result.issues
        assert ERROR_PAGE not in result.issues

    def test_encoding_issues_route_to_webview(self):
        text = prose(1500)
        result = check_content_quality(page(text), text, QualityOptions(decode_confident=False))
        assert ENCODING_ISSUES in result.issues
        assert result.recommendation == WEBVIEW

    def test_replacement_characters_flagged(self):
        text = prose(900) + "�" * 100
        result = check_content_quality(page(text), text)
        assert ENCODING_ISSUES in result.issues


class TestHelpers:
    def test_confidence_is_clamped(self):
        assert calculate_confidence(100, [NO_CONTENT, CONSENT_WALL]) == 0.0
        assert calculate_confidence(5000, []) == 1.0

    def test_login_redirect(self):
        assert is_login_redirect("https://example.com/a", "https://example.com/login?next=/a") is True
        assert is_login_redirect("https://example.com/login", "https://example.com/login") is False
        assert is_login_redirect("https://example.com/a", "https://example.com/b") is False

    def test_medium_paywall_detector(self):
        html = "<div>Member-only story</div><a>Open in app</a>"
        assert detect_medium_paywall(html, 2000) is True
        assert detect_medium_paywall("<p>free</p>", 2000) is False

    def test_site_detector_wired_through_url(self):
        text = prose(1500)
        html = f"<div>Member-only story</div><p>{text}</p><a>Open in app</a>"
        result = check_content_quality(html, text, url="https://medium.com/@someone/post-1")
        assert result.detected_walls.paywall is True
        plain = check_content_quality(html, text, url="https://example.com/post-1")
        assert plain.detected_walls.paywall is False
