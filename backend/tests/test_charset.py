"""Tests for response body charset detection and decoding."""

from unittest.mock import patch

from ingest.services.charset import (
    decode_body,
    decode_with_charset,
    extract_charset_from_header,
    extract_charset_from_html,
    normalize_charset,
    replacement_ratio,
)

TURKISH = "Türkçe içerik: ğüşıöç ĞÜŞİÖÇ"


class TestCharsetSniffing:
    def test_header_charset(self):
        assert extract_charset_from_header("text/html; charset=ISO-8859-9") == "iso-8859-9"
        assert extract_charset_from_header('text/html; charset="utf-8"') == "utf-8"
        assert extract_charset_from_header("text/html") is None
        assert extract_charset_from_header(None) is None

    def test_meta_charset(self):
        assert extract_charset_from_html('<head><meta charset="Shift_JIS"></head>') == "shift_jis"

    def test_http_equiv_either_attribute_order(self):
        a = '<meta http-equiv="Content-Type" content="text/html; charset=windows-1251">'
        b = '<meta content="text/html; charset=windows-1251" http-equiv="Content-Type">'
        assert extract_charset_from_html(a) == "windows-1251"
        assert extract_charset_from_html(b) == "windows-1251"

    def test_meta_outside_head_window_ignored(self):
        html = "<p>" + "x" * 5000 + '</p><meta charset="koi8-r">'
        assert extract_charset_from_html(html) is None


class TestDecode:
    def test_aliases(self):
        assert normalize_charset("ISO-8859-9") == "windows-1254"
        assert normalize_charset(" latin1 ") == "windows-1252"
        assert normalize_charset("utf-8") == "utf-8"

    def test_turkish_legacy_label_decodes_with_superset(self):
        data = TURKISH.encode("windows-1254")
        body = decode_body(data, "text/html; charset=iso-8859-9")
        assert body.text == TURKISH
        assert body.charset == "windows-1254"
        assert body.confident is True

    def test_meta_charset_used_without_header(self):
        data = b'<html><head><meta charset="windows-1251"></head><body>' + "Привет мир".encode("cp1251")
        body = decode_body(data, "text/html")
        assert "Привет мир" in body.text
        assert body.charset == "windows-1251"

    def test_header_beats_meta(self):
        data = '<meta charset="windows-1251"><p>café</p>'.encode("utf-8")
        body = decode_body(data, "text/html; charset=utf-8")
        assert body.charset == "utf-8"
        assert "café" in body.text

    def test_unknown_codec_is_a_failed_attempt(self):
        outcome = decode_with_charset(b"hello", "x-no-such-charset")
        assert outcome.success is False
        assert outcome.text == "hello"

    def test_high_replacement_ratio_fails(self):
        outcome = decode_with_charset(b"\xff\xfe" * 50, "utf-8")
        assert outcome.success is False
        assert replacement_ratio(outcome.text) > 0.05

    def test_bad_declared_charset_is_detected(self):
        text = "Grüße aus München: schöne Bücher über Äpfel und Öfen für alle Mädchen. " * 8
        body = decode_body(text.encode("windows-1252"), "text/html; charset=utf-8")
        assert body.text == text
        assert body.charset != "utf-8"
        assert body.confident is True

    def test_undeclared_body_uses_detected_charset(self):
        data = "Привет мир, как дела?".encode("cp1251")
        with patch("ingest.services.charset.from_bytes") as detect:
            detect.return_value.best.return_value.encoding = "cp1251"
            body = decode_body(data)
        detect.assert_called_once_with(data)
        assert body.text == "Привет мир, как дела?"
        assert body.charset == "cp1251"
        assert body.confident is True

    def test_detected_ascii_reported_as_utf8(self):
        with patch("ingest.services.charset.from_bytes") as detect:
            detect.return_value.best.return_value.encoding = "ascii"
            body = decode_body(b"<p>plain</p>")
        assert body.charset == "utf-8"
        assert body.text == "<p>plain</p>"

    def test_undetectable_body_is_not_confident(self):
        with patch("ingest.services.charset.from_bytes") as detect:
            detect.return_value.best.return_value = None
            body = decode_body(b"\xff\xfe\x81\x8d" * 20)
        assert body.confident is False
        assert body.charset == "utf-8"
        assert body.text

    def test_replacement_ratio_of_empty_text(self):
        assert replacement_ratio("") == 0.0
