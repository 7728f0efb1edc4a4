"""Tests for the pattern-based HTML sanitizer and the URL/text helpers."""

import re

import pytest

from ingest.schemas.sanitize import SanitizeOptions
from ingest.services.sanitizer import (
    IFRAME_SANDBOX,
    sanitize_html,
    sanitize_text,
    sanitize_url,
)

# Real-world shaped fragments; each must come out identical on a second pass
FIXTURES = [
    '<p>Hello <b>world</b></p><script>alert(1)</script>',
    '<a href="javascript:alert(1)" onclick="steal()">click</a>',
    '<a href="https://example.com/" title=\'say "hi"\'>link</a>',
    '<iframe src="https://www.youtube.com/embed/abc" width="560"></iframe>',
    '<iframe src="https://evil.example/x"></iframe><p>after</p>',
    '<form action="https://evil.example/steal" method="post"><input name="q"></form>',
    '<img src="data:text/html;base64,PHNjcmlwdD4=" alt="x"><img src="a.png"/>',
    '<object data="movie.swf"><param name="x"></object><embed src="y.swf">',
    '<style>@import url(evil.css);</style><style>p { color: red }</style>',
    '<!-- secret --><div onmouseover="x()" onfocus="y()">text</div><br />',
    '<svg><use href="https://evil.example/sprite.svg#i"></use><use href="#ok"></use></svg>',
    '<meta http-equiv="refresh" content="0;url=https://evil.example"><base href="https://evil.example/">',
    '<p>tail</p><img src=x onerror=alert(1)',
    # Malformed and obfuscated markup
    '<p>x</p><scr<script>ipt>alert(1)</scr<script>ipt>',
    '<emb<embed>ed src="https://evil.example/x.swf">',
    '<obj<object>ect data="x.swf"></object>',
    '<<base href="/">script>alert(1)</script>',
    '<scr<!-- c -->ipt>alert(1)</script>',
    '<ifr<script>ame src="https://evil.example/"></iframe>',
    '<SCRIPT >alert(1)</script >',
    '<ScRiPt\n  type="text/javascript"\n>\nalert(1)\n</sCrIpT\n>',
    '<div\n  onclick="x()"\n  class="c"\n>multi-line</div>',
    '<EMBED SRC="y.swf"><Object data="z.swf"></OBJECT>',
]

EXECUTABLE_TAG_RE = re.compile(r"<\s*/?\s*(script|embed|object|applet)\b", re.I)


class TestScripts:
    def test_script_blocks_removed(self):
        result = sanitize_html("<p>Hi</p><script>alert(1)</script><script src='x.js'></script>")
        assert "script" not in result.html.lower()
        assert "<p>Hi</p>" in result.html
        assert result.removed_elements.scripts == 2
        assert result.has_unsafe_content is True

    def test_stray_script_tag_removed(self):
        result = sanitize_html("<p>a</p><script>unterminated")
        assert "<script" not in result.html
        assert result.removed_elements.scripts == 1

    def test_split_tag_names_do_not_reassemble(self):
        result = sanitize_html("<p>x</p><scr<script>ipt>alert(1)</scr<script>ipt>")
        assert result.html == "<p>x</p>alert(1)"
        assert result.has_unsafe_content is True

    def test_removed_tag_does_not_splice_neighbours(self):
        result = sanitize_html('<<base href="/">script>alert(1)</script>')
        assert result.html == "alert(1)"
        assert result.removed_elements.scripts == 1

    def test_case_and_whitespace_variants(self):
        result = sanitize_html('<p>a</p><SCRIPT >x()</script ><ScRiPt\n  src="y.js"\n></sCrIpT\n>')
        assert result.html == "<p>a</p>"
        assert result.removed_elements.scripts == 2

    def test_noscript_removed_without_counting(self):
        result = sanitize_html("<noscript><img src='t.gif'></noscript><p>x</p>")
        assert "noscript" not in result.html
        assert result.removed_elements.scripts == 0


class TestAttributes:
    def test_event_handlers_and_javascript_href(self):
        result = sanitize_html('<a href="javascript:alert(1)" onclick="steal()">click</a>')
        assert result.html == '<a href="#" rel="noopener noreferrer">click</a>'
        assert result.removed_elements.event_handlers == 1
        assert result.removed_elements.dangerous_urls == 1

    def test_obfuscated_scheme_detected(self):
        result = sanitize_html('<a href=" JaVa&#x0A;Script:alert(1)">x</a>')
        assert 'href="#"' in result.html
        assert result.removed_elements.dangerous_urls == 1

    def test_unsafe_data_uri_cleared_safe_image_kept(self):
        result = sanitize_html(
            '<img src="data:text/html;base64,PHNjcmlwdD4="><img src="data:image/png;base64,AAAA">'
        )
        assert 'src=""' in result.html
        assert "data:image/png;base64,AAAA" in result.html
        assert result.removed_elements.dangerous_urls == 1

    def test_few_handlers_are_not_unsafe(self):
        html = '<div onclick="a()" onmouseover="b()" onfocus="c()">x</div>'
        result = sanitize_html(html)
        assert result.removed_elements.event_handlers == 3
        assert result.has_unsafe_content is False

    def test_many_handlers_are_unsafe(self):
        html = '<div onclick="a()" onmouseover="b()" onfocus="c()" onblur="d()">x</div>'
        assert sanitize_html(html).has_unsafe_content is True

    def test_quoted_gt_does_not_end_tag(self):
        result = sanitize_html('<a title="a > b" onclick="x()" href="/p">t</a>')
        assert "onclick" not in result.html
        assert 'title="a &gt; b"' in result.html


class TestIframes:
    def test_whitelisted_iframe_sandboxed(self):
        result = sanitize_html('<iframe src="https://www.youtube.com/embed/abc" srcdoc="<b>x</b>"></iframe>')
        assert f'sandbox="{IFRAME_SANDBOX}"' in result.html
        assert "srcdoc" not in result.html
        assert result.removed_elements.iframes == 0

    def test_existing_sandbox_kept(self):
        result = sanitize_html('<iframe src="https://player.vimeo.com/video/1" sandbox="allow-scripts"></iframe>')
        assert 'sandbox="allow-scripts"' in result.html

    def test_unknown_iframe_replaced_by_marker(self):
        result = sanitize_html('<iframe src="https://evil.example/x"></iframe><p>after</p>')
        assert result.html == "<!-- iframe removed: evil.example --><p>after</p>"
        assert result.removed_elements.iframes == 1

    def test_lookalike_host_not_whitelisted(self):
        result = sanitize_html('<iframe src="https://youtube.com.evil.example/embed"></iframe>')
        assert "<iframe" not in result.html

    def test_iframes_disallowed(self):
        options = SanitizeOptions(allow_iframes=False)
        result = sanitize_html('<iframe src="https://www.youtube.com/embed/abc"></iframe>x', options)
        assert result.html == "x"
        assert result.removed_elements.iframes == 1

    def test_custom_whitelist(self):
        options = SanitizeOptions(iframe_whitelist=("embed.example",))
        result = sanitize_html('<iframe src="https://embed.example/w"></iframe>', options)
        assert "<iframe" in result.html


class TestStructural:
    def test_form_neutralised(self):
        result = sanitize_html('<form action="https://evil.example/steal" method="post"><input name="q"></form>')
        assert '<form method="post" action="#" onsubmit="return false;">' in result.html
        assert result.removed_elements.forms == 1

    def test_objects_removed(self):
        result = sanitize_html('<object data="m.swf"><param name="x"></object><embed src="y.swf"><p>ok</p>')
        assert result.html == "<p>ok</p>"
        assert result.removed_elements.objects == 2
        assert result.has_unsafe_content is True

    def test_split_embed_removed(self):
        result = sanitize_html('<emb<embed>ed src="https://evil.example/x.swf"><p>ok</p>')
        assert result.html == "<p>ok</p>"
        assert result.removed_elements.objects == 2

    def test_spliced_iframe_replaced(self):
        result = sanitize_html('<ifr<script>ame src="https://evil.example/"></iframe>')
        assert result.html == "<!-- iframe removed: evil.example -->"
        assert result.removed_elements.iframes == 1

    def test_import_style_removed_plain_style_kept(self):
        result = sanitize_html("<style>@import url(evil.css);</style><style>p { color: red }</style>")
        assert "@import" not in result.html
        assert "color: red" in result.html

    def test_meta_refresh_and_base_removed(self):
        result = sanitize_html(
            '<meta charset="utf-8"><meta http-equiv="refresh" content="0;url=x"><base href="https://evil.example/">'
        )
        assert result.html == '<meta charset="utf-8">'

    def test_external_svg_use_removed(self):
        result = sanitize_html('<svg><use href="https://evil.example/s.svg#i"></use><use href="#ok"></use></svg>')
        assert "evil.example" not in result.html
        assert 'href="#ok"' in result.html

    def test_comments_removed(self):
        assert sanitize_html("<p>a<!-- hidden --></p>").html == "<p>a</p>"

    def test_unterminated_tag_escaped(self):
        result = sanitize_html("<p>tail</p><img src=x onerror=alert(1)")
        assert "<img" not in result.html
        assert result.html.startswith("<p>tail</p>&lt;img")


class TestImages:
    def test_tracking_pixels_removed(self):
        html = '<img src="https://t.example/p.gif" width="1" height="1"><img src="https://t.example/q.gif" style="width:0px;height:0px"><img src="real.jpg">'
        result = sanitize_html(html)
        assert "t.example" not in result.html
        assert "real.jpg" in result.html

    def test_max_images(self):
        html = '<img src="1.jpg"><img src="2.jpg"><img src="3.jpg">'
        result = sanitize_html(html, SanitizeOptions(max_images=2))
        assert "3.jpg" not in result.html
        assert "2.jpg" in result.html

    def test_remove_images(self):
        result = sanitize_html('<p>x</p><img src="1.jpg">', SanitizeOptions(remove_images=True))
        assert result.html == "<p>x</p>"


class TestInvariants:
    @pytest.mark.parametrize("html", FIXTURES)
    def test_idempotent(self, html):
        once = sanitize_html(html).html
        assert sanitize_html(once).html == once

    @pytest.mark.parametrize("html", FIXTURES)
    def test_output_has_no_executable_markup(self, html):
        out = sanitize_html(html).html.lower()
        assert not EXECUTABLE_TAG_RE.search(out)
        assert "javascript:" not in out
        assert not re.search(r"<[a-z][^>]*\son\w+\s*=", out)

    def test_empty_input(self):
        result = sanitize_html("")
        assert result.html == ""
        assert result.has_unsafe_content is False
        assert sanitize_html(None).html == ""


class TestHelpers:
    def test_sanitize_url_strips_tracking(self):
        url = sanitize_url("HTTPS://Example.COM/post?id=7&utm_source=x&fbclid=abc&token=s3cret#top")
        assert url == "https://example.com/post?id=7#top"

    def test_sanitize_url_drops_credentials_and_adds_root_path(self):
        assert sanitize_url("https://user:pw@example.com") == "https://example.com/"

    def test_sanitize_url_leaves_unparseable_input(self):
        assert sanitize_url("not a url") == "not a url"

    def test_sanitize_text(self):
        assert sanitize_text("  <b>Fish</b> &amp;\xa0chips\n\n ") == "Fish & chips"
        assert sanitize_text(None) == ""
