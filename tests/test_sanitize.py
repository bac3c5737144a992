"""
Sanitizer Tests
===============

Rich-text whitelisting, plain-text stripping and URL checks.
Run with: pytest tests/test_sanitize.py -v
"""

from bassac.core.sanitize import is_http_url, sanitize_html, sanitize_text, strip_html


# ---------------------------------------------------------------------------
# 1. Plain text
# ---------------------------------------------------------------------------

def test_strip_html_removes_tags_and_decodes():
    assert strip_html("<b>Phnom</b> Penh &amp; Siem Reap") == "Phnom Penh & Siem Reap"
    assert strip_html("<script>alert(1)</script>News") == "News"
    assert strip_html(None) == ""


def test_encoded_markup_never_comes_back_as_a_tag():
    assert strip_html("hi &lt;img src=x onerror=alert(1)&gt;") == "hi"
    assert strip_html("a &amp;lt;b&amp;gt;bold&amp;lt;/b&amp;gt;") == "a bold"
    assert "<" not in strip_html("&amp;amp;lt;svg onload=alert(1)&amp;amp;gt;")


def test_sanitize_text_truncates():
    assert sanitize_text("<i>abcdef</i>", max_length=3) == "abc"


# ---------------------------------------------------------------------------
# 2. Rich text
# ---------------------------------------------------------------------------

def test_sanitize_html_keeps_whitelist():
    html = '<p class="x">Hi <a href="javascript:alert(1)" onclick="x()">there</a><img src="/a.png" onerror="x"></p>'
    assert sanitize_html(html) == '<p>Hi <a>there</a><img src="/a.png"></p>'


def test_sanitize_html_escapes_text_and_closes_tags():
    assert sanitize_html("<b>1 < 2") == "<b>1 &lt; 2</b>"


# ---------------------------------------------------------------------------
# 3. URLs
# ---------------------------------------------------------------------------

def test_is_http_url():
    assert is_http_url("https://example.com/path?q=1")
    assert is_http_url("http://example.com")
    assert not is_http_url("javascript:alert(1)")
    assert not is_http_url("ftp://example.com")
    assert not is_http_url("https://")
    assert not is_http_url(None)
