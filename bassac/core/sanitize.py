"""
HTML sanitization for user supplied rich text (editor blocks, comments).

Whitelist based: allowed tags keep their allowed attributes, other tags are
dropped but their text survives. script/style are removed with their content.
"""

import re
from html import escape, unescape
from html.parser import HTMLParser
from urllib.parse import urlparse

ALLOWED_TAGS = {
    'a': {'href', 'target', 'rel'},
    'b': set(), 'strong': set(), 'i': set(), 'em': set(), 'u': set(),
    'br': set(), 'p': set(), 'ul': set(), 'ol': set(), 'li': set(),
    'h1': set(), 'h2': set(), 'h3': set(), 'h4': set(), 'h5': set(), 'h6': set(),
    'blockquote': set(), 'pre': set(),
    'code': {'class'},
    'img': {'src', 'alt', 'width', 'height'},
    'span': {'class'},
    'div': {'class'},
}

VOID_TAGS = {'br', 'img'}
DROP_CONTENT_TAGS = {'script', 'style'}
URL_ATTRS = {'href', 'src'}

_UNSAFE_URL = re.compile(r'^\s*(javascript|vbscript|data):', re.IGNORECASE)
_TAG_RE = re.compile(r'<[^>]*>')
_DROP_CONTENT_RE = re.compile(r'<(script|style)[^>]*>.*?</\1>', re.IGNORECASE | re.DOTALL)
_HTTP_URL = re.compile(r'^https?://[^\s/?#]+[^\s]*$', re.IGNORECASE)

# Nested entity encodings (&amp;lt;...) are decoded at most this many times
MAX_DECODE_PASSES = 5


class _WhitelistParser(HTMLParser):

    def __init__(self):
        super().__init__(convert_charrefs=True)
        self.out = []
        self.open_tags = []
        self._skip_depth = 0

    def handle_starttag(self, tag, attrs):
        if tag in DROP_CONTENT_TAGS:
            self._skip_depth += 1
            return
        if self._skip_depth or tag not in ALLOWED_TAGS:
            return

        allowed = ALLOWED_TAGS[tag]
        rendered = []
        for name, value in attrs:
            if name not in allowed or value is None:
                continue
            if name in URL_ATTRS and _UNSAFE_URL.match(value):
                continue
            rendered.append(f' {name}="{escape(value, quote=True)}"')

        self.out.append(f"<{tag}{''.join(rendered)}>")
        if tag not in VOID_TAGS:
            self.open_tags.append(tag)

    def handle_startendtag(self, tag, attrs):
        self.handle_starttag(tag, attrs)
        if tag in self.open_tags and tag not in VOID_TAGS:
            self.handle_endtag(tag)

    def handle_endtag(self, tag):
        if tag in DROP_CONTENT_TAGS:
            self._skip_depth = max(0, self._skip_depth - 1)
            return
        if self._skip_depth or tag not in ALLOWED_TAGS or tag in VOID_TAGS:
            return
        if tag not in self.open_tags:
            return

        # Close anything left open inside this tag
        while self.open_tags:
            current = self.open_tags.pop()
            self.out.append(f"</{current}>")
            if current == tag:
                break

    def handle_data(self, data):
        if not self._skip_depth:
            self.out.append(escape(data, quote=False))

    def result(self):
        while self.open_tags:
            self.out.append(f"</{self.open_tags.pop()}>")
        return ''.join(self.out)


def sanitize_html(html):
    """Return html reduced to the allowed tags/attributes"""
    if html is None:
        return ''
    if not isinstance(html, str):
        html = str(html)

    parser = _WhitelistParser()
    parser.feed(html)
    parser.close()
    return parser.result()


def strip_html(text):
    """
    Plain text with tags removed and entities decoded. Decoding repeats until
    the text is stable, so encoded markup (&lt;img ...&gt;) never comes back
    out as a live tag.
    """
    if not text:
        return ''
    text = str(text)
    for _ in range(MAX_DECODE_PASSES):
        cleaned = unescape(_TAG_RE.sub('', _DROP_CONTENT_RE.sub('', text)))
        if cleaned == text:
            break
        text = cleaned
    return _TAG_RE.sub('', text).strip()


def sanitize_text(text, max_length=None):
    """Tag-free, trimmed text (comments, names)"""
    cleaned = strip_html(text)
    if max_length is not None:
        cleaned = cleaned[:max_length]
    return cleaned


def is_http_url(value):
    """Absolute http(s) URL with a host and no whitespace"""
    return isinstance(value, str) and bool(_HTTP_URL.match(value.strip()))


def is_media_url(value):
    """Empty, an uploaded file (/uploads/...) or an absolute http(s) URL; never with '..' segments"""
    if not value:
        return True
    if not isinstance(value, str) or '\\' in value:
        return False
    parsed = urlparse(value)
    if '..' in parsed.path.split('/'):
        return False
    if value.startswith('/uploads/'):
        return not parsed.netloc
    return parsed.scheme in ('http', 'https') and bool(parsed.netloc)
