"""Page and identity keys shared by ad selection and event tracking."""

from urllib.parse import urlsplit

from .constants import PAGE_TYPES

SLUG_PREFIXES = {
    'article': ('article', 'articles'),
    'category': ('category', 'categories'),
    'page': ('page', 'pages'),
}


def normalize_page_type(page_type):
    normalized = str(page_type or '').strip().lower()
    if normalized == 'articles':
        return 'article'
    if not normalized:
        return 'other'
    return normalized if normalized in PAGE_TYPES else 'other'


def normalize_page_path(value):
    """
    Reduce a URL or path to a bare path: no host, query or fragment,
    always a leading slash and never a trailing one (except for "/").
    """
    if not value or not isinstance(value, str):
        return ''
    trimmed = value.strip()
    if not trimmed:
        return ''
    if trimmed.startswith(('http://', 'https://')):
        try:
            trimmed = urlsplit(trimmed).path or '/'
        except ValueError:
            return ''
    trimmed = trimmed.split('?')[0].split('#')[0]
    if not trimmed.startswith('/'):
        trimmed = f'/{trimmed}'
    if len(trimmed) > 1 and trimmed.endswith('/'):
        trimmed = trimmed[:-1]
    return trimmed


def _extract_slug(page_type, path):
    segments = [s for s in (path or '').split('/') if s]
    prefixes = SLUG_PREFIXES.get(page_type)
    if prefixes and len(segments) > 1 and segments[0] in prefixes:
        return segments[-1]
    return ''


def build_page_key(page_type=None, page_url=None, fallback=''):
    """type:slug, falling back to type:path, then type:fallback, then type:type"""
    normalized = normalize_page_type(page_type)
    path = normalize_page_path(page_url)
    part = _extract_slug(normalized, path) or path or (str(fallback) if fallback else '') or normalized
    return f'{normalized}:{part}'


def build_identity_key(user_id=None, session_id=None):
    if user_id:
        return f'user:{user_id}'
    if session_id:
        return f'session:{session_id}'
    return None


def build_dedupe_key(type, ad_id, page_key=None, identity_key=None, event_id=None):
    """
    Events sharing a dedupe key are stored once. With an event_id the key is
    always built; without one it needs both an identity and a page.
    """
    if not type or not ad_id:
        return None
    if event_id:
        return f"{type}:{identity_key or 'anon'}:{ad_id}:{page_key or 'no-page'}:{event_id}"
    if not identity_key or not page_key:
        return None
    return f'{type}:{identity_key}:{ad_id}:{page_key}'
