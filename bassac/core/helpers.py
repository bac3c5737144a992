"""
Shared helpers: pagination, slugs, hashing, request context and dates.
"""

import hashlib
import math
import re
import time
from datetime import datetime, timezone

from flask import has_request_context, request
from slugify import slugify

from .config import get_config_value

DEFAULT_PAGE_SIZE = 10
MAX_PAGE_SIZE = 100

# Tablet first: iPad and Android without "mobile" would otherwise match the mobile list
TABLET_PATTERNS = [r'ipad', r'android(?!.*mobile)', r'tablet', r'kindle', r'silk', r'playbook']
MOBILE_PATTERNS = [
    r'android.+mobile', r'iphone', r'ipod', r'blackberry', r'iemobile',
    r'opera mini', r'mobile', r'windows ce', r'symbian', r'webos'
]

_BASE36 = '0123456789abcdefghijklmnopqrstuvwxyz'


# ===== Dates =====

def utcnow():
    """Naive UTC datetime; every timestamp column is stored in this form"""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def now_iso():
    return utcnow().isoformat(timespec='microseconds')


def to_iso(value):
    return value.isoformat(timespec='microseconds') if value else None


def parse_date(value):
    """Parse an ISO date/datetime string. Returns None when blank or invalid"""
    if not value:
        return None
    if isinstance(value, datetime):
        return value
    try:
        parsed = datetime.fromisoformat(str(value).replace('Z', '+00:00'))
    except ValueError:
        return None
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


# ===== Pagination =====

def _to_int(value, default):
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def paginate_params(page=None, limit=None, max_limit=MAX_PAGE_SIZE, default_limit=DEFAULT_PAGE_SIZE):
    """Clamp page/limit from query params. Returns (page, limit, offset)"""
    page = max(1, _to_int(page, 1))
    limit = _to_int(limit, default_limit)
    if limit < 1:
        limit = default_limit
    limit = min(limit, max_limit)
    return page, limit, (page - 1) * limit


def build_pagination(page, limit, total):
    total_pages = math.ceil(total / limit) if limit else 0
    return {
        'page': page,
        'limit': limit,
        'total': total,
        'totalPages': total_pages,
        'hasNextPage': page < total_pages,
        'hasPrevPage': page > 1,
    }


def clamp_limit(value, default, maximum):
    limit = _to_int(value, default)
    if limit < 1:
        return default
    return min(limit, maximum)


# ===== Slugs =====

def to_base36(number):
    number = int(number)
    if number == 0:
        return '0'
    digits = []
    while number:
        number, rem = divmod(number, 36)
        digits.append(_BASE36[rem])
    return ''.join(reversed(digits))


def generate_slug(text):
    return slugify(text or '', max_length=180)


def unique_article_slug(title):
    """Title slug suffixed with the base36 millisecond timestamp"""
    base = generate_slug(title) or 'article'
    return f"{base}-{to_base36(int(time.time() * 1000))}"


# ===== Hashing / request context =====

def hash_ip(ip):
    """Salted, truncated IP hash for privacy-preserving storage"""
    salt = get_config_value('IP_HASH_SALT', 'default-salt-change-me')
    return hashlib.sha256(f"{ip or ''}{salt}".encode()).hexdigest()[:16]


def visitor_hash(ip, user_agent):
    return hashlib.sha256(f"{ip or ''}-{user_agent or ''}".encode()).hexdigest()


def get_client_ip():
    if not has_request_context():
        return ''
    forwarded = request.headers.get('X-Forwarded-For', '')
    if forwarded:
        return forwarded.split(',')[0].strip()
    return request.headers.get('X-Real-IP') or request.remote_addr or ''


def get_user_agent():
    if not has_request_context():
        return ''
    return request.headers.get('User-Agent', '')


def detect_device(user_agent):
    """Classify a user agent as desktop, mobile or tablet"""
    ua = (user_agent or '').lower()
    if any(re.search(p, ua) for p in TABLET_PATTERNS):
        return 'tablet'
    if any(re.search(p, ua) for p in MOBILE_PATTERNS):
        return 'mobile'
    return 'desktop'


# ===== Parsing =====

def parse_bool(value):
    if isinstance(value, bool):
        return value
    if value is None:
        return None
    return str(value).strip().lower() in ('1', 'true', 'yes', 'on')


def calculate_read_time(word_count):
    """Minutes at 200 words per minute, never less than one"""
    return max(1, math.ceil((word_count or 0) / 200))
