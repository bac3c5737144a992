"""
Ad Selection
============

Server-side ad selection: targeting, scheduling, frequency control and
weighted rotation, plus event tracking with dedupe and click-fraud checks.

A selection context is a plain dict:

    placement, page_type, page_url, device, is_logged_in, user_id,
    session_id, category_id, article_id, section_index, paragraph_index,
    placement_id, ad_id, exclude_ids, country, limit, log_impressions
"""

import logging
import random
from datetime import datetime, timedelta

from bassac.core.cache import cache
from bassac.core.helpers import parse_date, utcnow
from bassac.core.responses import BadRequestError, NotFoundError
from .constants import (
    ARTICLE_SLOTS, CATEGORY_SLOTS, DEFAULT_WEIGHT, DEVICE_TYPES, EVENT_TYPES, FRAUD_THRESHOLDS, HOMEPAGE_SLOTS,
    PLACEMENTS, SELECTION_CACHE_TTL,
)
from .database import (
    count_recent_events_db, get_ad_by_id_db, get_candidate_ads_db, get_event_totals_db,
    get_identity_impressions_db, insert_event_db,
)
from .tracking import (
    build_dedupe_key, build_identity_key, build_page_key, normalize_page_path, normalize_page_type,
)

logger = logging.getLogger(__name__)


# ===== Filters =====

def _minutes(value):
    hours, _, minutes = (value or '').partition(':')
    return int(hours) * 60 + int(minutes or 0)


def in_schedule(ad, now=None):
    """Date window, day of week (0 = Sunday) and HH:MM window"""
    now = now or utcnow()
    schedule = ad['schedule']
    start, end = parse_date(schedule.get('start_date')), parse_date(schedule.get('end_date'))
    if start and now < start:
        return False
    if end and now > end:
        return False

    days = schedule.get('day_of_week') or []
    if days and (now.weekday() + 1) % 7 not in days:
        return False

    current = now.hour * 60 + now.minute
    if schedule.get('time_start') and current < _minutes(schedule['time_start']):
        return False
    if schedule.get('time_end') and current > _minutes(schedule['time_end']):
        return False
    return True


def matches_page(ad, page_type, page_url, allow_custom):
    pages = ad['targeting']['pages']
    variants = {'article', 'articles'} if page_type == 'article' else {page_type}
    if 'all' in pages or variants & set(pages):
        return True
    if 'custom' in pages and allow_custom:
        urls = ad['targeting'].get('page_urls') or []
        return not urls or not page_url or any(normalize_page_path(url) == page_url for url in urls)
    return False


def matches_targeting(ad, context):
    targeting = ad['targeting']

    if not targeting['devices'].get(context['device'], False):
        return False

    user_status = targeting['user_status']
    if not user_status.get('loggedIn' if context['is_logged_in'] else 'guest', False):
        return False

    category_id = context.get('category_id')
    if category_id:
        if targeting['categories'] and category_id not in targeting['categories']:
            return False
        if category_id in targeting['exclude_categories']:
            return False

    article_id = context.get('article_id')
    if article_id and targeting['articles'] and article_id not in targeting['articles']:
        return False

    country = (context.get('country') or '').upper()
    geo = targeting['geo']
    if country and geo.get('enabled'):
        if country in geo['exclude_countries']:
            return False
        if geo['countries'] and country not in geo['countries']:
            return False
    return True


def popup_url_allowed(ad, page_url):
    """Popups targeted at custom pages only show on the listed URLs"""
    targeting = ad['targeting']
    if 'custom' not in targeting['pages']:
        return True
    urls = targeting.get('page_urls') or []
    return not urls or any(normalize_page_path(url) == page_url for url in urls)


# ===== Frequency & rotation =====

def apply_frequency_control(ads, user_id=None, session_id=None, page_key=None, now=None):
    if not ads:
        return ads
    now = now or utcnow()
    ad_ids = [ad['id'] for ad in ads]
    totals = get_event_totals_db(ad_ids)

    events = get_identity_impressions_db(ad_ids, user_id=user_id, session_id=session_id)
    midnight = datetime.combine(now.date(), datetime.min.time()).isoformat()
    seen, seen_today, seen_pages = set(), set(), {}
    for event in events:
        seen.add(event['ad_id'])
        if event['created_at'] >= midnight:
            seen_today.add(event['ad_id'])
        if event['page_key']:
            seen_pages.setdefault(event['ad_id'], set()).add(event['page_key'])

    allowed = []
    for ad in ads:
        frequency = ad['frequency']
        max_impressions = frequency.get('max_impressions') or 0
        max_clicks = frequency.get('max_clicks') or 0
        total = totals.get(ad['id'], {'impressions': 0, 'clicks': 0})
        if max_impressions and total['impressions'] >= max_impressions:
            continue
        if max_clicks and total['clicks'] >= max_clicks:
            continue

        rule = frequency.get('type') or 'unlimited'
        if user_id or session_id:
            if rule in ('once_per_user', 'once_per_session') and ad['id'] in seen:
                continue
            if rule == 'once_per_day' and ad['id'] in seen_today:
                continue
            if rule == 'once_per_page' and page_key and page_key in seen_pages.get(ad['id'], ()):
                continue
        allowed.append(ad)
    return allowed


def weighted_shuffle(ads):
    keyed = [((ad.get('weight') or DEFAULT_WEIGHT) * random.random(), ad) for ad in ads]
    keyed.sort(key=lambda pair: pair[0], reverse=True)
    return [ad for _, ad in keyed]


def apply_weighted_rotation(ads):
    """Highest priority first; inside a priority group, a weight-biased shuffle"""
    if len(ads) <= 1:
        return list(ads)
    groups = {}
    for ad in ads:
        groups.setdefault(ad.get('priority') or 0, []).append(ad)
    rotated = []
    for priority in sorted(groups, reverse=True):
        group = groups[priority]
        rotated.extend(weighted_shuffle(group) if len(group) > 1 else group)
    return rotated


# ===== Selection =====

def build_context(**values):
    """Fill in defaults and normalise a selection context"""
    context = {
        'placement': 'between_sections', 'page_type': 'other', 'page_url': '', 'device': 'desktop',
        'is_logged_in': False, 'user_id': None, 'session_id': None, 'category_id': None, 'article_id': None,
        'section_index': None, 'paragraph_index': None, 'placement_id': None, 'ad_id': None, 'exclude_ids': [],
        'country': None, 'limit': 3, 'log_impressions': False,
    }
    context.update({key: value for key, value in values.items() if value is not None})
    context['page_type'] = normalize_page_type(context['page_type'])
    context['page_url'] = normalize_page_path(context['page_url'])
    if context['device'] not in DEVICE_TYPES:
        context['device'] = 'desktop'
    context['is_logged_in'] = bool(context['is_logged_in'] or context['user_id'])
    return context


def _candidate_cache_key(context, popup_urls):
    return cache.key(
        'ads', 'selection', context['placement'], context['page_type'], context['device'],
        int(context['is_logged_in']), context['category_id'] or 'na', context['article_id'] or 'na',
        context['placement_id'] or 'na', context['section_index'] if context['section_index'] is not None else 'na',
        context['paragraph_index'] if context['paragraph_index'] is not None else 'na',
        context['ad_id'] or 'na', (context['country'] or 'na').upper(),
        context['page_url'] if popup_urls else 'no-page',
        '-'.join(str(i) for i in sorted(context['exclude_ids'])) or 'none',
    )


def _candidates(context):
    """Ads passing the placement and targeting filters; cached per context"""
    placement = context['placement']
    popup_urls = placement == 'popup' and bool(context['page_url'])
    key = _candidate_cache_key(context, popup_urls)
    cached = cache.get(key)
    if cached is not None:
        return cached

    allow_custom = placement == 'custom' or bool(context['placement_id']) or popup_urls
    ads = [
        ad for ad in get_candidate_ads_db(
            placement, context['section_index'], context['paragraph_index'], context['placement_id'],
            context['ad_id'], context['exclude_ids'])
        if matches_page(ad, context['page_type'], context['page_url'], allow_custom)
        and matches_targeting(ad, context)
        and (not popup_urls or popup_url_allowed(ad, context['page_url']))
    ]
    cache.set(key, ads, SELECTION_CACHE_TTL)
    return ads


def select_ads(context):
    """Ads to show for one slot, at most context['limit']"""
    if context['placement'] not in PLACEMENTS:
        raise BadRequestError('Invalid placement')

    now = utcnow()
    page_key = build_page_key(context['page_type'], context['page_url'],
                              context['article_id'] or context['category_id'] or context['page_type'])

    ads = [ad for ad in _candidates(context) if in_schedule(ad, now)]
    ads = apply_frequency_control(ads, context['user_id'], context['session_id'], page_key, now)
    selected = apply_weighted_rotation(ads)[:context['limit']]

    if selected and context['log_impressions']:
        log_served_impressions(selected, context, page_key)
    return selected


def log_served_impressions(ads, context, page_key):
    for ad in ads:
        try:
            record_event(ad['id'], 'impression', dict(context, placement=context['placement'] or ad['placement']),
                         page_key=page_key)
        except Exception as e:
            logger.error(f"Failed to log served impression for ad {ad['id']}: {e}")


# ===== Bundles =====

def _group_by(ads, field, default):
    grouped = {}
    for ad in ads:
        index = ad.get(field)
        grouped.setdefault(str(index if index is not None else default), []).append(ad)
    return grouped


def _bundle(context, slots, page_type, **overrides):
    result = {}
    for placement, limit in slots:
        slot_context = dict(context, placement=placement, page_type=page_type, limit=limit, **overrides)
        ads = select_ads(slot_context)
        if placement == 'between_sections':
            result[placement] = _group_by(ads, 'section_index', 0)
        elif placement == 'in_article':
            result[placement] = _group_by(ads, 'paragraph_index', 3)
        else:
            result[placement] = ads
    return result


def homepage_ads(context):
    return _bundle(context, HOMEPAGE_SLOTS, 'homepage')


def article_ads(article, context, total_paragraphs=10):
    """One in-article ad per three paragraphs, at most five"""
    in_article_limit = max(1, min(5, total_paragraphs // 3))
    slots = [(placement, in_article_limit if limit is None else limit) for placement, limit in ARTICLE_SLOTS]
    return _bundle(context, slots, 'article', article_id=article['id'], category_id=article.get('category_id'))


def category_ads(category, context):
    return _bundle(context, CATEGORY_SLOTS, 'category', category_id=category['id'])


# ===== Tracking =====

def is_fraudulent(session_id, ip_hash, now=None):
    """More than the allowed clicks per minute from the same session or IP hash"""
    since = ((now or utcnow()) - timedelta(minutes=1)).isoformat()
    recent = count_recent_events_db('click', since, session_id=session_id, ip_hash=ip_hash)
    return recent >= FRAUD_THRESHOLDS['clicksPerMinute']


def record_event(ad_id, type, context, page_key=None, event_id=None, ip_hash='', referrer=''):
    """Store one event. Returns True when stored, False when it was a duplicate"""
    page_type = normalize_page_type(context.get('page_type'))
    page_url = normalize_page_path(context.get('page_url'))
    page_key = page_key or build_page_key(page_type, page_url,
                                          context.get('article_id') or context.get('category_id') or page_type)
    identity_key = build_identity_key(context.get('user_id'), context.get('session_id'))
    dedupe_key = None
    if type == 'impression' or event_id:
        dedupe_key = build_dedupe_key(type, ad_id, page_key, identity_key, event_id)

    return insert_event_db({
        'ad_id': ad_id,
        'type': type,
        'session_id': context.get('session_id'),
        'user_id': context.get('user_id'),
        'page_type': page_type,
        'page_url': page_url,
        'page_key': page_key,
        'device': context.get('device') or 'desktop',
        'article_id': context.get('article_id'),
        'category_id': context.get('category_id'),
        'placement': context.get('placement') or '',
        'country': (context.get('country') or '').upper(),
        'referrer': (referrer or '')[:500],
        'ip_hash': ip_hash or '',
        'dedupe_key': dedupe_key,
    })


def track_event(ad_id, type, context, event_id=None, ip_hash='', referrer=''):
    """
    Validate and store a client-reported event.
    Returns {'recorded': bool, 'reason': str | None}.
    """
    if type not in EVENT_TYPES:
        raise BadRequestError('Invalid event type')
    ad = get_ad_by_id_db(ad_id)
    if not ad:
        raise NotFoundError('Ad not found')

    if type == 'click' and is_fraudulent(context.get('session_id'), ip_hash):
        logger.warning(f"Click fraud suspected for ad {ad_id} (session {context.get('session_id')})")
        return {'recorded': False, 'reason': 'fraud'}

    recorded = record_event(ad_id, type, dict(context, placement=context.get('placement') or ad['placement']),
                            event_id=event_id, ip_hash=ip_hash, referrer=referrer)
    return {'recorded': recorded, 'reason': None if recorded else 'duplicate'}
