import logging
import uuid

from flask import g, request

from bassac.core.cache import cache
from bassac.core.helpers import (
    clamp_limit, detect_device, get_client_ip, get_user_agent, hash_ip, paginate_params, parse_bool,
)
from bassac.core.logging_service import db_log
from bassac.core.responses import (
    BadRequestError, NotFoundError, created_response, paginated_response, success_response,
)
from bassac.modules.analytics.analytics import default_range
from bassac.modules.articles.database import get_article_by_id_db
from bassac.modules.auth.decorators import is_admin, is_editor, optional_auth
from bassac.modules.categories.database import get_category_by_id_db, get_category_by_slug_db
from . import ads_bp
from .constants import MAX_SELECT_LIMIT, SESSION_COOKIE, SESSION_COOKIE_MAX_AGE
from .database import (
    aggregate_daily_stats, bulk_update_ads_db, create_ad_db, delete_ads_db, duplicate_ad_db, extract_ad_fields,
    get_ad_by_id_db, get_ad_stats, get_daily_stats_db, list_ads_db, update_ad_db,
)
from .selection import article_ads, build_context, category_ads, homepage_ads, select_ads, track_event

logger = logging.getLogger(__name__)


def _int_arg(name, source=None):
    value = (source if source is not None else request.args).get(name)
    if value in (None, ''):
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        raise BadRequestError(f'{name} must be an integer')


def _session_id(provided=None):
    """Session id from the request, the cookie, or a fresh one. Returns (id, is_new)"""
    existing = provided or request.cookies.get(SESSION_COOKIE)
    if existing:
        return existing, False
    return uuid.uuid4().hex, True


def _with_session_cookie(response, session_id, is_new):
    if is_new:
        response[0].set_cookie(SESSION_COOKIE, session_id, max_age=SESSION_COOKIE_MAX_AGE, httponly=True,
                               samesite='Lax')
    return response


def _request_context(session_id, **overrides):
    user = g.get('user')
    exclude = [int(i) for i in (request.args.get('excludeIds') or '').split(',') if i.strip().isdigit()]
    return build_context(
        placement=request.args.get('placement'),
        page_type=request.args.get('pageType'),
        page_url=request.args.get('pageUrl') or request.headers.get('Referer'),
        device=request.args.get('device') or detect_device(get_user_agent()),
        is_logged_in=bool(user),
        user_id=user['id'] if user else None,
        session_id=session_id,
        category_id=_int_arg('categoryId'),
        article_id=_int_arg('articleId'),
        section_index=_int_arg('sectionIndex'),
        paragraph_index=_int_arg('paragraphIndex'),
        placement_id=request.args.get('placementId'),
        ad_id=_int_arg('adId'),
        exclude_ids=exclude,
        country=request.args.get('country') or request.headers.get('CF-IPCountry'),
        limit=clamp_limit(request.args.get('limit'), 3, MAX_SELECT_LIMIT),
        log_impressions=bool(parse_bool(request.args.get('logImpressions'))),
        **overrides
    )


def _invalidate_selection():
    cache.delete_pattern(cache.key('ads', '*'))


# ===== Public =====

@ads_bp.route('/select', methods=['GET'])
@optional_auth
def select():
    session_id, is_new = _session_id(request.args.get('sessionId'))
    ads = select_ads(_request_context(session_id))
    return _with_session_cookie(success_response(ads, 'Ads selected'), session_id, is_new)


@ads_bp.route('/bundle/<page>', methods=['GET'])
@optional_auth
def bundle(page):
    session_id, is_new = _session_id(request.args.get('sessionId'))
    context = _request_context(session_id)

    if page == 'homepage':
        ads = homepage_ads(context)
    elif page == 'article':
        article = get_article_by_id_db(context['article_id']) if context['article_id'] else None
        if not article or article['status'] != 'published':
            raise NotFoundError('Article not found')
        ads = article_ads(article, context, _int_arg('totalParagraphs') or 10)
    elif page == 'category':
        category = (get_category_by_id_db(context['category_id']) if context['category_id']
                    else get_category_by_slug_db(request.args.get('categorySlug') or ''))
        if not category:
            raise NotFoundError('Category not found')
        ads = category_ads(category, context)
    else:
        raise BadRequestError('Invalid page. Must be homepage, article or category')

    return _with_session_cookie(success_response(ads, 'Ads selected'), session_id, is_new)


@ads_bp.route('/track', methods=['POST'])
@optional_auth
def track():
    data = request.get_json(silent=True) or {}
    ad_id = _int_arg('adId', data) or _int_arg('ad_id', data)
    event_type = data.get('type') or data.get('eventType')
    if not ad_id or not event_type:
        raise BadRequestError('adId and type are required')

    session_id, is_new = _session_id(data.get('sessionId'))
    user = g.get('user')
    context = build_context(
        placement=data.get('placement'),
        page_type=data.get('pageType'),
        page_url=data.get('pageUrl') or request.headers.get('Referer'),
        device=data.get('device') or detect_device(get_user_agent()),
        user_id=user['id'] if user else None,
        session_id=session_id,
        article_id=_int_arg('articleId', data),
        category_id=_int_arg('categoryId', data),
        country=data.get('country') or request.headers.get('CF-IPCountry'),
    )
    result = track_event(ad_id, event_type, context, event_id=data.get('eventId'),
                         ip_hash=hash_ip(get_client_ip()), referrer=request.headers.get('Referer'))
    return _with_session_cookie(success_response(result, 'Event tracked successfully'), session_id, is_new)


# ===== Admin =====

@ads_bp.route('', methods=['GET'])
@is_editor
def list_ads():
    page, limit, offset = paginate_params(request.args.get('page'), request.args.get('limit'), default_limit=20)
    ads, total = list_ads_db(request.args.get('status'), request.args.get('placement'), request.args.get('type'),
                             request.args.get('q'), limit, offset)
    return paginated_response(ads, page, limit, total, 'Ads retrieved successfully')


@ads_bp.route('/<int:ad_id>', methods=['GET'])
@is_editor
def get_ad(ad_id):
    ad = get_ad_by_id_db(ad_id)
    if not ad:
        raise NotFoundError('Ad not found')
    return success_response(ad)


@ads_bp.route('', methods=['POST'])
@is_admin
def create_ad():
    ad = create_ad_db(extract_ad_fields(request.get_json(silent=True) or {}), g.user['id'])
    _invalidate_selection()
    db_log('info', 'ads', 'Ad created', {'id': ad['id'], 'by': g.user['id']})
    return created_response(ad, 'Ad created successfully')


@ads_bp.route('/<int:ad_id>', methods=['PUT'])
@is_admin
def update_ad(ad_id):
    ad = update_ad_db(ad_id, extract_ad_fields(request.get_json(silent=True) or {}))
    _invalidate_selection()
    return success_response(ad, 'Ad updated successfully')


@ads_bp.route('/<int:ad_id>', methods=['DELETE'])
@is_admin
def delete_ad(ad_id):
    if not delete_ads_db([ad_id]):
        raise NotFoundError('Ad not found')
    _invalidate_selection()
    db_log('info', 'ads', 'Ad deleted', {'id': ad_id, 'by': g.user['id']})
    return success_response(None, 'Ad deleted successfully')


@ads_bp.route('/<int:ad_id>/duplicate', methods=['POST'])
@is_admin
def duplicate_ad(ad_id):
    ad = duplicate_ad_db(ad_id, g.user['id'])
    return created_response(ad, 'Ad duplicated successfully')


@ads_bp.route('/<int:ad_id>/analytics', methods=['GET'])
@is_editor
def ad_analytics(ad_id):
    ad = get_ad_by_id_db(ad_id)
    if not ad:
        raise NotFoundError('Ad not found')
    date_range = default_range(request.args.get('startDate'), request.args.get('endDate'))
    if date_range is None:
        raise BadRequestError('Invalid date range')
    start, end = date_range
    return success_response({
        'ad': ad,
        'range': {'start': start.isoformat(), 'end': end.isoformat()},
        'stats': get_ad_stats(ad_id, start, end),
        'daily': get_daily_stats_db(ad_id, start, end),
    })


def _ids_from(data):
    ids = data.get('ids')
    if not isinstance(ids, list) or not ids:
        raise BadRequestError('Ad ids are required')
    try:
        return [int(i) for i in ids]
    except (TypeError, ValueError):
        raise BadRequestError('Ad ids must be integers')


@ads_bp.route('/bulk-update', methods=['POST'])
@is_admin
def bulk_update():
    data = request.get_json(silent=True) or {}
    ids = _ids_from(data)
    if not isinstance(data.get('updates'), dict) or not data['updates']:
        raise BadRequestError('Updates are required')
    modified = bulk_update_ads_db(ids, data['updates'])
    _invalidate_selection()
    db_log('info', 'ads', 'Bulk update', {'ids': ids, 'modified': modified, 'by': g.user['id']})
    return success_response({'modified': modified}, f'{modified} ads updated')


@ads_bp.route('/bulk-delete', methods=['POST'])
@is_admin
def bulk_delete():
    ids = _ids_from(request.get_json(silent=True) or {})
    deleted = delete_ads_db(ids)
    _invalidate_selection()
    db_log('info', 'ads', 'Bulk delete', {'ids': ids, 'deleted': deleted, 'by': g.user['id']})
    return success_response({'deleted': deleted}, f'{deleted} ads deleted')


@ads_bp.route('/aggregate', methods=['POST'])
@is_admin
def aggregate():
    day = (request.get_json(silent=True) or {}).get('date')
    try:
        count = aggregate_daily_stats(day)
    except ValueError:
        raise BadRequestError('Invalid date')
    return success_response({'date': day, 'ads': count}, f'Aggregated stats for {count} ads')
