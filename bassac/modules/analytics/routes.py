from flask import g, request

from bassac.core.helpers import get_client_ip, get_user_agent, visitor_hash
from bassac.core.responses import BadRequestError, success_response
from bassac.modules.auth.decorators import is_editor, optional_auth
from . import analytics_bp
from .analytics import Analytics, default_range


@analytics_bp.route('/pageview', methods=['POST'])
@optional_auth
def track_page_view():
    data = request.get_json(silent=True) or {}
    path = (data.get('path') or '').strip()
    if not path:
        raise BadRequestError('Path is required')

    user_agent = get_user_agent()
    recorded = Analytics.record_page_view(
        path,
        page_type=data.get('page_type') or 'other',
        article_id=data.get('article_id'),
        visitor_hash=visitor_hash(get_client_ip(), user_agent),
        user_id=g.user['id'] if g.user else None,
        user_agent=user_agent,
        referrer=data.get('referrer') or request.referrer,
    )
    return success_response({'recorded': recorded}, 'Page view recorded')


@analytics_bp.route('/overview', methods=['GET'])
@is_editor
def overview():
    date_range = default_range(request.args.get('startDate'), request.args.get('endDate'))
    if date_range is None:
        raise BadRequestError('Invalid date range')
    start, end = date_range

    return success_response({
        'range': {'start': start.isoformat(), 'end': end.isoformat()},
        'totals': Analytics.totals(start, end),
        'daily': Analytics.daily_views(start, end),
        'by_page_type': Analytics.breakdown(start, end, 'page_type'),
        'by_device': Analytics.breakdown(start, end, 'device'),
        'top_articles': Analytics.top_articles(start, end, limit=10),
    }, 'Analytics overview retrieved')
