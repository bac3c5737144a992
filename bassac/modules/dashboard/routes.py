from datetime import timedelta

from flask import request

from bassac.core.helpers import clamp_limit, utcnow
from bassac.core.logging_service import LOG_LEVELS, logger as app_logger
from bassac.core.responses import BadRequestError, success_response
from bassac.modules.analytics.analytics import Analytics
from bassac.modules.articles.database import count_by_status_db, list_articles_db, populate_articles
from bassac.modules.auth.database import UserDatabase
from bassac.modules.auth.decorators import is_admin, is_editor
from bassac.modules.comments.database import count_by_status_db as count_comments_by_status_db
from bassac.modules.newsletter.database import get_subscriber_stats
from bassac.modules.subscriptions.database import get_subscription_stats
from . import dashboard_bp


@dashboard_bp.route('/stats', methods=['GET'])
@is_editor
def stats():
    """Everything the dashboard landing page shows, in one request"""
    end = utcnow()
    start = end - timedelta(days=7)

    recent, _ = list_articles_db({}, sort_by='created_at', sort_order='desc', limit=5)
    users = UserDatabase.get_stats()
    subscribers = get_subscriber_stats()
    subscriptions = get_subscription_stats()

    return success_response({
        'articles': count_by_status_db(),
        'users': {'total': users['total'], 'by_role': users['by_role']},
        'comments': {'pending': count_comments_by_status_db()['pending']},
        'subscribers': {'confirmed': subscribers['by_status']['confirmed'], 'total': subscribers['total']},
        'subscriptions': {'active_by_plan': subscriptions['active_by_plan'],
                          'monthly_recurring_revenue': subscriptions['monthly_recurring_revenue']},
        'views': {
            'daily': Analytics.daily_views(start, end),
            **Analytics.totals(start, end),
        },
        'recent_articles': populate_articles(recent),
    })


@dashboard_bp.route('/logs', methods=['GET'])
@is_admin
def logs():
    level = request.args.get('level')
    if level and level.upper() not in LOG_LEVELS:
        raise BadRequestError('Invalid log level')
    limit = clamp_limit(request.args.get('limit'), 100, 500)
    entries = app_logger.get_recent_logs(level=level, source=request.args.get('source'), limit=limit)
    return success_response(entries, f'{len(entries)} log entries')
