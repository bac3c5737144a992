import logging

from bassac.core.cache import cache
from bassac.core.helpers import get_client_ip, get_user_agent, visitor_hash
from bassac.core.logging_service import db_log
from bassac.modules.analytics.analytics import Analytics
from .database import increment_view_counts_db

logger = logging.getLogger(__name__)


def record_view(article, user_id=None):
    """Buffer a view and log the page view. Returns the buffered count"""
    try:
        count = cache.increment_view(article['id'])
    except Exception as e:
        logger.error(f"Failed to buffer view for article {article['id']}: {e}")
        count = 0

    try:
        user_agent = get_user_agent()
        Analytics.record_page_view(
            f"/article/{article.get('slug', article['id'])}", page_type='article', article_id=article['id'],
            visitor_hash=visitor_hash(get_client_ip(), user_agent), user_id=user_id, user_agent=user_agent,
        )
    except Exception as e:
        logger.error(f"Failed to record page view for article {article['id']}: {e}")

    return count


def flush_view_counts():
    """Move buffered views into articles.view_count. Returns articles updated"""
    views = cache.get_buffered_views()
    if not views:
        return 0

    updated = increment_view_counts_db(views)
    if updated:
        db_log('info', 'articles', f'Flushed view counts for {updated} articles', {'total_views': sum(views.values())})
    return updated
