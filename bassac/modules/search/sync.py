"""
Keep the search index in step with article writes.

Both hooks are best effort: failures are logged and never reach the
request that triggered them.
"""

import logging

from bassac.core.config import get_config_value
from bassac.core.helpers import parse_bool
from .service import index_populated, search_service

logger = logging.getLogger(__name__)


def sync_enabled():
    if parse_bool(get_config_value('SKIP_ELASTICSEARCH_SYNC', 'false')):
        return False
    return search_service.available


def sync_article(article):
    """Index a published article, drop anything else from the index"""
    if not sync_enabled():
        return False
    try:
        if article['status'] == 'published':
            index_populated(article)
        else:
            search_service.delete_article(article['id'])
        return True
    except Exception as e:
        logger.error(f"Search sync failed for article {article.get('id')}: {e}")
        return False


def remove_article(article_id):
    if not sync_enabled():
        return False
    try:
        search_service.delete_article(article_id)
        return True
    except Exception as e:
        logger.error(f"Search removal failed for article {article_id}: {e}")
        return False
