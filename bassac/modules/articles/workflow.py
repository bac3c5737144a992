"""
Editorial workflow: who may create, edit, publish and delete articles, plus
the side effects every article write triggers.
"""

import logging

from bassac.core.cache import cache
from bassac.core.helpers import now_iso
from bassac.core.responses import BadRequestError, ForbiddenError
from bassac.modules.auth.database import UserDatabase
from bassac.modules.auth.decorators import is_staff
from bassac.modules.categories.database import update_article_count_db
from bassac.modules.email import email_service
from bassac.modules.notifications.service import (
    notify_article_approved, notify_article_rejected, notify_article_submitted,
)
from bassac.modules.search.sync import remove_article, sync_article
from .database import STATUSES, set_review_fields_db

logger = logging.getLogger(__name__)

STAFF_ONLY_FLAGS = ('is_featured', 'is_breaking', 'is_premium')

CREATE_MESSAGES = {
    'published': 'Article published successfully',
    'pending': 'Article submitted for review',
}


def resolve_create_status(requested, user):
    """Status a new article is stored with"""
    if requested not in STATUSES:
        return 'draft'
    if requested == 'published' and not is_staff(user):
        return 'pending'
    if not is_staff(user) and requested not in ('draft', 'pending'):
        return 'draft'
    return requested


def create_message(status):
    return CREATE_MESSAGES.get(status, 'Article saved as draft')


def is_owner(article, user):
    return bool(user) and article['author_id'] == user['id']


def can_access(article, user):
    return is_owner(article, user) or is_staff(user)


def can_delete(article, user):
    return is_owner(article, user) or (bool(user) and user['role'] == 'admin')


def check_can_edit(article, user):
    if not can_access(article, user):
        raise ForbiddenError('You do not have permission to edit this article')
    if article['status'] == 'published' and not is_staff(user):
        raise ForbiddenError('Cannot edit published article. Please contact an editor.')


def filter_updates(updates, user):
    """Drop fields the user may not change"""
    if not is_staff(user):
        for flag in STAFF_ONLY_FLAGS:
            updates.pop(flag, None)
    return updates


def apply_status_change(article, requested, user):
    """
    Work out the status an update may set. Returns the fields to merge
    (possibly empty when the request is not allowed).
    """
    if not requested or requested == article['status'] or requested not in STATUSES:
        return {}

    if is_staff(user):
        changes = {'status': requested}
        if requested == 'published' and not article.get('published_at'):
            changes['published_at'] = now_iso()
        return changes

    if article['status'] == 'draft' and requested == 'pending':
        return {'status': 'pending'}

    if article['status'] == 'rejected' and requested == 'draft' and is_owner(article, user):
        return {'status': 'draft', 'rejection_reason': None}

    return {}


def approve_article(article, reviewer, notes=None):
    if article['status'] != 'pending':
        raise BadRequestError('Only pending articles can be approved')

    now = now_iso()
    updated = set_review_fields_db(
        article['id'], status='published', published_at=article.get('published_at') or now,
        reviewed_by=reviewer['id'], reviewed_at=now, review_notes=notes,
    )
    after_write(updated, previous=article)

    notify_article_approved(updated, reviewer['id'])
    _email_author(email_service.send_article_approved_email, updated, notes)
    return updated


def reject_article(article, reviewer, reason):
    if article['status'] != 'pending':
        raise BadRequestError('Only pending articles can be rejected')
    reason = (reason or '').strip()
    if not reason:
        raise BadRequestError('Rejection reason is required')

    updated = set_review_fields_db(
        article['id'], status='rejected', rejection_reason=reason,
        reviewed_by=reviewer['id'], reviewed_at=now_iso(),
    )
    after_write(updated, previous=article)

    notify_article_rejected(updated, reason, reviewer['id'])
    _email_author(email_service.send_article_rejected_email, updated, reason)
    return updated


def _email_author(send, article, text):
    try:
        author = UserDatabase.get_user_by_id(article['author_id'])
        if author:
            send(author, article, text)
    except Exception as e:
        logger.error(f"Failed to email author of article {article['id']}: {e}")


def submitted_for_review(article, author):
    """Tell reviewers a pending article is waiting"""
    name = f"{author.get('first_name', '')} {author.get('last_name', '')}".strip() if author else None
    notify_article_submitted(article, name)


def after_write(article, previous=None):
    """Invalidate caches, recount categories and sync search after a write"""
    slugs = {article['slug']}
    category_ids = {article['category_id']}
    if previous:
        slugs.add(previous['slug'])
        category_ids.add(previous['category_id'])

    cache.invalidate_article(article['id'], *slugs)
    cache.invalidate_article_lists()
    for category_id in category_ids:
        update_article_count_db(category_id)
    sync_article(article)


def after_delete(article):
    cache.invalidate_article(article['id'], article['slug'])
    cache.invalidate_article_lists()
    update_article_count_db(article['category_id'])
    remove_article(article['id'])
